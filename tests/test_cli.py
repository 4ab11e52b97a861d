"""Tests for the command-line interface."""

import sys

import pytest
from docopt import docopt

from exmpipe.cli import main as cli_main
from exmpipe.cli.stage import build_stage_task
from exmpipe.errors import (
    IncompleteScatterGatherError,
    IndexOutOfRangeError,
    InvalidArgumentError,
    MalformedWorkTableError,
    MissingFileError,
)
from exmpipe.task.bwa import AlignFastq
from exmpipe.task.gatk import GatherVcfs, GenotypeGvcfs
from exmpipe.task.gather import ProgressMarkers


@pytest.fixture
def args(config_yml, tmp_path):
    """Parsed arguments with the defaults docopt fills in."""
    return {
        "--input": None,
        "--ref-yml": str(config_yml),
        "--array-index": "1",
        "--array-size": "1",
        "--log": None,
        "--target": None,
        "--name": None,
        "--cpus": "2",
        "--dest-dir": str(tmp_path / "out"),
        "--wait": "0",
        "--skip-cleaning": False,
        "--print-subprocesses": False,
        "--pipeline": False,
        "--fix-misencoded": False,
        "--no-recal": False,
        "--no-phone-home": False,
    }


class TestBuildAlign:
    """Test eager validation of the alignment command."""

    def test_builds_task(self, args, work_table, tmp_path):
        args.update({"--input": str(work_table), "--array-index": "2", "--target": "exome"})
        task = build_stage_task("align", args)
        assert isinstance(task, AlignFastq)
        assert task.base_name == "S02"
        assert task.read_group == "@RG\\tID:S02\\tSM:S02\\tPL:ILLUMINA"
        assert task.fq_paths == (
            str(tmp_path / "fastq" / "S02_R1.fastq.gz"),
            str(tmp_path / "fastq" / "S02_R2.fastq.gz"),
        )
        assert task.target_bed_path == str(tmp_path / "ref" / "targets.bed")
        assert task.n_cpu == 2
        assert task.dest_dir_path == str(tmp_path / "out")

    @pytest.mark.parametrize("index", ["0", "3"])
    def test_index_out_of_range(self, args, work_table, index):
        args.update({"--input": str(work_table), "--array-index": index})
        with pytest.raises(IndexOutOfRangeError):
            build_stage_task("align", args)

    def test_index_not_integer(self, args, work_table):
        args.update({"--input": str(work_table), "--array-index": "one"})
        with pytest.raises(InvalidArgumentError):
            build_stage_task("align", args)

    def test_malformed_table(self, args, tmp_path):
        table = tmp_path / "table.txt"
        table.write_text("a.fq.gz\n")
        args["--input"] = str(table)
        with pytest.raises(MalformedWorkTableError):
            build_stage_task("align", args)

    def test_missing_table(self, args, tmp_path):
        args["--input"] = str(tmp_path / "absent.txt")
        with pytest.raises(MissingFileError):
            build_stage_task("align", args)

    def test_target_must_be_bed(self, args, work_table, tmp_path):
        txt = tmp_path / "targets.txt"
        txt.write_text("")
        args.update({"--input": str(work_table), "--target": str(txt)})
        with pytest.raises(InvalidArgumentError):
            build_stage_task("align", args)


class TestBuildGenotype:
    """Test eager validation of the joint calling commands."""

    def _gvcf_list(self, tmp_path, name="cohort.list"):
        p = tmp_path / name
        p.write_text("S01.g.vcf.gz\nS02.g.vcf.gz\n")
        return str(p)

    def test_builds_task(self, args, tmp_path):
        args.update({
            "--input": self._gvcf_list(tmp_path),
            "--target": "exome",
            "--array-index": "2",
            "--array-size": "4",
            "--pipeline": True,
        })
        task = build_stage_task("genotype-gvcfs", args)
        assert isinstance(task, GenotypeGvcfs)
        assert task.vcf_name == "cohort"
        assert task.run_id == "cohort.2"
        assert task.pipeline is True

    def test_list_suffix(self, args, tmp_path):
        args.update({"--input": self._gvcf_list(tmp_path, "cohort.txt"), "--target": "exome"})
        with pytest.raises(InvalidArgumentError):
            build_stage_task("genotype-gvcfs", args)

    def test_index_beyond_array_size(self, args, tmp_path):
        args.update({
            "--input": self._gvcf_list(tmp_path),
            "--target": "exome",
            "--array-index": "5",
            "--array-size": "4",
        })
        with pytest.raises(IndexOutOfRangeError):
            build_stage_task("genotype-gvcfs", args)

    def test_more_slices_than_intervals(self, args, tmp_path):
        args.update({
            "--input": self._gvcf_list(tmp_path),
            "--target": "exome",
            "--array-size": "9",
        })
        with pytest.raises(InvalidArgumentError):
            build_stage_task("genotype-gvcfs", args)

    def test_gather_requires_every_marker(self, args, tmp_path):
        args.update({"--name": "cohort", "--array-size": "3"})
        markers = ProgressMarkers(tmp_path / "out" / "cohort.progfiles", "cohort")
        markers.mark(1)
        markers.mark(3)
        with pytest.raises(IncompleteScatterGatherError) as excinfo:
            build_stage_task("gather-vcfs", args)
        assert excinfo.value.missing_indices == [2]
        markers.mark(2)
        assert isinstance(build_stage_task("gather-vcfs", args), GatherVcfs)


class TestMain:
    """Test the docopt entry point."""

    def test_graph(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["exmpipe", "graph"])
        cli_main.main()
        out = capsys.readouterr().out
        assert "genotype-gvcfs:" in out
        assert "trigger: pipeline and group_complete" in out

    def test_init(self, monkeypatch, tmp_path):
        yml = tmp_path / "exmpipe.yml"
        monkeypatch.setattr(sys, "argv", ["exmpipe", "init", f"--yml={yml}"])
        cli_main.main()
        assert "reference_fa" in yml.read_text()

    def test_incorrect_arguments_exit(self, monkeypatch, config_yml, tmp_path):
        monkeypatch.setattr(
            sys,
            "argv",
            ["exmpipe", "align", "-i", str(tmp_path / "absent.txt"), "-r", str(config_yml)],
        )
        with pytest.raises(SystemExit) as excinfo:
            cli_main.main()
        assert "Missing/Incorrect required arguments" in str(excinfo.value.code)

    def test_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["exmpipe", "--help"])
        with pytest.raises(SystemExit):
            cli_main.main()
        assert "Usage:" in capsys.readouterr().out

    @pytest.mark.parametrize(
        "argv",
        [
            ["depth-of-coverage", "-i", "S01.bam", "-t", "exome", "-r", "ref.yml"],
            ["genotype-gvcfs", "-i", "g.list", "-t", "exome", "-r", "ref.yml", "-a", "2", "-s", "4"],
        ],
    )
    def test_target_options_parse(self, argv):
        args = docopt(cli_main.__doc__, argv=argv)
        assert args[argv[0]] is True
        assert args["--target"] == "exome"
        assert args["--ref-yml"] == "ref.yml"
