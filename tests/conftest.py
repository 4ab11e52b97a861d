"""Shared pytest fixtures for all test modules."""

import os
import subprocess
from pathlib import Path
from pprint import pformat
from typing import Any

import pytest
import yaml


class FakeShellOperator:
    """Stand-in for shoper's ShellOperator that records commands instead of running them."""

    commands: list[str] = []
    fail_on: str = ""

    def __init__(self, log_txt=None, **kwargs):
        self.log_txt = log_txt

    def run(self, args, input_files_or_dirs=None, output_files_or_dirs=None, **kwargs):
        for c in [args] if isinstance(args, str) else list(args):
            type(self).commands.append(c)
            if self.log_txt:
                with open(self.log_txt, "a") as f:
                    f.write(f"$ {c}\n")
            if self.fail_on and self.fail_on in c:
                raise subprocess.SubprocessError(
                    "Commands returned non-zero exit statuses:"
                    + os.linesep
                    + pformat([{"args": c, "returncode": 1}])
                )


@pytest.fixture
def fake_shell(monkeypatch):
    """Replace the shell operator used by stage tasks."""
    monkeypatch.setattr(FakeShellOperator, "commands", [])
    monkeypatch.setattr(FakeShellOperator, "fail_on", "")
    monkeypatch.setattr("exmpipe.task.core.ShellOperator", FakeShellOperator)
    return FakeShellOperator


@pytest.fixture
def stage_cf(tmp_path) -> dict[str, Any]:
    """Resolved configuration as passed to stage tasks (files need not exist)."""
    ref = tmp_path / "ref"
    return {
        "config_yml_path": str(tmp_path / "exmpipe.yml"),
        "build": "GRCh37",
        "reference_fa": str(ref / "human_g1k_v37.fasta"),
        "dbsnp_vcf": str(ref / "dbsnp_138.b37.vcf"),
        "hapmap_vcf": str(ref / "hapmap_3.3.b37.vcf"),
        "omni_vcf": str(ref / "1000G_omni2.5.b37.vcf"),
        "g1k_snp_vcf": str(ref / "1000G_phase1.snps.high_confidence.b37.vcf"),
        "mills_indel_vcf": str(ref / "Mills_and_1000G_gold_standard.indels.b37.vcf"),
        "gatk_jar": str(ref / "GenomeAnalysisTK.jar"),
        "picard_jar": str(ref / "picard.jar"),
        "java": "/usr/bin/java",
        "bwa": "/usr/local/bin/bwa",
        "samtools": "/usr/local/bin/samtools",
        "seqtk": "/usr/local/bin/seqtk",
        "et_key": str(ref / "gatk.key"),
        "targets": {},
        "pipeline_dir": "",
        "submit_command": [],
    }


def _touch(path: Path, text: str = "") -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return str(path)


def _executable(path: Path) -> str:
    _touch(path, "#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def config_yml(tmp_path) -> Path:
    """Configuration YAML whose resources and tools all exist."""
    ref = tmp_path / "ref"
    bin_dir = tmp_path / "bin"
    bed = _touch(
        ref / "targets.bed",
        "track name=exome\n"
        + "".join(f"1\t{i * 1000}\t{i * 1000 + 500}\n" for i in range(1, 9)),
    )
    config = {
        "build": "GRCh37",
        "resources": {
            "reference_fa": _touch(ref / "human_g1k_v37.fasta"),
            "dbsnp_vcf": _touch(ref / "dbsnp_138.b37.vcf"),
            "hapmap_vcf": _touch(ref / "hapmap_3.3.b37.vcf"),
            "omni_vcf": _touch(ref / "1000G_omni2.5.b37.vcf"),
            "g1k_snp_vcf": _touch(ref / "1000G_phase1.snps.b37.vcf"),
            "mills_indel_vcf": _touch(ref / "Mills_and_1000G.indels.b37.vcf"),
        },
        "tools": {
            "gatk_jar": _touch(ref / "GenomeAnalysisTK.jar"),
            "picard_jar": _touch(ref / "picard.jar"),
            "java": _executable(bin_dir / "java"),
            "bwa": _executable(bin_dir / "bwa"),
            "samtools": _executable(bin_dir / "samtools"),
            "seqtk": _executable(bin_dir / "seqtk"),
        },
        "et_key": _touch(ref / "gatk.key"),
        "targets": {"exome": bed},
        "submit_command": ["qsub", "-cwd"],
    }
    path = tmp_path / "exmpipe.yml"
    path.write_text(yaml.dump(config))
    return path


@pytest.fixture
def work_table(tmp_path) -> Path:
    """Paired-end work table with two samples."""
    fq_dir = tmp_path / "fastq"
    lines = []
    for s in ["S01", "S02"]:
        r1 = _touch(fq_dir / f"{s}_R1.fastq.gz")
        r2 = _touch(fq_dir / f"{s}_R2.fastq.gz")
        lines.append(f"{r1}\t@RG\\tID:{s}\\tSM:{s}\\tPL:ILLUMINA\t{r2}\n")
    path = tmp_path / "work_table.txt"
    path.write_text("".join(lines))
    return path
