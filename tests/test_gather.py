"""Tests for scatter-gather progress markers and the joint calling array."""

import pytest

from exmpipe.errors import IncompleteScatterGatherError
from exmpipe.task.gatk import GatherVcfs, GenotypeGvcfs
from exmpipe.task.gather import ProgressMarkers, ProgressMarkerTarget, split_target_intervals


@pytest.fixture
def markers(tmp_path):
    return ProgressMarkers(progress_dir_path=tmp_path / "cohort.progfiles", group_name="cohort")


class TestProgressMarkers:
    """Test marker bookkeeping."""

    def test_mark_is_idempotent(self, markers):
        first = markers.mark(2)
        assert first.name == "cohort.2.genotypingcomplete"
        assert markers.mark(2) == first
        assert markers.completed_indices() == {2}

    def test_missing_indices(self, markers):
        for i in [1, 2, 4]:
            markers.mark(i)
        assert markers.missing_indices(4) == [3]
        assert not markers.is_complete(4)
        with pytest.raises(IncompleteScatterGatherError) as excinfo:
            markers.require_complete(4)
        assert excinfo.value.missing_indices == [3]
        assert "missing task indices 3" in str(excinfo.value)

    def test_other_groups_are_ignored(self, markers):
        other = ProgressMarkers(progress_dir_path=markers.progress_dir, group_name="cohort.b")
        other.mark(1)
        (markers.progress_dir / "cohort.x.genotypingcomplete").touch()
        assert markers.completed_indices() == set()

    def test_claim_gather_once(self, markers):
        markers.mark(1)
        assert markers.claim_gather(2) is False
        markers.mark(2)
        assert markers.claim_gather(2) is True
        assert markers.claim_gather(2) is False

    def test_wait_for(self, markers):
        assert markers.wait_for(1, timeout=0) is False
        markers.mark(1)
        assert markers.wait_for(1, timeout=0) is True

    def test_marker_target(self, markers):
        target = ProgressMarkerTarget(
            progress_dir_path=str(markers.progress_dir), group_name="cohort", task_index=3
        )
        assert not target.complete()
        markers.mark(3)
        assert target.complete()


class TestSplitTargetIntervals:
    """Test slicing of target intervals across array members."""

    def test_near_equal_contiguous_slices(self):
        lines = ["track name=x\n", "# header\n", "\n"] + [f"1\t{i}\t{i + 1}\n" for i in range(10)]
        slices = split_target_intervals(lines, n_slice=4)
        assert [len(s) for s in slices] == [3, 3, 2, 2]
        assert [l for s in slices for l in s] == lines[3:]

    def test_more_slices_than_intervals(self):
        slices = split_target_intervals(["1\t0\t1"], n_slice=3)
        assert slices == [["1\t0\t1\n"], [], []]


def _genotype_task(tmp_path, stage_cf, index, size=4, pipeline=True):
    return GenotypeGvcfs(
        gvcf_list_path=str(tmp_path / "cohort.list"),
        vcf_name="cohort",
        target_bed_path=str(tmp_path / "targets.bed"),
        array_index=index,
        array_size=size,
        pipeline=pipeline,
        cf=stage_cf,
        dest_dir_path=str(tmp_path),
    )


class TestGenotypeArray:
    """Test that exactly one array member starts the gather stage."""

    def test_only_last_member_fires_gather(self, tmp_path, stage_cf):
        fired = []
        for i in [3, 1, 4, 2]:
            task = _genotype_task(tmp_path, stage_cf, i)
            task.finalize()
            fired.extend(l.stage for l in task.links if l.fires(task))
            assert task.group_complete is (i == 2)
        assert fired == ["gather-vcfs"]
        assert task.markers.is_complete(4)

    def test_members_without_pipeline_leave_claim(self, tmp_path, stage_cf):
        for i in [1, 2]:
            task = _genotype_task(tmp_path, stage_cf, i, size=2, pipeline=False)
            task.finalize()
            assert task.group_complete is False
        assert task.markers.is_complete(2)
        assert not task.markers.claim_path.exists()
        rerun = _genotype_task(tmp_path, stage_cf, 2, size=2)
        rerun.finalize()
        assert rerun.group_complete is True
        assert [l.stage for l in rerun.links if l.fires(rerun)] == ["gather-vcfs"]

    def test_forwarded_gather_args(self, tmp_path, stage_cf):
        task = _genotype_task(tmp_path, stage_cf, 1, size=1)
        task.finalize()
        args = task.links[0].forwarded_args(task)
        assert args[:6] == [
            "--name",
            "cohort",
            "--ref-yml",
            stage_cf["config_yml_path"],
            "--array-size",
            "1",
        ]
        assert "--pipeline" in args
        assert "--no-recal" not in args

    def test_prepare_writes_slice(self, tmp_path, stage_cf):
        (tmp_path / "targets.bed").write_text(
            "".join(f"1\t{i}\t{i + 1}\n" for i in range(6))
        )
        task = _genotype_task(tmp_path, stage_cf, 2, size=3)
        task.prepare()
        assert task.slice_bed_path.endswith("cohort.splitfiles/cohort.2.bed")
        assert open(task.slice_bed_path).read() == "1\t2\t3\n1\t3\t4\n"
        steps = task.build_steps()
        assert [s.name for s in steps] == [
            "Joint call gVCFs with GATK",
            "Annotate VCF with GATK",
            "Left align variants in the VCF with GATK",
        ]
        assert task.output().path.endswith("cohort.splitfiles/cohort.2.vcf")


class TestGatherVcfs:
    """Test the aggregation stage."""

    def test_requires_every_marker(self, tmp_path, stage_cf):
        task = GatherVcfs(vcf_name="cohort", array_size=3, cf=stage_cf, dest_dir_path=str(tmp_path))
        assert [r.task_index for r in task.requires()] == [1, 2, 3]
        with pytest.raises(IncompleteScatterGatherError):
            task.prepare()
        for i in [1, 2, 3]:
            task.markers.mark(i)
        task.prepare()
        command = task.build_steps()[0].command.render()
        assert "org.broadinstitute.gatk.tools.CatVariants" in command
        assert command.count(" -V ") == 3

    def test_no_phone_home(self, tmp_path, stage_cf):
        task = _genotype_task(tmp_path, stage_cf, 1, size=1)
        assert "-et" not in task.build_steps()[0].command.commands[0].args
        task = GenotypeGvcfs(
            gvcf_list_path=str(tmp_path / "cohort.list"),
            vcf_name="cohort",
            target_bed_path=str(tmp_path / "targets.bed"),
            no_phone_home=True,
            cf=stage_cf,
            dest_dir_path=str(tmp_path),
        )
        args = task.build_steps()[0].command.commands[0].args
        assert args[args.index("-et") : args.index("-et") + 4] == (
            "-et",
            "NO_ET",
            "-K",
            stage_cf["et_key"],
        )
