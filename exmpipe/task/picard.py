"""BAM metrics stage using Picard."""

import re
from pathlib import Path

import luigi

from .command import CommandPipeline
from .core import ExmTask, Step


class BamStageTask(ExmTask):
    """Base class for stages that take a duplicate-marked BAM file.

    Parameters:
        input_bam_path: Path to the BAM file.
    """

    input_bam_path = luigi.Parameter()

    @property
    def run_id(self) -> str:
        return re.sub(r"\.bam$", "", Path(self.input_bam_path).name)


class CollectBamMetrics(BamStageTask):
    """Collect alignment, insert size, and quality metrics for one BAM file."""

    stage_name = "bam-metrics"
    process_name = "Get basic bam metrics"
    log_code = "GetMet"
    priority = 100

    def output(self) -> list[luigi.LocalTarget]:
        """Return the alignment summary and quality distribution metrics."""
        prefix = self.work_dir.joinpath(self.run_id)
        return [
            luigi.LocalTarget(f"{prefix}.{s}")
            for s in [
                "alignment_summary_metrics",
                "quality_distribution_metrics",
            ]
        ]

    def build_steps(self) -> list[Step]:
        prefix = self.work_dir.joinpath(self.run_id)
        return [
            Step(
                name="Collect multiple metrics using PICARD",
                command=CommandPipeline.of(
                    self.java_command(
                        jar=self.cf["picard_jar"],
                        tool_args=[
                            "CollectMultipleMetrics",
                            f"INPUT={self.input_bam_path}",
                            f"OUTPUT={prefix}",
                            f"REFERENCE_SEQUENCE={self.cf['reference_fa']}",
                            "PROGRAM=CollectAlignmentSummaryMetrics",
                            "PROGRAM=CollectInsertSizeMetrics",
                            "PROGRAM=QualityScoreDistribution",
                            "PROGRAM=MeanQualityByCycle",
                        ],
                    )
                ),
                input_files=(self.input_bam_path, self.cf["reference_fa"]),
                output_files=tuple(o.path for o in self.output()),
            )
        ]
