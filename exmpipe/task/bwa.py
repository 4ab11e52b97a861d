"""Alignment stage: FASTQ to duplicate-marked BAM with BWA mem and Picard.

The stage aligns one work table row, sorts and marks PCR duplicates with
Picard, and writes flag and index statistics with samtools. Intermediate
BAM files are deleted as soon as the step consuming them has succeeded.
"""

from pathlib import Path

import luigi

from .chain import PipelineLink
from .command import Command, CommandPipeline
from .core import ExmTask, Step


class AlignFastq(ExmTask):
    """Align one single-end or paired-end FASTQ input.

    Parameters:
        fq_paths: Read 1 (or single-end) FASTQ path, then read 2 if paired.
        read_group: Read group header passed to BWA unmodified.
        base_name: Name for every output of this input.
        target_bed_path: Target intervals; forwarded to downstream stages.
        pipeline: Start variant calling after this stage.
        fix_misencoded: Convert Illumina 1.5+ qualities to Illumina 1.8+.
    """

    stage_name = "align"
    process_name = "Align with BWA"
    log_code = "FqB"
    links = (
        PipelineLink(
            stage="haplotype-caller",
            when=("pipeline",),
            forward=(
                ("--input", "output_bam_path"),
                ("--ref-yml", "config_yml_path"),
                ("--target", "target_bed_path"),
                ("--log", "stage_log_path"),
                ("--dest-dir", "dest_dir_path"),
                ("--no-phone-home", "no_phone_home"),
            ),
        ),
        PipelineLink(
            stage="bam-metrics",
            forward=(
                ("--input", "output_bam_path"),
                ("--ref-yml", "config_yml_path"),
                ("--log", "stage_log_path"),
                ("--dest-dir", "dest_dir_path"),
            ),
        ),
        PipelineLink(
            stage="depth-of-coverage",
            when=("target_bed_path",),
            forward=(
                ("--input", "output_bam_path"),
                ("--ref-yml", "config_yml_path"),
                ("--target", "target_bed_path"),
                ("--log", "stage_log_path"),
                ("--dest-dir", "dest_dir_path"),
                ("--no-phone-home", "no_phone_home"),
            ),
        ),
    )

    fq_paths = luigi.ListParameter()
    read_group = luigi.Parameter()
    base_name = luigi.Parameter()
    target_bed_path = luigi.Parameter(default="")
    pipeline = luigi.BoolParameter(default=False)
    fix_misencoded = luigi.BoolParameter(default=False)
    priority = 70

    @property
    def run_id(self) -> str:
        return self.base_name

    @property
    def work_dir(self) -> Path:
        return Path(self.dest_dir_path).resolve().joinpath(
            f"wd.{self.base_name}.align"
        )

    @property
    def output_bam_path(self) -> str:
        return self.output()[0].path

    def output(self) -> list[luigi.LocalTarget]:
        """Return the duplicate-marked BAM, its index, and the statistics files."""
        return [
            luigi.LocalTarget(self.work_dir.joinpath(f"{self.base_name}.{s}"))
            for s in [
                "bwamem.mkdup.bam",
                "bwamem.mkdup.bai",
                "bwamem.flagstat",
                "idxstats",
            ]
        ]

    def alignment_pipeline(self, aligned_bam: Path) -> CommandPipeline:
        fa = self.cf["reference_fa"]
        pipeline = CommandPipeline.of(
            Command(
                program=self.cf["bwa"],
                args=(
                    "mem",
                    "-M",
                    "-t",
                    str(self.n_cpu),
                    "-R",
                    self.read_group,
                    fa,
                    *self.fq_paths,
                ),
            ),
            Command(
                program=self.cf["samtools"],
                args=("view", "-b", "-"),
                stdout=str(aligned_bam),
            ),
        )
        if self.fix_misencoded:
            return pipeline.splice(
                1,
                Command(program=self.cf["seqtk"], args=("seq", "-Q64", "-V", "-")),
            )
        else:
            return pipeline

    def build_steps(self) -> list[Step]:
        work_dir = self.work_dir
        aligned_bam = work_dir.joinpath(f"{self.base_name}.bwamem.bam")
        sorted_bam = work_dir.joinpath(f"{self.base_name}.bwamem.sorted.bam")
        sorted_bai = work_dir.joinpath(f"{self.base_name}.bwamem.sorted.bai")
        markdup_bam, markdup_bai, flagstat_txt, idxstats_txt = [
            Path(o.path) for o in self.output()
        ]
        picard = self.cf["picard_jar"]
        return [
            Step(
                name="Align with BWA mem",
                command=self.alignment_pipeline(aligned_bam=aligned_bam),
                input_files=(self.cf["reference_fa"], *self.fq_paths),
                output_files=(aligned_bam,),
            ),
            Step(
                name="Sort Bam using PICARD",
                command=CommandPipeline.of(
                    self.java_command(
                        jar=picard,
                        tool_args=[
                            "SortSam",
                            f"INPUT={aligned_bam}",
                            f"OUTPUT={sorted_bam}",
                            "SORT_ORDER=coordinate",
                            "CREATE_INDEX=TRUE",
                        ],
                    )
                ),
                input_files=(aligned_bam,),
                output_files=(sorted_bam, sorted_bai),
                cleanup=(aligned_bam,),
            ),
            Step(
                name="Mark PCR Duplicates using PICARD",
                command=CommandPipeline.of(
                    self.java_command(
                        jar=picard,
                        tool_args=[
                            "MarkDuplicates",
                            f"INPUT={sorted_bam}",
                            f"OUTPUT={markdup_bam}",
                            f"METRICS_FILE={markdup_bam}.dup.metrics.txt",
                            "CREATE_INDEX=TRUE",
                        ],
                    )
                ),
                input_files=(sorted_bam,),
                output_files=(markdup_bam, markdup_bai),
                cleanup=(sorted_bam, sorted_bai),
            ),
            Step(
                name="Output flag stats using Samtools",
                command=CommandPipeline.of(
                    Command(
                        program=self.cf["samtools"],
                        args=("flagstat", str(markdup_bam)),
                        stdout=str(flagstat_txt),
                    )
                ),
                input_files=(markdup_bam,),
                output_files=(flagstat_txt,),
            ),
            Step(
                name="Output idx stats using Samtools",
                command=CommandPipeline.of(
                    Command(
                        program=self.cf["samtools"],
                        args=("idxstats", str(markdup_bam)),
                        stdout=str(idxstats_txt),
                    )
                ),
                input_files=(markdup_bam, markdup_bai),
                output_files=(idxstats_txt,),
            ),
        ]
