"""GATK stages: per-sample gVCF calling, coverage, joint calling, and VQSR.

Joint genotyping runs as a scatter-gather array. Each `GenotypeGvcfs` member
calls one slice of the target intervals and writes a progress marker; the
`GatherVcfs` stage concatenates the slices only when every marker exists.
"""

import re
from pathlib import Path

import luigi

from .chain import PipelineLink
from .command import Command, CommandPipeline
from .core import ExmTask, Step
from .gather import ProgressMarkers, ProgressMarkerTarget, split_target_intervals
from .picard import BamStageTask

GENOTYPE_ANNOTATIONS = (
    "AlleleBalance",
    "BaseQualityRankSumTest",
    "Coverage",
    "MappingQualityRankSumTest",
    "MappingQualityZero",
    "QualByDepth",
    "RMSMappingQuality",
    "FisherStrand",
    "InbreedingCoeff",
    "ChromosomeCounts",
    "GenotypeSummaries",
    "StrandOddsRatio",
    "DepthPerSampleHC",
)
VARIANT_ANNOTATIONS = (
    *GENOTYPE_ANNOTATIONS,
    "HaplotypeScore",
    "HomopolymerRun",
    "SpanningDeletions",
    "ClippingRankSumTest",
)
VQSR_ANNOTATIONS = ("QD", "FS", "SOR", "MQRankSum", "ReadPosRankSum")
SNP_RESOURCES = (
    ("hapmap,known=false,training=true,truth=true,prior=15.0", "hapmap_vcf"),
    ("omni,known=false,training=true,truth=true,prior=12.0", "omni_vcf"),
    ("1000G,known=false,training=true,truth=false,prior=10.0", "g1k_snp_vcf"),
    ("dbsnp,known=true,training=false,truth=false,prior=2.0", "dbsnp_vcf"),
)
INDEL_RESOURCES = (
    ("mills,known=false,training=true,truth=true,prior=12.0", "mills_indel_vcf"),
    ("dbsnp,known=true,training=false,truth=false,prior=2.0", "dbsnp_vcf"),
)


def _annotation_args(annotations: tuple[str, ...]) -> list[str]:
    return [a for n in annotations for a in ("-A", n)]


class HaplotypeCallerGvcf(BamStageTask):
    """Call variants of one sample in GVCF mode.

    Parameters:
        target_bed_path: Optional target intervals.
    """

    stage_name = "haplotype-caller"
    process_name = "Variant calling with GATK HaplotypeCaller in GVCF mode"
    log_code = "HCgVCF"
    target_bed_path = luigi.Parameter(default="")
    priority = 70

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(self.work_dir.joinpath(f"{self.run_id}.g.vcf.gz"))

    def build_steps(self) -> list[Step]:
        gvcf = self.output().path
        return [
            Step(
                name="Call variants in GVCF mode with GATK HaplotypeCaller",
                command=CommandPipeline.of(
                    self.gatk_command(
                        tool="HaplotypeCaller",
                        args=[
                            "-R",
                            self.cf["reference_fa"],
                            "-I",
                            self.input_bam_path,
                            *(
                                ["-L", self.target_bed_path, "--interval_padding", "100"]
                                if self.target_bed_path
                                else []
                            ),
                            "--emitRefConfidence",
                            "GVCF",
                            "-D",
                            self.cf["dbsnp_vcf"],
                            "-o",
                            gvcf,
                        ],
                    )
                ),
                input_files=(self.input_bam_path, self.cf["reference_fa"]),
                output_files=(gvcf, f"{gvcf}.tbi"),
            )
        ]


class DepthOfCoverage(BamStageTask):
    """Summarize read depth of one sample over the target intervals.

    Parameters:
        target_bed_path: Target intervals.
    """

    stage_name = "depth-of-coverage"
    process_name = "Depth of Coverage with GATK"
    log_code = "DoC"
    target_bed_path = luigi.Parameter()
    priority = 100

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(
            self.work_dir.joinpath(f"{self.run_id}.DoC.sample_summary")
        )

    def build_steps(self) -> list[Step]:
        prefix = str(self.work_dir.joinpath(f"{self.run_id}.DoC"))
        return [
            Step(
                name="Get depth of coverage with GATK",
                command=CommandPipeline.of(
                    self.gatk_command(
                        tool="DepthOfCoverage",
                        args=[
                            "-R",
                            self.cf["reference_fa"],
                            "-I",
                            self.input_bam_path,
                            "-L",
                            self.target_bed_path,
                            "-o",
                            prefix,
                            *[a for c in (1, 5, 10, 15, 20) for a in ("-ct", str(c))],
                            "-omitIntervals",
                            "-omitLocusTable",
                        ],
                    )
                ),
                input_files=(self.input_bam_path, self.target_bed_path),
                output_files=(self.output().path,),
            )
        ]


class GenotypeGvcfs(ExmTask):
    """Jointly genotype gVCF files over one slice of the target intervals.

    Parameters:
        gvcf_list_path: List of gVCF files (ending `.list`).
        vcf_name: Name of the analysis; prefix of every output.
        target_bed_path: Target intervals split across the array.
        array_index: 1-based index of this member.
        array_size: Number of members in the array.
        pipeline: Gather the slices once every member has finished.
        no_recal: Skip variant quality score recalibration after gathering.
    """

    stage_name = "genotype-gvcfs"
    process_name = "Joint calling of gVCFs with GATK GenotypeGVCFs"
    log_code = "GgVCF"
    links = (
        PipelineLink(
            stage="gather-vcfs",
            when=("pipeline", "group_complete"),
            forward=(
                ("--name", "vcf_name"),
                ("--ref-yml", "config_yml_path"),
                ("--array-size", "array_size"),
                ("--log", "log_path"),
                ("--dest-dir", "dest_dir_path"),
                ("--pipeline", "pipeline"),
                ("--no-recal", "no_recal"),
                ("--no-phone-home", "no_phone_home"),
            ),
        ),
    )

    gvcf_list_path = luigi.Parameter()
    vcf_name = luigi.Parameter()
    target_bed_path = luigi.Parameter()
    array_index = luigi.IntParameter(default=1)
    array_size = luigi.IntParameter(default=1)
    pipeline = luigi.BoolParameter(default=False)
    no_recal = luigi.BoolParameter(default=False)
    priority = 70

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.group_complete = False

    @property
    def run_id(self) -> str:
        return f"{self.vcf_name}.{self.array_index}"

    @property
    def split_dir(self) -> Path:
        return self.work_dir.joinpath(f"{self.vcf_name}.splitfiles")

    @property
    def slice_bed_path(self) -> str:
        return str(self.split_dir.joinpath(f"{self.run_id}.bed"))

    @property
    def markers(self) -> ProgressMarkers:
        return ProgressMarkers(
            progress_dir_path=self.work_dir.joinpath(f"{self.vcf_name}.progfiles"),
            group_name=self.vcf_name,
        )

    def log_fields(self) -> dict[str, object]:
        return {
            **super().log_fields(),
            "Array task": f"{self.array_index}/{self.array_size}",
        }

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(self.split_dir.joinpath(f"{self.run_id}.vcf"))

    def prepare(self) -> None:
        self.make_dirs(self.split_dir)
        with open(self.target_bed_path, encoding="utf-8") as f:
            intervals = split_target_intervals(f, n_slice=self.array_size)[
                self.array_index - 1
            ]
        with open(self.slice_bed_path, "w", encoding="utf-8") as f:
            f.writelines(intervals)

    def build_steps(self) -> list[Step]:
        fa = self.cf["reference_fa"]
        dbsnp = self.cf["dbsnp_vcf"]
        vcf = self.output().path
        raw_vcf, ann_vcf = [
            str(self.split_dir.joinpath(f"{self.run_id}.{s}.vcf")) for s in ["raw", "ann"]
        ]
        return [
            Step(
                name="Joint call gVCFs with GATK",
                command=CommandPipeline.of(
                    self.gatk_command(
                        tool="GenotypeGVCFs",
                        args=[
                            "-R",
                            fa,
                            "-L",
                            self.slice_bed_path,
                            "--interval_padding",
                            "100",
                            "-V",
                            self.gvcf_list_path,
                            "-o",
                            raw_vcf,
                            "-D",
                            dbsnp,
                            *_annotation_args(GENOTYPE_ANNOTATIONS),
                        ],
                    )
                ),
                input_files=(fa, self.gvcf_list_path, self.slice_bed_path),
                output_files=(raw_vcf, f"{raw_vcf}.idx"),
            ),
            Step(
                name="Annotate VCF with GATK",
                command=CommandPipeline.of(
                    self.gatk_command(
                        tool="VariantAnnotator",
                        args=[
                            "-R",
                            fa,
                            "-L",
                            raw_vcf,
                            "-V",
                            raw_vcf,
                            "-o",
                            ann_vcf,
                            "-D",
                            dbsnp,
                            *_annotation_args(VARIANT_ANNOTATIONS),
                        ],
                    )
                ),
                input_files=(raw_vcf,),
                output_files=(ann_vcf, f"{ann_vcf}.idx"),
                cleanup=(raw_vcf, f"{raw_vcf}.idx"),
            ),
            Step(
                name="Left align variants in the VCF with GATK",
                command=CommandPipeline.of(
                    self.gatk_command(
                        tool="LeftAlignAndTrimVariants",
                        args=["-R", fa, "-V", ann_vcf, "-o", vcf],
                    )
                ),
                input_files=(ann_vcf,),
                output_files=(vcf, f"{vcf}.idx"),
                cleanup=(ann_vcf, f"{ann_vcf}.idx"),
            ),
        ]

    def finalize(self) -> None:
        self.markers.mark(self.array_index)
        if self.pipeline:
            self.group_complete = self.markers.claim_gather(self.array_size)


class GatherVcfs(ExmTask):
    """Concatenate the slices of a finished joint genotyping array.

    Parameters:
        vcf_name: Name of the analysis shared by the array members.
        array_size: Number of slices that must be complete.
        pipeline: Recalibrate the merged VCF afterwards.
        no_recal: Skip recalibration even when `pipeline` is set.
    """

    stage_name = "gather-vcfs"
    process_name = "Merge VCF slices with GATK CatVariants"
    log_code = "MrgVCF"
    links = (
        PipelineLink(
            stage="recalibrate-vcf",
            when=("pipeline",),
            unless=("no_recal",),
            forward=(
                ("--input", "output_vcf_path"),
                ("--ref-yml", "config_yml_path"),
                ("--log", "stage_log_path"),
                ("--dest-dir", "dest_dir_path"),
                ("--no-phone-home", "no_phone_home"),
            ),
        ),
    )

    vcf_name = luigi.Parameter()
    array_size = luigi.IntParameter(default=1)
    pipeline = luigi.BoolParameter(default=False)
    no_recal = luigi.BoolParameter(default=False)
    priority = 50

    @property
    def run_id(self) -> str:
        return self.vcf_name

    @property
    def markers(self) -> ProgressMarkers:
        return ProgressMarkers(
            progress_dir_path=self.work_dir.joinpath(f"{self.vcf_name}.progfiles"),
            group_name=self.vcf_name,
        )

    @property
    def slice_vcf_paths(self) -> list[str]:
        split_dir = self.work_dir.joinpath(f"{self.vcf_name}.splitfiles")
        return [
            str(split_dir.joinpath(f"{self.vcf_name}.{i}.vcf"))
            for i in range(1, self.array_size + 1)
        ]

    @property
    def output_vcf_path(self) -> str:
        return self.output().path

    def requires(self) -> list[ProgressMarkerTarget]:
        return [
            ProgressMarkerTarget(
                progress_dir_path=str(self.markers.progress_dir),
                group_name=self.vcf_name,
                task_index=i,
            )
            for i in range(1, self.array_size + 1)
        ]

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(self.work_dir.joinpath(f"{self.vcf_name}.vcf"))

    def prepare(self) -> None:
        self.markers.require_complete(self.array_size)

    def build_steps(self) -> list[Step]:
        vcf = self.output().path
        return [
            Step(
                name="Merge VCF slices with GATK CatVariants",
                command=CommandPipeline.of(
                    Command(
                        program=self.cf["java"],
                        args=(
                            f"-Xmx{int(self.memory_mb)}m",
                            "-cp",
                            self.cf["gatk_jar"],
                            "org.broadinstitute.gatk.tools.CatVariants",
                            "-R",
                            self.cf["reference_fa"],
                            *[a for p in self.slice_vcf_paths for a in ("-V", p)],
                            "-out",
                            vcf,
                            "-assumeSorted",
                        ),
                    )
                ),
                input_files=tuple(self.slice_vcf_paths),
                output_files=(vcf, f"{vcf}.idx"),
            )
        ]


class RecalibrateVcf(ExmTask):
    """Apply variant quality score recalibration to SNPs and then indels.

    Parameters:
        input_vcf_path: Merged VCF file.
    """

    stage_name = "recalibrate-vcf"
    process_name = "Variant quality score recalibration with GATK"
    log_code = "VQSR"
    input_vcf_path = luigi.Parameter()
    priority = 50

    @property
    def run_id(self) -> str:
        return re.sub(r"\.vcf$", "", Path(self.input_vcf_path).name)

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(self.work_dir.joinpath(f"{self.run_id}.recal.vcf"))

    def build_steps(self) -> list[Step]:
        fa = self.cf["reference_fa"]
        prefix = self.work_dir.joinpath(self.run_id)
        snp_vcf = f"{prefix}.snp_recal.vcf"
        steps = []
        for mode, input_vcf, output_vcf, resources in [
            (
                "SNP",
                self.input_vcf_path,
                snp_vcf,
                SNP_RESOURCES,
            ),
            (
                "INDEL",
                snp_vcf,
                self.output().path,
                INDEL_RESOURCES,
            ),
        ]:
            recal = f"{prefix}.{mode}.recal"
            tranches = f"{prefix}.{mode}.tranches"
            steps.extend([
                Step(
                    name=f"Build {mode} recalibration model with GATK",
                    command=CommandPipeline.of(
                        self.gatk_command(
                            tool="VariantRecalibrator",
                            args=[
                                "-R",
                                fa,
                                "-input",
                                input_vcf,
                                "-mode",
                                mode,
                                *[
                                    a
                                    for s, k in resources
                                    for a in (f"-resource:{s}", self.cf[k])
                                ],
                                *[a for n in VQSR_ANNOTATIONS for a in ("-an", n)],
                                "-recalFile",
                                recal,
                                "-tranchesFile",
                                tranches,
                            ],
                        )
                    ),
                    input_files=(input_vcf,),
                    output_files=(recal, tranches),
                ),
                Step(
                    name=f"Apply {mode} recalibration with GATK",
                    command=CommandPipeline.of(
                        self.gatk_command(
                            tool="ApplyRecalibration",
                            args=[
                                "-R",
                                fa,
                                "-input",
                                input_vcf,
                                "-mode",
                                mode,
                                "--ts_filter_level",
                                ("99.0" if mode == "SNP" else "95.0"),
                                "-recalFile",
                                recal,
                                "-tranchesFile",
                                tranches,
                                "-o",
                                output_vcf,
                            ],
                        )
                    ),
                    input_files=(input_vcf, recal, tranches),
                    output_files=(output_vcf, f"{output_vcf}.idx"),
                    cleanup=(
                        (snp_vcf, f"{snp_vcf}.idx") if mode == "INDEL" else ()
                    ),
                ),
            ])
        return steps
