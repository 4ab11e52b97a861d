"""Stage construction and execution for the exmpipe command-line interface.

Every argument, input file, and configuration value is checked while the
stage task is built, so an invocation with bad input fails before any step
runs and leaves nothing behind.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from pprint import pformat
from typing import Any

from psutil import cpu_count, virtual_memory

from ..errors import (
    IncompleteScatterGatherError,
    IndexOutOfRangeError,
    InvalidArgumentError,
    MissingFileError,
)
from ..task.bwa import AlignFastq
from ..task.core import ExmTask
from ..task.gatk import (
    DepthOfCoverage,
    GatherVcfs,
    GenotypeGvcfs,
    HaplotypeCallerGvcf,
    RecalibrateVcf,
)
from ..task.gather import ProgressMarkers, split_target_intervals
from ..task.picard import CollectBamMetrics
from .config import (
    OPTIONAL_RESOURCES,
    REQUIRED_RESOURCES,
    read_stage_config,
    resolve_target_bed,
)
from .util import (
    build_luigi_tasks,
    fetch_executable,
    print_log,
    render_luigi_log_cfg,
)
from .worktable import resolve_work_item

STAGE_CLASSES = {
    c.stage_name: c
    for c in [
        AlignFastq,
        HaplotypeCallerGvcf,
        CollectBamMetrics,
        DepthOfCoverage,
        GenotypeGvcfs,
        GatherVcfs,
        RecalibrateVcf,
    ]
}


def build_stage_task(command: str, args: Mapping[str, Any]) -> ExmTask:
    """Validate the arguments of a stage command and build its task.

    Args:
        command: Stage command name
        args: Parsed docopt arguments

    Returns:
        Luigi task of the stage
    """
    logger = logging.getLogger(__name__)
    dest_dir = Path(args.get("--dest-dir") or ".").resolve()
    no_phone_home = bool(args.get("--no-phone-home"))
    common = {
        "dest_dir_path": str(dest_dir),
        "log_path": (str(Path(args["--log"]).resolve()) if args.get("--log") else ""),
        "no_phone_home": no_phone_home,
        "n_cpu": _parse_int(args.get("--cpus") or cpu_count(), "--cpus", minimum=1),
        "memory_mb": int(virtual_memory().total / 1024 / 1024 / 2),
        "sh_config": {
            "remove_if_failed": (not args.get("--skip-cleaning")),
            "quiet": (not args.get("--print-subprocesses")),
            "executable": fetch_executable("bash"),
        },
    }
    if command == "align":
        item = resolve_work_item(
            table_path=args["--input"],
            task_index=_parse_int(args["--array-index"], "--array-index"),
        )
        cf = read_stage_config(
            path=args["--ref-yml"],
            executables=[
                "java",
                "bwa",
                "samtools",
                *(["seqtk"] if args["--fix-misencoded"] else []),
            ],
            require_et_key=no_phone_home,
        )
        task = AlignFastq(
            fq_paths=item.fq_paths,
            read_group=item.read_group_header,
            base_name=item.base_name,
            target_bed_path=_resolve_optional_target(args, cf),
            pipeline=bool(args["--pipeline"]),
            fix_misencoded=bool(args["--fix-misencoded"]),
            cf=cf,
            **common,
        )
    elif command in {"haplotype-caller", "bam-metrics", "depth-of-coverage"}:
        input_bam = _resolve_input_file(args["--input"])
        cf = read_stage_config(
            path=args["--ref-yml"], require_et_key=no_phone_home
        )
        kwargs = (
            {"target_bed_path": _resolve_optional_target(args, cf)}
            if command != "bam-metrics"
            else {}
        )
        task = STAGE_CLASSES[command](
            input_bam_path=input_bam, cf=cf, **kwargs, **common
        )
    elif command == "genotype-gvcfs":
        gvcf_list = _resolve_input_file(args["--input"])
        if not gvcf_list.endswith(".list"):
            msg = f"gVCF list file must end with .list: {gvcf_list}"
            raise InvalidArgumentError(msg)
        cf = read_stage_config(path=args["--ref-yml"], require_et_key=no_phone_home)
        target_bed = resolve_target_bed(args["--target"], targets=cf["targets"])
        array_index = _parse_int(args["--array-index"], "--array-index")
        array_size = _parse_int(args["--array-size"], "--array-size", minimum=1)
        if not 1 <= array_index <= array_size:
            msg = f"array index {array_index} is out of range 1-{array_size}"
            raise IndexOutOfRangeError(msg)
        with open(target_bed, encoding="utf-8") as f:
            if not all(split_target_intervals(f, n_slice=array_size)):
                msg = f"fewer target intervals than array size {array_size}: {target_bed}"
                raise InvalidArgumentError(msg)
        task = GenotypeGvcfs(
            gvcf_list_path=gvcf_list,
            vcf_name=(args["--name"] or Path(gvcf_list).name[: -len(".list")]),
            target_bed_path=target_bed,
            array_index=array_index,
            array_size=array_size,
            pipeline=bool(args["--pipeline"]),
            no_recal=bool(args["--no-recal"]),
            cf=cf,
            **common,
        )
    elif command == "gather-vcfs":
        cf = read_stage_config(path=args["--ref-yml"], require_et_key=no_phone_home)
        array_size = _parse_int(args["--array-size"], "--array-size", minimum=1)
        markers = ProgressMarkers(
            progress_dir_path=dest_dir.joinpath(f"{args['--name']}.progfiles"),
            group_name=args["--name"],
        )
        if not markers.wait_for(
            expected_count=array_size, timeout=float(args.get("--wait") or 0)
        ):
            raise IncompleteScatterGatherError(
                args["--name"], markers.missing_indices(array_size)
            )
        task = GatherVcfs(
            vcf_name=args["--name"],
            array_size=array_size,
            pipeline=bool(args["--pipeline"]),
            no_recal=bool(args["--no-recal"]),
            cf=cf,
            **common,
        )
    elif command == "recalibrate-vcf":
        input_vcf = _resolve_input_file(args["--input"])
        cf = read_stage_config(
            path=args["--ref-yml"],
            required_resources=[*REQUIRED_RESOURCES, *OPTIONAL_RESOURCES],
            require_et_key=no_phone_home,
        )
        task = RecalibrateVcf(input_vcf_path=input_vcf, cf=cf, **common)
    else:
        msg = f"unknown stage: {command}"
        raise InvalidArgumentError(msg)
    logger.debug("task:%s%s", os.linesep, pformat(task.to_str_params()))
    return task


def run_stage_task(task: ExmTask, console_log_level: str = "WARNING") -> None:
    """Run one stage task with the local Luigi scheduler."""
    log_dir = Path(task.dest_dir_path).joinpath("log")
    log_cfg_path = str(
        log_dir.joinpath(f"luigi.{task.stage_name}.{task.run_id}.log.cfg")
    )
    render_luigi_log_cfg(log_cfg_path=log_cfg_path, console_log_level=console_log_level)
    print_log(f"Run {task.stage_name}:\t{task.run_id}")
    build_luigi_tasks(
        tasks=[task],
        workers=1,
        log_level=console_log_level,
        logging_conf_file=log_cfg_path,
    )


def _resolve_optional_target(args: Mapping[str, Any], cf: Mapping[str, Any]) -> str:
    if args.get("--target"):
        return resolve_target_bed(args["--target"], targets=cf["targets"])
    else:
        return ""


def _resolve_input_file(path: str) -> str:
    p = Path(path).resolve()
    if not p.is_file():
        msg = f"input file not found: {p}"
        raise MissingFileError(msg)
    return str(p)


def _parse_int(value: object, name: str, minimum: int | None = None) -> int:
    try:
        i = int(value)
    except (TypeError, ValueError) as e:
        msg = f"{name} must be an integer: {value}"
        raise InvalidArgumentError(msg) from e
    if minimum is not None and i < minimum:
        msg = f"{name} must be {minimum} or greater: {value}"
        raise InvalidArgumentError(msg)
    return i
