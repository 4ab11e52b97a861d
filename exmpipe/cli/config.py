"""Configuration loading for exmpipe stages.

The configuration YAML names reference resources, tool locations, and
scheduler settings. It is read once per invocation, validated, resolved to
absolute paths, and passed to tasks as a frozen mapping.
"""

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from pprint import pformat
from typing import Any

from ..errors import InvalidArgumentError, MissingArgumentError, MissingFileError
from .util import fetch_executable, read_yml

REQUIRED_RESOURCES = ("reference_fa", "dbsnp_vcf")
OPTIONAL_RESOURCES = ("hapmap_vcf", "omni_vcf", "g1k_snp_vcf", "mills_indel_vcf")
REQUIRED_JARS = ("gatk_jar", "picard_jar")


def read_stage_config(
    path: str | os.PathLike[str],
    executables: Iterable[str] = ("java",),
    required_resources: Sequence[str] = REQUIRED_RESOURCES,
    require_et_key: bool = False,
) -> dict[str, Any]:
    """Read and validate the configuration YAML for one stage invocation.

    Args:
        path: Path to the configuration YAML
        executables: Tools the stage runs, looked up in `tools` or on PATH
        required_resources: Resource keys the stage cannot run without
        require_et_key: Require the phone-home suppression key

    Returns:
        Flat configuration dictionary with absolute paths

    Raises:
        MissingFileError: If the YAML, a resource, or a tool is absent
        MissingArgumentError: If a required key is not set
        InvalidArgumentError: If the YAML structure is invalid
    """
    logger = logging.getLogger(__name__)
    config_yml = Path(path).resolve()
    if not config_yml.is_file():
        msg = f"configuration file not found: {config_yml}"
        raise MissingFileError(msg)
    config = read_yml(path=config_yml)
    if not isinstance(config, dict):
        msg = f"Invalid config structure: {config}"
        raise InvalidArgumentError(msg)
    for k in ("resources", "tools", "targets"):
        if not isinstance(config.get(k) or {}, dict):
            msg = f"Expected mapping for {k}, got {type(config[k])}"
            raise InvalidArgumentError(msg)
    resources = config.get("resources") or {}
    tools = config.get("tools") or {}
    for k in [*required_resources, *REQUIRED_JARS]:
        if not (resources.get(k) or tools.get(k)):
            msg = f"Missing '{k}' in config: {config_yml}"
            raise MissingArgumentError(msg)
    if not config.get("build"):
        msg = f"Missing 'build' in config: {config_yml}"
        raise MissingArgumentError(msg)
    if require_et_key and not config.get("et_key"):
        msg = f"Missing 'et_key' in config: {config_yml}"
        raise MissingArgumentError(msg)
    submit_command = config.get("submit_command") or []
    if isinstance(submit_command, str) or not all(
        isinstance(s, str) for s in submit_command
    ):
        msg = f"Expected list of strings for submit_command: {submit_command}"
        raise InvalidArgumentError(msg)
    cf = {
        "config_yml_path": str(config_yml),
        "build": str(config["build"]),
        **{
            k: _resolve_file_path(resources[k])
            for k in [*REQUIRED_RESOURCES, *OPTIONAL_RESOURCES]
            if resources.get(k)
        },
        **{k: _resolve_file_path(tools[k]) for k in REQUIRED_JARS},
        **{
            c: fetch_executable(str(tools.get(c) or c))
            for c in dict.fromkeys(executables)
        },
        "et_key": (_resolve_file_path(config["et_key"]) if config.get("et_key") else ""),
        "targets": {
            str(k): str(v) for k, v in (config.get("targets") or {}).items()
        },
        "pipeline_dir": (
            str(Path(config["pipeline_dir"]).resolve())
            if config.get("pipeline_dir")
            else ""
        ),
        "submit_command": list(submit_command),
    }
    logger.debug("cf:%s%s", os.linesep, pformat(cf))
    return cf


def resolve_target_bed(target: str, targets: Mapping[str, str]) -> str:
    """Resolve a target file given as a path or as a code in `targets`.

    Raises:
        InvalidArgumentError: If the file name does not end with `.bed`
        MissingFileError: If the file does not exist
    """
    p = targets.get(target) or target
    if not str(p).endswith(".bed"):
        msg = f"target file must end with .bed: {p}"
        raise InvalidArgumentError(msg)
    return _resolve_file_path(p)


def _resolve_file_path(path: str | os.PathLike[str]) -> str:
    p = Path(path).resolve()
    if not p.exists():
        msg = f"file not found: {p}"
        raise MissingFileError(msg)
    return str(p)
