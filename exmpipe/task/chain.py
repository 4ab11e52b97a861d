"""Declared links between pipeline stages and their dispatcher.

Each stage class lists its downstream links statically. When a stage
succeeds, the dispatcher evaluates the links in declaration order and
launches (or submits to the batch scheduler) every link whose condition
holds. Launching is fire-and-forget: the current stage never learns whether
the downstream stage succeeded.
"""

import logging
import os
import subprocess
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class PipelineLink:
    """A downstream stage a stage may start after it succeeds.

    Attributes:
        stage: CLI command name of the downstream stage
        when: Task attributes that must all be truthy (empty: unconditional)
        unless: Task attributes that must all be falsy
        forward: Pairs of (downstream option, task attribute); string values
            are passed as option arguments and skipped when empty, boolean
            values turn the option into a switch
    """

    stage: str
    when: tuple[str, ...] = ()
    unless: tuple[str, ...] = ()
    forward: tuple[tuple[str, str], ...] = ()

    @property
    def unconditional(self) -> bool:
        return not (self.when or self.unless)

    def fires(self, task: object) -> bool:
        return all(bool(getattr(task, a)) for a in self.when) and not any(
            bool(getattr(task, a)) for a in self.unless
        )

    def forwarded_args(self, task: object) -> list[str]:
        args = []
        for opt, attr in self.forward:
            v = getattr(task, attr)
            if isinstance(v, bool):
                if v:
                    args.append(opt)
            elif v not in (None, ""):
                args.extend([opt, str(v)])
        return args

    def describe(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "trigger": (
                "always"
                if self.unconditional
                else " and ".join(
                    [*self.when, *[f"not {a}" for a in self.unless]]
                )
            ),
            "forward": [o for o, _ in self.forward],
        }


class PipelineDispatcher:
    """Launch downstream stages as independent processes.

    Args:
        launcher: Command prefix that runs exmpipe
        submit_command: Optional batch scheduler submission prefix
        cwd: Working directory of launched stages
        out_dir_path: Directory for the stdout/stderr files of launched stages
    """

    def __init__(
        self,
        launcher: Sequence[str],
        submit_command: Sequence[str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        out_dir_path: str | os.PathLike[str] | None = None,
    ) -> None:
        self.launcher = list(launcher)
        self.submit_command = list(submit_command or [])
        self.cwd = str(cwd) if cwd else None
        self.out_dir = Path(out_dir_path or cwd or ".")

    @classmethod
    def from_config(
        cls, cf: Mapping[str, Any], cwd: str | os.PathLike[str] | None = None
    ) -> "PipelineDispatcher":
        return cls(
            launcher=(
                [str(Path(cf["pipeline_dir"]).joinpath("exmpipe"))]
                if cf.get("pipeline_dir")
                else [sys.executable, "-m", "exmpipe"]
            ),
            submit_command=cf.get("submit_command"),
            cwd=cwd,
        )

    def build_argv(self, link: PipelineLink, task: object) -> list[str]:
        return [
            *self.submit_command,
            *self.launcher,
            link.stage,
            *link.forwarded_args(task),
        ]

    def enqueue(
        self, link: PipelineLink, task: object, run_id: str
    ) -> subprocess.Popen | subprocess.CompletedProcess | None:
        """Start or submit one downstream stage without waiting for it to run.

        With a submit command, the submission itself is run to completion and
        must exit zero; without one, the stage is started as a detached
        process. A launch or submission failure is logged and reported as
        None; it does not fail the stage that fired the link.
        """
        logger = logging.getLogger(__name__)
        argv = self.build_argv(link=link, task=task)
        out_txt = self.out_dir.joinpath(f"{link.stage}.{run_id}.{os.getpid()}.o")
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            with out_txt.open("a", encoding="utf-8") as f:
                if self.submit_command:
                    p = subprocess.run(
                        argv,
                        stdout=f,
                        stderr=subprocess.STDOUT,
                        stdin=subprocess.DEVNULL,
                        cwd=self.cwd,
                        check=False,
                    )
                else:
                    p = subprocess.Popen(
                        argv,
                        stdout=f,
                        stderr=subprocess.STDOUT,
                        stdin=subprocess.DEVNULL,
                        cwd=self.cwd,
                        start_new_session=True,
                    )
        except OSError as e:
            logger.error(f"Failed to enqueue {link.stage}:\t{argv}:\t{e}")
            return None
        if isinstance(p, subprocess.CompletedProcess):
            if p.returncode != 0:
                logger.error(
                    f"Failed to enqueue {link.stage} (exit status {p.returncode}):"
                    f"\t{argv}:\tsee {out_txt}"
                )
                return None
            logger.info(f"Enqueued {link.stage} (submitted):\t{argv}")
        else:
            logger.info(f"Enqueued {link.stage} (pid {p.pid}):\t{argv}")
        return p

    def dispatch(
        self, links: Iterable[PipelineLink], task: object, run_id: str
    ) -> list[PipelineLink]:
        """Enqueue every link whose condition holds for a succeeded task.

        Returns:
            Links that were enqueued
        """
        logger = logging.getLogger(__name__)
        enqueued = []
        for link in links:
            if not link.fires(task):
                logger.debug(f"Skip link:\t{link.stage}")
            elif self.enqueue(link=link, task=task, run_id=run_id) is not None:
                enqueued.append(link)
        return enqueued


def describe_graph(stage_classes: Iterable[type]) -> dict[str, list[dict[str, Any]]]:
    """Return the declared stage graph keyed by stage name."""
    return {
        c.stage_name: [link.describe() for link in c.links] for c in stage_classes
    }
