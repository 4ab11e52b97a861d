"""Core base classes and the step execution engine for exmpipe stages.

A stage is a Luigi task that runs an ordered list of steps. Each step is one
external command pipeline executed through `ShellOperator`; the first
non-zero exit aborts the stage, so no later step runs and no downstream stage
is started.
"""

import logging
import os
import re
import socket
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import luigi
from shoper.shelloperator import ShellOperator

from ..errors import StepExecutionError
from .chain import PipelineDispatcher, PipelineLink
from .command import Command, CommandPipeline, java_jar

LOG_RULE = "-" * 64


@dataclass(frozen=True)
class Step:
    """One fail-fast unit of a stage.

    Attributes:
        name: Name written to the stage log
        command: Fully resolved command pipeline
        input_files: Files that must exist before the command runs
        output_files: Files removed again if the command fails
        cleanup: Intermediate files deleted once this step has succeeded
    """

    name: str
    command: CommandPipeline
    input_files: tuple[str, ...] = ()
    output_files: tuple[str, ...] = ()
    cleanup: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for k in ("input_files", "output_files", "cleanup"):
            object.__setattr__(self, k, tuple(str(p) for p in getattr(self, k)))

    @property
    def tools(self) -> list[str]:
        return self.command.programs


class StageLog:
    """Persistent log of a stage plus the temporary buffer of the running step.

    Args:
        log_txt_path: Stage log; shared with the stages chained from this one
        buffer_txt_path: Temporary log written by the shell operator
    """

    def __init__(
        self,
        log_txt_path: str | os.PathLike[str],
        buffer_txt_path: str | os.PathLike[str],
    ) -> None:
        self.log_txt = Path(log_txt_path)
        self.buffer_txt = Path(buffer_txt_path)
        self.start_datetime = None

    def _append(self, lines: Iterable[str]) -> None:
        with self.log_txt.open("a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + os.linesep)

    def write_start(
        self, process_name: str, fields: Mapping[str, Any] | None = None
    ) -> None:
        self.start_datetime = datetime.now(UTC)
        self._append([
            LOG_RULE,
            f"Process: {process_name}",
            "Start time: {}".format(self.start_datetime.strftime("%Y-%m-%d %H:%M:%S")),
            *[f"{k}: {v}" for k, v in (fields or {}).items()],
            LOG_RULE,
        ])

    def write_step(
        self,
        name: str,
        command: str,
        start_datetime: datetime,
        elapsed: timedelta,
        status: int | str,
    ) -> None:
        """Append one step record and move the buffer into the stage log."""
        lines = [
            "\t".join([
                "Step:",
                name,
                "start:{}".format(start_datetime.strftime("%Y-%m-%d %H:%M:%S")),
                f"elapsed:{elapsed}",
                f"status:{status}",
                f"command:{command}",
            ])
        ]
        if self.buffer_txt.is_file():
            lines.extend(
                self.buffer_txt.read_text(encoding="utf-8").splitlines()
            )
            self.buffer_txt.unlink()
        self._append(lines)

    def write_end(self, process_name: str, status: str) -> None:
        end_datetime = datetime.now(UTC)
        self._append([
            LOG_RULE,
            f"Process: {process_name}",
            "End time: {}".format(end_datetime.strftime("%Y-%m-%d %H:%M:%S")),
            *(
                [f"Elapsed time: {end_datetime - self.start_datetime}"]
                if self.start_datetime
                else []
            ),
            f"Status: {status}",
            LOG_RULE,
        ])


class ShellTask(luigi.Task, ABC):
    """Abstract base class for Luigi tasks that execute shell commands.

    Attributes:
        retry_count: Number of times to retry the task on failure (default: 0).
    """

    retry_count = 0

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.initialize_shell()

    @luigi.Task.event_handler(luigi.Event.PROCESSING_TIME)
    def print_execution_time(self, processing_time: float) -> None:
        """Print task execution time when task completes.

        Args:
            processing_time: Total processing time in seconds
        """
        logger = logging.getLogger("task-timer")
        message = (
            f"{self.__class__.__module__}.{self.__class__.__name__} - "
            f"total elapsed time:\t{timedelta(seconds=processing_time)}"
        )
        logger.info(message)
        print(message, flush=True)

    @classmethod
    def print_log(cls, message: str, new_line: bool = True) -> None:
        """Print log message to both logger and stdout.

        Args:
            message: Message to log and print
            new_line: Prepend newline to output
        """
        logger = logging.getLogger(cls.__name__)
        logger.info(message)
        print((os.linesep if new_line else "") + f">>\t{message}", flush=True)

    def initialize_shell(self) -> None:
        self._sh = None
        self._run_kwargs = {}

    def setup_shell(
        self,
        log_txt_path: str | os.PathLike[str] | None = None,
        commands: str | Sequence[str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        remove_if_failed: bool = True,
        clear_log_txt: bool = False,
        print_command: bool = True,
        quiet: bool = True,
        executable: str = "/bin/bash",
        env: Mapping[str, str] | None = None,
        **kwargs: object,
    ) -> None:
        """Configure shell execution and run version commands.

        Args:
            log_txt_path: Log file the shell operator writes to
            commands: Commands to run for version checking
            cwd: Working directory for shell execution
            remove_if_failed: Remove output files if command fails
            clear_log_txt: Clear log file before writing
            print_command: Print commands before execution
            quiet: Suppress stdout from commands
            executable: Shell executable to use
            env: Environment variables to set
            **kwargs: Additional arguments for shell execution
        """
        self._sh = ShellOperator(
            log_txt=(str(log_txt_path) if log_txt_path else None),
            quiet=quiet,
            clear_log_txt=clear_log_txt,
            logger=logging.getLogger(self.__class__.__name__),
            print_command=print_command,
            executable=executable,
        )
        self._run_kwargs = {
            "cwd": (str(cwd) if cwd else None),
            "remove_if_failed": remove_if_failed,
            "env": (
                {**env, **{k: v for k, v in os.environ.items() if k not in env}}
                if env
                else dict(os.environ)
            ),
            **kwargs,
        }
        self.make_dirs(cwd)
        if commands:
            self.run_shell(args=list(self.generate_version_commands(commands)))

    @classmethod
    def make_dirs(cls, *paths: object) -> None:
        """Create directories for the given paths if they don't exist."""
        for p in paths:
            if p:
                d = Path(str(p)).resolve()
                if not d.is_dir():
                    cls.print_log(f"Make a directory:\t{d}", new_line=False)
                    d.mkdir(parents=True, exist_ok=True)

    def run_shell(self, *args: object, **kwargs: object) -> None:
        """Execute shell command using the configured ShellOperator."""
        logger = logging.getLogger(self.__class__.__name__)
        start_datetime = datetime.now(UTC)
        self._sh.run(
            *args,
            **kwargs,
            **{k: v for k, v in self._run_kwargs.items() if k not in kwargs},
        )
        logger.info(f"shell elapsed time:\t{datetime.now(UTC) - start_datetime}")

    def remove_files_and_dirs(self, *paths: str | os.PathLike[str]) -> None:
        """Remove files and directories using shell rm command."""
        targets = [Path(str(p)) for p in paths if Path(str(p)).exists()]
        if targets:
            self.run_shell(
                args=Command(
                    program="rm",
                    args=(
                        ("-rf" if [t for t in targets if t.is_dir()] else "-f"),
                        *[str(t) for t in targets],
                    ),
                ).render()
            )

    @staticmethod
    @abstractmethod
    def generate_version_commands(commands: str | Sequence[str]) -> Iterable[str]:
        """Generate version checking commands for the given executables."""
        raise NotImplementedError


class ExmTask(ShellTask):
    """Base class for pipeline stages.

    Subclasses name the stage, list its downstream links, and build its steps.
    `run()` writes the stage log header, runs the steps fail-fast, and calls
    `finalize()`; links are evaluated by the SUCCESS event handler, so they
    are never reached when a step fails.
    """

    stage_name: str = ""
    process_name: str = ""
    log_code: str = ""
    links: tuple[PipelineLink, ...] = ()

    cf = luigi.DictParameter()
    dest_dir_path = luigi.Parameter(default=".")
    log_path = luigi.Parameter(default="")
    no_phone_home = luigi.BoolParameter(default=False)
    n_cpu = luigi.IntParameter(default=1)
    memory_mb = luigi.FloatParameter(default=4096)
    sh_config = luigi.DictParameter(default={})

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.stage_log = None

    @property
    @abstractmethod
    def run_id(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def build_steps(self) -> list[Step]:
        raise NotImplementedError

    @property
    def work_dir(self) -> Path:
        return Path(self.dest_dir_path).resolve()

    @property
    def tmp_dir(self) -> Path:
        return self.work_dir.joinpath(f"{self.run_id}.{self.log_code}.tempdir")

    @property
    def stage_log_path(self) -> str:
        return str(
            Path(self.log_path).resolve()
            if self.log_path
            else Path(self.dest_dir_path).resolve().joinpath(
                f"{self.run_id}.{self.log_code}.log"
            )
        )

    @property
    def config_yml_path(self) -> str:
        return self.cf["config_yml_path"]

    def log_fields(self) -> dict[str, Any]:
        return {
            "Build of reference files": self.cf.get("build", ""),
            "Host": socket.gethostname(),
        }

    @staticmethod
    def generate_version_commands(commands: str | Sequence[str]) -> Iterable[str]:
        for c in [commands] if isinstance(commands, str) else commands:
            n = Path(c).name
            if n == "java":
                yield f"{c} -version"
            elif n == "bwa":
                yield f'{c} 2>&1 | grep -e "Program:" -e "Version:"'
            elif n == "seqtk":
                continue
            else:
                yield f"{c} --version"

    def java_command(
        self,
        jar: str,
        tool_args: Sequence[str],
        memory_mb: int | None = None,
        stdout: str | None = None,
    ) -> Command:
        return java_jar(
            java=self.cf["java"],
            jar=jar,
            tool_args=tool_args,
            memory_mb=int(memory_mb or self.memory_mb),
            tmp_dir=self.tmp_dir,
            n_gc_thread=1,
            stdout=stdout,
        )

    def gatk_command(
        self, tool: str, args: Sequence[str], memory_mb: int | None = None
    ) -> Command:
        """Build a GATK command, adding phone-home suppression when requested."""
        return self.java_command(
            jar=self.cf["gatk_jar"],
            tool_args=[
                "-T",
                tool,
                *args,
                *(
                    ["-et", "NO_ET", "-K", self.cf["et_key"]]
                    if self.no_phone_home
                    else []
                ),
            ],
            memory_mb=memory_mb,
        )

    def run(self) -> None:
        run_id = self.run_id
        self.print_log(f"{self.process_name}:\t{run_id}")
        steps = self.build_steps()
        self.make_dirs(self.work_dir, self.tmp_dir, Path(self.stage_log_path).parent)
        self.prepare()
        buffer_txt = self.work_dir.joinpath(f"{run_id}.{self.log_code}.temp.log")
        self.stage_log = StageLog(
            log_txt_path=self.stage_log_path, buffer_txt_path=buffer_txt
        )
        self.stage_log.write_start(
            process_name=self.process_name, fields=self.log_fields()
        )
        self.setup_shell(
            log_txt_path=buffer_txt,
            commands=list(dict.fromkeys(t for s in steps for t in s.tools)),
            cwd=self.work_dir,
            **self.sh_config,
        )
        self.execute_steps(steps)
        self.finalize()

    def execute_steps(self, steps: Sequence[Step]) -> None:
        """Run steps in order and stop at the first failure."""
        for s in steps:
            try:
                self.run_step(s)
            except Exception:
                self.stage_log.write_end(
                    process_name=self.process_name, status=f"failed at {s.name}"
                )
                raise
        self.stage_log.write_end(process_name=self.process_name, status="completed")

    def run_step(self, step: Step) -> None:
        """Run one step, record it in the stage log, and delete its intermediates.

        Raises:
            StepExecutionError: If the command exits non-zero, or an input or
                output file of the step is missing
        """
        logger = logging.getLogger(self.__class__.__name__)
        logger.info(f"Step:\t{step.name}")
        command = step.command.render()
        start_datetime = datetime.now(UTC)
        status = "error"
        try:
            self.run_shell(
                args=command,
                input_files_or_dirs=(list(step.input_files) or None),
                output_files_or_dirs=(list(step.output_files) or None),
            )
            status = 0
        except subprocess.SubprocessError as e:
            status = parse_exit_status(e)
            raise StepExecutionError(step.name, returncode=status) from e
        except FileNotFoundError as e:
            status = "file not found"
            raise StepExecutionError(step.name, detail=str(e)) from e
        finally:
            self.stage_log.write_step(
                name=step.name,
                command=command,
                start_datetime=start_datetime,
                elapsed=(datetime.now(UTC) - start_datetime),
                status=status,
            )
        if step.cleanup:
            self.remove_files_and_dirs(*step.cleanup)

    def prepare(self) -> None:
        """Hook run after the working directories exist and before any step."""

    def finalize(self) -> None:
        """Hook run after every step has succeeded."""


@ExmTask.event_handler(luigi.Event.SUCCESS)
def chain_downstream_stages(task: ExmTask) -> None:
    if task.links:
        PipelineDispatcher.from_config(task.cf, cwd=task.dest_dir_path).dispatch(
            links=task.links, task=task, run_id=task.run_id
        )


def parse_exit_status(error: subprocess.SubprocessError) -> int:
    """Return the non-zero exit status reported by a failed shell command.

    `ShellOperator` reports failures as `subprocess.SubprocessError` with the
    failed processes' attributes in the message.
    """
    if isinstance(error, subprocess.CalledProcessError):
        return error.returncode
    codes = [int(c) for c in re.findall(r"'returncode': (-?\d+)", str(error))]
    return next((c for c in codes if c != 0), 1)
