"""Typed command descriptors rendered to bash command lines.

Commands are built from structured data (program and ordered arguments) and
only turned into a shell string at execution time, with every token quoted.
"""

import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Command:
    """One external program invocation.

    Attributes:
        program: Executable path or name
        args: Ordered arguments
        stdout: Optional path the standard output is redirected to
    """

    program: str
    args: tuple[str, ...] = ()
    stdout: str | None = None

    def __post_init__(self) -> None:
        if not self.program:
            msg = "empty program"
            raise ValueError(msg)
        for a in self.args:
            if a is None:
                msg = f"unresolved argument for {self.program}: {self.args}"
                raise ValueError(msg)
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        if self.stdout is not None:
            object.__setattr__(self, "stdout", str(self.stdout))

    def argv(self) -> list[str]:
        return [self.program, *self.args]

    def render(self) -> str:
        cmd = shlex.join(self.argv())
        if self.stdout:
            cmd += f" > {shlex.quote(self.stdout)}"
        return cmd


@dataclass(frozen=True)
class CommandPipeline:
    """Commands connected by pipes and run as one fail-fast unit."""

    commands: tuple[Command, ...]

    def __post_init__(self) -> None:
        if not self.commands:
            msg = "a pipeline needs at least one command"
            raise ValueError(msg)
        object.__setattr__(self, "commands", tuple(self.commands))

    @classmethod
    def of(cls, *commands: Command) -> "CommandPipeline":
        return cls(commands=commands)

    def __len__(self) -> int:
        return len(self.commands)

    @property
    def programs(self) -> list[str]:
        return [c.program for c in self.commands]

    def splice(self, position: int, command: Command) -> "CommandPipeline":
        """Return a new pipeline with a command inserted before `position`.

        Args:
            position: Index of the command the new one is inserted in front of;
                must fall between two existing commands
            command: Command to insert

        Returns:
            New pipeline with one more command
        """
        if not 0 < position < len(self.commands):
            msg = f"cannot splice at {position} into a {len(self)}-command pipeline"
            raise IndexError(msg)
        return CommandPipeline(
            commands=(
                *self.commands[:position],
                command,
                *self.commands[position:],
            )
        )

    def render(self) -> str:
        return "set -eo pipefail && " + " | ".join(c.render() for c in self.commands)


def java_jar(
    java: str,
    jar: str | Path,
    tool_args: Sequence[str],
    memory_mb: int = 4096,
    tmp_dir: str | Path | None = None,
    n_gc_thread: int | None = None,
    stdout: str | None = None,
) -> Command:
    """Build a `java -jar` command for a Picard or GATK jar.

    Args:
        java: Path to the java executable
        jar: Path to the jar file
        tool_args: Tool name and arguments following the jar
        memory_mb: Maximum heap size in megabytes
        tmp_dir: Java temporary directory
        n_gc_thread: Number of parallel GC threads
        stdout: Optional redirect of standard output

    Returns:
        The command descriptor
    """
    return Command(
        program=java,
        args=(
            f"-Xmx{int(memory_mb)}m",
            *([f"-XX:ParallelGCThreads={int(n_gc_thread)}"] if n_gc_thread else []),
            *([f"-Djava.io.tmpdir={tmp_dir}"] if tmp_dir else []),
            "-jar",
            str(jar),
            *tool_args,
        ),
        stdout=stdout,
    )
