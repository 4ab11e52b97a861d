"""Exception types raised by exmpipe.

Argument, file, and table errors are detected before any step runs. Step and
scatter-gather errors abort only the running stage.
"""

from collections.abc import Iterable


class PipelineError(Exception):
    """Base class for exmpipe errors."""


class MissingArgumentError(PipelineError, ValueError):
    """A required argument was not given."""


class InvalidArgumentError(PipelineError, ValueError):
    """An argument was given but cannot be used."""


class MissingFileError(PipelineError, FileNotFoundError):
    """An input table, configuration, resource, or executable is absent."""


class MalformedWorkTableError(PipelineError, ValueError):
    """A work table row does not have 2 or 3 columns."""


class IndexOutOfRangeError(PipelineError, IndexError):
    """A task index does not select a row of the work table."""


class StepExecutionError(PipelineError, RuntimeError):
    """A step of a stage failed.

    `returncode` is the exit status of the external command, or None when the
    command could not run or did not create its outputs.
    """

    def __init__(
        self, step_name: str, returncode: int | None = None, detail: str = ""
    ) -> None:
        super().__init__(
            f"step failed with exit status {returncode}: {step_name}"
            if returncode is not None
            else f"step failed: {step_name}: {detail}"
        )
        self.step_name = step_name
        self.returncode = returncode


class IncompleteScatterGatherError(PipelineError, RuntimeError):
    """Progress markers are missing for some members of a scatter-gather group."""

    def __init__(self, group_name: str, missing_indices: Iterable[int]) -> None:
        self.group_name = group_name
        self.missing_indices = sorted(missing_indices)
        super().__init__(
            "incomplete scatter-gather group {}: missing task indices {}".format(
                group_name, ",".join(str(i) for i in self.missing_indices)
            )
        )
