"""Progress markers for scatter-gather arrays.

Each member of an array writes a zero-byte marker once all its steps have
succeeded. The aggregation stage only proceeds when every expected index has
a marker; the scheduler releasing a hold is not taken as proof of that.
"""

import logging
import os
import time
from collections.abc import Iterable
from pathlib import Path

import luigi

from ..errors import IncompleteScatterGatherError

MARKER_SUFFIX = "genotypingcomplete"


class ProgressMarkers:
    """Marker files of one scatter-gather group.

    Args:
        progress_dir_path: Group-specific directory holding the markers
        group_name: Output name prefix shared by the members
    """

    def __init__(
        self, progress_dir_path: str | os.PathLike[str], group_name: str
    ) -> None:
        self.progress_dir = Path(progress_dir_path)
        self.group_name = group_name

    def marker_path(self, task_index: int) -> Path:
        return self.progress_dir.joinpath(
            f"{self.group_name}.{int(task_index)}.{MARKER_SUFFIX}"
        )

    @property
    def claim_path(self) -> Path:
        return self.progress_dir.joinpath(f"{self.group_name}.gather.claimed")

    def mark(self, task_index: int) -> Path:
        """Create the marker of a member; a second call is a no-op."""
        self.progress_dir.mkdir(parents=True, exist_ok=True)
        marker = self.marker_path(task_index)
        if _create_exclusively(marker):
            logging.getLogger(__name__).info(f"Progress marker:\t{marker}")
        return marker

    def completed_indices(self) -> set[int]:
        if not self.progress_dir.is_dir():
            return set()
        prefix = f"{self.group_name}."
        suffix = f".{MARKER_SUFFIX}"
        indices = set()
        for o in self.progress_dir.iterdir():
            if o.name.startswith(prefix) and o.name.endswith(suffix):
                i = o.name[len(prefix) : -len(suffix)]
                if i.isdigit():
                    indices.add(int(i))
        return indices

    def missing_indices(self, expected_count: int) -> list[int]:
        done = self.completed_indices()
        return [i for i in range(1, int(expected_count) + 1) if i not in done]

    def is_complete(self, expected_count: int) -> bool:
        return not self.missing_indices(expected_count)

    def require_complete(self, expected_count: int) -> None:
        """Raise unless indices 1 to `expected_count` all have markers.

        Raises:
            IncompleteScatterGatherError: If any expected marker is missing
        """
        missing = self.missing_indices(expected_count)
        if missing:
            raise IncompleteScatterGatherError(self.group_name, missing)

    def claim_gather(self, expected_count: int) -> bool:
        """Take the one-shot right to start the aggregation stage.

        Returns:
            True only for the single caller that observes a complete group and
            creates the claim file first
        """
        if not self.is_complete(expected_count):
            return False
        return _create_exclusively(self.claim_path)

    def wait_for(
        self, expected_count: int, timeout: float = 0, interval: float = 30
    ) -> bool:
        """Poll until every expected marker exists or the timeout passes."""
        logger = logging.getLogger(__name__)
        deadline = time.monotonic() + timeout
        while True:
            missing = self.missing_indices(expected_count)
            if not missing:
                return True
            elif time.monotonic() >= deadline:
                return False
            logger.info(f"Wait for {len(missing)} markers:\t{self.group_name}")
            time.sleep(max(0, min(interval, deadline - time.monotonic())))


class ProgressMarkerTarget(luigi.ExternalTask):
    """Marker of one member, required by the aggregation stage."""

    progress_dir_path = luigi.Parameter()
    group_name = luigi.Parameter()
    task_index = luigi.IntParameter()

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(
            ProgressMarkers(self.progress_dir_path, self.group_name).marker_path(
                self.task_index
            )
        )


def split_target_intervals(
    bed_lines: Iterable[str], n_slice: int
) -> list[list[str]]:
    """Split BED interval lines into contiguous, nearly equal slices.

    Header lines (`track`, `browser`, `#`) are dropped. Slices may be empty
    when there are fewer intervals than slices.
    """
    intervals = [
        line if line.endswith("\n") else f"{line}\n"
        for line in bed_lines
        if line.strip() and not line.startswith(("#", "track", "browser"))
    ]
    n, r = divmod(len(intervals), int(n_slice))
    slices = []
    start = 0
    for i in range(int(n_slice)):
        end = start + n + (1 if i < r else 0)
        slices.append(intervals[start:end])
        start = end
    return slices


def _create_exclusively(path: Path) -> bool:
    try:
        with path.open("x"):
            pass
    except FileExistsError:
        return False
    return True
