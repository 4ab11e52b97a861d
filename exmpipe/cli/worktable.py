"""Work table resolution for array tasks.

A work table is a TAB-delimited text file with one FASTQ input per line:

    <fastq>          <read group header>                  (single-end)
    <read 1 fastq>   <read group header>   <read 2 fastq>   (paired-end)

The column count of the first line fixes the mode for the whole table, and
each array task processes the line selected by its 1-based task index.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ..errors import IndexOutOfRangeError, MalformedWorkTableError, MissingFileError

SINGLE_END_N_COL = 2
PAIRED_END_N_COL = 3
BASE_NAME_REMOVALS = ("_R1", ".fastq.gz", ".fq.gz")


@dataclass(frozen=True)
class WorkItem:
    """One resolved row of a work table."""

    primary_read_path: str
    read_group_header: str
    secondary_read_path: str | None = None

    @property
    def paired_end(self) -> bool:
        return self.secondary_read_path is not None

    @property
    def fq_paths(self) -> list[str]:
        return [
            p for p in [self.primary_read_path, self.secondary_read_path] if p
        ]

    @property
    def base_name(self) -> str:
        return parse_base_name(self.primary_read_path)


def parse_base_name(fq_path: str | os.PathLike[str]) -> str:
    """Derive the name used for every output of a FASTQ input.

    All occurrences of the `_R1` marker and of the `.fq.gz`/`.fastq.gz`
    suffixes are removed from the file name, repeatedly, so the result does
    not depend on the order they appear in.

    Args:
        fq_path: Path to the read 1 (or single-end) FASTQ file

    Returns:
        Base name string
    """
    name = Path(fq_path).name
    while True:
        stripped = name
        for s in BASE_NAME_REMOVALS:
            stripped = stripped.replace(s, "")
        if stripped == name:
            return name
        name = stripped


def read_work_table(path: str | os.PathLike[str]) -> list[list[str]]:
    """Read a work table and check that its column count is uniform.

    Args:
        path: Path to the TAB-delimited work table

    Returns:
        Rows split into columns (blank lines are dropped)

    Raises:
        MissingFileError: If the table does not exist
        MalformedWorkTableError: If the table is empty, line 1 has neither
            2 nor 3 columns, or a row differs from line 1
    """
    table = Path(path)
    if not table.is_file():
        msg = f"work table not found: {table}"
        raise MissingFileError(msg)
    with table.open(encoding="utf-8") as f:
        rows = [
            [c.strip() for c in line.rstrip("\r\n").split("\t")]
            for line in f
            if line.strip()
        ]
    if not rows:
        msg = f"empty work table: {table}"
        raise MalformedWorkTableError(msg)
    n_col = len(rows[0])
    if n_col not in {SINGLE_END_N_COL, PAIRED_END_N_COL}:
        msg = f"expected 2 or 3 columns in {table}, got {n_col}: {rows[0]}"
        raise MalformedWorkTableError(msg)
    for i, r in enumerate(rows, start=1):
        if len(r) != n_col:
            msg = f"line {i} of {table} has {len(r)} columns, line 1 has {n_col}"
            raise MalformedWorkTableError(msg)
    return rows


def resolve_work_item(
    table_path: str | os.PathLike[str], task_index: int = 1
) -> WorkItem:
    """Select the work item assigned to an array task.

    Args:
        table_path: Path to the work table
        task_index: 1-based index of the array task

    Returns:
        The work item with absolute FASTQ paths

    Raises:
        IndexOutOfRangeError: If the index does not select a row
        MissingFileError: If a FASTQ file does not exist
    """
    logger = logging.getLogger(__name__)
    rows = read_work_table(path=table_path)
    if not 1 <= task_index <= len(rows):
        msg = f"task index {task_index} is out of range 1-{len(rows)}: {table_path}"
        raise IndexOutOfRangeError(msg)
    row = rows[task_index - 1]
    item = WorkItem(
        primary_read_path=_resolve_read_path(row[0]),
        read_group_header=row[1],
        secondary_read_path=(
            _resolve_read_path(row[2]) if len(row) == PAIRED_END_N_COL else None
        ),
    )
    logger.debug(
        "work item {} ({}):\t{}".format(
            task_index, ("paired-end" if item.paired_end else "single-end"), item
        )
    )
    return item


def _resolve_read_path(path: str) -> str:
    p = Path(path).resolve()
    if not p.is_file():
        msg = f"FASTQ file not found: {p}"
        raise MissingFileError(msg)
    return str(p)
