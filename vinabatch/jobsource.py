"""
jobsource.py

Lazy reader over a job file (one ligand path per line).

Each job is identified by the byte offset at which its line starts, so a
process that holds no reading state (an MPI worker) can re-open the file
and read exactly that one line. The file is opened in binary mode: text
mode tell() values are opaque cookies, not byte offsets.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Tuple

import numpy as np

from .errors import JobFileError

TERMINATION_OFFSET = -1


@dataclass(frozen=True)
class JobDescriptor:
    """Everything needed to run one job without re-reading the file sequentially.

    Attributes:
        seed: Engine seed for this job
        byte_offset: Offset of the first byte of the job's line
        sequence_index: 0-based position of the job in the file
    """
    seed: int
    byte_offset: int
    sequence_index: int

    @property
    def is_termination(self) -> bool:
        return self.byte_offset == TERMINATION_OFFSET

    def to_array(self) -> np.ndarray:
        return np.array([self.seed, self.byte_offset, self.sequence_index], dtype=np.int64)

    @classmethod
    def from_array(cls, buf) -> "JobDescriptor":
        return cls(seed=int(buf[0]), byte_offset=int(buf[1]), sequence_index=int(buf[2]))


TERMINATION = JobDescriptor(seed=0, byte_offset=TERMINATION_OFFSET, sequence_index=-1)


def _decode(raw: bytes) -> str:
    return raw.rstrip(b"\r\n").decode("utf-8", "surrogateescape")


def read_line_at(path, offset: int) -> str:
    """Open the job file independently, seek to offset and read one line."""
    if offset < 0:
        raise ValueError(f"Invalid job offset: {offset}")
    try:
        with open(path, "rb") as fh:
            fh.seek(offset)
            return _decode(fh.readline())
    except OSError as e:
        raise JobFileError(f"Cannot read job file {path}: {e}") from e


class JobSource:
    """Sequential reader that hands out JobDescriptors.

    Exhaustion is EOF or an empty line. With blank_ends=True a line made only
    of whitespace also ends the file (MPI governor behaviour).
    """

    def __init__(self, path, blank_ends: bool = False):
        self.path = Path(path)
        self.blank_ends = blank_ends
        try:
            self._fh = open(self.path, "rb")
        except OSError as e:
            raise JobFileError(f"Cannot open job file {self.path}: {e}") from e
        self._count = 0
        self._exhausted = False

    @property
    def offset(self) -> int:
        return self._fh.tell()

    @property
    def count(self) -> int:
        """Number of real jobs handed out so far."""
        return self._count

    def next(self, seed: int = 0) -> Optional[Tuple[JobDescriptor, str]]:
        if self._exhausted:
            return None
        # Offset is taken before the read: it must point at the start of the line.
        offset = self._fh.tell()
        raw = self._fh.readline()
        line = _decode(raw)
        if not raw or line == "" or (self.blank_ends and not line.strip()):
            self._exhausted = True
            return None
        desc = JobDescriptor(seed=seed, byte_offset=offset, sequence_index=self._count)
        self._count += 1
        return desc, line

    def reopen_at(self, offset: int) -> str:
        return read_line_at(self.path, offset)

    def __iter__(self) -> Iterator[Tuple[JobDescriptor, str]]:
        while True:
            item = self.next()
            if item is None:
                return
            yield item

    def close(self):
        self._fh.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
