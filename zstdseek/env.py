"""Frame index entries and the pluggable I/O environments for readers and writers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class FrameOffsetEntry:
    """A seek table entry resolved to absolute offsets, ordered by decompressed offset."""

    id: int
    comp_offset: int
    decomp_offset: int
    comp_size: int
    decomp_size: int
    checksum: int = 0

    def __lt__(self, other: FrameOffsetEntry) -> bool:
        if not isinstance(other, FrameOffsetEntry):
            return NotImplemented
        return self.decomp_offset < other.decomp_offset


@runtime_checkable
class WriteEnvironment(Protocol):
    """Destination for encoded frames and the final seek table."""

    def write_frame(self, data: bytes) -> int:
        """Write one compressed frame and return the number of bytes written."""
        ...

    def write_seek_table(self, data: bytes) -> int:
        """Write the seek table frame and return the number of bytes written."""
        ...


@runtime_checkable
class ReadEnvironment(Protocol):
    """Source of compressed frames and of the seek table."""

    def get_frame_by_index(self, index: FrameOffsetEntry) -> bytes:
        """Return the compressed frame described by ``index``."""
        ...

    def read_footer(self) -> bytes:
        """Return a buffer whose last nine bytes are the seek table footer."""
        ...

    def read_skip_frame(self, skippable_frame_offset: int) -> bytes:
        """Return the whole seek table skippable frame, header included."""
        ...