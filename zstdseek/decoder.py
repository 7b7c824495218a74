"""Frame lookups from a bare seek table, without access to the compressed data."""

from __future__ import annotations

import logging

from .env import FrameOffsetEntry
from .format import SeekableFormatError
from .reader import _load_index

_LOGGER = logging.getLogger(__name__)


class SeekTableEnvironment:
    """Read environment that serves only a seek table held in memory."""

    def __init__(self, seek_table: bytes) -> None:
        self._seek_table = bytes(seek_table)

    def get_frame_by_index(self, index: FrameOffsetEntry) -> bytes:
        raise SeekableFormatError(
            f"a bare seek table holds no frame data (requested frame {index.id})"
        )

    def read_footer(self) -> bytes:
        return self._seek_table

    def read_skip_frame(self, skippable_frame_offset: int) -> bytes:
        return self._seek_table


class Decoder:
    """Index over a seek table, as produced by ``Encoder.end_stream`` or ``Writer.close``.

    Lookups may be made from several threads.
    """

    def __init__(self, seek_table: bytes, *, logger: logging.Logger | None = None) -> None:
        index = _load_index(
            SeekTableEnvironment(seek_table), logger if logger is not None else _LOGGER
        )
        self._index = index
        self._size = index.end_offset
        self._num_frames = index.num_frames

    @property
    def size(self) -> int:
        """Size of the decompressed stream."""
        return self._size

    @property
    def num_frames(self) -> int:
        """Number of frames listed in the seek table."""
        return self._num_frames

    def index_by_decomp_offset(self, offset: int) -> FrameOffsetEntry | None:
        """Return the frame holding ``offset``, or None past the end."""
        index = self._index
        return index.by_decomp_offset(offset) if index is not None else None

    def index_by_id(self, frame_id: int) -> FrameOffsetEntry | None:
        """Return the frame with the given id, or None if there is none."""
        index = self._index
        return index.by_id(frame_id) if index is not None else None

    def close(self) -> None:
        """Release the index."""
        self._index = None