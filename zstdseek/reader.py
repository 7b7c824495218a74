"""Random access to a seekable zstd stream by offset in the decompressed data."""

from __future__ import annotations

import bisect
import io
import logging
import struct
import threading
from collections.abc import Iterator
from typing import BinaryIO, Protocol

import zstandard

from .env import FrameOffsetEntry, ReadEnvironment
from .format import (
    FRAME_SIZE_FIELD_SIZE,
    MAX_DECODER_FRAME_SIZE,
    SEEK_TABLE_FOOTER_SIZE,
    SEEKABLE_TAG,
    SKIPPABLE_FRAME_MAGIC,
    SKIPPABLE_MAGIC_NUMBER_FIELD_SIZE,
    SeekableFormatError,
    SeekTableEntry,
    SeekTableFooter,
)
from .xxh64 import checksum32

_LOGGER = logging.getLogger(__name__)

_SKIPPABLE_HEADER = struct.Struct("<II")


class _Decompressor(Protocol):
    def decode_all(self, data: bytes) -> bytes: ...


class ZstdDecompressor:
    """Decompresses a complete zstd payload, which may hold several frames."""

    def __init__(self, max_window_size: int = 0) -> None:
        self._max_window_size = max_window_size

    def decode_all(self, data: bytes) -> bytes:
        """Return the decompressed content of ``data``.

        A fresh context is used per call, so one instance may be shared by threads.
        """
        dctx = zstandard.ZstdDecompressor(max_window_size=self._max_window_size)
        try:
            with dctx.stream_reader(bytes(data), read_across_frames=True) as stream:
                return stream.readall()
        except zstandard.ZstdError as err:
            raise SeekableFormatError(f"failed to decompress data: {err}") from err


class FileReadEnvironment:
    """Reads frames and the seek table from a seekable binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def get_frame_by_index(self, index: FrameOffsetEntry) -> bytes:
        with self._lock:
            self._stream.seek(index.comp_offset, io.SEEK_SET)
            return self._read_up_to(index.comp_size)

    def read_footer(self) -> bytes:
        return self._read_tail(SEEK_TABLE_FOOTER_SIZE, "footer")

    def read_skip_frame(self, skippable_frame_offset: int) -> bytes:
        return self._read_tail(skippable_frame_offset, "skippable frame header")

    def _read_tail(self, size: int, what: str) -> bytes:
        with self._lock:
            try:
                position = self._stream.seek(-size, io.SEEK_END)
            except (OSError, ValueError) as err:
                raise SeekableFormatError(f"failed to seek to: {-size}: {err}") from err
            data = self._read_up_to(size)
        if len(data) != size:
            raise SeekableFormatError(
                f"failed to read {what} at: {position}: got {len(data)} of {size} bytes"
            )
        return data

    def _read_up_to(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)


class _SeekIndex:
    """Frames of a seek table, looked up by decompressed offset or by id."""

    def __init__(self, frames: list[FrameOffsetEntry], checksums: bool) -> None:
        by_offset: dict[int, FrameOffsetEntry] = {}
        for frame in frames:
            # A later frame starting at the same offset replaces the earlier one.
            by_offset[frame.decomp_offset] = frame
        self._entries = list(by_offset.values())
        self._offsets = list(by_offset)
        self._by_id = {frame.id: frame for frame in self._entries}
        self.checksums = checksums
        if frames:
            last = frames[-1]
            self.end_offset = last.decomp_offset + last.decomp_size
            self.num_frames = last.id + 1
        else:
            self.end_offset = 0
            self.num_frames = 0

    def __len__(self) -> int:
        return len(self._entries)

    def by_decomp_offset(self, offset: int) -> FrameOffsetEntry | None:
        if offset < 0 or offset >= self.end_offset:
            return None
        position = bisect.bisect_right(self._offsets, offset) - 1
        return self._entries[position] if position >= 0 else None

    def by_id(self, frame_id: int) -> FrameOffsetEntry | None:
        if frame_id < 0:
            return None
        return self._by_id.get(frame_id)


def _iter_frames(table: bytes, entry_size: int) -> Iterator[FrameOffsetEntry]:
    if len(table) % entry_size:
        raise SeekableFormatError(f"seek table size is not multiple of {entry_size}")
    layout = "<III" if entry_size == 12 else "<II"
    comp_offset = decomp_offset = 0
    for frame_id, fields in enumerate(struct.iter_unpack(layout, table)):
        entry = SeekTableEntry(*fields)
        yield FrameOffsetEntry(
            id=frame_id,
            comp_offset=comp_offset,
            decomp_offset=decomp_offset,
            comp_size=entry.compressed_size,
            decomp_size=entry.decompressed_size,
            checksum=entry.checksum,
        )
        comp_offset += entry.compressed_size
        decomp_offset += entry.decompressed_size


def _load_index(environment: ReadEnvironment, logger: logging.Logger) -> _SeekIndex:
    """Read and parse the seek table that ``environment`` provides."""
    buf = environment.read_footer()
    if len(buf) < SEEK_TABLE_FOOTER_SIZE:
        raise SeekableFormatError(f"footer is too small: {len(buf)}")
    try:
        footer = SeekTableFooter.from_bytes(bytes(buf[-SEEK_TABLE_FOOTER_SIZE:]))
    except SeekableFormatError as err:
        raise SeekableFormatError(f"failed to parse footer: {err}") from err
    logger.debug("loaded footer: %s", footer)

    checksums = footer.descriptor.checksum_flag
    entry_size = 12 if checksums else 8
    header_size = FRAME_SIZE_FIELD_SIZE + SKIPPABLE_MAGIC_NUMBER_FIELD_SIZE
    frame_size_total = (
        SEEK_TABLE_FOOTER_SIZE + entry_size * footer.number_of_frames + header_size
    )
    if frame_size_total > MAX_DECODER_FRAME_SIZE:
        raise SeekableFormatError(
            f"frame offset is too big: {frame_size_total} > {MAX_DECODER_FRAME_SIZE}"
        )

    buf = bytes(environment.read_skip_frame(frame_size_total))
    if len(buf) < header_size + SEEK_TABLE_FOOTER_SIZE:
        raise SeekableFormatError(f"skip frame is too small: {len(buf)}")

    magic, frame_size = _SKIPPABLE_HEADER.unpack_from(buf)
    expected_magic = SKIPPABLE_FRAME_MAGIC + SEEKABLE_TAG
    if magic != expected_magic:
        raise SeekableFormatError(f"skippable frame magic mismatch {magic} vs {expected_magic}")
    expected_frame_size = len(buf) - header_size
    if frame_size != expected_frame_size:
        raise SeekableFormatError(
            f"skippable frame size mismatch: expected: {expected_frame_size}, actual: {frame_size}"
        )
    if frame_size > MAX_DECODER_FRAME_SIZE:
        raise SeekableFormatError(f"frame is too big: {frame_size} > {MAX_DECODER_FRAME_SIZE}")

    table = buf[header_size : len(buf) - SEEK_TABLE_FOOTER_SIZE]
    return _SeekIndex(list(_iter_frames(table, entry_size)), checksums)


class Reader:
    """Seekable reader over a seekable zstd stream, addressed by decompressed offset.

    ``read`` and ``seek`` share a position and must not be used concurrently;
    ``read_at`` does not touch the position and may be called from several threads.
    """

    def __init__(
        self,
        source: BinaryIO | None = None,
        decoder: _Decompressor | None = None,
        *,
        environment: ReadEnvironment | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if environment is None:
            if source is None:
                raise ValueError("no source stream and no custom environment supplied")
            environment = FileReadEnvironment(source)
        self._env = environment
        self._decoder = decoder if decoder is not None else ZstdDecompressor()
        self._logger = logger if logger is not None else _LOGGER
        self._index: _SeekIndex | None = _load_index(environment, self._logger)
        self._checksums = self._index.checksums
        self._end_offset = self._index.end_offset
        self._num_frames = self._index.num_frames
        self._offset = 0
        self._closed = False
        self._close_lock = threading.Lock()
        self._cached: tuple[int, bytes] | None = None

    @property
    def size(self) -> int:
        """Size of the decompressed stream."""
        return self._end_offset

    @property
    def num_frames(self) -> int:
        """Number of frames listed in the seek table."""
        return self._num_frames

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int | None = -1) -> bytes:
        """Read from the current position.

        A non-negative ``size`` returns at most the rest of the current frame;
        a negative size or None reads to the end. Returns b"" at the end.
        """
        self._check_open()
        if self._offset >= self._end_offset:
            self._offset = self._end_offset
            return b""
        if size is None or size < 0:
            data = self.read_at(-1, self._offset)
        else:
            data = self._frame_slice(self._offset, size)
        self._offset += len(data)
        return data

    def read_at(self, size: int | None, offset: int) -> bytes:
        """Read ``size`` bytes at ``offset``; fewer only when the end is reached.

        A negative size or None reads to the end. The position is not changed.
        """
        self._check_open()
        if size == 0:
            return b""
        if offset < 0:
            raise ValueError(f"offset before the start of the file: {offset}")
        remaining = None if size is None or size < 0 else size
        parts = []
        position = offset
        while position < self._end_offset and (remaining is None or remaining > 0):
            chunk = self._frame_slice(position, remaining)
            if not chunk:
                break
            parts.append(chunk)
            position += len(chunk)
            if remaining is not None:
                remaining -= len(chunk)
        return b"".join(parts)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move the position and return it."""
        if whence == io.SEEK_SET:
            new_offset = offset
        elif whence == io.SEEK_CUR:
            new_offset = self._offset + offset
        elif whence == io.SEEK_END:
            new_offset = self._end_offset + offset
        else:
            raise ValueError(f"unknown whence: {whence}")
        if new_offset < 0:
            raise ValueError(
                f"offset before the start of the file: {new_offset} ({self._offset} + {offset})"
            )
        self._offset = new_offset
        return self._offset

    def tell(self) -> int:
        return self._offset

    def close(self) -> None:
        """Release the index and cached data; closing twice is harmless."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            self._cached = None
            self._index = None

    def index_by_decomp_offset(self, offset: int) -> FrameOffsetEntry | None:
        """Return the frame holding ``offset``, or None past the end."""
        index = self._index
        return index.by_decomp_offset(offset) if index is not None else None

    def index_by_id(self, frame_id: int) -> FrameOffsetEntry | None:
        """Return the frame with the given id, or None if there is none."""
        index = self._index
        return index.by_id(frame_id) if index is not None else None

    def __enter__(self) -> Reader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("reader is closed")

    def _frame_slice(self, offset: int, size: int | None) -> bytes:
        entry = self.index_by_decomp_offset(offset)
        if entry is None:
            raise SeekableFormatError(f"failed to get index by offset: {offset}")
        frame_end = entry.decomp_offset + entry.decomp_size
        if not entry.decomp_offset <= offset <= frame_end:
            raise SeekableFormatError(
                f"offset outside of index bounds: {offset}: "
                f"min: {entry.decomp_offset}, max: {frame_end}"
            )
        data = self._frame_data(entry)
        if len(data) != entry.decomp_size:
            raise SeekableFormatError(
                f"index corruption: len: {len(data)}, expected: {entry.decomp_size}"
            )
        start = offset - entry.decomp_offset
        stop = len(data) if size is None else min(len(data), start + size)
        self._logger.debug(
            "decompressed: offset within frame %d, end %d, frame length %d, index %s",
            start,
            stop,
            len(data),
            entry,
        )
        return data[start:stop]

    def _frame_data(self, entry: FrameOffsetEntry) -> bytes:
        cached = self._cached
        if cached is not None and cached[0] == entry.decomp_offset:
            return cached[1]
        if entry.comp_size > MAX_DECODER_FRAME_SIZE:
            raise SeekableFormatError(
                f"index.CompSize is too big: {entry.comp_size} > {MAX_DECODER_FRAME_SIZE}"
            )
        src = self._env.get_frame_by_index(entry)
        if len(src) != entry.comp_size:
            raise SeekableFormatError(
                f"compressed size does not match index at: {entry.decomp_offset}: "
                f"read: {len(src)}, index: {entry}"
            )
        data = self._decoder.decode_all(src)
        if self._checksums:
            actual = checksum32(data)
            if actual != entry.checksum:
                raise SeekableFormatError(
                    f"checksum verification failed at: {entry.comp_offset}: "
                    f"expected: {entry.checksum}, actual: {actual}"
                )
        self._cached = (entry.decomp_offset, data)
        return data