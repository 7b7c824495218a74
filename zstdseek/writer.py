"""Writing seekable zstd streams: one compressed frame per chunk, seek table on close."""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from typing import BinaryIO, Protocol

import zstandard

from .env import WriteEnvironment
from .format import (
    MAX_CHUNK_SIZE,
    MAX_NUMBER_OF_FRAMES,
    SEEKABLE_TAG,
    SeekableFormatError,
    SeekTableDescriptor,
    SeekTableEntry,
    SeekTableFooter,
    create_skippable_frame,
)
from .xxh64 import checksum32

_LOGGER = logging.getLogger(__name__)


class _Compressor(Protocol):
    def encode_all(self, data: bytes) -> bytes: ...


class ZstdCompressor:
    """Compresses a whole buffer into a single zstd frame.

    Each thread gets its own compression context, so one instance may be shared.
    """

    def __init__(self, level: int = 3) -> None:
        self._level = level
        self._local = threading.local()

    def encode_all(self, data: bytes) -> bytes:
        """Return ``data`` compressed as one zstd frame."""
        cctx = getattr(self._local, "cctx", None)
        if cctx is None:
            cctx = zstandard.ZstdCompressor(level=self._level)
            self._local.cctx = cctx
        return cctx.compress(bytes(data))


class StreamWriteEnvironment:
    """Writes frames and the seek table to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def write_frame(self, data: bytes) -> int:
        return self._write(data)

    def write_seek_table(self, data: bytes) -> int:
        return self._write(data)

    def _write(self, data: bytes) -> int:
        written = self._stream.write(data)
        return len(data) if written is None else written


def _check_written(written: int, expected: int) -> None:
    if written != expected:
        raise OSError(f"partial write: {written} out of {expected}")


class Encoder:
    """Compresses chunks into frames and keeps the seek table in memory."""

    def __init__(
        self,
        compressor: _Compressor | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._compressor = compressor if compressor is not None else ZstdCompressor()
        self._logger = logger if logger is not None else _LOGGER
        self._entries: list[SeekTableEntry] = []

    def _encode_one(self, data: bytes) -> tuple[bytes, SeekTableEntry]:
        if len(data) > MAX_CHUNK_SIZE:
            raise SeekableFormatError(
                f"chunk size too big for seekable format: {len(data)} > {MAX_CHUNK_SIZE}"
            )
        if not data:
            return b"", SeekTableEntry()
        dst = self._compressor.encode_all(data)
        if len(dst) > MAX_CHUNK_SIZE:
            raise SeekableFormatError(
                f"result size too big for seekable format: {len(dst)} > {MAX_CHUNK_SIZE}"
            )
        return dst, SeekTableEntry(
            compressed_size=len(dst),
            decompressed_size=len(data),
            checksum=checksum32(data),
        )

    def _append(self, entry: SeekTableEntry) -> None:
        self._logger.debug("appending frame: %s", entry)
        self._entries.append(entry)

    def encode(self, data: bytes) -> bytes:
        """Return ``data`` compressed as one frame and record it in the seek table."""
        dst, entry = self._encode_one(data)
        self._append(entry)
        return dst

    def end_stream(self) -> bytes:
        """Return the seek table as a zstd skippable frame."""
        if len(self._entries) > MAX_NUMBER_OF_FRAMES:
            raise SeekableFormatError(
                f"number of frames for seekable format: "
                f"{len(self._entries)} > {MAX_NUMBER_OF_FRAMES}"
            )
        footer = SeekTableFooter(
            number_of_frames=len(self._entries),
            descriptor=SeekTableDescriptor(checksum_flag=True),
        )
        table = b"".join(entry.to_bytes() for entry in self._entries) + footer.to_bytes()
        return create_skippable_frame(SEEKABLE_TAG, table)


def _iter_source(frames: Iterable[bytes | None]) -> Iterator[bytes]:
    iterator = iter(frames)
    while True:
        try:
            frame = next(iterator)
        except StopIteration:
            return
        except Exception as err:
            raise RuntimeError(f"frame source failed: {err}") from err
        if frame is None:
            return
        yield frame


class Writer(Encoder):
    """Writes each chunk as its own frame and the seek table on close.

    Chunks are neither split nor merged. Closing does not close the underlying stream.
    """

    def __init__(
        self,
        stream: BinaryIO | None = None,
        compressor: _Compressor | None = None,
        *,
        environment: WriteEnvironment | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(compressor, logger=logger)
        if environment is None and stream is not None:
            environment = StreamWriteEnvironment(stream)
        self._env = environment
        self._closed = False
        self._close_lock = threading.Lock()

    def _environment(self) -> WriteEnvironment:
        if self._env is None:
            raise ValueError("no output stream and no custom environment supplied")
        return self._env

    def write(self, data: bytes) -> int:
        """Write ``data`` as one frame and return its uncompressed length."""
        dst = self.encode(data)
        _check_written(self._environment().write_frame(dst), len(dst))
        return len(data)

    def write_many(
        self,
        frames: Iterable[bytes],
        concurrency: int | None = None,
        write_callback: Callable[[int], None] | None = None,
    ) -> None:
        """Compress chunks in parallel and write them in their original order.

        ``write_callback`` receives the uncompressed size of each frame once written.
        Iteration stops at the end of ``frames`` or at a None item.
        """
        if concurrency is None:
            concurrency = os.cpu_count() or 1
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive: {concurrency}")

        window = concurrency * 2
        pending: deque[Future[tuple[bytes, SeekTableEntry]]] = deque()
        with ThreadPoolExecutor(max_workers=concurrency) as pool:
            try:
                for frame in _iter_source(frames):
                    pending.append(pool.submit(self._encode_frame, frame))
                    while len(pending) >= window:
                        self._consume(pending.popleft(), write_callback)
                while pending:
                    self._consume(pending.popleft(), write_callback)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

    def _encode_frame(self, frame: bytes) -> tuple[bytes, SeekTableEntry]:
        try:
            return self._encode_one(frame)
        except SeekableFormatError as err:
            raise SeekableFormatError(f"failed to encode frame: {err}") from err

    def _consume(
        self,
        future: Future[tuple[bytes, SeekTableEntry]],
        write_callback: Callable[[int], None] | None,
    ) -> None:
        dst, entry = future.result()
        environment = self._environment()
        try:
            written = environment.write_frame(dst)
        except OSError as err:
            raise OSError(f"failed to write compressed data: {err}") from err
        _check_written(written, len(dst))
        self._append(entry)
        if write_callback is not None:
            write_callback(entry.decompressed_size)

    def close(self) -> None:
        """Write the seek table; later calls do nothing."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            table = self.end_stream()
            _check_written(self._environment().write_seek_table(table), len(table))

    def __enter__(self) -> Writer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()