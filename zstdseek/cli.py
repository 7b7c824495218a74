"""Command line tool compressing a file into the seekable zstd format."""

from __future__ import annotations

import argparse
import hashlib
import logging
import math
import os
import sys
from collections.abc import Iterator
from contextlib import ExitStack
from typing import BinaryIO

from .reader import Reader, ZstdDecompressor
from .writer import Writer, ZstdCompressor

_LOGGER = logging.getLogger("zstdseek")

_MASK64 = (1 << 64) - 1
_VERIFY_BLOCK = 128 << 10
_READ_BLOCK = 1 << 16

_GEAR = tuple(
    int.from_bytes(hashlib.blake2b(bytes([value]), digest_size=8).digest(), "little")
    for value in range(256)
)


class _CliError(Exception):
    """A fatal condition reported to the user."""


def parse_chunking(spec: str) -> tuple[int, int, int]:
    """Parse ``min:avg:max`` sizes in KiB and return them in bytes."""
    params = spec.split(":")
    if len(params) != 3:
        raise ValueError(f"failed parse chunker params. len() != 3: actual {len(params)}")
    sizes = []
    for param in params:
        try:
            sizes.append(int(param) * 1024)
        except ValueError as err:
            raise ValueError(f"failed to parse int: {param!r}") from err
    min_size, avg_size, max_size = sizes
    return min_size, avg_size, max_size


def _masks(avg_size: int) -> tuple[int, int]:
    bits = max(1, round(math.log2(avg_size)))
    strict = ((1 << (bits + 1)) - 1) << (64 - (bits + 1))
    loose = ((1 << (bits - 1)) - 1) << (64 - (bits - 1)) if bits > 1 else 0
    return strict, loose


def _cut_point(
    data: bytearray, min_size: int, avg_size: int, max_size: int, strict: int, loose: int
) -> int:
    if len(data) <= min_size:
        return len(data)
    limit = min(len(data), max_size)
    normal = min(avg_size, limit)
    fingerprint = 0
    view = memoryview(data)
    for position, byte in enumerate(view[min_size:normal], start=min_size):
        fingerprint = ((fingerprint << 1) + _GEAR[byte]) & _MASK64
        if not fingerprint & strict:
            return position
    for position, byte in enumerate(view[normal:limit], start=normal):
        fingerprint = ((fingerprint << 1) + _GEAR[byte]) & _MASK64
        if not fingerprint & loose:
            return position
    return limit


def iter_chunks(
    stream: BinaryIO, min_size: int, avg_size: int, max_size: int
) -> Iterator[bytes]:
    """Split ``stream`` into content-defined chunks of ``min_size`` to ``max_size`` bytes.

    Only the last chunk may be shorter than ``min_size``.
    """
    if min_size < 1 or not min_size <= avg_size <= max_size:
        raise ValueError(
            f"invalid chunk sizes: need 0 < min <= avg <= max, "
            f"got {min_size}:{avg_size}:{max_size}"
        )
    strict, loose = _masks(avg_size)
    buf = bytearray()
    eof = False
    while True:
        while not eof and len(buf) < max_size:
            block = stream.read(max(max_size - len(buf), _READ_BLOCK))
            if not block:
                eof = True
            else:
                buf += block
        if not buf:
            return
        cut = _cut_point(buf, min_size, avg_size, max_size, strict, loose)
        yield bytes(buf[:cut])
        del buf[:cut]


def _new_digest():
    try:
        return hashlib.new("sha512_256")
    except ValueError:
        return hashlib.sha512()


class _Progress:
    """Minimal byte counter drawn on standard error."""

    def __init__(self, total: int | None) -> None:
        self._total = total
        self._done = 0

    def add(self, size: int) -> None:
        self._done += size
        if self._total:
            line = f"\rcompressing: {self._done}/{self._total} bytes"
        else:
            line = f"\rcompressing: {self._done} bytes"
        sys.stderr.write(line)
        sys.stderr.flush()

    def finish(self) -> None:
        sys.stderr.write("\n")
        sys.stderr.flush()


def _compress(args: argparse.Namespace, sizes: tuple[int, int, int], expected) -> None:
    min_size, avg_size, max_size = sizes
    with ExitStack() as stack:
        if args.input == "-":
            source: BinaryIO = sys.stdin.buffer
            progress = None
        else:
            try:
                source = stack.enter_context(open(args.input, "rb"))
            except OSError as err:
                raise _CliError(f"failed to open input: {err}") from err
            progress = None
            if sys.stdout.isatty():
                try:
                    total = os.fstat(source.fileno()).st_size
                except OSError:
                    total = None
                progress = _Progress(total)

        if args.output == "-":
            sink: BinaryIO = sys.stdout.buffer
        else:
            try:
                sink = stack.enter_context(open(args.output, "wb"))
            except OSError as err:
                raise _CliError(f"failed to open output: {err}") from err

        def frames() -> Iterator[bytes]:
            for chunk in iter_chunks(source, min_size, avg_size, max_size):
                if expected is not None:
                    expected.update(chunk)
                yield chunk

        _LOGGER.debug("setting chunker params: min %d, max %d", min_size, max_size)
        writer = Writer(sink, ZstdCompressor(level=args.quality), logger=_LOGGER)
        try:
            writer.write_many(
                frames(), write_callback=progress.add if progress is not None else None
            )
            writer.close()
        except (OSError, ValueError, RuntimeError) as err:
            raise _CliError(f"failed to write data: {err}") from err
        if progress is not None:
            progress.finish()
        sink.flush()


def _verify(path: str, expected: bytes) -> None:
    _LOGGER.info("verifying checksum")
    actual = _new_digest()
    try:
        with open(path, "rb") as compressed, Reader(
            compressed, ZstdDecompressor(), logger=_LOGGER
        ) as reader:
            while chunk := reader.read(_VERIFY_BLOCK):
                actual.update(chunk)
    except (OSError, ValueError) as err:
        raise _CliError(f"failed to verify output: {err}") from err
    if actual.digest() != expected:
        raise _CliError(
            f"checksum verification failed: actual {actual.hexdigest()}, "
            f"expected {expected.hex()}"
        )
    _LOGGER.info("checksum verification succeeded: %s", actual.hexdigest())


def main(argv: list[str] | None = None) -> int:
    """Run the command line tool and return its exit status."""
    parser = argparse.ArgumentParser(
        prog="zstdseek", description="Compress a file into the seekable zstd format."
    )
    parser.add_argument("-f", dest="input", default="", help="input filename")
    parser.add_argument("-o", dest="output", default="", help="output filename")
    parser.add_argument(
        "-c",
        dest="chunking",
        default="128:1024:8192",
        help="min:avg:max chunking block size (in kb)",
    )
    parser.add_argument(
        "-t", dest="verify", action="store_true", help="test reading after the write"
    )
    parser.add_argument(
        "-q", dest="quality", type=int, default=1, help="compression quality (lower == faster)"
    )
    parser.add_argument("-v", dest="verbose", action="store_true", help="be verbose")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO, stream=sys.stderr
    )

    try:
        if not args.input or not args.output:
            raise _CliError("both input and output files need to be defined")
        if args.verify and args.output == "-":
            raise _CliError("verify can't be used with stdout output")
        try:
            sizes = parse_chunking(args.chunking)
        except ValueError as err:
            raise _CliError(str(err)) from err

        expected = _new_digest() if args.verify else None
        _compress(args, sizes, expected)
        if expected is not None:
            _verify(args.output, expected.digest())
    except _CliError as err:
        _LOGGER.error("%s", err)
        return 1
    return 0