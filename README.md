# zstdseek

Create Zstandard files in the *seekable format* and read them back at
arbitrary uncompressed offsets without decompressing everything before them.

A seekable file is an ordinary sequence of Zstandard frames followed by a
skippable frame that holds a seek table. Any standard `zstd` decoder can still
decompress the whole file. This package can also go straight to the frame that
holds the byte you want.

## Installation

```
pip install zstdseek
```

## Command line

The `zstdseek` command compresses a file. It splits the input into
content-defined chunks and stores each chunk as its own frame:

```
zstdseek -f input.bin -o output.zst
```

| Flag | Meaning | Default |
|------|---------|---------|
| `-f` | input file (`-` for standard input) | required |
| `-o` | output file (`-` for standard output) | required |
| `-c` | `min:avg:max` chunk sizes in KiB | `128:1024:8192` |
| `-q` | zstd compression level (lower is faster) | `1` |
| `-t` | read the output back and compare its SHA-512/256 digest with the input's | off |
| `-v` | debug logging | off |

`-t` cannot be combined with `-o -`. When the input is a named file and
standard output is a terminal, progress is shown on standard error. The
command exits with status 0 on success and 1 on failure, and logs the reason
for a failure.

The command only compresses. To decompress, use any `zstd` decoder on the
whole file, or `Reader` (below) for random access.

The chunker is available from Python as well:
`zstdseek.cli.parse_chunking("128:1024:8192")` turns a `min:avg:max` string in
KiB into byte sizes. `zstdseek.cli.iter_chunks(stream, min_size, avg_size,
max_size)` yields the chunks of a binary stream. Only the last chunk may be
shorter than `min_size`.

## Library

### Writing

`zstdseek.writer.Writer` turns every call to `write` into one separate frame.
It neither splits nor merges chunks. `close`, or leaving the `with` block,
appends the seek table. A second `close` does nothing. The underlying stream
stays open.

```python
from zstdseek.writer import Writer, ZstdCompressor

with open("example.zst", "wb") as out:
    with Writer(out, ZstdCompressor()) as writer:
        for chunk in (b"Hello", b" ", b"World!"):
            writer.write(chunk)
```

`ZstdCompressor(level=3)` is the default compressor. Each thread gets its own
compression context, so one instance can be shared between threads.

`Writer.write_many(frames, concurrency=None, write_callback=None)` compresses
chunks from an iterable on a thread pool and writes them in their original
order. Iteration stops at the end of the iterable or at a `None` item.
`concurrency` defaults to the number of CPUs and must be at least 1.
`write_callback` receives the uncompressed size of each frame once it has been
written. An exception raised by the iterable is re-raised as `RuntimeError`
("frame source failed"). A short write to the destination raises `OSError`
("partial write").

Every seek table this package writes includes a checksum for each frame.

### Reading

```python
import os

from zstdseek.reader import Reader, ZstdDecompressor

with open("example.zst", "rb") as f, Reader(f, ZstdDecompressor()) as reader:
    print(reader.read_at(4, 1))      # b"ello"
    reader.seek(-6, os.SEEK_END)
    print(reader.read(5))            # b"World"
```

- `read(size=-1)` reads from the current position. A non-negative size
  returns at most the rest of the current frame. A negative size or `None`
  reads to the end. It returns `b""` at the end.
- `read_at(size, offset)` returns `size` bytes at `offset`, and fewer only at
  the end of the data. It does not move the position and may be called from
  several threads.
- `seek(offset, whence)` and `tell()` work on the reader's own position.
  Seeking before the start, or passing an unknown `whence`, raises
  `ValueError`.
- `size` and `num_frames` describe the decompressed stream.
- `index_by_decomp_offset(offset)` and `index_by_id(frame_id)` return the
  `FrameOffsetEntry` that describes a frame, or `None` when out of range.

When the seek table carries checksums, each decompressed frame is checked
against its checksum. The most recently decompressed frame is cached. Reading
after `close` raises `ValueError`.

### Byte-oriented API

Use these when you manage storage yourself:

- `zstdseek.writer.Encoder.encode(data)` returns one compressed frame and
  records it in an in-memory seek table.
- `Encoder.end_stream()` returns that seek table as a skippable frame.
- `zstdseek.decoder.Decoder(seek_table)` answers `index_by_decomp_offset` and
  `index_by_id` from the seek table alone. It also reports `size` and
  `num_frames`.

### Custom storage

`zstdseek.env.WriteEnvironment` (`write_frame`, `write_seek_table`) and
`zstdseek.env.ReadEnvironment` (`get_frame_by_index`, `read_footer`,
`read_skip_frame`) are protocols. Pass an implementation as
`Writer(environment=...)` or `Reader(environment=...)` to keep frames and the
seek table wherever you like. The built-in implementations are
`StreamWriteEnvironment`, `FileReadEnvironment` and `SeekTableEnvironment`.

### Format helpers

`zstdseek.format` has the wire structures:

- `SeekTableEntry`, `SeekTableFooter` and `SeekTableDescriptor`, with
  `to_bytes` / `from_bytes`.
- `create_skippable_frame(tag, payload)`.

`zstdseek.xxh64` has `xxh64(data, seed=0)` and `checksum32(data)`, the low 32
bits used as frame checksums.

## Errors

Malformed input raises `zstdseek.format.SeekableFormatError`, a subclass of
`ValueError`. Examples are a wrong magic number, non-zero reserved bits in the
footer, a frame that fails to decompress, and a checksum that does not match
the decompressed data.