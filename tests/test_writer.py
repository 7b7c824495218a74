import io
import random
import struct

import pytest

from zstdseek.decoder import Decoder
from zstdseek.reader import Reader, ZstdDecompressor
from zstdseek.writer import Encoder, StreamWriteEnvironment, Writer, ZstdCompressor

SOURCE = b"testtest2"


class _RecordingEnvironment:
    def __init__(self):
        self.buffer = io.BytesIO()
        self.frames = []

    def write_frame(self, data):
        self.frames.append(bytes(data))
        return self.buffer.write(data)

    def write_seek_table(self, data):
        return self.buffer.write(data)


class _FailingEnvironment:
    def __init__(self, written, error):
        self.written = written
        self.error = error

    def write_frame(self, data):
        if self.error is not None:
            raise self.error
        return self.written

    def write_seek_table(self, data):
        return self.write_frame(data)


def _make_frame(idx):
    return "".join(f"test{idx + i}" for i in range(100)).encode()


def test_writer_layout():
    env = _RecordingEnvironment()
    w = Writer(environment=env, compressor=ZstdCompressor(level=1))
    assert w.write(b"test") == 4
    assert w.write(b"test2") == 5
    w.close()

    buf = env.buffer.getvalue()
    assert buf[-4:] == bytes([0xB1, 0xEA, 0x92, 0x8F])
    assert struct.unpack("<I", buf[-9:-5])[0] == 2
    index_offset = len(buf) - 4 - 1 - 4 - 2 * 12
    comp1, decomp1 = struct.unpack_from("<II", buf, index_offset)
    assert comp1 == len(env.frames[0])
    assert decomp1 == 4
    frame_offset = index_offset - 8
    assert buf[frame_offset : frame_offset + 4] == bytes([0x5E, 0x2A, 0x4D, 0x18])
    assert struct.unpack_from("<I", buf, frame_offset + 4)[0] == 0x21

    assert ZstdDecompressor().decode_all(buf) == b"testtest2"


def test_writer_checksums_match_format():
    env = _RecordingEnvironment()
    with Writer(environment=env) as w:
        w.write(b"test")
        w.write(b"test2")
    table = env.buffer.getvalue()[sum(len(f) for f in env.frames) :]
    decoder = Decoder(table)
    assert decoder.index_by_id(0).checksum == 0xDB678139
    assert decoder.index_by_id(1).checksum == 0x7111EB87


def test_writer_stream_roundtrip():
    out = io.BytesIO()
    with Writer(out) as w:
        for chunk in (b"Hello", b" ", b"World!"):
            w.write(chunk)
    out.seek(0)
    with Reader(out, ZstdDecompressor()) as r:
        assert r.read_at(4, 1) == b"ello"
        r.seek(-6, io.SEEK_END)
        assert r.read(5) == b"World"
    assert ZstdDecompressor().decode_all(out.getvalue()) == b"Hello World!"


def test_write_environment_stream():
    out = io.BytesIO()
    w = Writer(environment=StreamWriteEnvironment(out))
    w.write(b"test")
    w.write(b"test2")
    w.close()
    assert ZstdDecompressor().decode_all(out.getvalue()) == b"testtest2"


def test_close_is_idempotent():
    out = io.BytesIO()
    w = Writer(out)
    w.write(b"abc")
    w.close()
    size = len(out.getvalue())
    w.close()
    assert len(out.getvalue()) == size


def test_empty_write_read():
    out = io.BytesIO()
    w = Writer(out, ZstdCompressor(level=1))
    assert w.write(b"") == 0
    w.close()
    out.seek(0)
    with Reader(out, ZstdDecompressor()) as r:
        assert r.size == 0
        assert r.read(1) == b""
    assert ZstdDecompressor().decode_all(out.getvalue()) == b""


def test_concurrent_writer_matches_sequential():
    compressor = ZstdCompressor(level=1)
    frames = [_make_frame(i) for i in range(20)]
    concat = b"".join(frames)

    concurrent_out = io.BytesIO()
    concurrent = Writer(concurrent_out, compressor)
    written = []
    concurrent.write_many(frames, concurrency=5, write_callback=written.append)
    assert sum(written) == len(concat)

    sequential_out = io.BytesIO()
    sequential = Writer(sequential_out, compressor)
    for frame in frames:
        sequential.write(frame)

    assert concurrent_out.getvalue() == sequential_out.getvalue()
    assert ZstdDecompressor().decode_all(concurrent_out.getvalue()) == concat

    concurrent.close()
    sequential.close()
    assert concurrent_out.getvalue() == sequential_out.getvalue()


def test_concurrent_writer_invalid_concurrency():
    w = Writer(None, ZstdCompressor(level=1))
    with pytest.raises(ValueError, match="concurrency must be positive"):
        w.write_many([], concurrency=0)


def test_concurrent_writer_source_failure():
    def failing_source():
        raise RuntimeError("test error")
        yield b""  # pragma: no cover

    w = Writer(None, ZstdCompressor(level=1))
    with pytest.raises(RuntimeError, match="frame source failed: test error"):
        w.write_many(failing_source())


def test_concurrent_writer_write_failure():
    frames = [f"test{i}".encode() for i in range(100)]
    w = Writer(environment=_FailingEnvironment(0, OSError("test error")))
    with pytest.raises(OSError, match="failed to write compressed data"):
        w.write_many(frames, concurrency=1)


def test_concurrent_writer_partial_write():
    frames = [f"test{i}".encode() for i in range(100)]
    w = Writer(environment=_FailingEnvironment(1, None))
    with pytest.raises(OSError, match="partial write"):
        w.write_many(frames, concurrency=1)


def test_close_errors():
    w = Writer(environment=_FailingEnvironment(0, OSError("test error")))
    with pytest.raises(OSError, match="test error"):
        w.close()

    w = Writer(environment=_FailingEnvironment(1, None))
    with pytest.raises(OSError, match="partial write"):
        w.close()


def test_write_partial_frame_raises():
    w = Writer(environment=_FailingEnvironment(1, None))
    with pytest.raises(OSError, match="partial write"):
        w.write(b"some data")


def test_encoder():
    e = Encoder(ZstdCompressor())
    enc1 = e.encode(SOURCE[:4])
    enc2 = e.encode(SOURCE[4:])
    footer = e.end_stream()

    assert ZstdDecompressor().decode_all(enc1 + enc2) == SOURCE

    d = Decoder(footer)
    assert d.size == len(SOURCE)
    assert d.num_frames == 2


def test_encoder_empty_chunk():
    e = Encoder()
    assert e.encode(b"") == b""
    d = Decoder(e.end_stream())
    assert d.size == 0


@pytest.mark.parametrize(
    "seed,frames,length,whence",
    [
        (1, 0, 1, io.SEEK_SET),
        (10, 1, 2, io.SEEK_END),
        (111, 2, 3, io.SEEK_CUR),
        (7, 15, 40, io.SEEK_SET),
        (42, 30, 500, io.SEEK_END),
    ],
)
def test_round_trip(seed, frames, length, whence):
    rng = random.Random(seed)
    chunks = [rng.randbytes(rng.randrange(100)) for _ in range(frames)]
    source = b"".join(chunks)
    total = len(source)

    out = io.BytesIO()
    with Writer(out, ZstdCompressor()) as w:
        for chunk in chunks:
            w.write(chunk)

    out.seek(0)
    with Reader(out, ZstdDecompressor()) as r:
        assert r.size == total
        offset = rng.randrange(1 + 4 * total) - 2 * total if total else 0
        target = {io.SEEK_SET: offset, io.SEEK_CUR: offset, io.SEEK_END: total + offset}[whence]
        if target < 0:
            with pytest.raises(ValueError):
                r.seek(offset, whence)
            return
        position = r.seek(offset, whence)
        assert position == target

        first = r.read(min(length, total))
        second = r.read_at(len(first), position)
        assert first == second
        assert first == source[position : position + len(first)]