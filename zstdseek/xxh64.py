"""XXH64 hashing, used for the per-frame checksums of the seek table."""

from __future__ import annotations

import struct

_MASK = (1 << 64) - 1

_P1 = 11400714785074694791
_P2 = 14029467366897019727
_P3 = 1609587929392839161
_P4 = 9650029242287828579
_P5 = 2870177450012600261

_STRIPE = 32


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) | (value >> (64 - bits))) & _MASK


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _P2) & _MASK
    acc = _rotl(acc, 31)
    return (acc * _P1) & _MASK


def _merge_round(acc: int, value: int) -> int:
    acc ^= _round(0, value)
    return (acc * _P1 + _P4) & _MASK


def xxh64(data: bytes | bytearray | memoryview, seed: int = 0) -> int:
    """Return the 64-bit XXH64 digest of ``data``."""
    buf = bytes(data)
    length = len(buf)
    seed &= _MASK
    body_len = length - length % _STRIPE if length >= _STRIPE else 0

    if body_len:
        lanes = [
            (seed + _P1 + _P2) & _MASK,
            (seed + _P2) & _MASK,
            seed,
            (seed - _P1) & _MASK,
        ]
        for stripe in struct.iter_unpack("<4Q", buf[:body_len]):
            lanes = [_round(acc, lane) for acc, lane in zip(lanes, stripe)]
        v1, v2, v3, v4 = lanes
        h = (_rotl(v1, 1) + _rotl(v2, 7) + _rotl(v3, 12) + _rotl(v4, 18)) & _MASK
        for acc in lanes:
            h = _merge_round(h, acc)
    else:
        h = (seed + _P5) & _MASK

    h = (h + length) & _MASK

    tail = buf[body_len:]
    words = len(tail) // 8
    for (lane,) in struct.iter_unpack("<Q", tail[: words * 8]):
        h ^= _round(0, lane)
        h = (_rotl(h, 27) * _P1 + _P4) & _MASK
    tail = tail[words * 8 :]

    if len(tail) >= 4:
        (word,) = struct.unpack_from("<I", tail)
        h ^= (word * _P1) & _MASK
        h = (_rotl(h, 23) * _P2 + _P3) & _MASK
        tail = tail[4:]

    for byte in tail:
        h ^= (byte * _P5) & _MASK
        h = (_rotl(h, 11) * _P1) & _MASK

    h ^= h >> 33
    h = (h * _P2) & _MASK
    h ^= h >> 29
    h = (h * _P3) & _MASK
    h ^= h >> 32
    return h


def checksum32(data: bytes | bytearray | memoryview) -> int:
    """Return the least significant 32 bits of the XXH64 digest of ``data``."""
    return xxh64(data) & 0xFFFFFFFF