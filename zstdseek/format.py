"""Wire structures of the seekable zstd format: seek table entries, footer and skippable frames."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

SKIPPABLE_FRAME_MAGIC = 0x184D2A50
SEEKABLE_MAGIC_NUMBER = 0x8F92EAB1
SEEK_TABLE_FOOTER_SIZE = 9
FRAME_SIZE_FIELD_SIZE = 4
SKIPPABLE_MAGIC_NUMBER_FIELD_SIZE = 4
# Largest frame a reader accepts, guarding against untrusted input.
MAX_DECODER_FRAME_SIZE = 128 << 20
SEEKABLE_TAG = 0xE
MAX_CHUNK_SIZE = 0xFFFFFFFF
MAX_NUMBER_OF_FRAMES = 0xFFFFFFFF

_CHECKSUM_FLAG = 1 << 7
_FOOTER = struct.Struct("<IBI")
_ENTRY = struct.Struct("<III")
_ENTRY_NO_CHECKSUM = struct.Struct("<II")
_SKIPPABLE_HEADER = struct.Struct("<II")


class SeekableFormatError(ValueError):
    """Raised when data does not follow the seekable format."""


@dataclass
class SeekTableDescriptor:
    """Bit field describing the layout of the seek table."""

    checksum_flag: bool = False


@dataclass
class SeekTableFooter:
    """The nine-byte footer closing the seek table."""

    number_of_frames: int = 0
    descriptor: SeekTableDescriptor = field(default_factory=SeekTableDescriptor)
    magic_number: int = SEEKABLE_MAGIC_NUMBER

    def to_bytes(self) -> bytes:
        flags = _CHECKSUM_FLAG if self.descriptor.checksum_flag else 0
        return _FOOTER.pack(self.number_of_frames, flags, SEEKABLE_MAGIC_NUMBER)

    @classmethod
    def from_bytes(cls, data: bytes) -> SeekTableFooter:
        if len(data) != SEEK_TABLE_FOOTER_SIZE:
            raise SeekableFormatError(
                f"footer length mismatch {len(data)} vs {SEEK_TABLE_FOOTER_SIZE}"
            )
        number_of_frames, flags, magic = _FOOTER.unpack(bytes(data))
        reserved_bits = ((flags << 1) & 0xFF) >> 3
        if reserved_bits != 0:
            raise SeekableFormatError(f"footer reserved bits {reserved_bits} != 0")
        if magic != SEEKABLE_MAGIC_NUMBER:
            raise SeekableFormatError(
                f"footer magic mismatch {magic} vs {SEEKABLE_MAGIC_NUMBER}"
            )
        return cls(
            number_of_frames=number_of_frames,
            descriptor=SeekTableDescriptor(checksum_flag=bool(flags & _CHECKSUM_FLAG)),
            magic_number=magic,
        )


@dataclass
class SeekTableEntry:
    """One seek table entry, describing a single compressed frame."""

    compressed_size: int = 0
    decompressed_size: int = 0
    checksum: int = 0

    def to_bytes(self) -> bytes:
        return _ENTRY.pack(self.compressed_size, self.decompressed_size, self.checksum)

    @classmethod
    def from_bytes(cls, data: bytes) -> SeekTableEntry:
        data = bytes(data)
        if len(data) < _ENTRY_NO_CHECKSUM.size:
            raise SeekableFormatError(
                f"entry length mismatch {len(data)} vs {_ENTRY_NO_CHECKSUM.size}"
            )
        if len(data) >= _ENTRY.size:
            return cls(*_ENTRY.unpack_from(data))
        return cls(*_ENTRY_NO_CHECKSUM.unpack_from(data))


def create_skippable_frame(tag: int, payload: bytes) -> bytes:
    """Wrap ``payload`` in a zstd skippable frame with the given tag (0..15).

    An empty payload yields an empty result.
    """
    if not payload:
        return b""
    if tag > 0xF:
        raise SeekableFormatError(f"requested tag ({tag}) > 0xf")
    if len(payload) > MAX_CHUNK_SIZE:
        raise SeekableFormatError(
            f"requested skippable frame size ({len(payload)}) > max uint32"
        )
    return _SKIPPABLE_HEADER.pack(SKIPPABLE_FRAME_MAGIC + tag, len(payload)) + bytes(payload)