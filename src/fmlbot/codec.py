from __future__ import annotations

from typing import Tuple

from .constants import VARINT_MAX_BYTES


class BufferUnderrun(ValueError):
    """Raised when a decode runs past the end of the buffer."""


def encode_varint(value: int) -> bytes:
    value &= 0xFFFFFFFF
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(buf: bytes, offset: int = 0) -> Tuple[int, int]:
    value = 0
    for i in range(VARINT_MAX_BYTES):
        if offset >= len(buf):
            raise BufferUnderrun(f"varint truncated at offset {offset}")
        byte = buf[offset]
        offset += 1
        value |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return value & 0xFFFFFFFF, offset
    raise ValueError(f"varint longer than {VARINT_MAX_BYTES} bytes")


def encode_string(s: str) -> bytes:
    raw = s.encode("utf-8")
    return encode_varint(len(raw)) + raw


def decode_string(buf: bytes, offset: int = 0) -> Tuple[str, int]:
    length, offset = decode_varint(buf, offset)
    end = offset + length
    if end > len(buf):
        raise BufferUnderrun(f"string needs {length} bytes, {len(buf) - offset} available")
    return bytes(buf[offset:end]).decode("utf-8"), end


def decode_byte(buf: bytes, offset: int = 0) -> Tuple[int, int]:
    if offset >= len(buf):
        raise BufferUnderrun(f"byte expected at offset {offset}")
    return buf[offset], offset + 1
