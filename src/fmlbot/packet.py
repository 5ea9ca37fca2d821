from __future__ import annotations

from dataclasses import dataclass

from .codec import BufferUnderrun, decode_string, decode_varint, encode_string, encode_varint


@dataclass(frozen=True, slots=True)
class LoginWrapper:
    """``fml:loginwrapper`` envelope: ``string channel, varint length, bytes payload``."""

    channel: str
    payload: bytes = b""

    def to_bytes(self) -> bytes:
        return encode_string(self.channel) + encode_varint(len(self.payload)) + self.payload

    @staticmethod
    def from_bytes(raw: bytes) -> "LoginWrapper":
        channel, offset = decode_string(raw, 0)
        length, offset = decode_varint(raw, offset)
        payload = bytes(raw[offset : offset + length])
        if len(payload) != length:
            raise BufferUnderrun(f"envelope declares {length} bytes, {len(payload)} present")
        return LoginWrapper(channel=channel, payload=payload)
