"""FML3 handshake response builder.

Forge encodes handshake messages with an indexed codec: the first byte of a
frame is the message discriminator and the rest is the message body. Every
client-bound message has a server-bound reply whose discriminator is one
higher. Two of them carry a body worth answering:

- mod list (5): ``varint n, (id, version)*n, varint m, (id, version, required)*m``
  answered with the same lists (6)
- channel data (7): ``varint n, (id, version)*n`` answered with the same list (8)

Everything else gets ``[disc + 1, 0]``. Bodies are parsed leniently; a
truncated body is answered with whatever entries decoded cleanly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .codec import decode_byte, decode_string, decode_varint, encode_string, encode_varint
from .constants import (
    DISC_CHANNEL_DATA,
    DISC_CHANNEL_DATA_REPLY,
    DISC_MOD_LIST,
    DISC_MOD_LIST_REPLY,
    FALLBACK_FRAME,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DiscriminatorTable:
    mod_list: int = DISC_MOD_LIST
    mod_list_reply: int = DISC_MOD_LIST_REPLY
    channel_data: int = DISC_CHANNEL_DATA
    channel_data_reply: int = DISC_CHANNEL_DATA_REPLY

    def __post_init__(self) -> None:
        for name, value in self.as_dict().items():
            if not 0 <= value <= 0xFF:
                raise ValueError(f"{name} discriminator must fit in a byte, got {value}")

    def reply_for(self, disc: int) -> int:
        if disc == self.mod_list:
            return self.mod_list_reply
        if disc == self.channel_data:
            return self.channel_data_reply
        return (disc + 1) & 0xFF

    def as_dict(self) -> dict[str, int]:
        return {
            "mod_list": self.mod_list,
            "mod_list_reply": self.mod_list_reply,
            "channel_data": self.channel_data,
            "channel_data_reply": self.channel_data_reply,
        }


DEFAULT_TABLE = DiscriminatorTable()


@dataclass(frozen=True, slots=True)
class ModEntry:
    id: str
    version: str


@dataclass(frozen=True, slots=True)
class ChannelEntry:
    id: str
    version: str
    required: bool = False


@dataclass(frozen=True, slots=True)
class HandshakeMessage:
    discriminator: int
    payload: bytes = b""

    @staticmethod
    def from_frame(raw: bytes) -> "HandshakeMessage":
        if not raw:
            raise ValueError("empty handshake frame")
        return HandshakeMessage(discriminator=raw[0], payload=bytes(raw[1:]))


class FieldReader:
    """Sequential reader that goes quiet at the first field it cannot decode.

    Every read returns ``None`` once the buffer has underrun, so a parser can
    keep the entries it already has and stop at the next ``None``.
    """

    def __init__(self, buf: bytes):
        self.buf = buf
        self.offset = 0
        self.exhausted = False

    def _read(self, decode) -> Optional[object]:
        if self.exhausted:
            return None
        try:
            value, self.offset = decode(self.buf, self.offset)
        except ValueError as e:
            logger.debug("handshake body stops at offset %d: %s", self.offset, e)
            self.exhausted = True
            return None
        return value

    def varint(self) -> Optional[int]:
        return self._read(decode_varint)  # type: ignore[return-value]

    def string(self) -> Optional[str]:
        return self._read(decode_string)  # type: ignore[return-value]

    def byte(self) -> Optional[int]:
        return self._read(decode_byte)  # type: ignore[return-value]


def _read_pairs(r: FieldReader) -> List[ModEntry]:
    out: List[ModEntry] = []
    count = r.varint()
    for _ in range(count or 0):
        entry_id = r.string()
        version = r.string()
        if entry_id is None or version is None:
            break
        out.append(ModEntry(entry_id, version))
    return out


def _write_pairs(entries) -> bytes:
    parts = [encode_varint(len(entries))]
    for e in entries:
        parts.append(encode_string(e.id))
        parts.append(encode_string(e.version))
    return b"".join(parts)


@dataclass(slots=True)
class ModList:
    mods: List[ModEntry] = field(default_factory=list)
    channels: List[ChannelEntry] = field(default_factory=list)
    complete: bool = True

    @staticmethod
    def parse(payload: bytes) -> "ModList":
        r = FieldReader(payload)
        mods = _read_pairs(r)
        channels: List[ChannelEntry] = []
        count = r.varint()
        for _ in range(count or 0):
            chan_id = r.string()
            version = r.string()
            required = r.byte()
            if chan_id is None or version is None or required is None:
                break
            channels.append(ChannelEntry(chan_id, version, required == 1))
        return ModList(mods=mods, channels=channels, complete=not r.exhausted)

    def to_bytes(self, disc: int) -> bytes:
        parts = [bytes([disc]), _write_pairs(self.mods), encode_varint(len(self.channels))]
        for ch in self.channels:
            parts.append(encode_string(ch.id))
            parts.append(encode_string(ch.version))
            parts.append(b"\x01" if ch.required else b"\x00")
        return b"".join(parts)


@dataclass(slots=True)
class ChannelData:
    channels: List[ModEntry] = field(default_factory=list)
    complete: bool = True

    @staticmethod
    def parse(payload: bytes) -> "ChannelData":
        r = FieldReader(payload)
        channels = _read_pairs(r)
        return ChannelData(channels=channels, complete=not r.exhausted)

    def to_bytes(self, disc: int) -> bytes:
        return bytes([disc]) + _write_pairs(self.channels)


def build_response(message: HandshakeMessage, table: DiscriminatorTable = DEFAULT_TABLE) -> bytes:
    disc = message.discriminator
    reply = table.reply_for(disc)

    if disc == table.mod_list:
        mod_list = ModList.parse(message.payload)
        if not mod_list.complete:
            logger.debug(
                "partial mod list; mirroring %d mods, %d channels",
                len(mod_list.mods),
                len(mod_list.channels),
            )
        return mod_list.to_bytes(reply)

    if disc == table.channel_data:
        data = ChannelData.parse(message.payload)
        if not data.complete:
            logger.debug("partial channel data; mirroring %d channels", len(data.channels))
        return data.to_bytes(reply)

    return bytes([reply, 0])


def build_response_frame(raw: bytes, table: DiscriminatorTable = DEFAULT_TABLE) -> bytes:
    """Answer a raw handshake frame; never raises."""
    if not raw:
        return FALLBACK_FRAME
    return build_response(HandshakeMessage.from_frame(raw), table)
