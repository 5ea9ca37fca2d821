from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .constants import (
    DEFAULT_AUTH,
    DEFAULT_PORT,
    DEFAULT_RECONNECT_DELAY_S,
    DEFAULT_USERNAME,
    DEFAULT_VERSION,
)
from .handshake import DiscriminatorTable


@dataclass(frozen=True, slots=True)
class BotConfig:
    host: str
    port: int = DEFAULT_PORT
    username: str = DEFAULT_USERNAME
    version: str = DEFAULT_VERSION
    auth: str = DEFAULT_AUTH
    reconnect_delay_s: float = DEFAULT_RECONNECT_DELAY_S
    discriminators: DiscriminatorTable = field(default_factory=DiscriminatorTable)

    def validate(self) -> "BotConfig":
        if not self.host:
            raise ValueError("host must not be empty")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if not self.username:
            raise ValueError("username must not be empty")
        if self.reconnect_delay_s < 0:
            raise ValueError(f"reconnect delay must be >= 0, got {self.reconnect_delay_s}")
        return self

    def client_options(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "auth": self.auth,
            "version": self.version,
        }

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"
