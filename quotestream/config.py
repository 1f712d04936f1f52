"""
Configuration for the quote stream client.

ClientConfig is the immutable runtime configuration. ClientConfigLoader reads
the same settings from a TOML file:

    [client]
    url = "wss://data.tradingview.com/socket.io/websocket"
    connect_timeout_s = 10.0
    symbols = ["OANDA:EURUSD", "BINANCE:BTCUSDT"]

    [client.headers]
    Origin = "https://www.tradingview.com"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from quotestream.errors import ConfigurationError

DEFAULT_URL = "wss://data.tradingview.com/socket.io/websocket"

ANONYMOUS_AUTH_TOKEN = "unauthorized_user_token"

# The service rejects clients that do not look like the web app
DEFAULT_HEADERS: dict[str, str] = {
    "Accept-Encoding": "gzip, deflate, br",
    "Accept-Language": "en-US,en;q=0.9,es;q=0.8",
    "Cache-Control": "no-cache",
    "Host": "data.tradingview.com",
    "Origin": "https://www.tradingview.com",
    "Pragma": "no-cache",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/86.0.4240.193 Safari/537.36"
    ),
}


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for a single quote stream connection."""

    url: str = DEFAULT_URL
    headers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))
    auth_token: str = ANONYMOUS_AUTH_TOKEN

    # Only bounds opening the websocket. Handshake and reads never time out.
    connect_timeout_s: Optional[float] = None

    # Used as the log prefix
    name: str = "quotestream"

    def __post_init__(self) -> None:
        if not self.url.startswith(("ws://", "wss://")):
            raise ConfigurationError(
                "url must be a ws:// or wss:// URL",
                field="url",
                value=self.url,
            )
        if not self.auth_token:
            raise ConfigurationError("auth_token must not be empty", field="auth_token")
        if self.connect_timeout_s is not None and self.connect_timeout_s <= 0:
            raise ConfigurationError(
                "connect_timeout_s must be positive",
                field="connect_timeout_s",
                value=self.connect_timeout_s,
            )


class ClientSettings(BaseModel):
    """File-level settings, validated before building a ClientConfig."""

    url: str = DEFAULT_URL
    headers: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))
    auth_token: str = ANONYMOUS_AUTH_TOKEN
    connect_timeout_s: Optional[float] = None
    name: str = "quotestream"
    symbols: list[str] = Field(default_factory=list)

    def to_config(self) -> ClientConfig:
        return ClientConfig(
            url=self.url,
            headers=dict(self.headers),
            auth_token=self.auth_token,
            connect_timeout_s=self.connect_timeout_s,
            name=self.name,
        )


class ClientConfigLoader:
    """
    Config-loader; loading the [client] table of a toml file.
    """

    def __init__(self, base_dir: str = ".") -> None:
        self._base_dir = base_dir

    def load(self, file_name: str) -> ClientSettings:
        path = Path(file_name)
        if not path.is_absolute():
            path = Path(self._base_dir) / file_name

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

        try:
            return ClientSettings.model_validate(data.get("client", {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid client settings in {path}: {e}") from e

    def load_config(self, file_name: str) -> ClientConfig:
        return self.load(file_name).to_config()
