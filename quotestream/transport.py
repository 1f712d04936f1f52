"""
Transport port and its aiohttp websocket implementation.

The engine only needs a reliable, ordered, message-oriented pipe:
open, read one message, write one message, close. Anything that
satisfies the Transport protocol can be plugged in (tests use an
in-memory fake).
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Protocol

import aiohttp

from quotestream.errors import TransportError
from quotestream.types import MessageKind

logger = logging.getLogger(__name__)

# Upper bound on waiting for the peer's CLOSE reply; a stalled peer is cut off
CLOSE_TIMEOUT_S = 0.5


class Transport(Protocol):
    async def open(self, url: str, headers: Mapping[str, str]) -> None:
        """Establish the connection. Raises TransportError."""
        ...

    async def read_message(self) -> tuple[MessageKind, bytes]:
        """Block until one message arrives. Raises TransportError once closed."""
        ...

    async def write_message(self, kind: MessageKind, data: bytes) -> None:
        """Write one message. Raises TransportError."""
        ...

    async def close(self) -> None:
        """Close the connection, unblocking any pending read."""
        ...


class AiohttpTransport:
    """
    Websocket transport backed by aiohttp.

    Protocol-level ping/pong frames are answered by aiohttp (autoping).
    Application heartbeats travel as ordinary text messages and are left
    to the engine.
    """

    def __init__(self, connect_timeout_s: Optional[float] = None) -> None:
        self._connect_timeout_s = connect_timeout_s
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._url: Optional[str] = None

    async def open(self, url: str, headers: Mapping[str, str]) -> None:
        self._url = url
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=None, connect=self._connect_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

        logger.info(f"Connecting to {url}")
        try:
            self._ws = await self._session.ws_connect(
                url,
                headers=dict(headers),
                autoping=True,
                timeout=aiohttp.ClientWSTimeout(ws_receive=None, ws_close=CLOSE_TIMEOUT_S),
            )
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            await self._close_session()
            raise TransportError(f"Failed to connect: {e}", url=url, component="transport") from e

    async def read_message(self) -> tuple[MessageKind, bytes]:
        ws = self._ws
        if ws is None:
            raise TransportError("Transport is not open", url=self._url, component="transport")

        while True:
            try:
                msg = await ws.receive()
            except (aiohttp.ClientError, OSError, RuntimeError) as e:
                raise TransportError(f"Read failed: {e}", url=self._url, component="transport") from e

            if msg.type == aiohttp.WSMsgType.TEXT:
                return MessageKind.TEXT, msg.data.encode("utf-8")

            if msg.type == aiohttp.WSMsgType.BINARY:
                return MessageKind.BINARY, msg.data

            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                raise TransportError(
                    "Connection closed",
                    url=self._url,
                    component="transport",
                    details={"close_code": ws.close_code},
                )

            if msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(
                    f"Websocket error: {ws.exception()}",
                    url=self._url,
                    component="transport",
                )

            # PING/PONG when autoping is off; nothing to deliver
            logger.debug(f"Skipping websocket control message: {msg.type!r}")

    async def write_message(self, kind: MessageKind, data: bytes) -> None:
        if self._ws is None or self._ws.closed:
            raise TransportError("Transport is closed", url=self._url, component="transport")

        try:
            if kind == MessageKind.TEXT:
                await self._ws.send_str(data.decode("utf-8"))
            else:
                await self._ws.send_bytes(data)
        except (aiohttp.ClientError, OSError, RuntimeError) as e:
            raise TransportError(f"Write failed: {e}", url=self._url, component="transport") from e

    async def close(self) -> None:
        """
        Close without draining. The CLOSE frame is sent, but a peer that does
        not answer within CLOSE_TIMEOUT_S has its connection dropped.
        """
        try:
            if self._ws is not None and not self._ws.closed:
                await self._ws.close()
        except (aiohttp.ClientError, OSError, RuntimeError) as e:
            raise TransportError(f"Close failed: {e}", url=self._url, component="transport") from e
        finally:
            self._ws = None
            await self._close_session()

    async def _close_session(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
