"""
Shared test helpers: wire frame builders, an in-memory transport and a
callback recorder.
"""

import asyncio
from typing import Any, Optional, Union

import orjson

from quotestream.codec import split_frames, wrap
from quotestream.errors import QuoteStreamError, TransportError
from quotestream.types import ErrorContext, MessageKind, QuoteData

HELLO = {
    "session_id": "<0.17204.1299>_sfo-charts-10-webchart-9@sfo-compute-10_x",
    "timestamp": 1700000000,
    "release": "registry.xtools.tv/tvbs_release/webchart:release_206-21",
    "protocol": "json",
}


def frame(data: Union[bytes, str, dict[str, Any]]) -> bytes:
    """Wrap a payload (bytes, text or JSON object) in a wire frame."""
    if isinstance(data, dict):
        body = orjson.dumps(data)
    elif isinstance(data, str):
        body = data.encode("utf-8")
    else:
        body = data
    return wrap(body)


def qsd(symbol: str, values: Any, status: str = "ok") -> dict[str, Any]:
    return {"m": "qsd", "p": ["qs_test", {"n": symbol, "s": status, "v": values}]}


class FakeTransport:
    """In-memory Transport. Tests push incoming messages and inspect writes."""

    def __init__(self, hello: Optional[bytes] = None) -> None:
        self.incoming: asyncio.Queue[Union[tuple[MessageKind, bytes], Exception]] = asyncio.Queue()
        self.sent: list[tuple[MessageKind, bytes]] = []
        self.opened_with: Optional[tuple[str, dict[str, str]]] = None
        self.open_error: Optional[Exception] = None
        self.max_writes: Optional[int] = None
        self.close_calls = 0
        self.closed = False
        self._heartbeat_seq = 0
        if hello is not None:
            self.push(hello)

    async def open(self, url: str, headers: Any) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened_with = (url, dict(headers))

    async def read_message(self) -> tuple[MessageKind, bytes]:
        if self.closed:
            raise TransportError("Connection closed")
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def write_message(self, kind: MessageKind, data: bytes) -> None:
        if self.closed:
            raise TransportError("Transport is closed")
        if self.max_writes is not None and len(self.sent) >= self.max_writes:
            raise TransportError("Write failed")
        self.sent.append((kind, data))

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self.incoming.put_nowait(TransportError("Connection closed"))

    def push(self, raw: Union[bytes, str], kind: MessageKind = MessageKind.TEXT) -> None:
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        self.incoming.put_nowait((kind, raw))

    def push_error(self, error: Exception) -> None:
        self.incoming.put_nowait(error)

    def sent_envelopes(self) -> list[dict[str, Any]]:
        """Decoded JSON of every non-heartbeat frame written so far."""
        envelopes = []
        for _, raw in self.sent:
            for payload in split_frames(raw):
                if not payload.startswith(b"~"):
                    envelopes.append(orjson.loads(payload))
        return envelopes

    async def flush(self, timeout: float = 1.0) -> None:
        """Push a heartbeat and wait for its echo, so earlier messages are processed."""
        self._heartbeat_seq += 1
        beat = frame(f"~h~{self._heartbeat_seq}")
        self.push(beat)

        async def _echoed() -> None:
            while (MessageKind.TEXT, beat) not in self.sent:
                await asyncio.sleep(0.001)

        await asyncio.wait_for(_echoed(), timeout)


class Recorder:
    """Collects callback invocations."""

    def __init__(self) -> None:
        self.quotes: list[tuple[str, QuoteData]] = []
        self.errors: list[tuple[QuoteStreamError, ErrorContext]] = []

    async def on_quote(self, symbol: str, data: QuoteData) -> None:
        self.quotes.append((symbol, data))

    async def on_error(self, error: QuoteStreamError, context: ErrorContext) -> None:
        self.errors.append((error, context))
