"""
Quote stream client - connection engine.

Owns one transport for its whole life:
- Opens the websocket and runs the session handshake
- Subscribes/unsubscribes symbols
- Runs the receive loop: heartbeat echo, frame splitting, decoding,
  per-receive deduplication and dispatch to the quote callback
- Tears the connection down on the first fatal error and reports it once

State Machine:
    [CONNECTING] --open--> [HANDSHAKING] --handshake ok--> [STREAMING]
         |                       |                              |
         +-----------------------+--------> [CLOSED] <----------+

There is no reconnection. Once CLOSED, create a new client.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Iterable, Optional

from quotestream.codec import encode, split_frames
from quotestream.config import ClientConfig
from quotestream.decoder import DecoderStats, QuoteDecoder
from quotestream.errors import (
    DecodeError,
    FramingError,
    HandshakeError,
    PayloadError,
    QuoteStreamError,
    SendError,
    ServerError,
    TransportError,
)
from quotestream.handshake import perform_handshake
from quotestream.keepalive import respond_if_heartbeat
from quotestream.transport import AiohttpTransport, Transport
from quotestream.types import (
    ClientMetrics,
    ConnectionState,
    ErrorContext,
    MessageKind,
    OnErrorCallback,
    OnQuoteCallback,
    QuoteUpdate,
    SessionInfo,
)

logger = logging.getLogger(__name__)

FORCE_PERMISSION_FLAGS: dict[str, list[str]] = {"flags": ["force_permission"]}

Failure = tuple[QuoteStreamError, ErrorContext]


class QuoteClient:
    """
    Streaming quote client for a single connection.

    Callbacks are async and run on the receive task. A callback that
    raises is logged and does not affect the connection.

    Usage:
        async def on_quote(symbol: str, data: QuoteData) -> None:
            print(symbol, data.to_dict())

        async def on_error(error: QuoteStreamError, context: ErrorContext) -> None:
            print(f"{context.value}: {error}")

        client = await connect(on_quote, on_error, symbols=["OANDA:EURUSD"])
        await client.add_symbol("BINANCE:BTCUSDT")
        # ... later ...
        await client.close()
    """

    def __init__(
        self,
        on_quote: OnQuoteCallback,
        on_error: OnErrorCallback,
        *,
        config: Optional[ClientConfig] = None,
        transport: Optional[Transport] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize the client. Nothing is opened until start().

        Args:
            on_quote: Async callback (symbol, quote data) for each distinct update
            on_error: Async callback (error, context) for fatal errors
            config: Client configuration, defaults to ClientConfig()
            transport: Transport to use, defaults to an aiohttp websocket
            rng: Random source for the session id
        """
        self._config = config or ClientConfig()
        self._transport: Transport = transport or AiohttpTransport(self._config.connect_timeout_s)
        self._on_quote = on_quote
        self._on_error = on_error
        self._rng = rng
        self._name = self._config.name

        # State
        self._state = ConnectionState.CONNECTING
        self._session: Optional[SessionInfo] = None
        self._started = False
        self._closing = False
        self._shutdown_done = asyncio.Event()
        self._closed_event = asyncio.Event()

        # Components
        self._decoder = QuoteDecoder()
        self._metrics = ClientMetrics()

        # All writes go through this lock; the receive task is the only reader
        self._write_lock = asyncio.Lock()
        self._receive_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._closing or self._state == ConnectionState.CLOSED

    @property
    def session_id(self) -> Optional[str]:
        """Client generated quote session id, None before the handshake."""
        return self._session.session_id if self._session else None

    @property
    def session(self) -> Optional[SessionInfo]:
        return self._session

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    @property
    def decoder_stats(self) -> DecoderStats:
        return self._decoder.stats

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.debug(f"[{self._name}] State: {old_state.value} -> {new_state.value}")

    # --- Lifecycle ---

    async def start(self, symbols: Iterable[str] = ()) -> None:
        """
        Open the connection, run the handshake and subscribe initial symbols.

        The receive loop only starts once all of this succeeded.

        Raises:
            TransportError: If the websocket cannot be opened
            HandshakeError: If the session cannot be established
        """
        if self._started:
            logger.warning(f"[{self._name}] Cannot start from state: {self._state.value}")
            return
        self._started = True

        try:
            await self._transport.open(self._config.url, self._config.headers)
        except TransportError as e:
            await self._fail(e, ErrorContext.CONNECT)
            raise

        self._set_state(ConnectionState.HANDSHAKING)

        try:
            self._session = await perform_handshake(
                self._transport,
                self._send_command,
                auth_token=self._config.auth_token,
                rng=self._rng,
            )
            for symbol in symbols:
                try:
                    await self._send_command(*self._add_symbol_command(symbol))
                except TransportError as e:
                    raise HandshakeError(
                        f"Failed to subscribe {symbol}: {e}",
                        step="quote_add_symbols",
                    ) from e
        except HandshakeError as e:
            await self._fail(e, ErrorContext.HANDSHAKE)
            raise

        self._set_state(ConnectionState.STREAMING)
        self._receive_task = asyncio.create_task(
            self._receive_loop(), name=f"{self._name}_receive"
        )
        logger.info(f"[{self._name}] Streaming with session {self.session_id}")

    async def close(self) -> None:
        """
        Close the connection. Forcibly closes the transport, no draining.

        Idempotent. An explicit close is not reported to on_error. If a
        fatal error is already tearing the connection down, waits until the
        transport is closed.

        Raises:
            TransportError: If closing the transport failed
        """
        if self._closing:
            # Another close or a fatal error owns the teardown
            await self._shutdown_done.wait()
            return
        self._closing = True
        logger.info(f"[{self._name}] Closing connection")

        error = await self._shutdown()
        self._closed_event.set()
        logger.info(f"[{self._name}] Connection closed")
        if error is not None:
            raise error

    async def wait_closed(self) -> None:
        """Block until the connection is closed, explicitly or by an error."""
        await self._closed_event.wait()

    async def __aenter__(self) -> QuoteClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _shutdown(self) -> Optional[TransportError]:
        """Close the transport, mark CLOSED and stop the receive task."""
        close_error: Optional[TransportError] = None
        try:
            try:
                await self._transport.close()
            except TransportError as e:
                close_error = e
                logger.warning(f"[{self._name}] Transport close failed: {e}")
            finally:
                self._set_state(ConnectionState.CLOSED)

            task = self._receive_task
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            self._receive_task = None
        finally:
            self._shutdown_done.set()

        return close_error

    async def _fail(self, error: QuoteStreamError, context: ErrorContext) -> None:
        """Close first, then report a fatal error exactly once."""
        if self._closing:
            logger.debug(f"[{self._name}] Suppressing {context.value} error after close: {error}")
            return
        self._closing = True
        self._metrics.errors += 1
        logger.error(f"[{self._name}] Fatal {context.value} error: {error}")

        await self._shutdown()

        try:
            await self._on_error(error, context)
        except Exception as cb_err:
            logger.warning(f"[{self._name}] Error callback failed: {cb_err}", exc_info=True)
        finally:
            self._closed_event.set()

    # --- Subscriptions ---

    def _add_symbol_command(self, symbol: str) -> tuple[str, list[Any]]:
        return "quote_add_symbols", [self.session_id, symbol, FORCE_PERMISSION_FLAGS]

    def _remove_symbol_command(self, symbol: str) -> tuple[str, list[Any]]:
        return "quote_remove_symbols", [self.session_id, symbol]

    async def add_symbol(self, symbol: str) -> None:
        """
        Request quote updates for symbol. Repeated calls re-send the command.

        Raises:
            SendError: If the connection is closed or the write fails
        """
        await self._send(*self._add_symbol_command(symbol))

    async def remove_symbol(self, symbol: str) -> None:
        """
        Stop quote updates for symbol. Unknown symbols are not an error.

        Raises:
            SendError: If the connection is closed or the write fails
        """
        await self._send(*self._remove_symbol_command(symbol))

    # --- Writing ---

    async def _write(self, kind: MessageKind, data: bytes) -> None:
        async with self._write_lock:
            await self._transport.write_message(kind, data)

    async def _send_command(self, name: str, payload: Any) -> None:
        """Encode and write one command. Raises SendError."""
        frame = encode(name, payload)
        try:
            await self._write(MessageKind.TEXT, frame)
        except TransportError as e:
            raise SendError(
                f"Failed to send {name}: {e}",
                command=name,
                component="QuoteClient",
                details={"frame": frame.decode("utf-8", errors="replace")},
            ) from e
        self._metrics.commands_sent += 1

    async def _send(self, name: str, payload: Any) -> None:
        """Send a command on a streaming connection; a failed write is fatal."""
        if self.is_closed or self._state != ConnectionState.STREAMING:
            raise SendError(
                f"Cannot send {name}: connection is {self._state.value}",
                command=name,
                component="QuoteClient",
            )
        try:
            await self._send_command(name, payload)
        except SendError as e:
            await self._fail(e, ErrorContext.SEND)
            raise

    # --- Receiving ---

    async def _receive_loop(self) -> None:
        """Sole reader of the transport while STREAMING."""
        try:
            while self._state == ConnectionState.STREAMING and not self._closing:
                try:
                    kind, raw = await self._transport.read_message()
                except TransportError as e:
                    await self._fail(e, ErrorContext.READ)
                    return

                self._metrics.messages_received += 1

                if kind != MessageKind.TEXT:
                    logger.debug(f"[{self._name}] Ignoring {kind.value} message")
                    continue

                try:
                    if await respond_if_heartbeat(raw, self._write):
                        self._metrics.heartbeats_echoed += 1
                        continue
                except TransportError as e:
                    await self._fail(e, ErrorContext.KEEP_ALIVE)
                    return

                failure = await self._process_packet(raw)
                if failure is not None:
                    await self._fail(*failure)
                    return

        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] Receive loop cancelled")
            raise

    async def _process_packet(self, raw: bytes) -> Optional[Failure]:
        """
        Decode every frame of one receive, then dispatch.

        Updates decoded before a failing frame are still dispatched; the
        failure is returned for the caller to act on.
        """
        try:
            payloads = split_frames(raw)
        except FramingError as e:
            return e, ErrorContext.FRAMING

        updates, failure = self._decode_all(payloads)
        await self._dispatch(updates)
        return failure

    def _decode_all(self, payloads: list[bytes]) -> tuple[list[QuoteUpdate], Optional[Failure]]:
        updates: list[QuoteUpdate] = []
        for payload in payloads:
            try:
                update = self._decoder.decode(payload)
            except ServerError as e:
                return updates, (e, ErrorContext.SERVER)
            except PayloadError as e:
                return updates, (e, ErrorContext.PAYLOAD)
            except DecodeError as e:
                return updates, (e, ErrorContext.DECODE)

            self._metrics.frames_decoded += 1
            if update is None:
                self._metrics.messages_ignored += 1
                continue
            updates.append(update)

        return updates, None

    async def _dispatch(self, updates: list[QuoteUpdate]) -> None:
        """Deliver each distinct update of one receive, first occurrence wins."""
        seen: set[QuoteUpdate] = set()
        for update in updates:
            if update in seen:
                self._metrics.duplicates_dropped += 1
                continue
            seen.add(update)

            if self._closing:
                break

            try:
                await self._on_quote(update.symbol, update.data)
            except Exception as e:
                logger.error(
                    f"[{self._name}] Quote callback error for {update.symbol}: {e}",
                    exc_info=True,
                )
            self._metrics.quotes_dispatched += 1


async def connect(
    on_quote: OnQuoteCallback,
    on_error: OnErrorCallback,
    *,
    symbols: Iterable[str] = (),
    config: Optional[ClientConfig] = None,
    transport: Optional[Transport] = None,
    rng: Optional[random.Random] = None,
) -> QuoteClient:
    """
    Open a fully handshaken connection and start streaming.

    Raises:
        TransportError: If the websocket cannot be opened
        HandshakeError: If the session cannot be established
    """
    client = QuoteClient(on_quote, on_error, config=config, transport=transport, rng=rng)
    await client.start(symbols)
    return client
