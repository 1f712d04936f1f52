"""
Custom exceptions for the quote stream client.

Exception hierarchy:
- QuoteStreamError (base)
  - TransportError: open/read/write/close failures on the websocket
    - SendError: an outgoing command could not be written
  - FramingError: malformed length-prefixed frame
  - HandshakeError: session could not be established
  - DecodeError: payload is not a valid envelope
  - PayloadError: quote push has an unexpected shape or status
  - ServerError: remote side signalled error/critical_error
  - ConfigurationError: invalid client configuration

Every error except ConfigurationError is connection-fatal.
"""

from __future__ import annotations

from typing import Any, Optional, Union

# Raw message text kept in details is cut to this many characters
RAW_DETAIL_LIMIT = 200


def raw_excerpt(raw: Union[bytes, str]) -> str:
    """Printable, length-limited form of a raw message for error details."""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if len(text) > RAW_DETAIL_LIMIT:
        return text[:RAW_DETAIL_LIMIT] + "..."
    return text


class QuoteStreamError(Exception):
    """Base exception for all quote stream errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class TransportError(QuoteStreamError):
    """Raised when the underlying websocket fails or is closed."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.url = url
        details = details or {}
        if url:
            details["url"] = url
        super().__init__(message, component=component, details=details)


class SendError(TransportError):
    """Raised when an outgoing command cannot be written."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.command = command
        details = details or {}
        if command:
            details["command"] = command
        super().__init__(message, component=component, details=details)


class FramingError(QuoteStreamError):
    """Raised when a raw message cannot be split into frames."""

    def __init__(
        self,
        message: str,
        *,
        offset: Optional[int] = None,
        raw_data: Optional[bytes] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.offset = offset
        self.raw_data = raw_data
        details = details or {}
        if offset is not None:
            details["offset"] = offset
        if raw_data is not None:
            details["raw"] = raw_excerpt(raw_data)
        super().__init__(message, component=component, details=details)


class HandshakeError(QuoteStreamError):
    """Raised when the session setup sequence fails."""

    def __init__(
        self,
        message: str,
        *,
        step: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.step = step
        details = details or {}
        if step:
            details["step"] = step
        super().__init__(message, component=component, details=details)


class DecodeError(QuoteStreamError):
    """Raised when a frame payload is not a decodable envelope."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.raw_data = raw_data
        details = details or {}
        if raw_data is not None:
            details["raw"] = raw_excerpt(raw_data)
        super().__init__(message, component=component, details=details)


class PayloadError(DecodeError):
    """Raised when a quote push decodes but has the wrong shape or status."""

    def __init__(
        self,
        message: str,
        *,
        raw_data: Optional[str] = None,
        expected_type: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.expected_type = expected_type
        details = details or {}
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(message, raw_data=raw_data, component=component, details=details)


class ServerError(QuoteStreamError):
    """Raised when the server pushes an error or critical_error message."""

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[str] = None,
        payload: Any = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.kind = kind
        self.payload = payload
        details = details or {}
        if kind:
            details["kind"] = kind
        super().__init__(message, component=component, details=details)


class ConfigurationError(QuoteStreamError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
