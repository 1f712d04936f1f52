"""
Shared fixtures for quotestream unit tests.
"""

import random
from typing import Any

import pytest

from quotestream.client import QuoteClient, connect

from .fixtures import HELLO, FakeTransport, Recorder, frame


@pytest.fixture
def transport() -> FakeTransport:
    """Transport whose first message is a valid server hello."""
    return FakeTransport(hello=frame(HELLO))


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_client(transport: FakeTransport, recorder: Recorder):
    """Factory that connects a client over the fake transport."""

    async def _make(**kwargs: Any) -> QuoteClient:
        kwargs.setdefault("rng", random.Random(7))
        return await connect(recorder.on_quote, recorder.on_error, transport=transport, **kwargs)

    return _make
