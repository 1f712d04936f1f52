"""
Unit tests for the QuoteDecoder.
"""

import orjson
import pytest

from quotestream.decoder import QuoteDecoder, parse_quote_data
from quotestream.errors import DecodeError, PayloadError, ServerError
from quotestream.types import QuoteData, QuoteUpdate


def payload(data: dict) -> bytes:
    return orjson.dumps(data)


class TestQuoteDecoder:
    """Tests for QuoteDecoder.decode()."""

    @pytest.fixture
    def decoder(self) -> QuoteDecoder:
        return QuoteDecoder()

    def test_decode_price_only(self, decoder: QuoteDecoder) -> None:
        """Test a push that only carries the last price."""
        raw = b'{"m":"qsd","p":["s1",{"n":"OANDA:EURUSD","s":"ok","v":{"lp":1.23}}]}'

        update = decoder.decode(raw)

        assert update == QuoteUpdate("OANDA:EURUSD", QuoteData(price=1.23))
        assert update is not None
        assert update.data.volume is None
        assert update.data.bid is None
        assert update.data.ask is None

    def test_decode_all_fields(self, decoder: QuoteDecoder) -> None:
        raw = payload(
            {
                "m": "qsd",
                "p": [
                    "qs_abc",
                    {
                        "n": "BINANCE:BTCUSDT",
                        "s": "ok",
                        "v": {"lp": 43000.5, "volume": 1200, "bid": 42999.0, "ask": 43001.0},
                    },
                ],
            }
        )

        update = decoder.decode(raw)

        assert update is not None
        assert update.data == QuoteData(price=43000.5, volume=1200.0, bid=42999.0, ask=43001.0)
        assert isinstance(update.data.volume, float)

    def test_zero_is_not_absent(self, decoder: QuoteDecoder) -> None:
        """Test that a zero price is kept as a present value."""
        raw = payload({"m": "qsd", "p": ["s", {"n": "X", "s": "ok", "v": {"lp": 0}}]})

        update = decoder.decode(raw)

        assert update is not None
        assert update.data.price == 0.0
        assert update.data.changed_fields == ("price",)

    def test_unknown_fields_ignored(self, decoder: QuoteDecoder) -> None:
        raw = payload(
            {"m": "qsd", "p": ["s", {"n": "X", "s": "ok", "v": {"ch": 0.1, "chp": 2, "bid": 5}}]}
        )

        update = decoder.decode(raw)

        assert update is not None
        assert update.data == QuoteData(bid=5.0)

    def test_empty_values_object(self, decoder: QuoteDecoder) -> None:
        """Test that an empty "v" is a valid update with nothing changed."""
        raw = payload({"m": "qsd", "p": ["s", {"n": "X", "s": "ok", "v": {}}]})

        update = decoder.decode(raw)

        assert update is not None
        assert update.data.is_empty

    @pytest.mark.parametrize("name", ["quote_completed", "qsd_ack", "protocol_switched", ""])
    def test_non_quote_messages_ignored(self, decoder: QuoteDecoder, name: str) -> None:
        """Test that control acks are ignored, not errors."""
        raw = payload({"m": name, "p": ["qs_abc", "OANDA:EURUSD"]})

        assert decoder.decode(raw) is None
        assert decoder.stats.messages_ignored == 1

    @pytest.mark.parametrize("name", ["critical_error", "error"])
    def test_server_error(self, decoder: QuoteDecoder, name: str) -> None:
        raw = payload({"m": name, "p": ["qs_abc", "invalid_parameters"]})

        with pytest.raises(ServerError) as exc_info:
            decoder.decode(raw)

        assert exc_info.value.kind == name
        assert exc_info.value.payload == ["qs_abc", "invalid_parameters"]

    def test_invalid_json(self, decoder: QuoteDecoder) -> None:
        with pytest.raises(DecodeError):
            decoder.decode(b"not json")

    def test_status_not_ok(self, decoder: QuoteDecoder) -> None:
        """Test that a non-ok status is a PayloadError."""
        raw = payload({"m": "qsd", "p": ["s", {"n": "BAD:SYM", "s": "error", "v": {}}]})

        with pytest.raises(PayloadError) as exc_info:
            decoder.decode(raw)

        assert exc_info.value.details["status"] == "error"

    @pytest.mark.parametrize(
        "p",
        [
            None,
            "s1",
            ["s1"],
            ["s1", {"n": "X", "s": "ok", "v": {}}, "extra"],
            ["s1", "not an object"],
            ["s1", {"n": 42, "s": "ok", "v": {}}],
            ["s1", {"n": "X", "s": "ok", "v": [1, 2]}],
        ],
    )
    def test_payload_shape_mismatch(self, decoder: QuoteDecoder, p: object) -> None:
        raw = payload({"m": "qsd", "p": p})

        with pytest.raises(PayloadError):
            decoder.decode(raw)

    @pytest.mark.parametrize(
        "body",
        [
            {"n": "", "s": "ok", "v": {"lp": 1}},
            {"s": "ok", "v": {"lp": 1}},
            {"n": "X", "s": "ok", "v": None},
            {"n": "X", "s": "ok"},
            {"n": "X", "v": {"lp": 1}},
        ],
    )
    def test_missing_properties(self, decoder: QuoteDecoder, body: dict) -> None:
        raw = payload({"m": "qsd", "p": ["s1", body]})

        with pytest.raises(PayloadError):
            decoder.decode(raw)

    def test_stats(self, decoder: QuoteDecoder) -> None:
        decoder.decode(payload({"m": "qsd", "p": ["s", {"n": "X", "s": "ok", "v": {"lp": 1}}]}))
        decoder.decode(payload({"m": "quote_completed", "p": ["s", "X"]}))

        assert decoder.stats.payloads_received == 2
        assert decoder.stats.quotes_decoded == 1
        assert decoder.stats.by_message == {"qsd": 1, "quote_completed": 1}

        decoder.reset_stats()
        assert decoder.stats.payloads_received == 0


class TestParseQuoteData:
    """Tests for parse_quote_data()."""

    def test_null_is_absent(self) -> None:
        assert parse_quote_data({"lp": None, "ask": 2}) == QuoteData(ask=2.0)

    @pytest.mark.parametrize("value", ["1.5", True, [1], {"x": 1}])
    def test_non_numeric_rejected(self, value: object) -> None:
        with pytest.raises(PayloadError) as exc_info:
            parse_quote_data({"lp": value})
        assert exc_info.value.expected_type == "float"
