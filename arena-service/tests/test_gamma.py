from datetime import datetime, timezone
from decimal import Decimal

import pytest
import requests

from polymarket_gamma import GammaClient, MarketDataError, check_resolution, simplify_market

BINARY = {
    "id": "512345",
    "question": "Will the Fed cut rates in March?",
    "category": "Economics",
    "outcomes": '["Yes", "No"]',
    "outcomePrices": '["0.65", "0.35"]',
    "volumeNum": 12345.5,
    "endDate": "2025-03-19T18:00:00Z",
    "active": True,
    "closed": False,
}

MULTI = {
    "id": "600001",
    "question": "Who will win the primary?",
    "outcomes": ["Alice", "Bob", "Carol"],
    "outcomePrices": ["0.5", "0.3", "0.2"],
    "volume": "999",
    "endDate": "2025-06-01T00:00:00Z",
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self.payload = payload
        self.bad_json = bad_json

    def json(self):
        if self.bad_json:
            raise ValueError("Expecting value")
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append((url, params))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


def _client(*responses):
    session = FakeSession(responses)
    client = GammaClient(
        base_url="https://gamma.example/",
        max_attempts=3,
        retry_base_delay=0,
        retry_max_delay=0,
        session=session,
    )
    return client, session


def test_simplify_binary_market():
    snapshot = simplify_market(BINARY)

    assert snapshot.external_id == "512345"
    assert snapshot.market_type == "binary"
    assert snapshot.status == "active"
    assert snapshot.current_price == Decimal("0.65")
    assert snapshot.current_prices is None
    assert snapshot.outcomes is None
    assert snapshot.volume == Decimal("12345.5")
    assert snapshot.close_date == datetime(2025, 3, 19, 18, 0, tzinfo=timezone.utc)
    assert snapshot.category == "Economics"


def test_simplify_multi_outcome_market():
    snapshot = simplify_market(MULTI)

    assert snapshot.market_type == "multi_outcome"
    assert snapshot.outcomes == ["Alice", "Bob", "Carol"]
    assert snapshot.current_prices == {
        "Alice": Decimal("0.5"),
        "Bob": Decimal("0.3"),
        "Carol": Decimal("0.2"),
    }
    assert snapshot.current_price is None
    assert snapshot.volume == Decimal("999")


def test_simplify_falls_back_to_tokens():
    payload = {
        "id": "1",
        "question": "Q?",
        "tokens": [{"outcome": "Yes", "price": 0.9}, {"outcome": "No", "price": 0.1}],
    }

    snapshot = simplify_market(payload)

    assert snapshot.market_type == "binary"
    assert snapshot.current_price == Decimal("0.9")
    assert snapshot.close_date is None


def test_simplify_status_and_bad_prices():
    closed = simplify_market({**BINARY, "closed": True})
    resolved = simplify_market({**BINARY, "closed": True, "resolved": True})
    bad_price = simplify_market({**BINARY, "outcomePrices": '["1.5", "-0.5"]'})

    assert closed.status == "closed"
    assert resolved.status == "resolved"
    assert bad_price.current_price is None


def test_unresolved_market():
    assert check_resolution(BINARY).resolved is False


def test_resolution_from_winner_flag():
    payload = {
        **BINARY,
        "resolved": True,
        "tokens": [{"outcome": "Yes", "winner": False}, {"outcome": "No", "winner": True}],
    }

    resolution = check_resolution(payload)

    assert resolution.resolved is True
    assert resolution.winner == "NO"
    assert resolution.cancelled is False


def test_resolution_from_settled_price():
    payload = {**MULTI, "resolved": True, "outcomePrices": ["0", "0.995", "0.005"]}

    assert check_resolution(payload).winner == "BOB"


def test_equal_prices_mean_cancelled():
    payload = {**BINARY, "resolved": True, "outcomePrices": '["0.5", "0.5"]'}

    resolution = check_resolution(payload)

    assert resolution.resolved is True
    assert resolution.cancelled is True
    assert resolution.winner is None


def test_resolved_without_clear_winner_is_pending():
    payload = {**BINARY, "resolved": True, "outcomePrices": '["0.6", "0.4"]'}

    assert check_resolution(payload).resolved is False


def test_fetch_top_markets_query():
    client, session = _client(FakeResponse(payload=[BINARY, MULTI]))

    markets = client.fetch_top_markets(limit=2)

    assert [m.external_id for m in markets] == ["512345", "600001"]
    url, params = session.calls[0]
    assert url == "https://gamma.example/markets"
    assert params["order"] == "volumeNum"
    assert params["ascending"] == "false"
    assert params["closed"] == "false"
    assert params["limit"] == 2


def test_fetch_market_not_found():
    client, _ = _client(FakeResponse(status_code=404))

    assert client.fetch_market("missing") is None


def test_transient_errors_are_retried():
    client, session = _client(
        FakeResponse(status_code=503),
        requests.ConnectionError("reset"),
        FakeResponse(payload={**BINARY, "resolved": True, "outcomePrices": '["1", "0"]'}),
    )

    resolution = client.fetch_resolution("512345")

    assert len(session.calls) == 3
    assert resolution.winner == "YES"


def test_retries_exhausted():
    client, session = _client(*[FakeResponse(status_code=429)] * 3)

    with pytest.raises(MarketDataError) as excinfo:
        client.fetch_market("512345")

    assert excinfo.value.status_code == 429
    assert len(session.calls) == 3


def test_connection_errors_are_wrapped():
    client, _ = _client(*[requests.Timeout("slow")] * 3)

    with pytest.raises(MarketDataError):
        client.fetch_top_markets()


def test_client_errors_are_not_retried():
    client, session = _client(FakeResponse(status_code=403), FakeResponse(payload=BINARY))

    with pytest.raises(MarketDataError) as excinfo:
        client.fetch_market("512345")

    assert excinfo.value.retryable is False
    assert len(session.calls) == 1


def test_malformed_payload():
    client, _ = _client(FakeResponse(bad_json=True))

    with pytest.raises(MarketDataError):
        client.fetch_market("512345")


def test_close_closes_session():
    client, session = _client()

    client.close()

    assert session.closed
