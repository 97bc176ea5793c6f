"""Polymarket Gamma API client for fetching market data."""

import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .models import MarketResolution, MarketSnapshot

logger = logging.getLogger(__name__)

GAMMA_API_URL = "https://gamma-api.polymarket.com"

# A resolved outcome trades at (or within a tick of) one dollar
WINNER_PRICE_THRESHOLD = Decimal("0.99")


class MarketDataError(Exception):
    """A market-data request that failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    return isinstance(exc, MarketDataError) and exc.retryable


def _json_list(value: Any) -> list:
    """Gamma sends outcome lists either as arrays or as JSON-encoded strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return []
        return decoded if isinstance(decoded, list) else []
    return []


def _price(value: Any) -> Decimal | None:
    """Parse a price in [0, 1]; anything else is treated as missing."""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        return None
    if not price.is_finite() or price < 0 or price > 1:
        return None
    return price


def _number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _parse_date(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _outcomes_and_prices(market: dict) -> tuple[list[str], list[Any]]:
    outcomes = _json_list(market.get("outcomes"))
    prices = _json_list(market.get("outcomePrices"))
    if not outcomes:
        tokens = market.get("tokens") or []
        outcomes = [t.get("outcome") for t in tokens if t.get("outcome")]
        prices = [t.get("price") for t in tokens if t.get("outcome")]
    return [str(o) for o in outcomes], prices


def simplify_market(market: dict) -> MarketSnapshot:
    """Normalise a raw Gamma market payload.

    Binary markets are exactly the Yes/No pair and keep only the YES price;
    every other outcome set becomes a multi-outcome price map.

    Args:
        market: Raw market dictionary from the API

    Returns:
        MarketSnapshot
    """
    outcomes, prices = _outcomes_and_prices(market)
    lowered = [o.lower() for o in outcomes]
    is_binary = len(outcomes) == 2 and "yes" in lowered and "no" in lowered

    current_price = None
    current_prices = None
    if is_binary:
        yes_index = lowered.index("yes")
        if yes_index < len(prices):
            current_price = _price(prices[yes_index])
    elif outcomes:
        price_map = {}
        for name, raw in zip(outcomes, prices):
            price = _price(raw)
            if price is not None:
                price_map[name] = price
        current_prices = price_map or None

    if market.get("resolved"):
        status = "resolved"
    elif market.get("closed"):
        status = "closed"
    else:
        status = "active"

    close_date = _parse_date(
        market.get("end_date_iso") or market.get("endDateIso") or market.get("endDate")
    )
    if close_date is None:
        logger.warning(f"Market {market.get('id')} has no close date")

    volume = _number(market.get("volumeNum"))
    if volume is None:
        volume = _number(market.get("volume"))

    return MarketSnapshot(
        external_id=str(market.get("id") or market.get("conditionId") or ""),
        question=market.get("question") or "Unknown question",
        description=market.get("description"),
        category=market.get("category"),
        slug=market.get("slug"),
        market_type="binary" if is_binary else "multi_outcome",
        status=status,
        current_price=current_price,
        current_prices=current_prices,
        outcomes=None if is_binary or not outcomes else outcomes,
        volume=volume,
        close_date=close_date,
        raw=market,
    )


def check_resolution(market: dict) -> MarketResolution:
    """Determine whether a market resolved and which outcome won.

    The winner comes from a token's ``winner`` flag, else from the outcome
    priced at 0.99 or more. A resolved market whose outcomes are all priced
    equally was voided and is reported as cancelled.

    Args:
        market: Raw market dictionary from the API

    Returns:
        MarketResolution
    """
    if not market.get("resolved"):
        return MarketResolution(resolved=False)

    for token in market.get("tokens") or []:
        if token.get("winner") is True and token.get("outcome"):
            return MarketResolution(resolved=True, winner=str(token["outcome"]).upper())

    outcomes, raw_prices = _outcomes_and_prices(market)
    prices = [_price(p) for p in raw_prices]

    for name, price in zip(outcomes, prices):
        if price is not None and price >= WINNER_PRICE_THRESHOLD:
            return MarketResolution(resolved=True, winner=name.upper())

    known = [p for p in prices if p is not None]
    if len(known) >= 2 and len(known) == len(outcomes) and len(set(known)) == 1:
        return MarketResolution(resolved=True, cancelled=True)

    logger.warning(f"Market {market.get('id')} is resolved but winner could not be determined")
    return MarketResolution(resolved=False)


class GammaClient:
    """Client for the Polymarket Gamma REST API."""

    def __init__(
        self,
        base_url: str = GAMMA_API_URL,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        session: requests.Session | None = None,
    ):
        """Initialize the Gamma client.

        Args:
            base_url: API host
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per request for transient failures
            retry_base_delay: Exponential backoff multiplier in seconds
            retry_max_delay: Backoff ceiling in seconds
            session: Optional pre-built HTTP session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.session = session or requests.Session()

    def _get(self, endpoint: str, params: dict | None = None) -> Any | None:
        """Make a GET request to the API.

        Args:
            endpoint: API endpoint path (without base URL).
            params: Optional query parameters.

        Returns:
            Decoded JSON, or None on 404.

        Raises:
            MarketDataError: If the request fails after retries.
        """
        url = f"{self.base_url}{endpoint}"
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_base_delay, max=self.retry_max_delay),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    response = self.session.get(
                        url,
                        params=params,
                        timeout=self.timeout,
                        headers={"Accept": "application/json"},
                    )
                    if response.status_code == 404:
                        return None
                    if response.status_code == 429 or response.status_code >= 500:
                        raise MarketDataError(
                            f"Gamma API error: {response.status_code}",
                            status_code=response.status_code,
                            retryable=True,
                        )
                    if response.status_code >= 400:
                        raise MarketDataError(
                            f"Gamma API error: {response.status_code}",
                            status_code=response.status_code,
                        )
                    try:
                        return response.json()
                    except ValueError as e:
                        raise MarketDataError(f"Malformed payload from {url}: {e}") from e
        except requests.RequestException as e:
            raise MarketDataError(f"Request to {url} failed: {e}") from e

    def fetch_top_markets(self, limit: int = 100, offset: int = 0) -> list[MarketSnapshot]:
        """Fetch open markets ordered by volume, highest first.

        Args:
            limit: Maximum number of markets
            offset: Pagination offset

        Returns:
            List of MarketSnapshot
        """
        params = {
            "limit": limit,
            "offset": offset,
            "active": "true",
            "closed": "false",
            "order": "volumeNum",  # numeric volume sorts correctly
            "ascending": "false",
        }
        data = self._get("/markets", params=params) or []
        raw_markets = data if isinstance(data, list) else data.get("markets", [])

        markets = [simplify_market(m) for m in raw_markets if isinstance(m, dict)]
        logger.info(f"Fetched {len(markets)} markets from Gamma")
        return markets

    def fetch_market(self, external_id: str) -> MarketSnapshot | None:
        """Fetch one market by its Gamma id; None if it does not exist."""
        data = self._get(f"/markets/{external_id}")
        if not isinstance(data, dict):
            return None
        return simplify_market(data)

    def fetch_resolution(self, external_id: str) -> MarketResolution | None:
        """Fetch one market and derive its resolution; None if it does not exist."""
        snapshot = self.fetch_market(external_id)
        if snapshot is None:
            return None
        return check_resolution(snapshot.raw)

    def close(self) -> None:
        self.session.close()
