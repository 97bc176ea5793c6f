"""Decision parser for model responses.

Turns raw model output into a validated BET / SELL / HOLD instruction, or an
ERROR carrying the reason. Handles the usual response noise: markdown code
fences, wrapping quotes, and JSON embedded in surrounding prose.

``parse_decision`` is a pure function of its arguments.
"""

import json
import re
from bisect import bisect_left
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from .models import BetInstruction, DecisionAction, SellInstruction

SYSTEM_DEFAULT_PREFIX = "[SYSTEM DEFAULT]"

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_ACTION_KEY = re.compile(r'"action"\s*:')


@dataclass
class ParsedDecision:
    """Result of parsing one model response."""
    action: DecisionAction
    reasoning: str = ""
    bets: list[BetInstruction] = field(default_factory=list)
    sells: list[SellInstruction] = field(default_factory=list)
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.action != DecisionAction.ERROR

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form stored on the decision log."""
        data: dict[str, Any] = {"action": self.action.value, "reasoning": self.reasoning}
        if self.bets:
            data["bets"] = [
                {"market_id": b.market_id, "side": b.side, "amount": float(b.amount)}
                for b in self.bets
            ]
        if self.sells:
            data["sells"] = [
                {"position_id": s.position_id, "percentage": float(s.percentage)}
                for s in self.sells
            ]
        if self.error:
            data["error"] = self.error
        return data


def default_hold(reason: str) -> ParsedDecision:
    """A system-generated HOLD used when no valid decision could be obtained."""
    return ParsedDecision(
        action=DecisionAction.HOLD,
        reasoning=f"{SYSTEM_DEFAULT_PREFIX} {reason}",
    )


def _error(message: str, reasoning: str = "") -> ParsedDecision:
    return ParsedDecision(action=DecisionAction.ERROR, reasoning=reasoning, error=message)


def extract_json_object(text: str) -> str | None:
    """Find the earliest-starting balanced ``{...}`` span in ``text`` that has an ``action`` key.

    One pass over the text with a stack of open braces, so prose littered
    with unclosed braces stays linear. Braces inside JSON string literals are
    ignored; quotes outside any object are treated as prose.
    """
    key_starts = []
    key_ends = []
    for match in _ACTION_KEY.finditer(text):
        key_starts.append(match.start())
        key_ends.append(match.end())
    if not key_starts:
        return None

    best: tuple[int, int] | None = None
    open_braces: list[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and open_braces:
            in_string = True
        elif ch == "{":
            open_braces.append(i)
        elif ch == "}" and open_braces:
            start = open_braces.pop()
            k = bisect_left(key_starts, start)
            if k < len(key_starts) and key_ends[k] <= i + 1:
                if best is None or start < best[0]:
                    best = (start, i + 1)

    if best is None:
        return None
    return text[best[0]:best[1]]


def clean_response(raw_response: str) -> str:
    """Strip code fences and wrapping quotes, and dig out embedded JSON.

    Args:
        raw_response: Raw text returned by the model

    Returns:
        Text that should be a single JSON object
    """
    cleaned = raw_response.strip()

    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned).strip()

    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in ("'", '"'):
        cleaned = cleaned[1:-1].strip()

    if not cleaned.startswith("{"):
        embedded = extract_json_object(cleaned)
        if embedded is not None:
            cleaned = embedded

    return cleaned.strip()


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false is never a quantity
    if isinstance(value, bool):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    return isinstance(value, int)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _validate_bet(
    bet: Any,
    cash_balance: Decimal | None,
    min_bet: Decimal,
    max_bet_fraction: Decimal,
) -> str | None:
    if not isinstance(bet, dict):
        return "bet must be an object"
    if not _non_empty_str(bet.get("market_id")):
        return "missing market_id"
    if not _non_empty_str(bet.get("side")):
        return "missing side"

    amount = bet.get("amount")
    if not _is_number(amount):
        return "invalid amount"
    amount = Decimal(amount)

    if amount < min_bet:
        return f"amount ${amount} is below minimum ${min_bet}"
    if cash_balance is not None:
        max_bet = cash_balance * max_bet_fraction
        if amount > max_bet:
            return f"amount ${amount} exceeds maximum ${max_bet:.2f}"
    return None


def _validate_sell(sell: Any) -> str | None:
    if not isinstance(sell, dict):
        return "sell must be an object"
    if not _non_empty_str(sell.get("position_id")):
        return "missing position_id"

    percentage = sell.get("percentage")
    if not _is_number(percentage):
        return "invalid percentage"
    if not Decimal(1) <= Decimal(percentage) <= Decimal(100):
        return f"percentage must be 1-100, got {percentage}"
    return None


def parse_decision(
    raw_response: str,
    cash_balance: Decimal | None = None,
    min_bet: Decimal = Decimal("50"),
    max_bet_fraction: Decimal = Decimal("0.25"),
) -> ParsedDecision:
    """Parse a model response into a decision.

    Args:
        raw_response: Raw text returned by the model
        cash_balance: Agent's cash, bounding bet size (None disables the upper bound)
        min_bet: Minimum bet amount
        max_bet_fraction: Maximum bet as a fraction of cash

    Returns:
        ParsedDecision; ``action`` is ERROR with ``error`` set on any violation
    """
    cleaned = clean_response(raw_response or "")

    try:
        parsed = json.loads(
            cleaned,
            parse_float=Decimal,
            parse_int=Decimal,
            parse_constant=Decimal,
        )
    except (ValueError, RecursionError) as e:
        # JSONDecodeError is a ValueError; pathological nesting exhausts the decoder's stack
        return _error(f"JSON parse error: {e}")

    if not isinstance(parsed, dict):
        return _error("Response is not a JSON object")

    action_raw = parsed.get("action")
    if not _non_empty_str(action_raw):
        return _error("Missing action field")

    reasoning = parsed.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        return _error("Missing or invalid reasoning field")

    action = action_raw.strip().upper()

    if action == DecisionAction.BET.value:
        raw_bets = parsed.get("bets")
        if not isinstance(raw_bets, list) or not raw_bets:
            return _error("BET action requires non-empty bets array", reasoning)

        bets = []
        for index, bet in enumerate(raw_bets, start=1):
            problem = _validate_bet(bet, cash_balance, min_bet, max_bet_fraction)
            if problem:
                return _error(f"Invalid bet #{index}: {problem}", reasoning)
            bets.append(
                BetInstruction(
                    market_id=bet["market_id"].strip(),
                    side=bet["side"].strip(),  # case kept for outcome names
                    amount=Decimal(bet["amount"]),
                )
            )
        return ParsedDecision(action=DecisionAction.BET, reasoning=reasoning, bets=bets)

    if action == DecisionAction.SELL.value:
        raw_sells = parsed.get("sells")
        if not isinstance(raw_sells, list) or not raw_sells:
            return _error("SELL action requires non-empty sells array", reasoning)

        sells = []
        for index, sell in enumerate(raw_sells, start=1):
            problem = _validate_sell(sell)
            if problem:
                return _error(f"Invalid sell #{index}: {problem}", reasoning)
            sells.append(
                SellInstruction(
                    position_id=sell["position_id"].strip(),
                    percentage=Decimal(sell["percentage"]),
                )
            )
        return ParsedDecision(action=DecisionAction.SELL, reasoning=reasoning, sells=sells)

    if action == DecisionAction.HOLD.value:
        return ParsedDecision(action=DecisionAction.HOLD, reasoning=reasoning)

    return _error(f"Invalid action: {action_raw}", reasoning)
