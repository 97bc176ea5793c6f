"""Prompt templates for agent decisions.

The system prompt is rendered from the benchmark rules only, so every model in
a cohort receives byte-identical text. The user prompt carries the agent's
portfolio and the markets on offer.
"""

import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from . import scoring
from .models import Agent, Market, Position, side_from_label
from .pricing import side_price, valuation_price, yes_price

RETRY_EXCERPT_CHARS = 500


SYSTEM_PROMPT_TEMPLATE = """You are an AI forecaster participating in Forecaster Arena ({methodology_version}), a benchmark that tests AI prediction capabilities on real-world events using Polymarket prediction markets.

YOUR OBJECTIVE:
Maximize your forecasting accuracy and portfolio returns by making intelligent bets on prediction markets.

DECISION FORMAT:
You must respond with valid JSON in exactly one of these formats:

FOR PLACING BETS:
{{
  "action": "BET",
  "bets": [
    {{
      "market_id": "uuid",
      "side": "YES" or "NO" (for binary markets) OR outcome name (for multi-outcome markets),
      "amount": 500.00
    }}
  ],
  "reasoning": "Your detailed reasoning"
}}

MARKET TYPES:
- Binary markets: Use "YES" or "NO" as the side
- Multi-outcome markets: Use the exact outcome name as the side (e.g., "Trump", "Harris", "Other")
  Multi-outcome markets show outcomes and prices like: Outcomes: ["Trump", "Harris"] Prices: {{"Trump": 0.55, "Harris": 0.45}}

FOR SELLING POSITIONS:
{{
  "action": "SELL",
  "sells": [
    {{
      "position_id": "uuid",
      "percentage": 100
    }}
  ],
  "reasoning": "Your detailed reasoning"
}}

FOR HOLDING:
{{
  "action": "HOLD",
  "reasoning": "Your detailed reasoning"
}}

RULES:
1. Minimum bet: ${min_bet}
2. Maximum bet: {max_bet_percent}% of your current cash balance
3. One position per market per side
4. You can make multiple bets/sells in one decision
5. Bet size reflects confidence: larger bet = higher implied confidence

SCORING:
- Brier Score: Measures forecast accuracy (lower is better)
- Implied confidence = bet_amount / max_possible_bet
- A max bet ({max_bet_percent}% of balance) = 100% confidence
- Portfolio P/L also tracked

RESPOND WITH VALID JSON ONLY. No markdown, no explanation outside the JSON."""


def _plain(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros (50, 0.5, 25)."""
    return format(value.normalize(), "f")


def build_system_prompt(
    min_bet: Decimal,
    max_bet_fraction: Decimal,
    methodology_version: str,
) -> str:
    """Render the rules prompt shared by every model.

    Args:
        min_bet: Minimum bet in dollars
        max_bet_fraction: Maximum bet as a fraction of cash
        methodology_version: Benchmark rules version

    Returns:
        System prompt text
    """
    return SYSTEM_PROMPT_TEMPLATE.format(
        methodology_version=methodology_version,
        min_bet=_plain(min_bet),
        max_bet_percent=_plain(max_bet_fraction * 100),
    )


@dataclass
class PositionView:
    """An open position joined with its market for display."""
    position: Position
    market: Market

    @property
    def current_price(self) -> Decimal:
        return side_price(self.market, side_from_label(self.position.side))

    @property
    def current_value(self) -> Decimal:
        if self.position.current_value is not None:
            return self.position.current_value
        side = side_from_label(self.position.side)
        return scoring.position_value(
            self.position.shares, side, valuation_price(self.market, side)
        )


def _pct(price: Decimal) -> str:
    return f"{price * 100:.1f}%"


def _format_market(market: Market) -> str:
    lines = [
        f"- ID: {market.id}",
        f'  Question: "{market.question}"',
        f"  Category: {market.category or 'General'}",
    ]
    if market.is_binary or not market.current_prices:
        price = yes_price(market)
        lines.append("  Type: Binary (YES/NO)")
        lines.append(f"  Prices: {_pct(price)} YES / {_pct(1 - price)} NO")
    else:
        prices = {name: float(value) for name, value in market.current_prices.items()}
        lines.append("  Type: Multi-outcome")
        lines.append(f"  Outcomes: {json.dumps(market.outcomes or list(prices))}")
        lines.append(f"  Prices: {json.dumps(prices)}")

    volume = f"${market.volume:,.0f}" if market.volume is not None else "N/A"
    closes = market.close_date.date().isoformat() if market.close_date else "N/A"
    lines.append(f"  Volume: {volume}")
    lines.append(f"  Closes: {closes}")
    return "\n".join(lines)


def build_user_prompt(
    agent: Agent,
    positions: list[PositionView],
    markets: list[Market],
    decision_week: int,
    initial_balance: Decimal,
    max_bet_fraction: Decimal,
    today: date,
) -> str:
    """Build the per-agent prompt with portfolio state and market data.

    Args:
        agent: Current agent state
        positions: Open positions joined with their markets
        markets: Markets available to bet on
        decision_week: Week number within the cohort (1-based)
        initial_balance: The cohort's starting balance
        max_bet_fraction: Maximum bet as a fraction of cash
        today: Current date

    Returns:
        User prompt text
    """
    max_bet = agent.cash_balance * max_bet_fraction
    positions_value = sum((p.current_value for p in positions), Decimal("0"))
    total = scoring.total_value(agent.cash_balance, positions_value)
    pnl = scoring.total_pnl(total, initial_balance)
    pnl_pct = scoring.pnl_percent(pnl, initial_balance)
    sign = "+" if pnl >= 0 else ""

    sections = [
        f"CURRENT DATE: {today.isoformat()}\n"
        f"DECISION WEEK: {decision_week}\n"
        "\n"
        "YOUR PORTFOLIO:\n"
        f"- Cash Balance: ${agent.cash_balance:.2f}\n"
        f"- Maximum Bet Size: ${max_bet:.2f} ({_plain(max_bet_fraction * 100)}% of cash)\n"
        f"- Positions Value: ${positions_value:.2f}\n"
        f"- Total Portfolio: ${total:.2f}\n"
        f"- P/L: ${pnl:.2f} ({sign}{pnl_pct:.2f}%)"
    ]

    if positions:
        lines = ["YOUR CURRENT POSITIONS:"]
        for view in positions:
            pos = view.position
            value = view.current_value
            lines.append(
                f"- ID: {pos.id}\n"
                f'  Market: "{view.market.question}"\n'
                f"  Side: {pos.side} | Shares: {pos.shares:.2f}\n"
                f"  Entry: {_pct(pos.avg_entry_price)} | Current: {_pct(view.current_price)}\n"
                f"  Value: ${value:.2f} | P/L: ${value - pos.total_cost:.2f}"
            )
        sections.append("\n".join(lines))
    else:
        sections.append("YOUR CURRENT POSITIONS: None")

    market_lines = [f"AVAILABLE MARKETS (Top {len(markets)} by volume):"]
    market_lines.extend(_format_market(m) for m in markets)
    sections.append("\n".join(market_lines))

    sections.append("What is your decision? Respond with valid JSON only.")
    return "\n\n".join(sections)


def build_retry_prompt(original_prompt: str, previous_response: str, error: str) -> str:
    """Amend the user prompt after an invalid response.

    Args:
        original_prompt: The user prompt that produced the invalid response
        previous_response: The invalid response text
        error: Why it was rejected

    Returns:
        Prompt for the single retry
    """
    excerpt = previous_response[:RETRY_EXCERPT_CHARS]
    if len(previous_response) > RETRY_EXCERPT_CHARS:
        excerpt += "..."

    return (
        f"{original_prompt}\n\n"
        "---\n"
        "PREVIOUS RESPONSE WAS INVALID:\n"
        f"Error: {error}\n\n"
        f"Your response: {excerpt}\n\n"
        "Please respond with VALID JSON only. No markdown code blocks, "
        "no explanation text - just the JSON object."
    )
