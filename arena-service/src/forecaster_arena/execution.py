"""Execution Engine for the Forecaster Arena.

This module applies validated instructions to an agent's ledger:
- BUY: open or average into a position, debit cash, credit invested capital
- SELL: reduce or close a position, credit proceeds, release cost basis

Every execution is one atomic ledger unit (balance, position and trade
together). Single-instruction methods raise ``ExecutionError`` subclasses;
list methods turn those into per-instruction results.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from . import scoring
from .errors import (
    AgentBankrupt,
    AgentNotFound,
    BetExceedsMax,
    CohortClosed,
    ExecutionError,
    InsufficientBalance,
    InvalidPrice,
    MarketNotActive,
    MarketNotFound,
    PositionNotFound,
    PositionNotOpen,
    PositionNotOwned,
)
from .models import (
    Agent,
    AgentStatus,
    BetInstruction,
    CohortStatus,
    MarketStatus,
    PositionStatus,
    SellInstruction,
    Trade,
    TradeType,
    side_from_label,
    side_label,
)
from .pricing import resolve_side, side_price
from .storage import LedgerStore, utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class BetResult:
    """Result of one bet in a list."""
    success: bool
    market_id: str
    side: str
    amount: Decimal
    trade_id: str | None = None
    position_id: str | None = None
    shares: Decimal | None = None
    price: Decimal | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass
class SellResult:
    """Result of one sell in a list."""
    success: bool
    position_id: str
    percentage: Decimal
    trade_id: str | None = None
    shares_sold: Decimal | None = None
    proceeds: Decimal | None = None
    realized_pnl: Decimal | None = None
    error: str | None = None
    error_code: str | None = None


class ExecutionEngine:
    """Applies bets and sells against the ledger."""

    def __init__(self, store: LedgerStore, max_bet_fraction: Decimal = Decimal("0.25")):
        """Initialize the execution engine.

        Args:
            store: Ledger store
            max_bet_fraction: Maximum bet as a fraction of cash
        """
        self.store = store
        self.max_bet_fraction = max_bet_fraction

    def _load_tradable_agent(self, agent_id: str) -> Agent:
        agent = self.store.get_agent(agent_id)
        if agent is None:
            raise AgentNotFound(f"Agent {agent_id} not found")

        cohort = self.store.get_cohort(agent.cohort_id)
        if cohort is not None and cohort.status == CohortStatus.COMPLETED:
            raise CohortClosed(f"Cohort {cohort.cohort_number} is completed")
        return agent

    def execute_bet(
        self,
        agent_id: str,
        bet: BetInstruction,
        decision_id: str | None = None,
    ) -> Trade:
        """Place one bet.

        Args:
            agent_id: Agent placing the bet
            bet: Validated bet instruction
            decision_id: Decision that produced the bet

        Returns:
            The BUY trade

        Raises:
            ExecutionError: If any precondition fails; nothing is written
        """
        with self.store.transaction():
            agent = self._load_tradable_agent(agent_id)
            if agent.status == AgentStatus.BANKRUPT:
                raise AgentBankrupt(f"Agent {agent_id} is bankrupt")

            market = self.store.get_market(bet.market_id)
            if market is None:
                raise MarketNotFound(f"Market {bet.market_id} not found")
            if market.status != MarketStatus.ACTIVE:
                raise MarketNotActive(f"Market is {market.status.value}")

            side = resolve_side(market, bet.side)
            label = side_label(side)

            max_bet = agent.cash_balance * self.max_bet_fraction
            if bet.amount > max_bet:
                raise BetExceedsMax(f"Bet ${bet.amount} exceeds max (${max_bet:.2f})")
            if bet.amount > agent.cash_balance:
                raise InsufficientBalance(
                    f"Bet ${bet.amount} exceeds cash balance ${agent.cash_balance:.2f}"
                )

            price = side_price(market, side)
            if price <= 0 or price >= 1:
                raise InvalidPrice(f"Cannot buy {label} at price {price}")

            shares = bet.amount / price
            confidence = scoring.implied_confidence(
                bet.amount, agent.cash_balance, self.max_bet_fraction
            )

            position = self.store.find_open_position(agent_id, market.id, label)
            if position is None:
                position = self.store.create_position(
                    agent_id=agent_id,
                    market_id=market.id,
                    side=label,
                    shares=shares,
                    avg_entry_price=price,
                    total_cost=bet.amount,
                )
            else:
                new_shares = position.shares + shares
                position.avg_entry_price = (
                    position.shares * position.avg_entry_price + shares * price
                ) / new_shares
                position.shares = new_shares
                position.total_cost += bet.amount
                self.store.save_position(position)

            trade = self.store.insert_trade(
                Trade(
                    id="",
                    agent_id=agent_id,
                    market_id=market.id,
                    position_id=position.id,
                    decision_id=decision_id,
                    trade_type=TradeType.BUY,
                    side=label,
                    shares=shares,
                    price=price,
                    total_amount=bet.amount,
                    implied_confidence=confidence,
                )
            )

            self.store.update_agent_balance(
                agent_id,
                agent.cash_balance - bet.amount,
                agent.total_invested + bet.amount,
            )

        logger.info(
            f"Trade executed: BUY {label} ${bet.amount} on market {market.id}",
            extra={
                "event": "trade_executed",
                "agent_id": agent_id,
                "trade_id": trade.id,
                "type": TradeType.BUY.value,
                "market_id": market.id,
                "side": label,
                "amount": str(bet.amount),
                "shares": str(shares),
                "price": str(price),
                "implied_confidence": str(confidence),
            },
        )
        return trade

    def execute_sell(
        self,
        agent_id: str,
        sell: SellInstruction,
        decision_id: str | None = None,
    ) -> Trade:
        """Sell a percentage of one position at the current price.

        Args:
            agent_id: Agent selling
            sell: Validated sell instruction
            decision_id: Decision that produced the sell

        Returns:
            The SELL trade, carrying cost basis and realized P&L

        Raises:
            ExecutionError: If any precondition fails; nothing is written
        """
        with self.store.transaction():
            agent = self._load_tradable_agent(agent_id)

            position = self.store.get_position(sell.position_id)
            if position is None:
                raise PositionNotFound(f"Position {sell.position_id} not found")
            if position.agent_id != agent_id:
                raise PositionNotOwned(f"Position {sell.position_id} does not belong to agent")
            if position.status != PositionStatus.OPEN:
                raise PositionNotOpen(f"Position is {position.status.value}")

            market = self.store.get_market(position.market_id)
            if market is None:
                raise MarketNotFound(f"Market {position.market_id} not found")

            price = side_price(market, side_from_label(position.side))
            fraction = sell.percentage / Decimal(100)
            shares_sold = fraction * position.shares
            proceeds = shares_sold * price
            cost_basis = fraction * position.total_cost
            pnl = scoring.realized_pnl(proceeds, cost_basis)

            trade = self.store.insert_trade(
                Trade(
                    id="",
                    agent_id=agent_id,
                    market_id=market.id,
                    position_id=position.id,
                    decision_id=decision_id,
                    trade_type=TradeType.SELL,
                    side=position.side,
                    shares=shares_sold,
                    price=price,
                    total_amount=proceeds,
                    cost_basis=cost_basis,
                    realized_pnl=pnl,
                )
            )

            remaining = position.shares - shares_sold
            if remaining <= 0:
                position.shares = ZERO
                position.total_cost = ZERO
                position.current_value = ZERO
                position.unrealized_pnl = ZERO
                position.status = PositionStatus.CLOSED
                position.closed_at = utcnow()
            else:
                position.shares = remaining
                position.total_cost -= cost_basis
            self.store.save_position(position)

            self.store.update_agent_balance(
                agent_id,
                agent.cash_balance + proceeds,
                max(ZERO, agent.total_invested - cost_basis),
            )

        logger.info(
            f"Trade executed: SELL {sell.percentage}% of position {position.id}",
            extra={
                "event": "trade_executed",
                "agent_id": agent_id,
                "trade_id": trade.id,
                "type": TradeType.SELL.value,
                "market_id": market.id,
                "side": position.side,
                "shares": str(shares_sold),
                "proceeds": str(proceeds),
                "price": str(price),
                "realized_pnl": str(pnl),
            },
        )
        return trade

    def execute_bets(
        self,
        agent_id: str,
        bets: list[BetInstruction],
        decision_id: str | None = None,
    ) -> list[BetResult]:
        """Place bets in order; each is independent of the others.

        Returns:
            One result per bet
        """
        results = []
        for bet in bets:
            try:
                trade = self.execute_bet(agent_id, bet, decision_id)
            except ExecutionError as e:
                logger.warning(
                    f"Bet rejected: {e.message}",
                    extra={"event": "trade_error", "agent_id": agent_id, "code": e.code},
                )
                results.append(
                    BetResult(
                        success=False,
                        market_id=bet.market_id,
                        side=bet.side,
                        amount=bet.amount,
                        error=e.message,
                        error_code=e.code,
                    )
                )
                continue

            results.append(
                BetResult(
                    success=True,
                    market_id=bet.market_id,
                    side=trade.side,
                    amount=bet.amount,
                    trade_id=trade.id,
                    position_id=trade.position_id,
                    shares=trade.shares,
                    price=trade.price,
                )
            )
        return results

    def execute_sells(
        self,
        agent_id: str,
        sells: list[SellInstruction],
        decision_id: str | None = None,
    ) -> list[SellResult]:
        """Apply sells in order inside one transaction.

        A rejected sell is reported and skipped. Any other exception rolls
        back every sell in the batch and propagates.

        Returns:
            One result per sell
        """
        results = []
        with self.store.transaction():
            for sell in sells:
                try:
                    trade = self.execute_sell(agent_id, sell, decision_id)
                except ExecutionError as e:
                    logger.warning(
                        f"Sell rejected: {e.message}",
                        extra={"event": "trade_error", "agent_id": agent_id, "code": e.code},
                    )
                    results.append(
                        SellResult(
                            success=False,
                            position_id=sell.position_id,
                            percentage=sell.percentage,
                            error=e.message,
                            error_code=e.code,
                        )
                    )
                    continue

                results.append(
                    SellResult(
                        success=True,
                        position_id=sell.position_id,
                        percentage=sell.percentage,
                        trade_id=trade.id,
                        shares_sold=trade.shares,
                        proceeds=trade.total_amount,
                        realized_pnl=trade.realized_pnl,
                    )
                )
        return results
