"""
Ledger store for the Forecaster Arena.

This module provides a repository interface over SQLite for every ledger
entity: models, cohorts, agents, markets, positions, trades, decisions,
Brier scores and portfolio snapshots.

The connection is injected by path (``":memory:"`` for tests) and shared by
all engines. ``transaction()`` groups statements into one atomic unit; nested
calls become savepoints so an inner unit can fail without losing the outer one.
"""

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from .errors import StoreError
from .models import (
    MARKET_STATUS_RANK,
    Agent,
    AgentStatus,
    BrierScoreRecord,
    Cohort,
    CohortStatus,
    Decision,
    DecisionAction,
    DecisionStatus,
    Market,
    MarketStatus,
    MarketType,
    ModelEntry,
    PortfolioSnapshot,
    Position,
    PositionStatus,
    Trade,
    TradeType,
)

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS models (
    id TEXT PRIMARY KEY,
    gateway_id TEXT NOT NULL,
    display_name TEXT NOT NULL,
    provider TEXT NOT NULL,
    input_cost_per_million TEXT NOT NULL,
    output_cost_per_million TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS cohorts (
    id TEXT PRIMARY KEY,
    cohort_number INTEGER NOT NULL UNIQUE,
    started_at TEXT NOT NULL,
    status TEXT NOT NULL,
    methodology_version TEXT NOT NULL,
    initial_balance TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    cohort_id TEXT NOT NULL REFERENCES cohorts(id),
    model_id TEXT NOT NULL REFERENCES models(id),
    cash_balance TEXT NOT NULL,
    total_invested TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (cohort_id, model_id)
);

CREATE TABLE IF NOT EXISTS markets (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    question TEXT NOT NULL,
    description TEXT,
    category TEXT,
    market_type TEXT NOT NULL,
    outcomes TEXT,
    current_price TEXT,
    current_prices TEXT,
    volume TEXT,
    close_date TEXT,
    status TEXT NOT NULL,
    resolution_outcome TEXT,
    resolved_at TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS positions (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    market_id TEXT NOT NULL REFERENCES markets(id),
    side TEXT NOT NULL,
    shares TEXT NOT NULL,
    avg_entry_price TEXT NOT NULL,
    total_cost TEXT NOT NULL,
    current_value TEXT,
    unrealized_pnl TEXT,
    status TEXT NOT NULL,
    opened_at TEXT NOT NULL,
    closed_at TEXT
);

CREATE TABLE IF NOT EXISTS decisions (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    cohort_id TEXT NOT NULL REFERENCES cohorts(id),
    decision_week INTEGER NOT NULL,
    decision_timestamp TEXT NOT NULL,
    prompt_system TEXT NOT NULL,
    prompt_user TEXT NOT NULL,
    raw_response TEXT,
    parsed_response TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    reasoning TEXT,
    tokens_input INTEGER NOT NULL DEFAULT 0,
    tokens_output INTEGER NOT NULL DEFAULT 0,
    api_cost_usd TEXT NOT NULL DEFAULT '0',
    response_time_ms INTEGER NOT NULL DEFAULT 0,
    error_message TEXT
);

CREATE TABLE IF NOT EXISTS trades (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    market_id TEXT NOT NULL REFERENCES markets(id),
    position_id TEXT REFERENCES positions(id),
    decision_id TEXT REFERENCES decisions(id),
    trade_type TEXT NOT NULL,
    side TEXT NOT NULL,
    shares TEXT NOT NULL,
    price TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    implied_confidence TEXT,
    cost_basis TEXT,
    realized_pnl TEXT,
    executed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS brier_scores (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    trade_id TEXT NOT NULL UNIQUE REFERENCES trades(id),
    market_id TEXT NOT NULL REFERENCES markets(id),
    forecast_probability TEXT NOT NULL,
    actual_outcome INTEGER NOT NULL,
    brier_score TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS portfolio_snapshots (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    snapshot_timestamp TEXT NOT NULL,
    cash_balance TEXT NOT NULL,
    positions_value TEXT NOT NULL,
    total_value TEXT NOT NULL,
    total_pnl TEXT NOT NULL,
    total_pnl_percent TEXT NOT NULL,
    brier_score TEXT,
    num_resolved_bets INTEGER NOT NULL DEFAULT 0,
    UNIQUE (agent_id, snapshot_timestamp)
);

CREATE INDEX IF NOT EXISTS idx_agents_cohort ON agents(cohort_id);
CREATE INDEX IF NOT EXISTS idx_positions_agent ON positions(agent_id, status);
CREATE INDEX IF NOT EXISTS idx_positions_market ON positions(market_id, status);
CREATE INDEX IF NOT EXISTS idx_trades_market ON trades(market_id);
CREATE INDEX IF NOT EXISTS idx_decisions_agent ON decisions(agent_id, decision_week);
CREATE INDEX IF NOT EXISTS idx_markets_status ON markets(status);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _txt(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class LedgerStore:
    """
    Repository for all ledger reads and writes.

    A single connection is held for the store's lifetime. Access is serialised
    with a re-entrant lock so a transaction is never interleaved with
    statements from another thread.
    """

    def __init__(self, path: str | Path = ":memory:"):
        """
        Open (and if needed create) the ledger.

        Args:
            path: SQLite database file, or ":memory:"
        """
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self.path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._depth = 0

        self._conn.executescript(SCHEMA)
        logger.info(f"Ledger store opened at {self.path}")

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed statements as one atomic unit.

        The outermost level commits or rolls back. Nested levels use a
        savepoint, so an exception raised inside them only undoes their own
        statements if the caller catches it.
        """
        with self._lock:
            depth = self._depth
            savepoint = f"sp_{depth}"
            if depth == 0:
                self._conn.execute("BEGIN IMMEDIATE")
            else:
                self._conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if depth == 0:
                    self._conn.execute("ROLLBACK")
                else:
                    self._conn.execute(f"ROLLBACK TO {savepoint}")
                    self._conn.execute(f"RELEASE {savepoint}")
                raise
            else:
                self._depth -= 1
                if depth == 0:
                    self._conn.execute("COMMIT")
                else:
                    self._conn.execute(f"RELEASE {savepoint}")

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _execute(self, sql: str, params: tuple | dict = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def _one(self, sql: str, params: tuple | dict = ()) -> sqlite3.Row | None:
        return self._execute(sql, params).fetchone()

    def _all(self, sql: str, params: tuple | dict = ()) -> list[sqlite3.Row]:
        return self._execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def upsert_model(self, model: ModelEntry) -> None:
        self._execute(
            """
            INSERT INTO models (id, gateway_id, display_name, provider,
                                input_cost_per_million, output_cost_per_million, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                gateway_id = excluded.gateway_id,
                display_name = excluded.display_name,
                provider = excluded.provider,
                input_cost_per_million = excluded.input_cost_per_million,
                output_cost_per_million = excluded.output_cost_per_million,
                is_active = excluded.is_active
            """,
            (
                model.id,
                model.gateway_id,
                model.display_name,
                model.provider,
                str(model.input_cost_per_million),
                str(model.output_cost_per_million),
                int(model.is_active),
            ),
        )

    def get_model(self, model_id: str) -> ModelEntry | None:
        row = self._one("SELECT * FROM models WHERE id = ?", (model_id,))
        return self._row_to_model(row) if row else None

    def list_models(self, active_only: bool = False) -> list[ModelEntry]:
        sql = "SELECT * FROM models"
        if active_only:
            sql += " WHERE is_active = 1"
        return [self._row_to_model(r) for r in self._all(sql + " ORDER BY rowid")]

    def _row_to_model(self, row: sqlite3.Row) -> ModelEntry:
        return ModelEntry(
            id=row["id"],
            gateway_id=row["gateway_id"],
            display_name=row["display_name"],
            provider=row["provider"],
            input_cost_per_million=Decimal(row["input_cost_per_million"]),
            output_cost_per_million=Decimal(row["output_cost_per_million"]),
            is_active=bool(row["is_active"]),
        )

    # ------------------------------------------------------------------
    # Cohorts
    # ------------------------------------------------------------------

    def create_cohort(
        self,
        cohort_number: int,
        started_at: datetime,
        methodology_version: str,
        initial_balance: Decimal,
    ) -> Cohort:
        cohort = Cohort(
            id=_new_id(),
            cohort_number=cohort_number,
            started_at=started_at,
            status=CohortStatus.ACTIVE,
            methodology_version=methodology_version,
            initial_balance=initial_balance,
        )
        self._execute(
            """
            INSERT INTO cohorts (id, cohort_number, started_at, status,
                                 methodology_version, initial_balance)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                cohort.id,
                cohort.cohort_number,
                _ts(cohort.started_at),
                cohort.status.value,
                cohort.methodology_version,
                str(cohort.initial_balance),
            ),
        )
        return cohort

    def get_cohort(self, cohort_id: str) -> Cohort | None:
        row = self._one("SELECT * FROM cohorts WHERE id = ?", (cohort_id,))
        return self._row_to_cohort(row) if row else None

    def list_cohorts(self, status: CohortStatus | None = None) -> list[Cohort]:
        if status is None:
            rows = self._all("SELECT * FROM cohorts ORDER BY cohort_number")
        else:
            rows = self._all(
                "SELECT * FROM cohorts WHERE status = ? ORDER BY cohort_number",
                (status.value,),
            )
        return [self._row_to_cohort(r) for r in rows]

    def latest_cohort(self) -> Cohort | None:
        row = self._one("SELECT * FROM cohorts ORDER BY cohort_number DESC LIMIT 1")
        return self._row_to_cohort(row) if row else None

    def next_cohort_number(self) -> int:
        row = self._one("SELECT COALESCE(MAX(cohort_number), 0) AS n FROM cohorts")
        return int(row["n"]) + 1

    def complete_cohort(self, cohort_id: str, completed_at: datetime) -> None:
        self._execute(
            "UPDATE cohorts SET status = ?, completed_at = ? WHERE id = ? AND status = ?",
            (
                CohortStatus.COMPLETED.value,
                _ts(completed_at),
                cohort_id,
                CohortStatus.ACTIVE.value,
            ),
        )

    def _row_to_cohort(self, row: sqlite3.Row) -> Cohort:
        return Cohort(
            id=row["id"],
            cohort_number=row["cohort_number"],
            started_at=_dt(row["started_at"]),
            status=CohortStatus(row["status"]),
            methodology_version=row["methodology_version"],
            initial_balance=Decimal(row["initial_balance"]),
            completed_at=_dt(row["completed_at"]),
        )

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def create_agent(self, cohort_id: str, model_id: str, initial_balance: Decimal) -> Agent:
        agent = Agent(
            id=_new_id(),
            cohort_id=cohort_id,
            model_id=model_id,
            cash_balance=initial_balance,
            total_invested=Decimal("0"),
            status=AgentStatus.ACTIVE,
            created_at=utcnow(),
        )
        self._execute(
            """
            INSERT INTO agents (id, cohort_id, model_id, cash_balance, total_invested,
                                status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                agent.id,
                agent.cohort_id,
                agent.model_id,
                str(agent.cash_balance),
                str(agent.total_invested),
                agent.status.value,
                _ts(agent.created_at),
            ),
        )
        return agent

    def get_agent(self, agent_id: str) -> Agent | None:
        row = self._one("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return self._row_to_agent(row) if row else None

    def list_agents(self, cohort_id: str, status: AgentStatus | None = None) -> list[Agent]:
        sql = "SELECT * FROM agents WHERE cohort_id = ?"
        params: tuple = (cohort_id,)
        if status is not None:
            sql += " AND status = ?"
            params += (status.value,)
        return [self._row_to_agent(r) for r in self._all(sql + " ORDER BY rowid", params)]

    def update_agent_balance(
        self,
        agent_id: str,
        cash_balance: Decimal,
        total_invested: Decimal,
    ) -> Agent:
        """
        Write new balances and re-derive the agent's status.

        An agent is bankrupt iff it has no cash and no invested capital;
        zero cash with open positions keeps it active.

        Returns:
            The updated agent
        """
        if cash_balance <= 0 and total_invested <= 0:
            status = AgentStatus.BANKRUPT
        else:
            status = AgentStatus.ACTIVE

        cursor = self._execute(
            "UPDATE agents SET cash_balance = ?, total_invested = ?, status = ? WHERE id = ?",
            (str(cash_balance), str(total_invested), status.value, agent_id),
        )
        if cursor.rowcount != 1:
            raise StoreError(f"Agent {agent_id} not found for balance update")

        if status == AgentStatus.BANKRUPT:
            logger.warning(
                f"Agent {agent_id} is bankrupt",
                extra={"agent_id": agent_id, "cash_balance": str(cash_balance)},
            )
        return self.get_agent(agent_id)

    def _row_to_agent(self, row: sqlite3.Row) -> Agent:
        return Agent(
            id=row["id"],
            cohort_id=row["cohort_id"],
            model_id=row["model_id"],
            cash_balance=Decimal(row["cash_balance"]),
            total_invested=Decimal(row["total_invested"]),
            status=AgentStatus(row["status"]),
            created_at=_dt(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Markets
    # ------------------------------------------------------------------

    def upsert_market(self, market: Market) -> Market:
        """
        Insert a market or refresh an existing one (matched on external id).

        Status only moves forward; a stale backward status from the source is
        ignored. Resolution fields are never cleared by a refresh.

        Returns:
            The stored market
        """
        with self.transaction():
            existing = self.get_market_by_external_id(market.external_id)
            now = utcnow()

            if existing is None:
                market_id = market.id or _new_id()
                self._execute(
                    """
                    INSERT INTO markets (id, external_id, question, description, category,
                                         market_type, outcomes, current_price, current_prices,
                                         volume, close_date, status, resolution_outcome,
                                         resolved_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        market_id,
                        market.external_id,
                        market.question,
                        market.description,
                        market.category,
                        market.market_type.value,
                        json.dumps(market.outcomes) if market.outcomes is not None else None,
                        _txt(market.current_price),
                        self._prices_to_text(market.current_prices),
                        _txt(market.volume),
                        _ts(market.close_date),
                        market.status.value,
                        market.resolution_outcome,
                        _ts(market.resolved_at),
                        _ts(now),
                    ),
                )
                return self.get_market(market_id)

            status = existing.status
            if MARKET_STATUS_RANK[market.status] > MARKET_STATUS_RANK[existing.status]:
                status = market.status

            self._execute(
                """
                UPDATE markets SET question = ?, description = ?, category = ?,
                                   market_type = ?, outcomes = ?, current_price = ?,
                                   current_prices = ?, volume = ?, close_date = ?,
                                   status = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    market.question,
                    market.description,
                    market.category,
                    market.market_type.value,
                    json.dumps(market.outcomes) if market.outcomes is not None else None,
                    _txt(market.current_price),
                    self._prices_to_text(market.current_prices),
                    _txt(market.volume),
                    _ts(market.close_date),
                    status.value,
                    _ts(now),
                    existing.id,
                ),
            )
            return self.get_market(existing.id)

    def get_market(self, market_id: str) -> Market | None:
        row = self._one("SELECT * FROM markets WHERE id = ?", (market_id,))
        return self._row_to_market(row) if row else None

    def get_market_by_external_id(self, external_id: str) -> Market | None:
        row = self._one("SELECT * FROM markets WHERE external_id = ?", (external_id,))
        return self._row_to_market(row) if row else None

    def list_markets(self, status: MarketStatus | None = None) -> list[Market]:
        if status is None:
            rows = self._all("SELECT * FROM markets ORDER BY rowid")
        else:
            rows = self._all(
                "SELECT * FROM markets WHERE status = ? ORDER BY rowid", (status.value,)
            )
        return [self._row_to_market(r) for r in rows]

    def top_markets(self, limit: int) -> list[Market]:
        """Active markets ordered by volume, highest first."""
        rows = self._all(
            "SELECT * FROM markets WHERE status = ? ORDER BY rowid",
            (MarketStatus.ACTIVE.value,),
        )
        markets = [self._row_to_market(r) for r in rows]
        markets.sort(key=lambda m: m.volume or Decimal("0"), reverse=True)
        return markets[:limit]

    def markets_with_open_positions(self) -> list[Market]:
        rows = self._all(
            """
            SELECT * FROM markets WHERE id IN (
                SELECT DISTINCT market_id FROM positions WHERE status = ?
            ) ORDER BY rowid
            """,
            (PositionStatus.OPEN.value,),
        )
        return [self._row_to_market(r) for r in rows]

    def set_market_status(self, market_id: str, status: MarketStatus) -> bool:
        """
        Move a market forward in its lifecycle.

        Returns:
            True if the status changed, False if the update would go backward or is a no-op
        """
        market = self.get_market(market_id)
        if market is None:
            raise StoreError(f"Market {market_id} not found")
        if MARKET_STATUS_RANK[status] <= MARKET_STATUS_RANK[market.status]:
            if status != market.status:
                logger.warning(
                    f"Ignoring backward status change for market {market_id}",
                    extra={"from": market.status.value, "to": status.value},
                )
            return False

        self._execute(
            "UPDATE markets SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, _ts(utcnow()), market_id),
        )
        return True

    def resolve_market(self, market_id: str, outcome: str, resolved_at: datetime) -> None:
        self._execute(
            """
            UPDATE markets SET status = ?, resolution_outcome = ?, resolved_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                MarketStatus.RESOLVED.value,
                outcome,
                _ts(resolved_at),
                _ts(utcnow()),
                market_id,
            ),
        )

    def _prices_to_text(self, prices: dict[str, Decimal] | None) -> str | None:
        if prices is None:
            return None
        return json.dumps({name: str(value) for name, value in prices.items()})

    def _row_to_market(self, row: sqlite3.Row) -> Market:
        prices = None
        if row["current_prices"]:
            prices = {k: Decimal(v) for k, v in json.loads(row["current_prices"]).items()}
        return Market(
            id=row["id"],
            external_id=row["external_id"],
            question=row["question"],
            description=row["description"],
            category=row["category"],
            market_type=MarketType(row["market_type"]),
            outcomes=json.loads(row["outcomes"]) if row["outcomes"] else None,
            current_price=_dec(row["current_price"]),
            current_prices=prices,
            volume=_dec(row["volume"]),
            close_date=_dt(row["close_date"]),
            status=MarketStatus(row["status"]),
            resolution_outcome=row["resolution_outcome"],
            resolved_at=_dt(row["resolved_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def create_position(
        self,
        agent_id: str,
        market_id: str,
        side: str,
        shares: Decimal,
        avg_entry_price: Decimal,
        total_cost: Decimal,
    ) -> Position:
        position = Position(
            id=_new_id(),
            agent_id=agent_id,
            market_id=market_id,
            side=side,
            shares=shares,
            avg_entry_price=avg_entry_price,
            total_cost=total_cost,
            status=PositionStatus.OPEN,
            opened_at=utcnow(),
        )
        self._execute(
            """
            INSERT INTO positions (id, agent_id, market_id, side, shares, avg_entry_price,
                                   total_cost, status, opened_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                position.id,
                agent_id,
                market_id,
                side,
                str(shares),
                str(avg_entry_price),
                str(total_cost),
                position.status.value,
                _ts(position.opened_at),
            ),
        )
        return position

    def save_position(self, position: Position) -> None:
        """Persist the mutable fields of a position."""
        self._execute(
            """
            UPDATE positions SET shares = ?, avg_entry_price = ?, total_cost = ?,
                                 current_value = ?, unrealized_pnl = ?, status = ?, closed_at = ?
            WHERE id = ?
            """,
            (
                str(position.shares),
                str(position.avg_entry_price),
                str(position.total_cost),
                _txt(position.current_value),
                _txt(position.unrealized_pnl),
                position.status.value,
                _ts(position.closed_at),
                position.id,
            ),
        )

    def get_position(self, position_id: str) -> Position | None:
        row = self._one("SELECT * FROM positions WHERE id = ?", (position_id,))
        return self._row_to_position(row) if row else None

    def find_open_position(self, agent_id: str, market_id: str, side: str) -> Position | None:
        row = self._one(
            """
            SELECT * FROM positions
            WHERE agent_id = ? AND market_id = ? AND side = ? AND status = ?
            ORDER BY rowid LIMIT 1
            """,
            (agent_id, market_id, side, PositionStatus.OPEN.value),
        )
        return self._row_to_position(row) if row else None

    def list_positions(
        self,
        agent_id: str | None = None,
        market_id: str | None = None,
        status: PositionStatus | None = None,
    ) -> list[Position]:
        clauses = []
        params: list[Any] = []
        if agent_id is not None:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if market_id is not None:
            clauses.append("market_id = ?")
            params.append(market_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        sql = "SELECT * FROM positions"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        return [self._row_to_position(r) for r in self._all(sql + " ORDER BY rowid", tuple(params))]

    def count_open_positions(self, cohort_id: str) -> int:
        row = self._one(
            """
            SELECT COUNT(*) AS n FROM positions p
            JOIN agents a ON a.id = p.agent_id
            WHERE a.cohort_id = ? AND p.status = ?
            """,
            (cohort_id, PositionStatus.OPEN.value),
        )
        return int(row["n"])

    def _row_to_position(self, row: sqlite3.Row) -> Position:
        return Position(
            id=row["id"],
            agent_id=row["agent_id"],
            market_id=row["market_id"],
            side=row["side"],
            shares=Decimal(row["shares"]),
            avg_entry_price=Decimal(row["avg_entry_price"]),
            total_cost=Decimal(row["total_cost"]),
            current_value=_dec(row["current_value"]),
            unrealized_pnl=_dec(row["unrealized_pnl"]),
            status=PositionStatus(row["status"]),
            opened_at=_dt(row["opened_at"]),
            closed_at=_dt(row["closed_at"]),
        )

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def insert_trade(self, trade: Trade) -> Trade:
        if not trade.id:
            trade.id = _new_id()
        if trade.executed_at is None:
            trade.executed_at = utcnow()
        self._execute(
            """
            INSERT INTO trades (id, agent_id, market_id, position_id, decision_id, trade_type,
                                side, shares, price, total_amount, implied_confidence,
                                cost_basis, realized_pnl, executed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                trade.id,
                trade.agent_id,
                trade.market_id,
                trade.position_id,
                trade.decision_id,
                trade.trade_type.value,
                trade.side,
                str(trade.shares),
                str(trade.price),
                str(trade.total_amount),
                _txt(trade.implied_confidence),
                _txt(trade.cost_basis),
                _txt(trade.realized_pnl),
                _ts(trade.executed_at),
            ),
        )
        return trade

    def list_trades(
        self,
        agent_id: str | None = None,
        market_id: str | None = None,
        trade_type: TradeType | None = None,
    ) -> list[Trade]:
        clauses = []
        params: list[Any] = []
        if agent_id is not None:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if market_id is not None:
            clauses.append("market_id = ?")
            params.append(market_id)
        if trade_type is not None:
            clauses.append("trade_type = ?")
            params.append(trade_type.value)

        sql = "SELECT * FROM trades"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        return [self._row_to_trade(r) for r in self._all(sql + " ORDER BY rowid", tuple(params))]

    def count_trades(self, cohort_id: str) -> int:
        row = self._one(
            """
            SELECT COUNT(*) AS n FROM trades t
            JOIN agents a ON a.id = t.agent_id
            WHERE a.cohort_id = ?
            """,
            (cohort_id,),
        )
        return int(row["n"])

    def _row_to_trade(self, row: sqlite3.Row) -> Trade:
        return Trade(
            id=row["id"],
            agent_id=row["agent_id"],
            market_id=row["market_id"],
            position_id=row["position_id"],
            decision_id=row["decision_id"],
            trade_type=TradeType(row["trade_type"]),
            side=row["side"],
            shares=Decimal(row["shares"]),
            price=Decimal(row["price"]),
            total_amount=Decimal(row["total_amount"]),
            implied_confidence=_dec(row["implied_confidence"]),
            cost_basis=_dec(row["cost_basis"]),
            realized_pnl=_dec(row["realized_pnl"]),
            executed_at=_dt(row["executed_at"]),
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def insert_decision(self, decision: Decision) -> Decision:
        if not decision.id:
            decision.id = _new_id()
        self._execute(
            """
            INSERT INTO decisions (id, agent_id, cohort_id, decision_week, decision_timestamp,
                                   prompt_system, prompt_user, raw_response, parsed_response,
                                   retry_count, action, status, reasoning, tokens_input,
                                   tokens_output, api_cost_usd, response_time_ms, error_message)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                decision.id,
                decision.agent_id,
                decision.cohort_id,
                decision.decision_week,
                _ts(decision.decision_timestamp),
                decision.prompt_system,
                decision.prompt_user,
                decision.raw_response,
                json.dumps(decision.parsed_response) if decision.parsed_response is not None else None,
                decision.retry_count,
                decision.action.value,
                decision.status.value,
                decision.reasoning,
                decision.tokens_input,
                decision.tokens_output,
                str(decision.api_cost_usd),
                decision.response_time_ms,
                decision.error_message,
            ),
        )
        return decision

    def get_decision(self, decision_id: str) -> Decision | None:
        row = self._one("SELECT * FROM decisions WHERE id = ?", (decision_id,))
        return self._row_to_decision(row) if row else None

    def list_decisions(self, agent_id: str) -> list[Decision]:
        rows = self._all("SELECT * FROM decisions WHERE agent_id = ? ORDER BY rowid", (agent_id,))
        return [self._row_to_decision(r) for r in rows]

    def has_decision(self, agent_id: str, decision_week: int) -> bool:
        row = self._one(
            "SELECT 1 FROM decisions WHERE agent_id = ? AND decision_week = ? LIMIT 1",
            (agent_id, decision_week),
        )
        return row is not None

    def count_decisions(self, cohort_id: str) -> int:
        row = self._one("SELECT COUNT(*) AS n FROM decisions WHERE cohort_id = ?", (cohort_id,))
        return int(row["n"])

    def _row_to_decision(self, row: sqlite3.Row) -> Decision:
        return Decision(
            id=row["id"],
            agent_id=row["agent_id"],
            cohort_id=row["cohort_id"],
            decision_week=row["decision_week"],
            decision_timestamp=_dt(row["decision_timestamp"]),
            prompt_system=row["prompt_system"],
            prompt_user=row["prompt_user"],
            raw_response=row["raw_response"],
            parsed_response=json.loads(row["parsed_response"]) if row["parsed_response"] else None,
            retry_count=row["retry_count"],
            action=DecisionAction(row["action"]),
            status=DecisionStatus(row["status"]),
            reasoning=row["reasoning"],
            tokens_input=row["tokens_input"],
            tokens_output=row["tokens_output"],
            api_cost_usd=Decimal(row["api_cost_usd"]),
            response_time_ms=row["response_time_ms"],
            error_message=row["error_message"],
        )

    # ------------------------------------------------------------------
    # Brier scores
    # ------------------------------------------------------------------

    def insert_brier_score(self, record: BrierScoreRecord) -> BrierScoreRecord:
        if not record.id:
            record.id = _new_id()
        if record.created_at is None:
            record.created_at = utcnow()
        self._execute(
            """
            INSERT INTO brier_scores (id, agent_id, trade_id, market_id, forecast_probability,
                                      actual_outcome, brier_score, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.agent_id,
                record.trade_id,
                record.market_id,
                str(record.forecast_probability),
                record.actual_outcome,
                str(record.brier_score),
                _ts(record.created_at),
            ),
        )
        return record

    def has_brier_score(self, trade_id: str) -> bool:
        return self._one("SELECT 1 FROM brier_scores WHERE trade_id = ?", (trade_id,)) is not None

    def list_brier_scores(
        self,
        agent_id: str | None = None,
        market_id: str | None = None,
    ) -> list[BrierScoreRecord]:
        clauses = []
        params: list[Any] = []
        if agent_id is not None:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if market_id is not None:
            clauses.append("market_id = ?")
            params.append(market_id)

        sql = "SELECT * FROM brier_scores"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        rows = self._all(sql + " ORDER BY rowid", tuple(params))
        return [
            BrierScoreRecord(
                id=r["id"],
                agent_id=r["agent_id"],
                trade_id=r["trade_id"],
                market_id=r["market_id"],
                forecast_probability=Decimal(r["forecast_probability"]),
                actual_outcome=r["actual_outcome"],
                brier_score=Decimal(r["brier_score"]),
                created_at=_dt(r["created_at"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Portfolio snapshots
    # ------------------------------------------------------------------

    def upsert_snapshot(self, snapshot: PortfolioSnapshot) -> None:
        """Write a snapshot, replacing any existing one for the same agent and timestamp."""
        self._execute(
            """
            INSERT INTO portfolio_snapshots (id, agent_id, snapshot_timestamp, cash_balance,
                                             positions_value, total_value, total_pnl,
                                             total_pnl_percent, brier_score, num_resolved_bets)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(agent_id, snapshot_timestamp) DO UPDATE SET
                cash_balance = excluded.cash_balance,
                positions_value = excluded.positions_value,
                total_value = excluded.total_value,
                total_pnl = excluded.total_pnl,
                total_pnl_percent = excluded.total_pnl_percent,
                brier_score = excluded.brier_score,
                num_resolved_bets = excluded.num_resolved_bets
            """,
            (
                snapshot.id or _new_id(),
                snapshot.agent_id,
                _ts(snapshot.snapshot_timestamp),
                str(snapshot.cash_balance),
                str(snapshot.positions_value),
                str(snapshot.total_value),
                str(snapshot.total_pnl),
                str(snapshot.total_pnl_percent),
                _txt(snapshot.brier_score),
                snapshot.num_resolved_bets,
            ),
        )

    def list_snapshots(self, agent_id: str) -> list[PortfolioSnapshot]:
        rows = self._all(
            "SELECT * FROM portfolio_snapshots WHERE agent_id = ? ORDER BY snapshot_timestamp",
            (agent_id,),
        )
        return [
            PortfolioSnapshot(
                id=r["id"],
                agent_id=r["agent_id"],
                snapshot_timestamp=_dt(r["snapshot_timestamp"]),
                cash_balance=Decimal(r["cash_balance"]),
                positions_value=Decimal(r["positions_value"]),
                total_value=Decimal(r["total_value"]),
                total_pnl=Decimal(r["total_pnl"]),
                total_pnl_percent=Decimal(r["total_pnl_percent"]),
                brier_score=_dec(r["brier_score"]),
                num_resolved_bets=r["num_resolved_bets"],
            )
            for r in rows
        ]
