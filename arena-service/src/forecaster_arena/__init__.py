"""Forecaster Arena - LLM Forecasting Benchmark on Live Prediction Markets.

Competing language models trade paper money on real Polymarket markets in
weekly cohorts; profit and Brier-score calibration are tracked once the
markets resolve.
"""

from .models import (
    Agent,
    AgentStatus,
    BetInstruction,
    BinarySide,
    BrierScoreRecord,
    Cohort,
    CohortStatus,
    Decision,
    DecisionAction,
    DecisionStatus,
    JobSummary,
    Market,
    MarketStatus,
    MarketType,
    ModelEntry,
    OutcomeSide,
    PortfolioSnapshot,
    Position,
    PositionStatus,
    SellInstruction,
    Trade,
    TradeType,
)
from .parser import ParsedDecision, parse_decision
from .storage import LedgerStore
from .execution import BetResult, ExecutionEngine, SellResult
from .cohort import CohortManager
from .decision import AgentDecisionResult, CohortDecisionResult, DecisionOrchestrator
from .markets import MarketSync
from .resolution import ResolutionEngine, SettlementResult
from .snapshots import SnapshotService

__all__ = [
    # Models
    "Agent",
    "AgentStatus",
    "BetInstruction",
    "BinarySide",
    "BrierScoreRecord",
    "Cohort",
    "CohortStatus",
    "Decision",
    "DecisionAction",
    "DecisionStatus",
    "JobSummary",
    "Market",
    "MarketStatus",
    "MarketType",
    "ModelEntry",
    "OutcomeSide",
    "PortfolioSnapshot",
    "Position",
    "PositionStatus",
    "SellInstruction",
    "Trade",
    "TradeType",
    # Parsing
    "ParsedDecision",
    "parse_decision",
    # Engines
    "LedgerStore",
    "BetResult",
    "SellResult",
    "ExecutionEngine",
    "CohortManager",
    "AgentDecisionResult",
    "CohortDecisionResult",
    "DecisionOrchestrator",
    "MarketSync",
    "ResolutionEngine",
    "SettlementResult",
    "SnapshotService",
]
