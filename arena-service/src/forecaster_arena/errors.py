"""Exception taxonomy for the Forecaster Arena core.

Execution errors carry a stable ``code`` so that per-instruction results and
logs can be aggregated without string matching on messages.
"""


class ArenaError(Exception):
    """Base class for all benchmark errors."""

    code = "arena_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExecutionError(ArenaError):
    """A bet or sell that failed validation against the ledger."""

    code = "execution_error"


class AgentNotFound(ExecutionError):
    code = "agent_not_found"


class AgentBankrupt(ExecutionError):
    code = "agent_bankrupt"


class CohortClosed(ExecutionError):
    code = "cohort_closed"


class MarketNotFound(ExecutionError):
    code = "market_not_found"


class MarketNotActive(ExecutionError):
    code = "market_not_active"


class InvalidSide(ExecutionError):
    code = "invalid_side"


class InvalidPrice(ExecutionError):
    code = "invalid_price"


class BetExceedsMax(ExecutionError):
    code = "bet_exceeds_max"


class InsufficientBalance(ExecutionError):
    code = "insufficient_balance"


class PositionNotFound(ExecutionError):
    code = "position_not_found"


class PositionNotOwned(ExecutionError):
    code = "position_not_owned"


class PositionNotOpen(ExecutionError):
    code = "position_not_open"


class CohortError(ArenaError):
    """Cohort lifecycle violations."""

    code = "cohort_error"


class CohortAlreadyStarted(CohortError):
    code = "cohort_already_started"


class CohortNotFound(CohortError):
    code = "cohort_not_found"


class StoreError(ArenaError):
    """Integrity problem detected by the ledger store."""

    code = "store_error"
