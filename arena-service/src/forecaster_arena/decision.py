"""Decision Orchestrator for the Forecaster Arena.

This module runs one decision turn for every agent of every active cohort:
prompting the model, parsing (with one retry on malformed output),
logging the decision, and dispatching trades to the execution engine.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from arena_service.config import Settings
from arena_service.llm.client import ModelCallError
from arena_service.llm.providers import estimate_cost
from arena_service.llm.schemas import ChatMessage, ChatRequest, Usage

from .cohort import decision_week
from .execution import ExecutionEngine
from .models import (
    Agent,
    AgentStatus,
    Cohort,
    CohortStatus,
    Decision,
    DecisionAction,
    DecisionStatus,
    JobSummary,
    PositionStatus,
)
from .parser import ParsedDecision, default_hold, parse_decision
from .prompts import PositionView, build_retry_prompt, build_system_prompt, build_user_prompt
from .storage import LedgerStore, utcnow

logger = logging.getLogger(__name__)

LOG_EXCERPT_CHARS = 200


@dataclass
class AgentDecisionResult:
    """Outcome of one agent turn."""
    agent_id: str
    model_id: str
    status: DecisionStatus
    action: DecisionAction | None = None
    decision_id: str | None = None
    trades_attempted: int = 0
    trades_executed: int = 0
    error: str | None = None


@dataclass
class CohortDecisionResult:
    """Outcome of one cohort's decision run."""
    cohort_id: str
    cohort_number: int
    decision_week: int
    agents_processed: int = 0
    decisions: list[AgentDecisionResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class _ModelTurn:
    """What came back from the model over all calls of one turn."""
    parsed: ParsedDecision | None = None
    raw_response: str | None = None
    retry_count: int = 0
    call_error: str | None = None
    usage: Usage = field(default_factory=Usage)
    cost: Decimal = Decimal("0")
    response_time_ms: int = 0


class DecisionOrchestrator:
    """Runs the periodic decision turn for all active cohorts.

    Agents within a cohort are processed strictly one after another with a
    pacing delay between model calls.
    """

    def __init__(
        self,
        store: LedgerStore,
        execution: ExecutionEngine,
        llm_client: Any,  # LLMClient from arena_service
        settings: Settings,
    ):
        """Initialize the orchestrator.

        Args:
            store: Ledger store
            execution: Execution engine for dispatching trades
            llm_client: Client exposing ``achat_completion(ChatRequest)``
            settings: Benchmark rules and pacing
        """
        self.store = store
        self.execution = execution
        self.llm_client = llm_client
        self.settings = settings
        self.system_prompt = build_system_prompt(
            settings.min_bet,
            settings.max_bet_fraction,
            settings.methodology_version,
        )

    async def run_all_decisions(self, now: datetime | None = None) -> list[CohortDecisionResult]:
        """Run one decision turn for every active cohort.

        Returns:
            One result per active cohort
        """
        now = now or utcnow()
        cohorts = await asyncio.to_thread(self.store.list_cohorts, CohortStatus.ACTIVE)
        if not cohorts:
            logger.info("No active cohorts found")
            return []

        logger.info(f"Processing decisions for {len(cohorts)} active cohort(s)")
        results = []
        for cohort in cohorts:
            results.append(await self.run_cohort_decisions(cohort, now))
        return results

    async def run_cohort_decisions(self, cohort: Cohort, now: datetime) -> CohortDecisionResult:
        """Run one decision turn for every agent of a cohort."""
        week = decision_week(cohort, now)
        result = CohortDecisionResult(
            cohort_id=cohort.id,
            cohort_number=cohort.cohort_number,
            decision_week=week,
        )
        logger.info(f"Running decisions for Cohort #{cohort.cohort_number}, week {week}")

        agents = await asyncio.to_thread(self.store.list_agents, cohort.id)
        for agent in agents:
            agent_result = await self.process_agent(agent, cohort, week, now)
            result.decisions.append(agent_result)
            result.agents_processed += 1

            if agent_result.status == DecisionStatus.FAILED:
                result.errors.append(f"{agent.model_id}: {agent_result.error}")

            called_model = agent_result.status not in (
                DecisionStatus.SKIPPED,
                DecisionStatus.ALREADY_DECIDED,
            )
            if called_model and self.settings.agent_delay_seconds > 0:
                await asyncio.sleep(self.settings.agent_delay_seconds)

        logger.info(
            f"Cohort #{cohort.cohort_number} decisions complete",
            extra={
                "event": "cohort_decisions_complete",
                "cohort_id": cohort.id,
                "decision_week": week,
                "agents_processed": result.agents_processed,
                "errors": len(result.errors),
            },
        )
        return result

    async def process_agent(
        self,
        agent: Agent,
        cohort: Cohort,
        week: int,
        now: datetime,
    ) -> AgentDecisionResult:
        """Run one agent's turn; never raises.

        Returns:
            AgentDecisionResult with the turn's status
        """
        result = AgentDecisionResult(
            agent_id=agent.id,
            model_id=agent.model_id,
            status=DecisionStatus.FAILED,
        )

        if agent.status == AgentStatus.BANKRUPT:
            logger.info(f"Skipping bankrupt agent {agent.id}", extra={"model_id": agent.model_id})
            result.status = DecisionStatus.SKIPPED
            return result

        if await asyncio.to_thread(self.store.has_decision, agent.id, week):
            result.status = DecisionStatus.ALREADY_DECIDED
            return result

        turn = _ModelTurn()
        user_prompt = ""
        try:
            model = await asyncio.to_thread(self.store.get_model, agent.model_id)
            if model is None:
                raise LookupError(f"Model {agent.model_id} is not registered")

            user_prompt = await asyncio.to_thread(self._build_user_prompt, agent, cohort, week, now)
            await self._query_model(model.gateway_id, agent, user_prompt, turn)

            if turn.parsed is not None and turn.parsed.is_valid:
                parsed = turn.parsed
                status = DecisionStatus.RETRIED if turn.retry_count else DecisionStatus.PARSED
                error_message = None
            else:
                if turn.call_error is not None:
                    error_message = f"Model call failed: {turn.call_error}"
                else:
                    error_message = (
                        f"Failed after {turn.retry_count} retries: {turn.parsed.error}"
                    )
                parsed = default_hold(error_message)
                status = DecisionStatus.DEFAULTED
                logger.warning(
                    f"Defaulting {agent.model_id} to HOLD",
                    extra={
                        "event": "decision_defaulted",
                        "agent_id": agent.id,
                        "error": error_message,
                        "raw_response": (turn.raw_response or "")[:LOG_EXCERPT_CHARS],
                    },
                )

            decision = await asyncio.to_thread(
                self._record_decision,
                agent, cohort, week, now, user_prompt, turn, parsed, status, error_message
            )
            result.decision_id = decision.id
            result.action = parsed.action
            result.status = status

            if parsed.action == DecisionAction.BET:
                bet_results = await asyncio.to_thread(
                    self.execution.execute_bets, agent.id, parsed.bets, decision.id
                )
                result.trades_attempted = len(bet_results)
                result.trades_executed = sum(1 for r in bet_results if r.success)
            elif parsed.action == DecisionAction.SELL:
                sell_results = await asyncio.to_thread(
                    self.execution.execute_sells, agent.id, parsed.sells, decision.id
                )
                result.trades_attempted = len(sell_results)
                result.trades_executed = sum(1 for r in sell_results if r.success)

        except Exception as e:
            result.status = DecisionStatus.FAILED
            result.error = str(e)
            logger.error(
                f"Decision failed for agent {agent.id}: {e}",
                extra={"event": "agent_decision_error", "model_id": agent.model_id},
                exc_info=True,
            )
            model_answered = turn.raw_response is not None or turn.call_error is not None
            if model_answered and result.decision_id is None:
                await asyncio.to_thread(
                    self._record_fallback, agent, cohort, week, now, user_prompt, turn, str(e), result
                )
            return result

        logger.info(
            f"{agent.model_id}: {result.action.value} "
            f"({result.trades_executed}/{result.trades_attempted} trades)",
            extra={"agent_id": agent.id, "status": result.status.value},
        )
        return result

    def _record_decision(
        self,
        agent: Agent,
        cohort: Cohort,
        week: int,
        now: datetime,
        user_prompt: str,
        turn: _ModelTurn,
        parsed: ParsedDecision,
        status: DecisionStatus,
        error_message: str | None,
    ) -> Decision:
        return self.store.insert_decision(
            Decision(
                id="",
                agent_id=agent.id,
                cohort_id=cohort.id,
                decision_week=week,
                decision_timestamp=now,
                prompt_system=self.system_prompt,
                prompt_user=user_prompt,
                raw_response=turn.raw_response,
                parsed_response=parsed.to_dict(),
                retry_count=turn.retry_count,
                action=parsed.action,
                status=status,
                reasoning=parsed.reasoning,
                tokens_input=turn.usage.prompt_tokens,
                tokens_output=turn.usage.completion_tokens,
                api_cost_usd=turn.cost,
                response_time_ms=turn.response_time_ms,
                error_message=error_message,
            )
        )

    def _record_fallback(
        self,
        agent: Agent,
        cohort: Cohort,
        week: int,
        now: datetime,
        user_prompt: str,
        turn: _ModelTurn,
        error: str,
        result: AgentDecisionResult,
    ) -> None:
        """Log a system HOLD for a turn that failed after the model answered."""
        error_message = f"Turn failed: {error}"
        parsed = default_hold(error_message)
        try:
            decision = self._record_decision(
                agent, cohort, week, now, user_prompt, turn, parsed,
                DecisionStatus.DEFAULTED, error_message,
            )
        except Exception as e:
            logger.error(
                f"Could not record fallback decision for agent {agent.id}: {e}",
                extra={"event": "agent_decision_error", "model_id": agent.model_id},
            )
            return

        result.decision_id = decision.id
        result.action = DecisionAction.HOLD
        result.status = DecisionStatus.DEFAULTED

    def _build_user_prompt(self, agent: Agent, cohort: Cohort, week: int, now: datetime) -> str:
        views = []
        for position in self.store.list_positions(agent_id=agent.id, status=PositionStatus.OPEN):
            market = self.store.get_market(position.market_id)
            if market is not None:
                views.append(PositionView(position=position, market=market))

        return build_user_prompt(
            agent=agent,
            positions=views,
            markets=self.store.top_markets(self.settings.top_markets_count),
            decision_week=week,
            initial_balance=cohort.initial_balance,
            max_bet_fraction=self.settings.max_bet_fraction,
            today=now.date(),
        )

    async def _query_model(
        self, gateway_id: str, agent: Agent, user_prompt: str, turn: _ModelTurn
    ) -> None:
        """Call the model into ``turn``, retrying once per allowed parse failure."""
        prompt = user_prompt

        for attempt in range(self.settings.llm_max_parse_retries + 1):
            if attempt > 0:
                turn.retry_count += 1
                prompt = build_retry_prompt(
                    user_prompt, turn.raw_response or "", turn.parsed.error or "Unknown error"
                )
                logger.info(f"Retrying {agent.model_id} after invalid response")

            request = ChatRequest(
                model=gateway_id,
                messages=[
                    ChatMessage(role="system", content=self.system_prompt),
                    ChatMessage(role="user", content=prompt),
                ],
                temperature=self.settings.llm_temperature,
                max_tokens=self.settings.llm_max_tokens,
            )
            try:
                response = await self.llm_client.achat_completion(request)
            except ModelCallError as e:
                turn.call_error = str(e)
                break

            turn.usage = Usage(
                prompt_tokens=turn.usage.prompt_tokens + response.usage.prompt_tokens,
                completion_tokens=turn.usage.completion_tokens + response.usage.completion_tokens,
                total_tokens=turn.usage.total_tokens + response.usage.total_tokens,
            )
            turn.cost += Decimal(str(estimate_cost(response.usage, gateway_id)))
            turn.response_time_ms += response.response_time_ms

            turn.raw_response = response.message.content or ""
            turn.parsed = parse_decision(
                turn.raw_response,
                cash_balance=agent.cash_balance,
                min_bet=self.settings.min_bet,
                max_bet_fraction=self.settings.max_bet_fraction,
            )
            if turn.parsed.is_valid:
                break

            logger.warning(
                f"Invalid response from {agent.model_id}: {turn.parsed.error}",
                extra={
                    "agent_id": agent.id,
                    "attempt": attempt + 1,
                    "raw_response": turn.raw_response[:LOG_EXCERPT_CHARS],
                },
            )


def summarize_decisions(results: list[CohortDecisionResult]) -> JobSummary:
    """Collapse cohort results into a job summary."""
    summary = JobSummary()
    status_counts: dict[str, int] = {}
    for cohort_result in results:
        for decision in cohort_result.decisions:
            summary.processed += 1
            status_counts[decision.status.value] = status_counts.get(decision.status.value, 0) + 1
            if decision.status == DecisionStatus.FAILED:
                summary.failed += 1
            else:
                summary.succeeded += 1
        summary.errors.extend(cohort_result.errors)

    summary.details = {
        "cohorts": [
            {
                "cohort_id": r.cohort_id,
                "cohort_number": r.cohort_number,
                "decision_week": r.decision_week,
                "agents_processed": r.agents_processed,
            }
            for r in results
        ],
        "statuses": status_counts,
        "trades_executed": sum(d.trades_executed for r in results for d in r.decisions),
    }
    return summary
