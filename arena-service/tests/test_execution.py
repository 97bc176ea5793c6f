from decimal import Decimal

import pytest

from forecaster_arena.errors import (
    AgentBankrupt,
    AgentNotFound,
    BetExceedsMax,
    CohortClosed,
    InvalidPrice,
    InvalidSide,
    MarketNotActive,
    MarketNotFound,
    PositionNotFound,
    PositionNotOpen,
    PositionNotOwned,
)
from forecaster_arena.models import (
    AgentStatus,
    BetInstruction,
    MarketStatus,
    PositionStatus,
    SellInstruction,
    TradeType,
)
from forecaster_arena.storage import utcnow

D = Decimal


def _bet(market, side="YES", amount="500"):
    return BetInstruction(market_id=market.id, side=side, amount=D(amount))


def test_bet_opens_position_and_moves_cash(store, engine, agent, add_market):
    market = add_market(price="0.40")

    trade = engine.execute_bet(agent.id, _bet(market), decision_id=None)

    assert trade.trade_type == TradeType.BUY
    assert trade.shares == D("1250")
    assert trade.price == D("0.40")
    assert trade.implied_confidence == D("0.2")

    position = store.get_position(trade.position_id)
    assert position.side == "YES"
    assert position.shares == D("1250")
    assert position.total_cost == D("500")
    assert position.status == PositionStatus.OPEN

    updated = store.get_agent(agent.id)
    assert updated.cash_balance == D("9500")
    assert updated.total_invested == D("500")


def test_no_bet_uses_complement_price(engine, agent, add_market):
    market = add_market(price="0.40")

    trade = engine.execute_bet(agent.id, _bet(market, side="no", amount="600"))

    assert trade.side == "NO"
    assert trade.price == D("0.60")
    assert trade.shares == D("1000")


def test_repeated_bets_merge_into_one_position(store, engine, agent, add_market):
    market = add_market(price="0.40")
    first = engine.execute_bet(agent.id, _bet(market))
    add_market(price="0.50")
    second = engine.execute_bet(agent.id, _bet(market))

    assert first.position_id == second.position_id
    positions = store.list_positions(agent_id=agent.id)
    assert len(positions) == 1
    position = positions[0]
    assert position.shares == D("2250")
    assert position.total_cost == D("1000")
    assert position.avg_entry_price == D("1000") / D("2250")
    assert len(store.list_trades(agent_id=agent.id)) == 2


def test_multi_outcome_bet_uses_named_price(store, engine, agent, add_market):
    market = add_market(external_id="pm-multi", prices={"Alice": "0.25", "Bob": "0.75"})

    trade = engine.execute_bet(agent.id, _bet(market, side="alice", amount="100"))

    assert trade.side == "Alice"
    assert trade.price == D("0.25")
    assert trade.shares == D("400")


def test_multi_outcome_rejects_unknown_outcome(engine, agent, add_market):
    market = add_market(external_id="pm-multi", prices={"Alice": "0.25", "Bob": "0.75"})

    with pytest.raises(InvalidSide):
        engine.execute_bet(agent.id, _bet(market, side="Carol", amount="100"))


def test_binary_rejects_outcome_names(engine, agent, add_market):
    market = add_market()

    with pytest.raises(InvalidSide):
        engine.execute_bet(agent.id, _bet(market, side="MAYBE"))


def test_bet_preconditions(store, engine, agent, add_market):
    active = add_market(external_id="pm-active")
    closed = add_market(external_id="pm-closed", status=MarketStatus.CLOSED)

    with pytest.raises(AgentNotFound):
        engine.execute_bet("no-such-agent", _bet(active))
    with pytest.raises(MarketNotFound):
        engine.execute_bet(agent.id, BetInstruction(market_id="missing", side="YES", amount=D("100")))
    with pytest.raises(MarketNotActive):
        engine.execute_bet(agent.id, _bet(closed))
    with pytest.raises(BetExceedsMax) as excinfo:
        engine.execute_bet(agent.id, _bet(active, amount="2500.01"))
    assert excinfo.value.code == "bet_exceeds_max"

    # nothing was written
    assert store.list_trades(agent_id=agent.id) == []
    assert store.get_agent(agent.id).cash_balance == D("10000")


def test_bet_at_degenerate_price_rejected(engine, agent, add_market):
    market = add_market(price="1")

    with pytest.raises(InvalidPrice):
        engine.execute_bet(agent.id, _bet(market, side="YES"))
    with pytest.raises(InvalidPrice):
        engine.execute_bet(agent.id, _bet(market, side="NO"))


def test_bankrupt_agent_cannot_bet(store, engine, agent, add_market):
    market = add_market()
    store.update_agent_balance(agent.id, D("0"), D("0"))

    with pytest.raises(AgentBankrupt):
        engine.execute_bet(agent.id, _bet(market))


def test_completed_cohort_is_locked(store, engine, agent, add_market):
    market = add_market()
    store.complete_cohort(agent.cohort_id, utcnow())

    with pytest.raises(CohortClosed):
        engine.execute_bet(agent.id, _bet(market))


def test_bankruptcy_rule(store, agent):
    assert store.update_agent_balance(agent.id, D("0"), D("100")).status == AgentStatus.ACTIVE
    assert store.update_agent_balance(agent.id, D("0"), D("0")).status == AgentStatus.BANKRUPT
    assert store.update_agent_balance(agent.id, D("5"), D("0")).status == AgentStatus.ACTIVE


def _position_at_030(store, engine, agent, add_market):
    """1,000 YES shares bought at 0.30 for $300, now priced at 0.50."""
    market = add_market(price="0.30")
    trade = engine.execute_bet(agent.id, _bet(market, amount="300"))
    add_market(price="0.50")
    return store.get_position(trade.position_id)


def test_partial_sell(store, engine, agent, add_market):
    position = _position_at_030(store, engine, agent, add_market)
    assert position.shares == D("1000")

    trade = engine.execute_sell(agent.id, SellInstruction(position_id=position.id, percentage=D("50")))

    assert trade.trade_type == TradeType.SELL
    assert trade.shares == D("500")
    assert trade.total_amount == D("250")
    assert trade.cost_basis == D("150")
    assert trade.realized_pnl == D("100")

    remaining = store.get_position(position.id)
    assert remaining.status == PositionStatus.OPEN
    assert remaining.shares == D("500")
    assert remaining.total_cost == D("150")

    updated = store.get_agent(agent.id)
    assert updated.cash_balance == D("9950")
    assert updated.total_invested == D("150")


def test_full_sell_closes_position(store, engine, agent, add_market):
    position = _position_at_030(store, engine, agent, add_market)

    trade = engine.execute_sell(agent.id, SellInstruction(position_id=position.id, percentage=D("100")))

    assert trade.total_amount == position.shares * D("0.50")
    closed = store.get_position(position.id)
    assert closed.status == PositionStatus.CLOSED
    assert closed.shares == D("0")
    assert closed.total_cost == D("0")
    assert closed.current_value == D("0")
    assert closed.closed_at is not None
    assert store.get_agent(agent.id).total_invested == D("0")

    with pytest.raises(PositionNotOpen):
        engine.execute_sell(agent.id, SellInstruction(position_id=position.id, percentage=D("10")))


def test_sell_preconditions(store, engine, agent, other_agent, add_market):
    position = _position_at_030(store, engine, agent, add_market)

    with pytest.raises(PositionNotFound):
        engine.execute_sell(agent.id, SellInstruction(position_id="missing", percentage=D("10")))
    with pytest.raises(PositionNotOwned):
        engine.execute_sell(other_agent.id, SellInstruction(position_id=position.id, percentage=D("10")))


def test_execute_bets_reports_each_instruction(store, engine, agent, add_market):
    market = add_market()
    bets = [
        _bet(market, amount="100"),
        BetInstruction(market_id="missing", side="YES", amount=D("100")),
        _bet(market, side="NO", amount="100"),
    ]

    results = engine.execute_bets(agent.id, bets)

    assert [r.success for r in results] == [True, False, True]
    assert results[1].error_code == "market_not_found"
    assert len(store.list_trades(agent_id=agent.id)) == 2


def test_execute_sells_skips_rejected_sells(store, engine, agent, add_market):
    position = _position_at_030(store, engine, agent, add_market)
    sells = [
        SellInstruction(position_id="missing", percentage=D("50")),
        SellInstruction(position_id=position.id, percentage=D("50")),
    ]

    results = engine.execute_sells(agent.id, sells)

    assert [r.success for r in results] == [False, True]
    assert results[0].error_code == "position_not_found"
    assert results[1].proceeds == D("250")


def test_execute_sells_rolls_back_batch_on_unexpected_error(store, engine, agent, add_market, monkeypatch):
    first = _position_at_030(store, engine, agent, add_market)
    other_market = add_market(external_id="pm-2", price="0.50")
    second_trade = engine.execute_bet(agent.id, _bet(other_market, amount="100"))
    cash_before = store.get_agent(agent.id).cash_balance

    original_save = store.save_position
    calls = {"n": 0}

    def flaky_save(position):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk full")
        original_save(position)

    monkeypatch.setattr(store, "save_position", flaky_save)

    with pytest.raises(RuntimeError):
        engine.execute_sells(
            agent.id,
            [
                SellInstruction(position_id=first.id, percentage=D("50")),
                SellInstruction(position_id=second_trade.position_id, percentage=D("50")),
            ],
        )

    monkeypatch.undo()
    assert store.get_position(first.id).shares == D("1000")
    assert store.get_agent(agent.id).cash_balance == cash_before
    assert store.list_trades(agent_id=agent.id, trade_type=TradeType.SELL) == []
