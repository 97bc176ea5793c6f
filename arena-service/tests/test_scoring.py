from decimal import Decimal

import pytest

from forecaster_arena import scoring
from forecaster_arena.models import BinarySide, OutcomeSide

D = Decimal


@pytest.mark.parametrize("price", ["0", "0.01", "0.37", "0.5", "0.999", "1"])
def test_yes_and_no_values_partition_shares(price):
    shares = D("1234.5")

    total = scoring.position_value(shares, "YES", D(price)) + scoring.position_value(shares, "NO", D(price))

    assert total == shares


def test_named_outcome_valued_at_its_own_price():
    assert scoring.position_value(D("400"), OutcomeSide("Alice"), D("0.30")) == D("120")


def test_settlement_value_is_case_insensitive():
    assert scoring.settlement_value(D("1250"), "yes", "YES") == D("1250")
    assert scoring.settlement_value(D("1250"), BinarySide.YES, "NO") == D("0")
    assert scoring.settlement_value(D("10"), OutcomeSide("Alice"), "alice") == D("10")


def test_implied_confidence():
    assert scoring.implied_confidence(D("500"), D("10000"), D("0.25")) == D("0.2")
    assert scoring.implied_confidence(D("5000"), D("10000"), D("0.25")) == D("1")
    assert scoring.implied_confidence(D("50"), D("0"), D("0.25")) == D("0")


@pytest.mark.parametrize("confidence", ["0", "0.2", "0.5", "0.8", "1"])
@pytest.mark.parametrize("side", ["YES", "NO"])
@pytest.mark.parametrize("winner", ["YES", "NO"])
def test_brier_score_in_unit_interval(confidence, side, winner):
    score = scoring.brier_score(D(confidence), side, winner)

    assert D("0") <= score <= D("1")


def test_brier_zero_only_for_certain_and_correct():
    assert scoring.brier_score(D("1"), "YES", "YES") == 0
    assert scoring.brier_score(D("1"), "NO", "NO") == 0
    assert scoring.brier_score(D("1"), "YES", "NO") == 1
    assert scoring.brier_score(D("1"), "NO", "YES") == 1
    assert scoring.brier_score(D("0.99"), "YES", "YES") > 0


def test_brier_uses_yes_equivalent_forecast():
    # YES at 0.2 confidence forecasts 20% YES
    assert scoring.brier_score(D("0.2"), "YES", "YES") == D("0.64")
    assert scoring.brier_score(D("0.2"), "YES", "NO") == D("0.04")
    # NO at 0.2 confidence forecasts 80% YES
    assert scoring.brier_score(D("0.2"), "NO", "NO") == D("0.64")
    assert scoring.forecast_probability(D("0.2"), "NO") == D("0.8")


def test_brier_for_named_outcomes():
    assert scoring.brier_score(D("0.6"), OutcomeSide("Alice"), "ALICE") == D("0.16")
    assert scoring.brier_score(D("0.6"), OutcomeSide("Alice"), "Bob") == D("0.36")
    assert scoring.actual_outcome(OutcomeSide("Alice"), "alice") == 1


def test_pnl_helpers():
    assert scoring.total_pnl(D("11000"), D("10000")) == D("1000")
    assert scoring.pnl_percent(D("1000"), D("10000")) == D("10")
    assert scoring.pnl_percent(D("1000"), D("0")) == D("0")
    assert scoring.roi(D("9500"), D("10000")) == D("-0.05")
    assert scoring.realized_pnl(D("1250"), D("500")) == D("750")
    assert scoring.unrealized_pnl(D("400"), D("500")) == D("-100")
    assert scoring.total_value(D("9500"), D("500")) == D("10000")


def test_aggregate_brier_and_skill():
    assert scoring.aggregate_brier([]) == D("0")
    assert scoring.aggregate_brier([D("0.1"), D("0.3")]) == D("0.2")
    assert scoring.brier_skill_score(D("0.25")) == D("0")
    assert scoring.brier_skill_score(D("0")) == D("1")
    assert scoring.brier_skill_score(D("0.5")) == D("-1")
