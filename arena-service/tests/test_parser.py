import json
from decimal import Decimal

from forecaster_arena.models import DecisionAction
from forecaster_arena.parser import (
    SYSTEM_DEFAULT_PREFIX,
    clean_response,
    default_hold,
    extract_json_object,
    parse_decision,
)

CASH = Decimal("10000")


def _bet_json(*amounts, side="YES"):
    return json.dumps(
        {
            "action": "BET",
            "bets": [{"market_id": f"m{i}", "side": side, "amount": a} for i, a in enumerate(amounts)],
            "reasoning": "Prices look off",
        }
    )


def test_valid_bets_keep_every_instruction():
    result = parse_decision(_bet_json(50, 500, 2500), cash_balance=CASH)

    assert result.action == DecisionAction.BET
    assert result.is_valid
    assert len(result.bets) == 3
    assert result.bets[2].amount == Decimal("2500")
    assert result.bets[0].market_id == "m0"


def test_bet_below_minimum_is_error():
    result = parse_decision(_bet_json(49.99), cash_balance=CASH)

    assert result.action == DecisionAction.ERROR
    assert "Invalid bet #1" in result.error
    assert "below minimum" in result.error


def test_bet_above_max_fraction_is_error():
    result = parse_decision(_bet_json(100, 2500.01), cash_balance=CASH)

    assert result.action == DecisionAction.ERROR
    assert result.error.startswith("Invalid bet #2")
    assert "exceeds maximum $2500.00" in result.error


def test_bet_upper_bound_disabled_without_cash():
    result = parse_decision(_bet_json(1_000_000))

    assert result.action == DecisionAction.BET


def test_non_numeric_and_boolean_amounts_rejected():
    assert parse_decision(_bet_json("500"), cash_balance=CASH).error == "Invalid bet #1: invalid amount"
    assert parse_decision(_bet_json(True), cash_balance=CASH).error == "Invalid bet #1: invalid amount"


def test_outcome_name_side_keeps_its_case():
    result = parse_decision(_bet_json(100, side="  Trump "), cash_balance=CASH)

    assert result.bets[0].side == "Trump"


def test_empty_bets_is_error():
    raw = json.dumps({"action": "BET", "bets": [], "reasoning": "x"})

    assert parse_decision(raw).error == "BET action requires non-empty bets array"


def test_missing_market_id_and_side():
    missing_market = json.dumps(
        {"action": "BET", "bets": [{"side": "YES", "amount": 100}], "reasoning": "x"}
    )
    missing_side = json.dumps(
        {"action": "BET", "bets": [{"market_id": "m", "side": " ", "amount": 100}], "reasoning": "x"}
    )

    assert parse_decision(missing_market).error == "Invalid bet #1: missing market_id"
    assert parse_decision(missing_side).error == "Invalid bet #1: missing side"


def test_sell_percentages():
    ok = json.dumps(
        {"action": "SELL", "sells": [{"position_id": "p1", "percentage": 100}], "reasoning": "take profit"}
    )
    too_low = json.dumps(
        {"action": "SELL", "sells": [{"position_id": "p1", "percentage": 0.5}], "reasoning": "x"}
    )
    too_high = json.dumps(
        {"action": "SELL", "sells": [{"position_id": "p1", "percentage": 101}], "reasoning": "x"}
    )

    parsed = parse_decision(ok)
    assert parsed.action == DecisionAction.SELL
    assert parsed.sells[0].percentage == Decimal("100")
    assert parse_decision(too_low).action == DecisionAction.ERROR
    assert "percentage must be 1-100" in parse_decision(too_high).error


def test_empty_sells_is_error():
    raw = json.dumps({"action": "SELL", "sells": [], "reasoning": "x"})

    assert parse_decision(raw).error == "SELL action requires non-empty sells array"


def test_hold_requires_only_reasoning():
    result = parse_decision('{"action": "HOLD", "reasoning": "Nothing compelling"}')

    assert result.action == DecisionAction.HOLD
    assert result.reasoning == "Nothing compelling"


def test_missing_or_invalid_reasoning():
    assert parse_decision('{"action": "HOLD"}').error == "Missing or invalid reasoning field"
    assert parse_decision('{"action": "HOLD", "reasoning": 3}').error == "Missing or invalid reasoning field"


def test_missing_and_unknown_action():
    assert parse_decision('{"reasoning": "x"}').error == "Missing action field"
    assert parse_decision('{"action": "SHORT", "reasoning": "x"}').error == "Invalid action: SHORT"


def test_action_is_case_insensitive():
    assert parse_decision('{"action": "hold", "reasoning": "x"}').action == DecisionAction.HOLD


def test_hold_embedded_in_prose_is_extracted():
    raw = 'After thinking it over, here is my answer: {"action":"HOLD","reasoning":"Markets are fair"} Thanks!'

    result = parse_decision(raw)

    assert result.action == DecisionAction.HOLD
    assert result.reasoning == "Markets are fair"


def test_code_fences_and_quotes_are_stripped():
    fenced = '```json\n{"action": "HOLD", "reasoning": "fenced"}\n```'
    quoted = '\'{"action": "HOLD", "reasoning": "quoted"}\''

    assert parse_decision(fenced).reasoning == "fenced"
    assert parse_decision(quoted).reasoning == "quoted"


def test_extraction_skips_objects_without_action():
    text = 'Context {"note": "ignore"} then {"action": "HOLD", "reasoning": "a {brace} inside"}'

    assert extract_json_object(text) == '{"action": "HOLD", "reasoning": "a {brace} inside"}'


def test_garbage_is_json_error():
    result = parse_decision("I would rather not say.")

    assert result.action == DecisionAction.ERROR
    assert result.error.startswith("JSON parse error")


def test_non_object_json():
    assert parse_decision("[1, 2]").error == "Response is not a JSON object"


def test_parse_is_deterministic():
    raw = _bet_json(100, 200)

    assert parse_decision(raw, cash_balance=CASH) == parse_decision(raw, cash_balance=CASH)


def test_clean_response_leaves_plain_object():
    assert clean_response('  {"action": "HOLD"}  ') == '{"action": "HOLD"}'


def test_default_hold_is_marked():
    hold = default_hold("Failed after 1 retries: bad json")

    assert hold.action == DecisionAction.HOLD
    assert hold.reasoning.startswith(SYSTEM_DEFAULT_PREFIX)
    assert hold.to_dict() == {"action": "HOLD", "reasoning": hold.reasoning}


def test_deeply_nested_json_is_an_error():
    raw = '{"action": "HOLD", "reasoning": "x", "j": ' + "[" * 100_000 + "]" * 100_000 + "}"

    result = parse_decision(raw)

    assert result.action == DecisionAction.ERROR
    assert result.error.startswith("JSON parse error")


def test_extraction_after_many_unclosed_braces():
    raw = "so {" * 50_000 + ' anyway: {"action": "HOLD", "reasoning": "fine"}'

    assert extract_json_object(raw) == '{"action": "HOLD", "reasoning": "fine"}'
    assert parse_decision(raw).reasoning == "fine"


def test_extraction_picks_outermost_object_with_action():
    text = 'Answer: {"meta": {"v": 1}, "action": "HOLD", "reasoning": "r"} done'

    assert extract_json_object(text) == '{"meta": {"v": 1}, "action": "HOLD", "reasoning": "r"}'
