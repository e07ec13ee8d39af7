"""Tests for the FIX lexer, leg grouping and party/side extraction."""

from fxhub.fix import (
    FixTag,
    extract_leg_groups,
    extract_parties,
    extract_sides,
    get_tag_value,
    get_tag_values,
    parse_fix_tags,
    resolve_baseline_direction,
    resolve_counterparty_id,
    resolve_leg_direction,
    resolve_trader_code,
)
from fxhub.fix.lexer import detect_delimiter, parse_fix_timestamp
from tests.helpers.payloads import volbroker_ae


def test_lexer_prefers_soh_then_pipe_then_space():
    assert detect_delimiter("8=FIX\x0135=AE\x01") == "\x01"
    assert detect_delimiter("8=FIX|35=AE|") == "|"
    assert detect_delimiter("8=FIX 35=AE") == " "


def test_lexer_keeps_duplicates_in_order_and_drops_bad_fields():
    tags = parse_fix_tags("448=A|452=1|448=B|x=1|452=|600|452=122|")
    assert tags == [
        FixTag(448, "A"),
        FixTag(452, "1"),
        FixTag(448, "B"),
        FixTag(452, "122"),
    ]
    assert get_tag_value(tags, 448) == "A"
    assert get_tag_values(tags, 452) == ["1", "122"]
    assert get_tag_value(tags, 55) is None


def test_lexer_returns_empty_list_for_blank_input():
    assert parse_fix_tags("") == []
    assert parse_fix_tags("   ") == []
    assert parse_fix_tags(None) == []


def test_timestamp_with_and_without_millis():
    with_ms = parse_fix_timestamp("20260115-10:15:30.123")
    without = parse_fix_timestamp("20260115-10:15:30")
    assert with_ms.microsecond == 123000
    assert without.hour == 10 and without.tzinfo is not None
    assert parse_fix_timestamp("garbage") is None


def test_leg_groups_split_on_leg_symbol_and_stop_at_sides():
    tags = parse_fix_tags(volbroker_ae())
    groups = extract_leg_groups(tags)
    assert len(groups) == 2
    assert groups[0][0] == FixTag(600, "EUR/USD")
    assert get_tag_value(groups[0], 609) == "OPT"
    assert get_tag_value(groups[1], 609) == "FWD"
    # Nothing from the SIDES block leaks into the last leg.
    assert get_tag_value(groups[1], 448) is None


def test_leg_group_with_only_start_marker_is_dropped():
    tags = parse_fix_tags("600=EUR/USD|600=EUR/USD|609=FWD|552=1|")
    groups = extract_leg_groups(tags)
    assert len(groups) == 1
    assert get_tag_value(groups[0], 609) == "FWD"


def test_sides_mark_own_customer_side():
    tags = parse_fix_tags(volbroker_ae())
    sides = extract_sides(tags, "SWEDSTK")
    assert [(s.side, s.is_own_side) for s in sides] == [("1", True), ("2", False)]


def test_baseline_direction_from_own_side():
    tags = parse_fix_tags(volbroker_ae(own_side="2"))
    baseline = resolve_baseline_direction(tags, "swedstk")
    assert baseline.direction == "Sell"
    assert baseline.raw_side == "2"
    assert not baseline.is_fallback


def test_baseline_direction_falls_back_to_first_side(caplog):
    tags = parse_fix_tags(volbroker_ae(own_party="OTHER"))
    baseline = resolve_baseline_direction(tags, "SWEDSTK")
    assert baseline.is_fallback
    assert baseline.direction == "Buy"
    assert "falling back" in caplog.text


def test_leg_direction_flips_on_c_and_s():
    assert resolve_leg_direction("Buy", "B") == "Buy"
    assert resolve_leg_direction("Buy", "C") == "Sell"
    assert resolve_leg_direction("Sell", "s") == "Buy"
    assert resolve_leg_direction("Sell", None) == "Sell"


def test_parties_counterparty_and_trader():
    parties = extract_parties(parse_fix_tags(volbroker_ae()))
    assert [p.party_id for p in parties] == ["SWEDSTK", "TRADER1", "BIGBANK", "VOLB"]
    assert resolve_counterparty_id(parties, "SWEDSTK") == "BIGBANK"
    assert resolve_trader_code(parties) == "jdoe"


def test_counterparty_falls_back_to_executing_firm():
    parties = extract_parties(parse_fix_tags("448=SWEDSTK|452=1|448=VOLB|452=12|"))
    assert resolve_counterparty_id(parties, "SWEDSTK") == "VOLB"


def test_trader_without_sub_id_uses_party_id():
    parties = extract_parties(parse_fix_tags("448=JSMITH|452=122|"))
    assert resolve_trader_code(parties) == "JSMITH"
    assert resolve_trader_code([]) is None
