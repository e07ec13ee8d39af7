"""Tests for MX3 and Calypso response file parsing."""

import pytest

from fxhub.errors import ResponseParseError
from fxhub.reconciliation.responses import (
    CALYPSO_DEFAULT_REJECTION,
    calypso_expected_names,
    calypso_stp_trade_id,
    mx3_base_name,
    mx3_stp_trade_id,
    parse_calypso_response,
    parse_mx3_response,
)
from tests.helpers.payloads import calypso_ack_xml, mx3_detail_xml, mx3_status_xml

MX3_OK = "42_VB123-O1_evs_ans_ok.20260115101530_2.xml"
MX3_ERR = "42_VB123-O1_evs_ans_err.20260115101530_2.xml"
MX3_DETAIL = "42_VB123-O1_evs_ans_err.20260115101530_3.xml"


def _write(folder, name, text):
    path = folder / name
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_mx3_filename_helpers():
    assert mx3_base_name(MX3_OK) == "42_VB123-O1"
    assert mx3_stp_trade_id(MX3_OK) == 42
    with pytest.raises(ResponseParseError):
        mx3_base_name("42_VB123-O1.xml")
    with pytest.raises(ResponseParseError):
        mx3_stp_trade_id("X_VB123_evs_ans_ok_2.xml")


def test_mx3_ok_answer(tmp_path):
    path = _write(tmp_path, MX3_OK, mx3_status_xml("OK"))
    result = parse_mx3_response(str(tmp_path), path)
    assert result.is_success
    assert result.stp_trade_id == 42
    assert result.system_trade_id == "MX-778899"
    assert result.contract_id == "CT-4455"
    assert result.error_message is None
    assert result.files == [path]


def test_mx3_ok_answer_with_warnings(tmp_path):
    path = _write(
        tmp_path,
        MX3_OK,
        mx3_status_xml("OK", [("Warning", "Cut defaulted"), ("Info", "ignored")]),
    )
    result = parse_mx3_response(str(tmp_path), path)
    assert result.is_success
    assert result.error_message == "Cut defaulted"


def test_mx3_error_merges_detail_file(tmp_path):
    path = _write(tmp_path, MX3_ERR, mx3_status_xml("ERROR", [("Error", "Portfolio closed")]))
    _write(tmp_path, MX3_DETAIL, mx3_detail_xml([("Error", "Counterparty unknown")]))
    _write(tmp_path, "43_OTHER_evs_ans_ok.1_2.xml", mx3_status_xml("OK"))
    result = parse_mx3_response(str(tmp_path), path)
    assert not result.is_success
    assert result.system_trade_id is None
    assert result.error_message == "Portfolio closed; Counterparty unknown"
    assert len(result.files) == 2


def test_mx3_error_without_messages_reports_status(tmp_path):
    path = _write(tmp_path, MX3_ERR, mx3_status_xml("KO"))
    result = parse_mx3_response(str(tmp_path), path)
    assert result.error_message == "MXAnswerStatus=KO"


def test_mx3_invalid_xml(tmp_path):
    path = _write(tmp_path, MX3_OK, "<MxML MXAnswerStatus=")
    with pytest.raises(ResponseParseError):
        parse_mx3_response(str(tmp_path), path)


def test_calypso_names():
    assert calypso_expected_names(7, "JPM-1", "SPOT") == ["7_FX_SPOT_JPM-1_result.xml"]
    assert calypso_expected_names(7, "X", "FWD") == [
        "7_FX_FORWARD_X_result.xml",
        "7_FX_FWD_X_result.xml",
    ]
    assert calypso_stp_trade_id("7_FX_SPOT_JPM-1_result.xml") == 7
    assert calypso_stp_trade_id("FX_FWD_8_X_result.xml") == 8
    with pytest.raises(ResponseParseError):
        calypso_stp_trade_id("JPM-1_result.xml")


def test_calypso_success(tmp_path):
    path = _write(tmp_path, "7_FX_SPOT_JPM-1_result.xml", calypso_ack_xml())
    result = parse_calypso_response(path)
    assert result.is_success
    assert result.stp_trade_id == 7
    assert result.system_trade_id == "CAL-5566"


def test_calypso_rejected_joins_messages(tmp_path):
    path = _write(
        tmp_path,
        "7_FX_SPOT_JPM-1_result.xml",
        calypso_ack_xml(rejected=1, errors=["Book missing", "Bad date"]),
    )
    result = parse_calypso_response(path)
    assert not result.is_success
    assert result.error_message == "Book missing; Bad date"


def test_calypso_rejected_without_messages(tmp_path):
    path = _write(tmp_path, "7_FX_SPOT_JPM-1_result.xml", calypso_ack_xml(rejected=2))
    assert parse_calypso_response(path).error_message == CALYPSO_DEFAULT_REJECTION


def test_calypso_unexpected_status(tmp_path):
    path = _write(tmp_path, "7_FX_SPOT_JPM-1_result.xml", calypso_ack_xml(status="Pending"))
    result = parse_calypso_response(path)
    assert not result.is_success
    assert result.error_message == "Calypso status Pending"


def test_calypso_wrong_root(tmp_path):
    path = _write(tmp_path, "7_FX_SPOT_JPM-1_result.xml", "<Other/>")
    with pytest.raises(ResponseParseError):
        parse_calypso_response(path)
