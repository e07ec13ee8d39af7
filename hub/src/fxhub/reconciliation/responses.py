"""
Booking-system response parsers
===============================

MX3 and Calypso acknowledge each exported trade by dropping XML files in
a response folder.  The functions here turn one response file (or, for
MX3, one file set) into a ``ResponseResult``.  They raise
``ResponseParseError`` when a file cannot be interpreted; I/O errors are
retried a few times with tenacity before they propagate.

MX3
---

An export named ``{stp}_{tradeId}.xml`` is answered by a file set sharing
that base name::

    {stp}_{tradeId}_evs_ans_ok.<stamp>_2.xml    status; MXAnswerStatus="OK"
    {stp}_{tradeId}_evs_ans_err.<stamp>_3.xml   MXException warnings/errors

The ``_2`` file decides success.  Descriptions from the ``_3`` file are
merged into the error text.

Calypso
-------

One file per trade, ``{stp}_FX_SPOT_{tradeId}_result.xml`` (or
``FX_FORWARD_`` / ``FX_FWD_``).  The legacy ``FX_SPOT_{stp}_..._result.xml``
naming is still accepted.  The root ``CalypsoAcknowledgement`` carries a
``Rejected`` count; rejected files list messages under
``CalypsoErrors/CalypsoError/Error/Message``.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

from defusedxml import ElementTree as ET
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import ResponseParseError

MX3_ANSWER_MARKER = "_evs_ans_"
MX3_OK_MARKER = "_evs_ans_ok"
MX3_STATUS_SUFFIX = "_2.xml"
MX3_DETAIL_SUFFIX = "_3.xml"
MX3_WARNING_LEVELS = ("warning", "error")

CALYPSO_SUFFIX = "_result.xml"
CALYPSO_DEFAULT_REJECTION = "Rejected by Calypso"

_CALYPSO_NAME = re.compile(r"^(\d+)_FX_(?:SPOT|FORWARD|FWD)_", re.IGNORECASE)
_CALYPSO_LEGACY_NAME = re.compile(r"^FX_(?:SPOT|FORWARD|FWD)_(\d+)_", re.IGNORECASE)


@dataclass
class ResponseResult:
    stp_trade_id: int
    is_success: bool
    system_trade_id: Optional[str] = None
    contract_id: Optional[str] = None
    error_message: Optional[str] = None
    files: List[str] = field(default_factory=list)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    retry=retry_if_exception_type(OSError),
    reraise=True,
)
def read_response_bytes(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def load_xml(path: str):
    data = read_response_bytes(path)
    try:
        return ET.fromstring(data)
    except ET.ParseError as exc:
        raise ResponseParseError(f"{os.path.basename(path)}: invalid XML ({exc})") from exc


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_text(root, name: str) -> Optional[str]:
    for element in root.iter():
        if _local_name(element.tag) == name and element.text and element.text.strip():
            return element.text.strip()
    return None


def _child(element, name: str):
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def _children(element, name: str):
    return [child for child in element if _local_name(child.tag) == name]


def _child_text(element, name: str) -> str:
    child = _child(element, name)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


# MX3


def mx3_export_base(stp_trade_id: int, trade_id: str) -> str:
    return f"{stp_trade_id}_{trade_id}"


def mx3_base_name(filename: str) -> str:
    """Return the export base name a response file belongs to."""
    name = os.path.basename(filename)
    index = name.lower().find(MX3_ANSWER_MARKER)
    if index <= 0:
        raise ResponseParseError(f"Not an MX3 answer file: {name}")
    return name[:index]


def mx3_stp_trade_id(filename: str) -> int:
    name = os.path.basename(filename)
    head = name.split("_", 1)[0]
    if not head.isdigit():
        raise ResponseParseError(f"Cannot read StpTradeId from filename: {name}")
    return int(head)


def mx3_file_set(folder: str, base: str) -> List[str]:
    """Return every answer file in ``folder`` for the export ``base``, sorted."""
    prefix = f"{base}{MX3_ANSWER_MARKER}".lower()
    try:
        names = os.listdir(folder)
    except FileNotFoundError:
        return []
    return sorted(
        os.path.join(folder, name) for name in names if name.lower().startswith(prefix)
    )


def mx3_exception_messages(root) -> List[str]:
    messages = []
    for element in root.iter():
        if _local_name(element.tag) != "MXException":
            continue
        level = _child_text(element, "Level").lower()
        description = _child_text(element, "Description")
        if level in MX3_WARNING_LEVELS and description:
            messages.append(description)
    return messages


def parse_mx3_response(folder: str, filename: str) -> ResponseResult:
    """Interpret the MX3 file set that ``filename`` belongs to."""
    stp_trade_id = mx3_stp_trade_id(filename)
    base = mx3_base_name(filename)
    files = mx3_file_set(folder, base)
    status_files = [f for f in files if f.lower().endswith(MX3_STATUS_SUFFIX)]
    detail_files = [f for f in files if f.lower().endswith(MX3_DETAIL_SUFFIX)]
    if not status_files:
        raise ResponseParseError(f"No MX3 status file for {base}")

    status_file = next(
        (f for f in status_files if MX3_OK_MARKER in os.path.basename(f).lower()),
        status_files[0],
    )
    root = load_xml(status_file)
    answer_status = (root.get("MXAnswerStatus") or "").strip()
    result = ResponseResult(
        stp_trade_id=stp_trade_id,
        is_success=answer_status.upper() == "OK",
        files=files,
    )
    if result.is_success:
        result.contract_id = _find_text(root, "contractId")
        result.system_trade_id = _find_text(root, "tradeInternalId") or result.contract_id

    messages = mx3_exception_messages(root)
    for detail_file in detail_files:
        messages.extend(mx3_exception_messages(load_xml(detail_file)))
    if messages:
        result.error_message = "; ".join(messages)
    elif not result.is_success:
        result.error_message = f"MXAnswerStatus={answer_status or 'missing'}"
    return result


# Calypso


def calypso_type_prefixes(product_type: str) -> List[str]:
    if "SPOT" in (product_type or "").upper():
        return ["FX_SPOT_"]
    return ["FX_FORWARD_", "FX_FWD_"]


def calypso_expected_names(stp_trade_id: int, trade_id: str, product_type: str) -> List[str]:
    return [
        f"{stp_trade_id}_{prefix}{trade_id}{CALYPSO_SUFFIX}"
        for prefix in calypso_type_prefixes(product_type)
    ]


def calypso_stp_trade_id(filename: str) -> int:
    name = os.path.basename(filename)
    match = _CALYPSO_NAME.match(name) or _CALYPSO_LEGACY_NAME.match(name)
    if not match:
        raise ResponseParseError(f"Cannot read StpTradeId from filename: {name}")
    return int(match.group(1))


def calypso_error_message(root) -> str:
    messages = []
    errors = _child(root, "CalypsoErrors")
    if errors is not None:
        for calypso_error in _children(errors, "CalypsoError"):
            for error in _children(calypso_error, "Error"):
                message = _child_text(error, "Message")
                if message:
                    messages.append(message)
    return "; ".join(messages) if messages else CALYPSO_DEFAULT_REJECTION


def parse_calypso_response(path: str) -> ResponseResult:
    name = os.path.basename(path)
    stp_trade_id = calypso_stp_trade_id(name)
    root = load_xml(path)
    if _local_name(root.tag) != "CalypsoAcknowledgement":
        raise ResponseParseError(f"Unexpected Calypso root element in {name}: {root.tag}")

    result = ResponseResult(stp_trade_id=stp_trade_id, is_success=False, files=[path])
    rejected_text = (root.get("Rejected") or "0").strip()
    try:
        rejected = int(rejected_text)
    except ValueError as exc:
        raise ResponseParseError(f"Invalid Rejected count in {name}: {rejected_text}") from exc
    if rejected > 0:
        result.error_message = calypso_error_message(root)
        return result

    trades = _child(root, "CalypsoTrades")
    trade = _child(trades, "CalypsoTrade") if trades is not None else None
    if trade is None:
        raise ResponseParseError(f"No CalypsoTrade element in {name}")
    status = _child_text(trade, "Status")
    result.is_success = status.lower() == "success"
    result.system_trade_id = _child_text(trade, "CalypsoTradeId") or None
    if not result.is_success:
        result.error_message = f"Calypso status {status or 'missing'}"
    return result
