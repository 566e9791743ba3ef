from __future__ import annotations

import json
import logging

from claimledger.utils.logging import ConsoleFormatter, _json_formatter

EXPECTED_AMOUNT = 10
EXPECTED_ATTEMPT = 2


def _record() -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello",
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.amount = EXPECTED_AMOUNT
    record.wallet = "w1"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["amount"] == EXPECTED_AMOUNT
    assert payload["wallet"] == "w1"


def test_json_formatter_supports_nested_extra_field() -> None:
    record = _record()
    record.extra = {"attempt": EXPECTED_ATTEMPT}

    payload = json.loads(_json_formatter(record))

    assert payload["attempt"] == EXPECTED_ATTEMPT
    assert "extra" not in payload


def test_json_formatter_stringifies_unknown_types() -> None:
    record = _record()
    record.status = object()

    payload = json.loads(_json_formatter(record))

    assert payload["status"].startswith("<object object")


def test_console_formatter_appends_extra_fields() -> None:
    record = _record()
    record.fee_tx_id = "sig1"
    record.amount = EXPECTED_AMOUNT

    line = ConsoleFormatter().format(record)

    assert line.endswith("| INFO | test.logger | hello | fee_tx_id=sig1 amount=10")


def test_console_formatter_leaves_plain_records_alone() -> None:
    line = ConsoleFormatter().format(_record())

    assert line.endswith("| INFO | test.logger | hello")
