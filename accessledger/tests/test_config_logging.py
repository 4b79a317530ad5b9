"""Tests for config validation, structured logging and identity headers."""
import json
import logging
from types import SimpleNamespace

import pytest

from accessledger.core.config import validate_config
from accessledger.core.logging import JsonFormatter, request_id_ctx_var, RequestIdFilter


def make_settings(**overrides):
    defaults = dict(
        DATABASE_URL="sqlite:///ledger.db",
        ADMIN_KEY="k",
        CONFIG_STRICT=False,
        USAGE_MAX_RETRIES=5,
        GRANT_MAX_RETRIES=3,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def test_complete_config_passes():
    assert validate_config(strict=True, settings_obj=make_settings()) is True


def test_missing_keys_warn_when_lenient(caplog):
    with caplog.at_level(logging.WARNING, logger="accessledger"):
        validate_config(strict=False, settings_obj=make_settings(ADMIN_KEY=None))
    assert any("ADMIN_KEY" in r.getMessage() for r in caplog.records)


def test_missing_keys_raise_when_strict():
    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=make_settings(DATABASE_URL=None))


def test_zero_retries_rejected_when_strict():
    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=make_settings(USAGE_MAX_RETRIES=0))


def test_json_formatter_carries_request_id_and_extras():
    record = logging.LogRecord("accessledger", logging.INFO, __file__, 1, "[access] decision", (), None)
    record.user_id = "u1"
    record.state = "ACTIVE"
    token = request_id_ctx_var.set("rid-json")
    try:
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["request_id"] == "rid-json"
    assert payload["message"] == "[access] decision"
    assert payload["user_id"] == "u1"
    assert payload["state"] == "ACTIVE"


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="accessledger"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"


def test_decision_log_has_structured_fields(client, caplog):
    with caplog.at_level(logging.INFO, logger="accessledger"):
        client.post("/v1/access/check", headers={"X-User-Id": "u7"}, json={"product_id": "p1"})
    decisions = [r for r in caplog.records if r.getMessage() == "[access] decision"]
    assert decisions
    assert decisions[0].user_id == "u7"
    assert decisions[0].state == "NO_GRANT"
