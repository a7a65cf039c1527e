import json
import logging

from readrise.logging_utils import (
    JsonFormatter,
    RequestContextFilter,
    clear_request_context,
    get_request_context,
    redact_value,
    set_request_context,
)


def _record(message, **extra):
    record = logging.LogRecord("readrise.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_redact_value_masks_sensitive_keys_and_tokens():
    redacted = redact_value(
        {
            "authorization": "Bearer abc.def",
            "note": "sent apikey=xyz&user=1",
            "nested": [{"service_role_key": "secret"}],
        }
    )

    assert redacted["authorization"] == "[REDACTED]"
    assert redacted["note"] == "sent apikey=[REDACTED]&user=1"
    assert redacted["nested"] == [{"service_role_key": "[REDACTED]"}]


def test_json_formatter_merges_request_context_and_extras():
    clear_request_context()
    set_request_context(request_id="req-1", route="/api/achievements/check", user_id="user-1")
    try:
        record = _record("achievements.unlocked", achievement_key="first_session")
        RequestContextFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        clear_request_context()

    assert payload["message"] == "achievements.unlocked"
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "user-1"
    assert payload["achievement_key"] == "first_session"
    assert payload["level"] == "INFO"


def test_json_formatter_redacts_bearer_tokens_in_messages():
    payload = json.loads(JsonFormatter().format(_record("auth header Bearer eyJhbGci.payload")))
    assert "eyJhbGci" not in payload["message"]


def test_request_context_is_copied_and_clearable():
    clear_request_context()
    set_request_context(request_id="req-2")
    snapshot = get_request_context()
    snapshot["request_id"] = "changed"

    assert get_request_context() == {"request_id": "req-2"}
    clear_request_context()
    assert get_request_context() == {}
