from delta_gateway.monitoring.redaction import REDACTED, redact, structlog_redaction_processor


def test_credential_and_signature_keys_masked_at_any_depth():
    event = {
        "event": "Signed request",
        "api-key": "abc",
        "headers": {"signature": "deadbeef", "timestamp": "1700000005"},
        "attempts": [{"api_secret": "shh", "status": 401}],
    }

    out = redact(event)

    assert out["event"] == "Signed request"
    assert out["api-key"] == REDACTED
    assert out["headers"] == {"signature": REDACTED, "timestamp": "1700000005"}
    assert out["attempts"] == [{"api_secret": REDACTED, "status": 401}]


def test_processor_leaves_plain_events_alone():
    event = {"event": "Session state changed", "state": "active"}
    assert structlog_redaction_processor(None, "info", event) == event
