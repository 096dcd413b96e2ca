"""
Structured logging tests.
"""
import json
import logging

from helpdesk_sla.shared.infrastructure.logging import CustomJsonFormatter, log_latency


def format_record(**extra) -> dict:
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")
    record = logging.LogRecord("helpdesk_sla.test", logging.INFO, __file__, 1, "SLA tick complete", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_json_fields():
    line = format_record(tenant="acme", correlation_id="abc")

    assert line["message"] == "SLA tick complete"
    assert line["tenant"] == "acme"
    assert line["correlation_id"] == "abc"
    assert line["environment"] == "test"
    assert "timestamp" in line


def test_webhook_redacted():
    line = format_record(slack_webhook_url="https://hooks.slack.com/services/secret")
    assert line["slack_webhook_url"] == "***REDACTED***"


def test_log_latency(caplog):
    logger = logging.getLogger("helpdesk_sla.test")

    with caplog.at_level(logging.INFO, logger="helpdesk_sla.test"):
        with log_latency(logger, "sla_worker_run", tenants=["acme"]):
            pass

    [record] = caplog.records
    assert record.getMessage() == "sla_worker_run completed"
    assert record.operation == "sla_worker_run"
    assert record.tenants == ["acme"]
    assert record.latency_ms >= 0
