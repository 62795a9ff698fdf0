import io
import json
import logging

from helperapp.entities import SessionStatus
from helperapp.logging_config import ContextJsonFormatter
from helperapp.utils.logging_helpers import STANDARD_CONTEXT_KEYS, add_context, enforce_context


def _capture(name):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ContextJsonFormatter())

    logger = logging.getLogger(name)
    logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(logging.INFO)
    return logger, handler, stream


def _payload(logger, handler, stream):
    handler.flush()
    output = stream.getvalue().strip()
    logger.removeHandler(handler)
    assert output, "log output should not be empty"
    return json.loads(output)


def test_context_json_formatter_promotes_common_fields():
    logger, handler, stream = _capture("test.logging.formatter")

    logger.info(
        "structured message",
        extra={"session_id": "s-1", "status": SessionStatus.IN_PROGRESS, "rolls": (3, 5)},
    )

    payload = _payload(logger, handler, stream)
    assert payload["session_id"] == "s-1"
    assert payload["status"] == "in_progress"
    assert payload["extra"] == {"rolls": [3, 5]}
    assert payload["message"] == "structured message"
    assert payload["timestamp"].endswith("+00:00")


def test_logger_adapter_injects_standard_context_fields():
    logger, handler, stream = _capture("test.logging.adapter")

    adapter = add_context(logger, event_type="unit_test")
    adapter.bind(session_id="s-9").info("adapter message", extra={"version": 3})

    payload = _payload(logger, handler, stream)
    for key in STANDARD_CONTEXT_KEYS:
        assert key in payload
    assert payload["event_type"] == "unit_test"
    assert payload["session_id"] == "s-9"
    assert payload["extra"]["version"] == 3


def test_enforce_context_keeps_defaults_and_existing_extra():
    logger = logging.getLogger("test.logging.enforce")

    adapter = enforce_context(add_context(logger, request_category="bus"), {"worker_id": "w-1"})

    assert adapter.extra["worker_id"] == "w-1"
    assert adapter.extra["request_category"] == "bus"
    assert adapter.extra["session_id"] is None


def test_exception_text_is_included():
    logger, handler, stream = _capture("test.logging.exception")

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.error("failed", exc_info=True)

    payload = _payload(logger, handler, stream)
    assert "RuntimeError: boom" in payload["exception"]
