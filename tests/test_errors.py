import logging

from ticketing.core import errors
from ticketing.core.errors import InvalidStatusTransition, RequestNotFound, guarded_call, log_exception


def test_error_codes_and_status():
    exc = InvalidStatusTransition("submitted", "completed")
    assert exc.status_code == 409
    assert exc.code == "invalid_status_transition"
    assert "submitted" in exc.message and "completed" in exc.message
    missing = RequestNotFound("REQ-20261018-0001")
    assert missing.status_code == 404
    assert missing.message == "Request REQ-20261018-0001 not found"
    assert isinstance(missing, errors.NotFoundError)


def test_log_exception_includes_context(caplog):
    logger = logging.getLogger("test_errors")
    caplog.set_level(logging.ERROR)

    log_exception(logger, "SLA revert failed", extra={"request_id": 5, "skip": None}, exc=RuntimeError("boom"))

    record = caplog.records[-1]
    assert record.getMessage() == "SLA revert failed request_id=5: boom"
    assert record.exc_info is not None


def test_guarded_call_returns_fallback_and_logs(caplog):
    logger = logging.getLogger("test_errors")
    caplog.set_level(logging.ERROR)

    def _boom():
        raise ValueError("bad value")

    assert guarded_call("Lookup", _boom, fallback=3, logger=logger, context={"key": "x"}) == 3
    assert guarded_call("Lookup", lambda: 9, fallback=3, logger=logger) == 9
    assert any("Lookup failed key=x: bad value" in rec.getMessage() for rec in caplog.records)
