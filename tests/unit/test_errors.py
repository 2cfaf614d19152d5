"""
Unit tests for error classification.
"""

from ojs_worker.errors import (
    ConflictError,
    InvalidRequestError,
    OJSError,
    RateLimitError,
    ServerError,
    classify,
)


def raise_and_catch(exc: Exception) -> Exception:
    try:
        raise exc
    except Exception as e:
        return e


class TestClassify:
    """Tests for classify()."""

    def test_type_and_message(self):
        error = classify(raise_and_catch(RuntimeError("boom")))

        assert error.type == "RuntimeError"
        assert error.message == "boom"
        assert error.backtrace
        assert any("raise_and_catch" in line for line in error.backtrace)

    def test_custom_exception_name(self):
        class PaymentDeclined(Exception):
            pass

        error = classify(raise_and_catch(PaymentDeclined("card expired")))

        assert error.type == "PaymentDeclined"

    def test_unraised_exception_has_no_backtrace(self):
        error = classify(ValueError("never raised"))

        assert error.backtrace is None
        assert "backtrace" not in error.model_dump(exclude_none=True)

    def test_backtrace_is_capped(self):
        def recurse(depth: int) -> None:
            if depth == 0:
                raise RecursionError("deep")
            recurse(depth - 1)

        try:
            recurse(100)
        except RecursionError as e:
            error = classify(e)

        assert len(error.backtrace) == 50


class TestFromResponse:
    """Tests for OJSError.from_response()."""

    def test_known_code(self):
        error = OJSError.from_response(
            {"error": {"code": "backend_error", "message": "Redis down", "request_id": "r1"}},
            http_status=500,
        )

        assert isinstance(error, ServerError)
        assert error.message == "Redis down"
        assert error.request_id == "r1"
        assert error.retryable is True

    def test_validation_code_kept(self):
        error = OJSError.from_response(
            {"error": {"code": "schema_validation", "message": "bad"}},
            http_status=400,
        )

        assert isinstance(error, InvalidRequestError)
        assert error.code == "schema_validation"
        assert error.retryable is False

    def test_unknown_code(self):
        error = OJSError.from_response(
            {"error": {"code": "mystery", "message": "?", "retryable": True}},
            http_status=418,
        )

        assert type(error) is OJSError
        assert error.code == "mystery"
        assert error.retryable is True
        assert error.http_status == 418

    def test_non_dict_body(self):
        error = OJSError.from_response(None, http_status=400)

        assert type(error) is OJSError
        assert error.message == "Unknown error"

    def test_subclass_attributes(self):
        assert ConflictError(existing_job_id="j1").existing_job_id == "j1"
        assert RateLimitError(retry_after=5).retry_after == 5
