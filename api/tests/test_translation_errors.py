"""
Tests for translation failure classification.
"""

import asyncio

import httpx
import pytest


def _response(status_code: int, message: str = "error", headers=None) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"error": {"message": message}},
        headers=headers,
        request=httpx.Request("POST", "https://translator.test/v1/chat/completions"),
    )


@pytest.mark.unit
class TestClassifyResponse:
    """HTTP responses map onto the error taxonomy."""

    @pytest.mark.parametrize(
        "status_code,message,expected",
        [
            (401, "bad key", "invalid-credentials"),
            (429, "slow down", "rate-limit"),
            (402, "payment required", "quota-exceeded"),
            (400, "monthly quota reached", "quota-exceeded"),
            (500, "internal", "network"),
            (503, "unavailable", "network"),
            (413, "payload", "text-too-long"),
            (400, "input is too long", "text-too-long"),
            (400, "Unsupported language: xx", "unsupported-language"),
            (400, "something odd", "unknown"),
        ],
    )
    def test_status_mapping(self, status_code, message, expected):
        from polychat.services.translation.errors import classify_response

        error = classify_response(_response(status_code, message))

        assert error.error_type.value == expected
        assert error.status_code == status_code

    def test_rate_limit_carries_retry_after(self):
        from polychat.services.translation.errors import classify_response

        error = classify_response(_response(429, headers={"Retry-After": "12"}))

        assert error.retry_after == 12.0
        assert error.retryable

    def test_non_json_body_is_tolerated(self):
        from polychat.services.translation.errors import classify_response

        response = httpx.Response(502, text="<html>Bad gateway</html>")

        assert classify_response(response).error_type.value == "network"


@pytest.mark.unit
class TestClassifyException:
    """Transport exceptions map onto the error taxonomy."""

    def test_asyncio_timeout(self):
        from polychat.services.translation.errors import classify_exception

        assert classify_exception(asyncio.TimeoutError()).error_type.value == "timeout"

    def test_httpx_timeout(self):
        from polychat.services.translation.errors import classify_exception

        exc = httpx.ReadTimeout("timed out")

        assert classify_exception(exc).error_type.value == "timeout"

    def test_connect_error_is_network(self):
        from polychat.services.translation.errors import classify_exception

        exc = httpx.ConnectError("refused")

        assert classify_exception(exc).error_type.value == "network"

    def test_status_error_uses_response(self):
        from polychat.services.translation.errors import classify_exception

        response = _response(401)
        exc = httpx.HTTPStatusError(
            "unauthorized", request=response.request, response=response
        )

        assert classify_exception(exc).error_type.value == "invalid-credentials"

    def test_anything_else_is_unknown(self):
        from polychat.services.translation.errors import classify_exception

        assert classify_exception(RuntimeError("boom")).error_type.value == "unknown"

    def test_translation_error_passes_through(self):
        from polychat.services.translation.errors import (
            TranslationError,
            TranslationErrorType,
            classify_exception,
        )

        error = TranslationError(TranslationErrorType.QUOTA_EXCEEDED, "quota")

        assert classify_exception(error) is error


@pytest.mark.unit
class TestErrorProperties:
    """Retry and fallback eligibility per error type."""

    def test_only_transient_types_are_retryable(self):
        from polychat.services.translation.errors import (
            TranslationError,
            TranslationErrorType,
        )

        retryable = {
            error_type
            for error_type in TranslationErrorType
            if TranslationError(error_type, "x").retryable
        }

        assert retryable == {
            TranslationErrorType.NETWORK,
            TranslationErrorType.RATE_LIMIT,
            TranslationErrorType.TIMEOUT,
        }

    def test_credentials_and_language_errors_have_no_fallback(self):
        from polychat.services.translation.errors import (
            TranslationError,
            TranslationErrorType,
        )

        assert not TranslationError(
            TranslationErrorType.INVALID_CREDENTIALS, "x"
        ).fallback_available
        assert not TranslationError(
            TranslationErrorType.UNSUPPORTED_LANGUAGE, "x"
        ).fallback_available
        assert TranslationError(TranslationErrorType.TIMEOUT, "x").fallback_available

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("5", 5.0),
            ("0", 0.0),
            ("", None),
            ("-1", None),
            ("Wed, 21 Oct 2015 07:28:00 GMT", None),
        ],
    )
    def test_parse_retry_after(self, value, expected):
        from polychat.services.translation.errors import parse_retry_after

        assert parse_retry_after(value) == expected

    def test_every_type_has_a_user_message(self):
        from polychat.services.translation.errors import (
            TranslationErrorType,
            user_message,
        )

        for error_type in TranslationErrorType:
            assert user_message(error_type)
        assert user_message(None) == user_message(TranslationErrorType.UNKNOWN)


@pytest.mark.unit
class TestTranslationErrorTracker:
    def test_counts_per_type(self):
        from polychat.services.translation.errors import (
            TranslationError,
            TranslationErrorTracker,
            TranslationErrorType,
        )

        tracker = TranslationErrorTracker()
        tracker.record(TranslationError(TranslationErrorType.NETWORK, "a"))
        tracker.record(TranslationError(TranslationErrorType.NETWORK, "b"))
        tracker.record(TranslationError(TranslationErrorType.TIMEOUT, "c"))

        assert tracker.get_stats() == {"network": 2, "timeout": 1}

        tracker.reset()
        assert tracker.get_stats() == {}
