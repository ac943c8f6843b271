"""
Tests for TranslatorClient.

The external endpoint is replaced by httpx.MockTransport (see conftest), and
retry sleeps are recorded instead of awaited.
"""

from dataclasses import replace
from unittest.mock import AsyncMock

import httpx
import pytest
from tests.fakes import completion_response, error_response


@pytest.mark.unit
class TestTranslateHappyPath:
    """Successful translations and cache reuse."""

    @pytest.mark.asyncio
    async def test_translates_and_scores(self, translator, completion_endpoint):
        result = await translator.translate("Hello", "es")

        assert result.translated_text == "Hola"
        assert result.detected_language == "en"
        assert result.confidence == 0.85
        assert result.cached is False
        assert not result.failed
        assert completion_endpoint.call_count == 1

    @pytest.mark.asyncio
    async def test_repeat_is_served_from_cache(self, translator, completion_endpoint):
        await translator.translate("Hello", "es")
        result = await translator.translate("Hello", "es")

        assert result.translated_text == "Hola"
        assert result.cached is True
        assert completion_endpoint.call_count == 1
        assert translator.get_stats()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_request_payload(self, translator, completion_endpoint):
        await translator.translate("Hello", "es", "en")

        payload = completion_endpoint.requests[0]
        assert payload["model"] == translator.model
        assert payload["stream"] is False
        assert "Spanish" in payload["messages"][0]["content"]
        assert "English" in payload["messages"][0]["content"]
        assert payload["messages"][1]["content"].endswith("\n\nHello")

    @pytest.mark.asyncio
    async def test_low_confidence_result_is_not_cached(
        self, translator, completion_endpoint
    ):
        completion_endpoint.replies["Hi there"] = "Hola " * 20

        first = await translator.translate("Hi there", "es")
        await translator.translate("Hi there", "es")

        assert first.confidence == 0.5
        assert completion_endpoint.call_count == 2

    @pytest.mark.asyncio
    async def test_language_codes_are_normalized(self, translator, completion_endpoint):
        await translator.translate("Hello", " ES ")
        result = await translator.translate("Hello", "es")

        assert result.cached is True
        assert completion_endpoint.call_count == 1


@pytest.mark.unit
class TestPassThrough:
    """Text already in the target language skips the endpoint."""

    @pytest.mark.asyncio
    async def test_detected_target_language_skips_call(
        self, translator, completion_endpoint
    ):
        result = await translator.translate("Hola, ¿cómo estás?", "es")

        assert result.translated_text == "Hola, ¿cómo estás?"
        assert result.confidence == 0.95
        assert result.detected_language == "es"
        assert completion_endpoint.call_count == 0

    @pytest.mark.asyncio
    async def test_pass_through_is_cached(self, translator, completion_endpoint):
        await translator.translate("Hola, ¿cómo estás?", "es")
        result = await translator.translate("Hola, ¿cómo estás?", "es")

        assert result.cached is True
        assert translator.get_stats()["passthrough"] == 1

    @pytest.mark.asyncio
    async def test_declared_source_wins_over_detection(
        self, translator, completion_endpoint
    ):
        result = await translator.translate("Hello", "de", source_lang="de")

        assert result.translated_text == "Hello"
        assert completion_endpoint.call_count == 0


@pytest.mark.unit
class TestFailureHandling:
    """Failures fall back to the original text instead of raising."""

    @pytest.mark.asyncio
    async def test_server_errors_retry_then_fall_back(
        self, translator, completion_endpoint, retry_sleep
    ):
        completion_endpoint.failures = [error_response(500) for _ in range(3)]

        result = await translator.translate("Hello", "es")

        assert result.translated_text == "Hello"
        assert result.confidence == 0.0
        assert result.detected_language == "unknown"
        assert result.error_type.value == "network"
        assert completion_endpoint.call_count == 3
        assert retry_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_fallback_is_not_cached(self, translator, completion_endpoint):
        completion_endpoint.failures = [error_response(500) for _ in range(3)]

        await translator.translate("Hello", "es")
        result = await translator.translate("Hello", "es")

        assert result.translated_text == "Hola"
        assert completion_endpoint.call_count == 4

    @pytest.mark.asyncio
    async def test_invalid_credentials_are_not_retried(
        self, translator, completion_endpoint, retry_sleep
    ):
        completion_endpoint.failures = [error_response(401, "invalid api key")]

        result = await translator.translate("Hello", "es")

        assert result.error_type.value == "invalid-credentials"
        assert result.translated_text == "Hello"
        assert completion_endpoint.call_count == 1
        retry_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_waits_at_least_the_floor(
        self, translator, completion_endpoint, retry_sleep, test_settings
    ):
        completion_endpoint.failures = [error_response(429, "slow down")]

        result = await translator.translate("Hello", "es")

        assert result.translated_text == "Hola"
        delay = retry_sleep.await_args_list[0].args[0]
        assert delay >= test_settings.TRANSLATION_RATE_LIMIT_MIN_DELAY

    @pytest.mark.asyncio
    async def test_rate_limit_honors_retry_after(
        self, translator, completion_endpoint, retry_sleep
    ):
        completion_endpoint.failures = [
            error_response(429, "slow down", headers={"Retry-After": "9"})
        ]

        await translator.translate("Hello", "es")

        assert retry_sleep.await_args_list[0].args[0] == 9.0

    @pytest.mark.asyncio
    async def test_long_retry_after_is_capped(
        self, translator, completion_endpoint, retry_sleep, test_settings
    ):
        completion_endpoint.failures = [
            error_response(429, "slow down", headers={"Retry-After": "3600"})
            for _ in range(3)
        ]

        result = await translator.translate("Hello", "es", "en")

        assert result.error_type.value == "rate-limit"
        delays = [call.args[0] for call in retry_sleep.await_args_list]
        assert len(delays) == 2
        assert all(
            delay <= test_settings.TRANSLATION_RATE_LIMIT_MAX_DELAY for delay in delays
        )

    @pytest.mark.asyncio
    async def test_translate_within_falls_back_after_deadline(self, test_settings):
        import asyncio

        from polychat.services.translation.translator import TranslatorClient

        async def stalled(request):
            await asyncio.sleep(5)
            return completion_response("Hola")

        client = TranslatorClient(
            test_settings, transport=httpx.MockTransport(stalled)
        )

        result = await client.translate_within("Hello", "es", "en", timeout=0.05)
        await client.close()

        assert result.translated_text == "Hello"
        assert result.error_type.value == "timeout"
        assert result.confidence == 0.0
        assert client.get_stats()["errors"] == {"timeout": 1}

    @pytest.mark.asyncio
    async def test_empty_completion_is_unknown_and_not_retried(
        self, translator, completion_endpoint
    ):
        completion_endpoint.failures = [completion_response("   ")]

        result = await translator.translate("Hello", "es")

        assert result.error_type.value == "unknown"
        assert completion_endpoint.call_count == 1

    @pytest.mark.asyncio
    async def test_malformed_body_is_unknown(self, translator, completion_endpoint):
        completion_endpoint.failures = [httpx.Response(200, json={"choices": []})]

        result = await translator.translate("Hello", "es")

        assert result.error_type.value == "unknown"
        assert result.translated_text == "Hello"

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, test_settings):
        from polychat.services.translation.translator import TranslatorClient

        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        client = TranslatorClient(
            test_settings, transport=httpx.MockTransport(handler)
        )
        client.retry_policy = replace(client.retry_policy, sleep=AsyncMock())

        result = await client.translate("Hello", "es")
        await client.close()

        assert result.error_type.value == "timeout"
        assert len(calls) == test_settings.TRANSLATION_MAX_RETRIES

    @pytest.mark.asyncio
    async def test_text_over_limit_is_not_sent(self, translator, completion_endpoint):
        text = "hello " * (translator.max_text_length // 5)

        result = await translator.translate(text, "es")

        assert result.error_type.value == "text-too-long"
        assert result.translated_text == text
        assert completion_endpoint.call_count == 0

    @pytest.mark.asyncio
    async def test_errors_are_tracked(self, translator, completion_endpoint):
        completion_endpoint.failures = [error_response(500) for _ in range(3)]

        await translator.translate("Hello", "es")

        stats = translator.get_stats()
        assert stats["errors"] == {"network": 3}
        assert stats["fallbacks"] == 1


@pytest.mark.unit
class TestInputValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", None])
    async def test_blank_text_raises(self, translator, text):
        from polychat.services.translation.errors import InvalidTranslationInput

        with pytest.raises(InvalidTranslationInput):
            await translator.translate(text, "es")

    @pytest.mark.asyncio
    async def test_missing_target_raises(self, translator):
        from polychat.services.translation.errors import InvalidTranslationInput

        with pytest.raises(InvalidTranslationInput):
            await translator.translate("Hello", "")


@pytest.mark.unit
class TestBatchAndConnectionCheck:
    @pytest.mark.asyncio
    async def test_batch_translate_keeps_order(self, translator):
        results = await translator.batch_translate(["Hello", "Good morning"], "es")

        assert [r.translated_text for r in results] == ["Hola", "Buenos días"]

    @pytest.mark.asyncio
    async def test_batch_translate_contains_bad_items(self, translator):
        results = await translator.batch_translate(["Hello", ""], "es")

        assert results[0].translated_text == "Hola"
        assert results[1].confidence == 0.0
        assert results[1].failed

    @pytest.mark.asyncio
    async def test_connection_probe(self, translator, completion_endpoint):
        assert await translator.test_connection() is True

    @pytest.mark.asyncio
    async def test_connection_probe_reports_failure(
        self, translator, completion_endpoint
    ):
        completion_endpoint.failures = [error_response(401)]

        assert await translator.test_connection() is False

    def test_confidence_heuristic(self):
        from polychat.services.translation.translator import calculate_confidence

        assert calculate_confidence("Hello", "Hello") == 0.95
        assert calculate_confidence("Hello there", "Hola") == 0.85
        assert calculate_confidence("Hi", "x" * 20) == 0.5
        assert calculate_confidence("x" * 20, "Hi") == 0.5
