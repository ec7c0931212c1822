"""
Tests for model invocation: retry classification and the Bedrock adapter.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentgate.llm import (
    BedrockAdapter,
    InvocationError,
    InvocationRetry,
    LLMRequest,
    NonRetryableInvocationError,
    TokenUsage,
)
from agentgate.llm.retry import status_code_of


class ValidationException(Exception):
    pass


class ProviderHTTPError(Exception):
    def __init__(self, status_code):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


# ============================================================
# Retry
# ============================================================


class TestInvocationRetry:
    """Test retry behavior for model calls."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        operation = AsyncMock(return_value="ok")

        assert await InvocationRetry().execute(operation) == "ok"
        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        operation = AsyncMock(side_effect=[TimeoutError("slow"), ConnectionError("reset"), "ok"])

        with patch("agentgate.llm.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await InvocationRetry(max_attempts=3, delay_base=1.0).execute(operation)

        assert result == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        failure = ConnectionError("reset")
        operation = AsyncMock(side_effect=failure)

        with patch("agentgate.llm.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(InvocationError) as exc_info:
                await InvocationRetry(max_attempts=3).execute(operation)

        assert not isinstance(exc_info.value, NonRetryableInvocationError)
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_exception is failure
        assert operation.call_count == 3

    @pytest.mark.asyncio
    async def test_named_error_not_retried(self):
        operation = AsyncMock(side_effect=ValidationException("bad model id"))

        with pytest.raises(NonRetryableInvocationError) as exc_info:
            await InvocationRetry().execute(operation)

        assert operation.call_count == 1
        assert isinstance(exc_info.value.__cause__, ValidationException)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retried", [
        (400, False),
        (403, False),
        (404, False),
        (408, True),
        (429, True),
        (500, True),
        (503, True),
    ])
    async def test_status_classification(self, status, retried):
        operation = AsyncMock(side_effect=ProviderHTTPError(status))

        with patch("agentgate.llm.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(InvocationError) as exc_info:
                await InvocationRetry(max_attempts=2).execute(operation)

        assert operation.call_count == (2 if retried else 1)
        assert isinstance(exc_info.value, NonRetryableInvocationError) is not retried

    def test_delay_formula(self):
        retry = InvocationRetry(delay_base=1.0, delay_max=30.0)
        assert retry._calculate_delay(0) == 1.0
        assert retry._calculate_delay(3) == 8.0
        assert retry._calculate_delay(10) == 30.0

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            InvocationRetry(max_attempts=0)

    def test_status_code_of(self):
        assert status_code_of(ProviderHTTPError(429)) == 429
        wrapped = Exception("x")
        wrapped.response = SimpleNamespace(status_code=502)
        assert status_code_of(wrapped) == 502
        assert status_code_of(ValueError("plain")) is None


# ============================================================
# Bedrock adapter
# ============================================================


def fake_response(blocks, usage=None):
    return SimpleNamespace(
        content=blocks,
        usage=usage,
        model="anthropic.claude-3-sonnet-20240229-v1:0",
        stop_reason="end_turn",
    )


class TestBedrockAdapter:
    """Test the adapter against a fake client."""

    @pytest.mark.asyncio
    async def test_call(self):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=fake_response(
            [SimpleNamespace(text="Hello "), SimpleNamespace(type="tool_use"), SimpleNamespace(text="world")],
            usage=SimpleNamespace(input_tokens=12, output_tokens=8),
        ))
        adapter = BedrockAdapter(client=client)
        request = LLMRequest(prompt="Plan my week", model="m", max_tokens=500, temperature=0.2)

        response = await adapter.call(request)

        assert response.content == "Hello world"
        assert response.usage == TokenUsage(12, 8)
        assert response.usage.total == 20
        assert response.finish_reason == "end_turn"
        client.messages.create.assert_awaited_once_with(
            model="m",
            max_tokens=500,
            temperature=0.2,
            messages=[{"role": "user", "content": "Plan my week"}],
        )

    @pytest.mark.asyncio
    async def test_system_prompt_passed(self):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=fake_response(
            [SimpleNamespace(text="{}")], usage=SimpleNamespace(input_tokens=1, output_tokens=1)
        ))
        adapter = BedrockAdapter(client=client)

        await adapter.call(LLMRequest(prompt="p", model="m", system="Respond in JSON"))

        assert client.messages.create.await_args.kwargs["system"] == "Respond in JSON"

    @pytest.mark.asyncio
    async def test_usage_estimated_when_missing(self):
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=fake_response([SimpleNamespace(text="x" * 40)]))
        adapter = BedrockAdapter(client=client)

        response = await adapter.call(LLMRequest(prompt="y" * 400, model="m"))

        assert response.usage == TokenUsage(input_tokens=100, output_tokens=10)

    @pytest.mark.asyncio
    async def test_close(self):
        client = MagicMock()
        client.close = AsyncMock()
        adapter = BedrockAdapter(client=client)

        await adapter.close()

        client.close.assert_awaited_once()
