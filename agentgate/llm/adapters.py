"""
Provider adapters for model invocation.

- LLMAdapter: provider-neutral interface
- BedrockAdapter: Claude on AWS Bedrock via the anthropic SDK

Adapters translate between LLMRequest/LLMResponse and the provider API.
They do not retry; wrap calls in InvocationRetry.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from .models import LLMRequest, LLMResponse, TokenUsage

logger = logging.getLogger(__name__)


class LLMAdapter(ABC):
    """
    Abstract base class for model provider adapters.

    Subclasses implement the provider call and token extraction.
    """

    @abstractmethod
    async def call(self, request: LLMRequest) -> LLMResponse:
        """
        Make a non-streaming model call.

        Args:
            request: Standardized request

        Returns:
            Standardized response with usage information
        """
        pass

    @abstractmethod
    def extract_usage(self, response: Any) -> TokenUsage:
        """Extract token usage from a provider-specific response."""
        pass

    def _estimate_usage(self, content: str, input_estimate: int = 0) -> TokenUsage:
        """
        Estimate usage when not available from response.

        Rough estimation: ~4 chars per token.
        """
        output_tokens = max(1, len(content) // 4)
        return TokenUsage(
            input_tokens=input_estimate or 100,
            output_tokens=output_tokens,
        )

    async def close(self) -> None:
        """Release provider resources."""
        pass


class BedrockAdapter(LLMAdapter):
    """
    Adapter for Claude models hosted on AWS Bedrock.

    Uses anthropic.AsyncAnthropicBedrock, which reads AWS credentials from
    the standard environment/profile chain. Token usage is taken from
    response.usage.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        timeout: int = 300,
        client: Optional[Any] = None,
    ):
        """
        Initialize Bedrock adapter.

        Args:
            region: AWS region hosting the model
            timeout: Request timeout in seconds
            client: Pre-built client (tests)
        """
        self._region = region
        self._timeout = timeout
        self._client = client

    def _get_client(self):
        """Lazy initialization of the Bedrock client."""
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise ImportError(
                    "anthropic package not installed. "
                    "Install with: pip install 'agentgate[bedrock]'"
                )
            self._client = anthropic.AsyncAnthropicBedrock(
                aws_region=self._region,
                timeout=self._timeout,
            )
        return self._client

    async def call(self, request: LLMRequest) -> LLMResponse:
        """Make a non-streaming Claude call on Bedrock."""
        client = self._get_client()

        kwargs = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system:
            kwargs["system"] = request.system

        response = await client.messages.create(**kwargs)

        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        usage = self.extract_usage(response)
        if usage is None:
            usage = self._estimate_usage(content, len(request.prompt) // 4)

        return LLMResponse(
            content=content,
            usage=usage,
            model=getattr(response, "model", request.model),
            finish_reason=getattr(response, "stop_reason", None) or "unknown",
            raw_response=response,
        )

    def extract_usage(self, response: Any) -> Optional[TokenUsage]:
        """Extract usage from a Messages API response."""
        usage = getattr(response, "usage", None)
        if usage is None:
            return None
        return TokenUsage(
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
