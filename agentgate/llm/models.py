"""
Data models for model invocation.

Defines standardized request/response types and the invocation error
hierarchy shared by adapters and the retry wrapper.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class InvocationError(Exception):
    """Base exception for model invocation failures."""

    def __init__(
        self,
        message: str,
        last_exception: Optional[BaseException] = None,
        attempts: int = 0,
    ):
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(message)


class NonRetryableInvocationError(InvocationError):
    """Raised for failures that retrying cannot fix (bad request, access denied)."""
    pass


@dataclass
class TokenUsage:
    """Token usage reported for a single invocation."""
    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


@dataclass
class LLMRequest:
    """
    Standardized model request.

    Attributes:
        prompt: User prompt text
        model: Model identifier (e.g., "anthropic.claude-3-sonnet-20240229-v1:0")
        max_tokens: Maximum tokens in response
        temperature: Sampling temperature
        metadata: Caller context (subject_id, agent kind, ...)
        system: Optional system prompt
    """
    prompt: str
    model: str
    max_tokens: int = 2000
    temperature: float = 0.7
    metadata: Dict[str, Any] = field(default_factory=dict)
    system: Optional[str] = None


@dataclass
class LLMResponse:
    """
    Standardized model response.

    Attributes:
        content: Text content of the response
        usage: Token usage (input and output)
        model: Model that generated the response
        finish_reason: Why generation stopped
        raw_response: Original provider response (for debugging)
    """
    content: str
    usage: TokenUsage
    model: str
    finish_reason: str
    raw_response: Any = None
