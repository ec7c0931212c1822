"""
Model invocation seam.

This module provides:
- LLMRequest / LLMResponse / TokenUsage: provider-neutral types
- LLMAdapter, BedrockAdapter: provider adapters
- InvocationRetry: exponential backoff with non-retryable classification
"""

from .adapters import BedrockAdapter, LLMAdapter
from .models import (
    InvocationError,
    LLMRequest,
    LLMResponse,
    NonRetryableInvocationError,
    TokenUsage,
)
from .retry import InvocationRetry

__all__ = [
    "LLMAdapter",
    "BedrockAdapter",
    "LLMRequest",
    "LLMResponse",
    "TokenUsage",
    "InvocationError",
    "NonRetryableInvocationError",
    "InvocationRetry",
]
