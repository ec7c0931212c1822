"""Agent invocation: gate, model call, token charge, parse, persist."""

from .runner import AgentRunner, AgentRunResult, RunStatus

__all__ = ["AgentRunner", "AgentRunResult", "RunStatus"]
