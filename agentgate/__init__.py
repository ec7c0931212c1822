"""
agentgate: validation and usage governance for LLM agent invocations.

Two subsystems sit between a model's free-text output and the rest of an
application:
- agentgate.parsing: extraction, structural validation, normalization and
  semantic validation of agent output (execution plans, grant assessments)
- agentgate.governance: rate limit, daily token budget, storage quota and
  daily request quota, backed by agentgate.store

Usage:
    from agentgate import load_config, build_services

    services = build_services(load_config())
    decision = await services.gate.check_free_tier_limits("user-123")
    if not decision.allowed:
        print(decision.message)
"""

__version__ = "0.1.0"

from .config import AgentGateConfig, configure_logging, load_config
from .services import Services, build_runner, build_services

__all__ = [
    "__version__",
    "AgentGateConfig",
    "configure_logging",
    "load_config",
    "Services",
    "build_services",
    "build_runner",
]
