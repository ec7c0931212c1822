"""Configuration for agentgate.

Configuration is loaded from environment variables, optionally overlaid by
a YAML file, and passed explicitly into build_services(). There is no
module-level configuration instance.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .governance.models import QuotaKind

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ConfigError(Exception):
    """Raised when a configuration file or value is invalid."""
    pass


@dataclass
class AgentGateConfig:
    """Every tunable, with production defaults.

    Per-governor fail-open flags left as None inherit `fail_open`.
    """

    # Storage
    db_path: str = "agentgate.db"
    counters_collection: str = "usage_counters"
    results_collection: str = "agent_results"
    store_max_attempts: int = 3
    store_retry_base_delay: float = 0.1

    # Free tier quotas
    rate_limit: int = 100
    rate_window_minutes: float = 1.0
    token_limit: int = 100_000
    daily_limit: int = 1000
    storage_cap: int = 5 * 1024 ** 3

    # Failure policy
    fail_open: bool = True
    rate_fail_open: Optional[bool] = None
    token_fail_open: Optional[bool] = None
    storage_fail_open: Optional[bool] = None
    daily_fail_open: Optional[bool] = None

    # Model invocation
    model_id: str = "anthropic.claude-3-sonnet-20240229-v1:0"
    max_tokens: int = 2000
    temperature: float = 0.7
    aws_region: str = "us-east-1"
    llm_max_attempts: int = 3
    llm_retry_base_delay: float = 1.0

    # Parsing / maintenance
    planning_horizon_days: int = 7
    sweep_batch_size: int = 25

    log_level: str = "INFO"

    def governor_fail_open(self, quota: QuotaKind) -> bool:
        """Effective fail-open flag for one governor."""
        override = {
            QuotaKind.RATE: self.rate_fail_open,
            QuotaKind.TOKENS: self.token_fail_open,
            QuotaKind.STORAGE: self.storage_fail_open,
            QuotaKind.DAILY: self.daily_fail_open,
        }[quota]
        return self.fail_open if override is None else override

    def validate(self) -> None:
        """Raise ConfigError for values no component can work with."""
        for name in ("rate_limit", "token_limit", "daily_limit", "storage_cap"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        for name in ("store_max_attempts", "llm_max_attempts", "sweep_batch_size"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1")
        if self.rate_window_minutes <= 0:
            raise ConfigError("rate_window_minutes must be positive")
        if self.planning_horizon_days < 0:
            raise ConfigError("planning_horizon_days must be >= 0")

    @classmethod
    def from_environment(cls) -> "AgentGateConfig":
        """Load config from environment variables.

        Environment variables:
        - AGENTGATE_DB_PATH (default: agentgate.db)
        - AGENTGATE_COUNTERS_COLLECTION (default: usage_counters)
        - AGENTGATE_RESULTS_COLLECTION (default: agent_results)
        - FREE_TIER_RATE_LIMIT (default: 100)
        - FREE_TIER_RATE_WINDOW_MINUTES (default: 1)
        - FREE_TIER_TOKEN_LIMIT (default: 100000)
        - FREE_TIER_DAILY_LIMIT (default: 1000)
        - FREE_TIER_STORAGE_CAP (bytes, default: 5368709120)
        - FREE_TIER_FAIL_OPEN (default: true)
        - FREE_TIER_{RATE,TOKEN,STORAGE,DAILY}_FAIL_OPEN (default: inherit)
        - STORE_MAX_ATTEMPTS (default: 3)
        - STORE_RETRY_BASE_DELAY (seconds, default: 0.1)
        - BEDROCK_MODEL_ID, BEDROCK_MAX_TOKENS (2000), BEDROCK_TEMPERATURE (0.7)
        - AWS_REGION (default: us-east-1)
        - LLM_MAX_ATTEMPTS (default: 3)
        - LLM_RETRY_BASE_DELAY (seconds, default: 1.0)
        - PLANNING_HORIZON_DAYS (default: 7)
        - SWEEP_BATCH_SIZE (default: 25)
        - LOG_LEVEL (default: INFO)

        Unparsable values fall back to the default.

        Returns:
            AgentGateConfig: Configuration loaded from environment.
        """

        def parse_bool(value: Optional[str], default: Optional[bool]) -> Optional[bool]:
            if value is None or not value.strip():
                return default
            return value.strip().lower() in ("true", "1", "yes")

        def parse_float(value: Optional[str], default: float) -> float:
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                return default

        def parse_int(value: Optional[str], default: int) -> int:
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        env = os.environ.get
        defaults = cls()

        return cls(
            db_path=env("AGENTGATE_DB_PATH", defaults.db_path),
            counters_collection=env(
                "AGENTGATE_COUNTERS_COLLECTION", defaults.counters_collection
            ),
            results_collection=env(
                "AGENTGATE_RESULTS_COLLECTION", defaults.results_collection
            ),
            store_max_attempts=parse_int(
                env("STORE_MAX_ATTEMPTS"), defaults.store_max_attempts
            ),
            store_retry_base_delay=parse_float(
                env("STORE_RETRY_BASE_DELAY"), defaults.store_retry_base_delay
            ),
            rate_limit=parse_int(env("FREE_TIER_RATE_LIMIT"), defaults.rate_limit),
            rate_window_minutes=parse_float(
                env("FREE_TIER_RATE_WINDOW_MINUTES"), defaults.rate_window_minutes
            ),
            token_limit=parse_int(env("FREE_TIER_TOKEN_LIMIT"), defaults.token_limit),
            daily_limit=parse_int(env("FREE_TIER_DAILY_LIMIT"), defaults.daily_limit),
            storage_cap=parse_int(env("FREE_TIER_STORAGE_CAP"), defaults.storage_cap),
            fail_open=parse_bool(env("FREE_TIER_FAIL_OPEN"), True),
            rate_fail_open=parse_bool(env("FREE_TIER_RATE_FAIL_OPEN"), None),
            token_fail_open=parse_bool(env("FREE_TIER_TOKEN_FAIL_OPEN"), None),
            storage_fail_open=parse_bool(env("FREE_TIER_STORAGE_FAIL_OPEN"), None),
            daily_fail_open=parse_bool(env("FREE_TIER_DAILY_FAIL_OPEN"), None),
            model_id=env("BEDROCK_MODEL_ID", defaults.model_id),
            max_tokens=parse_int(env("BEDROCK_MAX_TOKENS"), defaults.max_tokens),
            temperature=parse_float(env("BEDROCK_TEMPERATURE"), defaults.temperature),
            aws_region=env("AWS_REGION", defaults.aws_region),
            llm_max_attempts=parse_int(env("LLM_MAX_ATTEMPTS"), defaults.llm_max_attempts),
            llm_retry_base_delay=parse_float(
                env("LLM_RETRY_BASE_DELAY"), defaults.llm_retry_base_delay
            ),
            planning_horizon_days=parse_int(
                env("PLANNING_HORIZON_DAYS"), defaults.planning_horizon_days
            ),
            sweep_batch_size=parse_int(env("SWEEP_BATCH_SIZE"), defaults.sweep_batch_size),
            log_level=env("LOG_LEVEL", defaults.log_level),
        )


def load_config(path: Optional[Union[str, Path]] = None) -> AgentGateConfig:
    """Load configuration from the environment, then apply a YAML file.

    Keys in the file use the AgentGateConfig field names, e.g.::

        db_path: /var/lib/agentgate/counters.db
        rate_limit: 50
        token_fail_open: false

    Args:
        path: Optional YAML file

    Returns:
        AgentGateConfig: The merged, validated configuration.

    Raises:
        ConfigError: If the file is missing, malformed or names unknown keys.
    """
    config = AgentGateConfig.from_environment()

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        try:
            data = yaml.safe_load(config_path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}")

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Config file must contain a mapping at top level")
        config = apply_overrides(config, data)

    config.validate()
    return config


def _check_type(name: str, expected: Any, value: Any) -> None:
    """Raise ConfigError unless `value` fits the field's annotation."""
    if expected == Optional[bool]:
        if value is None or isinstance(value, bool):
            return
        raise ConfigError(f"{name} must be a boolean or null, got {value!r}")
    if expected is bool:
        if isinstance(value, bool):
            return
        raise ConfigError(f"{name} must be a boolean, got {value!r}")
    # bool is an int subclass; `rate_limit: true` is a mistake, not 1
    if expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if expected is str and not isinstance(value, str):
        raise ConfigError(f"{name} must be a string, got {value!r}")


def apply_overrides(config: AgentGateConfig, data: Dict[str, Any]) -> AgentGateConfig:
    """Return a copy of `config` with the given field values replaced.

    Raises:
        ConfigError: If a key is unknown or a value has the wrong type.
    """
    types = {f.name: f.type for f in fields(AgentGateConfig)}
    unknown = sorted(set(data) - set(types))
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
    for name, value in data.items():
        _check_type(name, types[name], value)
    return replace(config, **data)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the standard agentgate format."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
