"""
Configuration management for the multi-agent orchestrator.

Uses Pydantic BaseSettings for type-safe configuration loaded from
environment variables with the ``MAO_`` prefix, ``.env`` files,
and sensible defaults. Nested sections use ``__`` as delimiter, e.g.
``MAO_RETRY_POLICY__MAX_RETRIES=3``.

The orchestrator core never reads the environment itself: it receives an
already validated :class:`OrchestratorConfig`.
"""

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from multiagent_orchestrator.error_codes import MAO_5001_CONFIGURATION_INVALID


class ConfigurationError(Exception):
    """Raised when the orchestrator configuration is invalid.

    Fatal at construction time: an invalid configuration aborts startup.
    """

    def __init__(self, details: str) -> None:
        self.error_code = MAO_5001_CONFIGURATION_INVALID
        self.message = f"Invalid orchestrator configuration: {details}"
        super().__init__(f"[{self.error_code}] {self.message}")


class BackoffStrategy(StrEnum):
    """How the delay between retry attempts grows."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class RetryPolicy(BaseModel):
    """Retry policy for transient agent failures.

    Attributes:
        max_retries: Retries after the first attempt (so ``max_retries + 1``
            attempts in total).
        backoff_strategy: Growth of the delay between attempts.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound on any single delay, in seconds.
    """

    max_retries: int = Field(default=2, ge=0)
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def max_delay_not_below_base(self) -> "RetryPolicy":
        """The delay cap must not be smaller than the base delay."""
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self

    def compute_delay(self, failed_attempt: int) -> float:
        """Return the wait before the attempt following ``failed_attempt``.

        Args:
            failed_attempt: The attempt number that just failed (1-based).

        Returns:
            Delay in seconds, capped at :pyattr:`max_delay`.
        """
        if failed_attempt < 1:
            raise ValueError(f"failed_attempt must be >= 1, got {failed_attempt}")
        if self.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (failed_attempt - 1))
        elif self.backoff_strategy == BackoffStrategy.LINEAR:
            delay = self.base_delay * failed_attempt
        else:
            delay = self.base_delay
        return min(delay, self.max_delay)


class RateLimitConfig(BaseModel):
    """Per-user admission limit (the ``security.rateLimit`` section)."""

    enabled: bool = False
    requests_per_minute: int = Field(default=60, ge=1)


class OrchestratorConfig(BaseSettings):
    """Main orchestrator configuration.

    All settings can be overridden via environment variables prefixed with ``MAO_``.
    For example, ``MAO_MAX_AGENTS`` sets :pyattr:`max_agents`.
    """

    model_config = SettingsConfigDict(
        env_prefix="MAO_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Registry
    max_agents: int = Field(default=20, ge=1, description="Maximum number of registered agents.")
    health_check_interval: float = Field(
        default=60.0,
        ge=0,
        description="Seconds between periodic health checks. 0 disables the timer.",
    )
    health_check_timeout: float = Field(
        default=5.0, gt=0, description="Per-agent health probe timeout in seconds."
    )
    degraded_threshold: float = Field(
        default=2.0,
        gt=0,
        description="A passing probe slower than this (seconds) marks the agent degraded.",
    )
    health_history_size: int = Field(default=50, ge=1)

    # Orchestrator
    max_concurrent_tasks: int = Field(default=5, ge=1)
    default_timeout: float = Field(
        default=30.0,
        ge=1.0,
        description="Per-attempt timeout and default request deadline in seconds.",
    )
    classification_timeout: float = Field(default=10.0, gt=0)
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    default_capability: str | None = Field(
        default=None,
        description="Capability used when classification fails or is not confident.",
    )
    default_routes: dict[str, str] = Field(
        default_factory=dict,
        description="Request type to capability fallback mapping.",
    )
    max_depth: int = Field(default=3, ge=0, description="Maximum delegation depth.")
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    # Default per-request constraints
    default_max_tokens: int = Field(default=4000, ge=1)
    default_max_cost: float = Field(default=1.0, gt=0)
    allow_sub_agents: bool = True

    # Security
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    # Bookkeeping
    workflow_history_size: int = Field(default=200, ge=1)
    execution_history_size: int = Field(default=500, ge=1)

    # Logging
    data_dir: str = Field(default=".multiagent-orchestrator")
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    log_dir: str = Field(
        default="",
        description="Directory for log files. If empty, defaults to ``<data_dir>/logs``.",
    )

    # HTTP server settings
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    @model_validator(mode="after")
    def degraded_threshold_within_timeout(self) -> "OrchestratorConfig":
        """A probe cannot be 'slow but passing' beyond its own timeout."""
        if self.degraded_threshold > self.health_check_timeout:
            raise ValueError(
                f"degraded_threshold ({self.degraded_threshold}) must be <= "
                f"health_check_timeout ({self.health_check_timeout})"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resolved_log_dir(self) -> str:
        """Resolved log directory -- uses ``log_dir`` if set, otherwise ``<data_dir>/logs``."""
        if self.log_dir:
            return self.log_dir
        return str(Path(self.data_dir) / "logs")


def load_config(**overrides: object) -> OrchestratorConfig:
    """Build and validate a configuration.

    Args:
        **overrides: Field values taking precedence over the environment.

    Returns:
        A validated :class:`OrchestratorConfig`.

    Raises:
        ConfigurationError: If any setting is invalid.
    """
    try:
        return OrchestratorConfig(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Global configuration singleton
# ---------------------------------------------------------------------------

_config: OrchestratorConfig | None = None


def get_config() -> OrchestratorConfig:
    """Return the global :class:`OrchestratorConfig` singleton.

    Creates the instance on first call.  Subsequent calls return the same
    instance.  Call :func:`reset_config` in tests to clear the singleton.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the global config singleton.

    Intended for use in test fixtures to ensure a clean config per test.
    """
    global _config
    _config = None
