"""
Tests for multiagent_orchestrator.config -- OrchestratorConfig loading, defaults, and env vars.
"""

from pathlib import Path

import pytest

from multiagent_orchestrator.config import (
    BackoffStrategy,
    ConfigurationError,
    OrchestratorConfig,
    RetryPolicy,
    get_config,
    load_config,
    reset_config,
)


class TestOrchestratorConfigDefaults:
    """Verify that OrchestratorConfig has correct defaults when no env vars are set."""

    def test_default_data_dir(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MAO_DATA_DIR", raising=False)
        config = OrchestratorConfig()
        assert config.data_dir == ".multiagent-orchestrator"

    def test_default_limits(self) -> None:
        config = OrchestratorConfig()
        assert config.max_agents == 20
        assert config.max_depth == 3
        assert config.max_concurrent_tasks == 5
        assert config.confidence_threshold == 0.5

    def test_default_retry_policy(self) -> None:
        policy = OrchestratorConfig().retry_policy
        assert policy.max_retries == 2
        assert policy.backoff_strategy == BackoffStrategy.EXPONENTIAL
        assert policy.base_delay == 1.0
        assert policy.max_delay == 10.0

    def test_rate_limit_disabled_by_default(self) -> None:
        config = OrchestratorConfig()
        assert config.rate_limit.enabled is False
        assert config.rate_limit.requests_per_minute == 60

    def test_computed_resolved_log_dir_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """When log_dir is empty, resolved_log_dir falls back to <data_dir>/logs."""
        monkeypatch.delenv("MAO_LOG_DIR", raising=False)
        monkeypatch.delenv("MAO_DATA_DIR", raising=False)
        config = OrchestratorConfig()
        assert config.resolved_log_dir == str(Path(".multiagent-orchestrator") / "logs")

    def test_resolved_log_dir_explicit(self) -> None:
        config = OrchestratorConfig(log_dir="/var/log/mao")
        assert config.resolved_log_dir == "/var/log/mao"


class TestOrchestratorConfigEnvOverrides:
    """Verify that environment variables override defaults."""

    def test_env_max_agents(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAO_MAX_AGENTS", "7")
        assert OrchestratorConfig().max_agents == 7

    def test_env_nested_retry_policy(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAO_RETRY_POLICY__MAX_RETRIES", "4")
        monkeypatch.setenv("MAO_RETRY_POLICY__BACKOFF_STRATEGY", "linear")
        policy = OrchestratorConfig().retry_policy
        assert policy.max_retries == 4
        assert policy.backoff_strategy == BackoffStrategy.LINEAR

    def test_env_nested_rate_limit(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAO_RATE_LIMIT__ENABLED", "true")
        monkeypatch.setenv("MAO_RATE_LIMIT__REQUESTS_PER_MINUTE", "10")
        config = OrchestratorConfig()
        assert config.rate_limit.enabled is True
        assert config.rate_limit.requests_per_minute == 10

    def test_env_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAO_LOG_LEVEL", "DEBUG")
        assert OrchestratorConfig().log_level == "DEBUG"


class TestConfigValidation:
    """Verify that invalid configurations are rejected at construction time."""

    def test_degraded_threshold_above_timeout_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="degraded_threshold"):
            load_config(health_check_timeout=1.0, degraded_threshold=2.0)

    def test_default_timeout_below_one_second_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            load_config(default_timeout=0.5)

    def test_max_agents_zero_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            load_config(max_agents=0)

    def test_confidence_threshold_out_of_range_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            load_config(confidence_threshold=1.5)

    def test_error_carries_code(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(max_depth=-1)
        assert exc_info.value.error_code == "MAO_5001"
        assert str(exc_info.value).startswith("[MAO_5001]")

    def test_retry_policy_max_delay_below_base_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_delay"):
            RetryPolicy(base_delay=5.0, max_delay=1.0)

    def test_overrides_take_precedence_over_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAO_MAX_DEPTH", "9")
        assert load_config(max_depth=1).max_depth == 1


class TestRetryPolicyDelays:
    """Verify backoff delay computation."""

    def test_exponential_delays(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0)
        assert policy.compute_delay(1) == 1.0
        assert policy.compute_delay(2) == 2.0
        assert policy.compute_delay(3) == 4.0

    def test_exponential_capped_at_max_delay(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0)
        assert policy.compute_delay(5) == 10.0

    def test_linear_delays(self) -> None:
        policy = RetryPolicy(backoff_strategy=BackoffStrategy.LINEAR, base_delay=0.5)
        assert policy.compute_delay(1) == 0.5
        assert policy.compute_delay(3) == 1.5

    def test_fixed_delays(self) -> None:
        policy = RetryPolicy(backoff_strategy=BackoffStrategy.FIXED, base_delay=2.0)
        assert policy.compute_delay(1) == 2.0
        assert policy.compute_delay(4) == 2.0

    def test_attempt_below_one_rejected(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy().compute_delay(0)


class TestConfigSingleton:
    """Verify the get_config/reset_config singleton behaviour."""

    def test_get_config_returns_same_instance(self) -> None:
        assert get_config() is get_config()

    def test_reset_config_clears_singleton(self) -> None:
        first = get_config()
        reset_config()
        assert get_config() is not first
