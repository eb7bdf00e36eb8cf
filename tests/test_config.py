"""Unit tests for config.py - Configuration management."""

import os
import pytest
from unittest.mock import patch

import config
from config import (
    APIConfig,
    ControllerConfig,
    RetryConfig,
    PollConfig,
    Config,
    load_config,
    get_config,
    reset_config,
)
from executor import SINGLE_ATTEMPT


class TestAPIConfig:
    """Tests for APIConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = APIConfig()
        assert cfg.base_url == ""
        assert cfg.timeout == 30.0
        assert cfg.headers == {}
        assert cfg.log_level == "INFO"

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "API_BASE_URL": "https://cdr.example.com/store/fhir/",
            "API_TIMEOUT": "12.5",
            "API_HEADERS": '{"Authorization": "Bearer token"}',
            "LOG_LEVEL": "DEBUG",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = APIConfig.from_env()
            assert cfg.base_url == "https://cdr.example.com/store/fhir/"
            assert cfg.timeout == 12.5
            assert cfg.headers == {"Authorization": "Bearer token"}
            assert cfg.log_level == "DEBUG"

    def test_explicit_base_url_wins(self):
        """Test that an explicit base URL overrides API_BASE_URL."""
        with patch.dict(os.environ, {"API_BASE_URL": "https://env"}, clear=False):
            cfg = APIConfig.from_env("https://explicit")
            assert cfg.base_url == "https://explicit"

    def test_from_env_missing_base_url_raises(self):
        """Test that a missing base URL raises ValueError."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="API_BASE_URL"):
                APIConfig.from_env()

    def test_from_env_invalid_headers(self):
        """Test that malformed API_HEADERS raises ValueError."""
        env_vars = {"API_BASE_URL": "https://api", "API_HEADERS": "not json"}
        with patch.dict(os.environ, env_vars, clear=True):
            with pytest.raises(ValueError, match="API_HEADERS"):
                APIConfig.from_env()

    def test_from_env_headers_must_be_object(self):
        env_vars = {"API_BASE_URL": "https://api", "API_HEADERS": '["a"]'}
        with patch.dict(os.environ, env_vars, clear=True):
            with pytest.raises(ValueError, match="JSON object"):
                APIConfig.from_env()

    def test_headers_not_in_repr(self):
        """Test that headers (tokens) are not shown in repr."""
        cfg = APIConfig(base_url="https://api", headers={"Authorization": "secret"})
        assert "secret" not in repr(cfg)


class TestControllerConfig:
    """Tests for ControllerConfig class."""

    def test_default_values(self):
        assert ControllerConfig().max_concurrent_reconciles == 5

    def test_from_env(self):
        with patch.dict(os.environ, {"MAX_CONCURRENT_RECONCILES": "2"}, clear=False):
            assert ControllerConfig.from_env().max_concurrent_reconciles == 2


class TestRetryConfig:
    """Tests for RetryConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = RetryConfig()
        assert cfg.default_max_retries == 10
        assert cfg.onboarding_max_retries == 8
        assert cfg.metrics_max_retries == 30
        assert cfg.backoff_initial_interval == 0.5
        assert cfg.backoff_max_interval == 60.0
        assert cfg.backoff_multiplier == 1.5
        assert cfg.backoff_jitter_factor == 0.5
        assert cfg.backoff_max_elapsed == 900.0
        assert cfg.transient_signatures == ["invalid character"]

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "DEFAULT_MAX_RETRIES": "4",
            "ONBOARDING_MAX_RETRIES": "3",
            "METRICS_MAX_RETRIES": "12",
            "BACKOFF_INITIAL_INTERVAL": "1",
            "BACKOFF_MAX_INTERVAL": "30",
            "BACKOFF_MULTIPLIER": "2",
            "BACKOFF_JITTER_FACTOR": "0",
            "BACKOFF_MAX_ELAPSED": "120",
            "TRANSIENT_SIGNATURES": "invalid character, try again ,",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = RetryConfig.from_env()
            assert cfg.default_max_retries == 4
            assert cfg.onboarding_max_retries == 3
            assert cfg.metrics_max_retries == 12
            assert cfg.backoff_initial_interval == 1.0
            assert cfg.backoff_max_interval == 30.0
            assert cfg.backoff_multiplier == 2.0
            assert cfg.backoff_jitter_factor == 0.0
            assert cfg.backoff_max_elapsed == 120.0
            assert cfg.transient_signatures == ["invalid character", "try again"]

    def test_policy(self):
        """Test building a policy for a call site."""
        policy = RetryConfig(backoff_multiplier=2.0).policy("onboarding")
        assert policy.max_attempts == 8
        assert policy.multiplier == 2.0
        assert policy.initial_interval == 0.5

    def test_unknown_call_site_raises(self):
        with pytest.raises(ValueError, match="Unknown call site"):
            RetryConfig().policy("single")

    def test_policies(self):
        """Test that policies cover every call site."""
        policies = RetryConfig(metrics_max_retries=3).policies()
        assert set(policies) == {"default", "onboarding", "metrics", "single"}
        assert policies["metrics"].max_attempts == 3
        assert policies["default"].max_attempts == 10
        assert policies["single"] is SINGLE_ATTEMPT

    def test_invalid_values_raise(self):
        """Test that an invalid schedule is rejected when the policy is built."""
        with pytest.raises(ValueError):
            RetryConfig(backoff_multiplier=0.5).policy()


class TestPollConfig:
    """Tests for PollConfig class."""

    def test_purge_spec_defaults(self):
        spec = PollConfig().purge_spec()
        assert spec.pending == frozenset({"PURGING"})
        assert spec.target == frozenset({"SUCCESS"})
        assert spec.initial_delay == 10.0
        assert spec.cadence == 3.0
        assert spec.timeout == 1200.0
        assert spec.unknown_label_policy == "fail"

    def test_from_env(self):
        env_vars = {
            "PURGE_POLL_DELAY": "0",
            "PURGE_POLL_INTERVAL": "1",
            "PURGE_POLL_MIN_INTERVAL": "2",
            "PURGE_POLL_TIMEOUT": "60",
            "PURGE_UNKNOWN_LABEL_POLICY": "pending",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            spec = PollConfig.from_env().purge_spec()
            assert spec.initial_delay == 0
            assert spec.cadence == 2.0
            assert spec.timeout == 60.0
            assert spec.unknown_label_policy == "pending"


class TestConfig:
    """Tests for main Config class."""

    def test_default(self):
        """Test default configuration."""
        cfg = Config.default()
        assert isinstance(cfg.api, APIConfig)
        assert isinstance(cfg.controller, ControllerConfig)
        assert isinstance(cfg.retry, RetryConfig)
        assert isinstance(cfg.poll, PollConfig)

    def test_from_env(self):
        """Test loading all configuration from environment."""
        env_vars = {
            "API_BASE_URL": "https://api.example.com/",
            "MAX_CONCURRENT_RECONCILES": "3",
            "METRICS_MAX_RETRIES": "5",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = Config.from_env()
            assert cfg.api.base_url == "https://api.example.com/"
            assert cfg.controller.max_concurrent_reconciles == 3
            assert cfg.retry.metrics_max_retries == 5
            assert cfg.poll.purge_poll_timeout == 1200.0


class TestConfigSingleton:
    """Tests for config singleton functions."""

    def setup_method(self):
        """Reset config before each test."""
        reset_config()

    def teardown_method(self):
        """Reset config after each test."""
        reset_config()

    def test_load_config(self):
        """Test load_config function."""
        with patch.dict(os.environ, {"API_BASE_URL": "https://api"}, clear=False):
            cfg = load_config()
            assert isinstance(cfg, Config)

    def test_singleton_returns_same_instance(self):
        """Test that singleton returns same instance."""
        with patch.dict(os.environ, {"API_BASE_URL": "https://api"}, clear=False):
            cfg1 = load_config()
            cfg2 = get_config()
            assert cfg1 is cfg2

    def test_reset_config(self):
        """Test reset_config clears the singleton."""
        with patch.dict(os.environ, {"API_BASE_URL": "https://api"}, clear=False):
            cfg1 = load_config()
            reset_config()
            assert config.config is None
            cfg2 = load_config()
            assert cfg1 is not cfg2
