"""
Configuration module for the convergence engine.

Loads configuration from environment variables. Every concern has its own
dataclass with a from_env() constructor and sensible defaults.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from classifier import DEFAULT_TRANSIENT_SIGNATURES
from executor import SINGLE_ATTEMPT, BackoffPolicy
from poller import PollSpec


@dataclass
class APIConfig:
    """Remote API client configuration."""

    base_url: str = ""
    timeout: float = 30.0  # seconds per request
    headers: Dict[str, str] = field(default_factory=dict, repr=False)  # may hold tokens
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, base_url: Optional[str] = None):
        """Load from environment variables. An explicit base_url wins over API_BASE_URL."""
        base_url = base_url or os.getenv("API_BASE_URL", "")
        if not base_url:
            raise ValueError(
                "API_BASE_URL environment variable must be set. "
                "The remote API base URL cannot be empty."
            )

        headers = {}
        if os.getenv("API_HEADERS"):
            try:
                headers = json.loads(os.getenv("API_HEADERS"))
            except json.JSONDecodeError as e:
                raise ValueError(f"API_HEADERS must be a JSON object: {e}")
            if not isinstance(headers, dict):
                raise ValueError("API_HEADERS must be a JSON object")

        return cls(
            base_url=base_url,
            timeout=float(os.getenv("API_TIMEOUT", "30")),
            headers={str(k): str(v) for k, v in headers.items()},
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class ControllerConfig:
    """Batch reconciliation configuration."""

    max_concurrent_reconciles: int = 5

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
        )


@dataclass
class RetryConfig:
    """Retry budgets per call site and the shared backoff schedule."""

    default_max_retries: int = 10
    onboarding_max_retries: int = 8
    metrics_max_retries: int = 30

    # Exponential backoff configuration
    backoff_initial_interval: float = 0.5  # seconds
    backoff_max_interval: float = 60.0  # seconds
    backoff_multiplier: float = 1.5
    backoff_jitter_factor: float = 0.5  # ±50% jitter
    backoff_max_elapsed: float = 900.0  # seconds (15 minutes)

    transient_signatures: List[str] = field(
        default_factory=lambda: list(DEFAULT_TRANSIENT_SIGNATURES)
    )

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        signatures_str = os.getenv("TRANSIENT_SIGNATURES", "")
        signatures = (
            [s.strip() for s in signatures_str.split(",") if s.strip()]
            if signatures_str
            else list(DEFAULT_TRANSIENT_SIGNATURES)
        )
        return cls(
            default_max_retries=int(os.getenv("DEFAULT_MAX_RETRIES", "10")),
            onboarding_max_retries=int(os.getenv("ONBOARDING_MAX_RETRIES", "8")),
            metrics_max_retries=int(os.getenv("METRICS_MAX_RETRIES", "30")),
            backoff_initial_interval=float(
                os.getenv("BACKOFF_INITIAL_INTERVAL", "0.5")
            ),
            backoff_max_interval=float(os.getenv("BACKOFF_MAX_INTERVAL", "60")),
            backoff_multiplier=float(os.getenv("BACKOFF_MULTIPLIER", "1.5")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.5")),
            backoff_max_elapsed=float(os.getenv("BACKOFF_MAX_ELAPSED", "900")),
            transient_signatures=signatures,
        )

    def policy(self, call_site: str = "default") -> BackoffPolicy:
        """
        Build the backoff policy for a call site.

        Args:
            call_site: One of 'default', 'onboarding' or 'metrics'

        Raises:
            ValueError: If the call site is unknown
        """
        budgets = {
            "default": self.default_max_retries,
            "onboarding": self.onboarding_max_retries,
            "metrics": self.metrics_max_retries,
        }
        if call_site not in budgets:
            raise ValueError(
                f"Unknown call site: {call_site} (expected one of {', '.join(budgets)})"
            )
        return BackoffPolicy(
            initial_interval=self.backoff_initial_interval,
            max_interval=self.backoff_max_interval,
            multiplier=self.backoff_multiplier,
            randomization_factor=self.backoff_jitter_factor,
            max_attempts=budgets[call_site],
            max_elapsed=self.backoff_max_elapsed,
        )

    def policies(self) -> Dict[str, BackoffPolicy]:
        """Backoff policies for every call site, keyed like executor.PRESETS."""
        policies = {
            call_site: self.policy(call_site)
            for call_site in ("default", "onboarding", "metrics")
        }
        policies["single"] = SINGLE_ATTEMPT
        return policies


@dataclass
class PollConfig:
    """Purge status polling configuration."""

    purge_poll_delay: float = 10.0  # seconds before the first check
    purge_poll_interval: float = 3.0  # seconds between checks
    purge_poll_min_interval: float = 3.0
    purge_poll_timeout: float = 1200.0  # seconds (20 minutes)
    purge_unknown_label_policy: str = "fail"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            purge_poll_delay=float(os.getenv("PURGE_POLL_DELAY", "10")),
            purge_poll_interval=float(os.getenv("PURGE_POLL_INTERVAL", "3")),
            purge_poll_min_interval=float(os.getenv("PURGE_POLL_MIN_INTERVAL", "3")),
            purge_poll_timeout=float(os.getenv("PURGE_POLL_TIMEOUT", "1200")),
            purge_unknown_label_policy=os.getenv("PURGE_UNKNOWN_LABEL_POLICY", "fail"),
        )

    def purge_spec(self) -> PollSpec:
        """Build the poll spec used to wait for a purge to finish."""
        return PollSpec(
            pending=frozenset({"PURGING"}),
            target=frozenset({"SUCCESS"}),
            poll_interval=self.purge_poll_interval,
            min_poll_interval=self.purge_poll_min_interval,
            initial_delay=self.purge_poll_delay,
            timeout=self.purge_poll_timeout,
            unknown_label_policy=self.purge_unknown_label_policy,
        )


@dataclass
class Config:
    """Main configuration object."""

    api: APIConfig
    controller: ControllerConfig
    retry: RetryConfig
    poll: PollConfig

    @classmethod
    def from_env(cls, base_url: Optional[str] = None):
        """Load all configuration from environment variables."""
        return cls(
            api=APIConfig.from_env(base_url),
            controller=ControllerConfig.from_env(),
            retry=RetryConfig.from_env(),
            poll=PollConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            api=APIConfig(),
            controller=ControllerConfig(),
            retry=RetryConfig(),
            poll=PollConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
