from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional


class MismatchPolicy(str, Enum):
    RAISE = "raise"
    DROP = "drop"


class Environment(str, Enum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"
    TEST = "test"

    @property
    def mismatch_policy(self) -> MismatchPolicy:
        # Only production degrades to log-and-drop; every other build fails loudly.
        if self is Environment.PRODUCTION:
            return MismatchPolicy.DROP
        return MismatchPolicy.RAISE


@dataclass(frozen=True)
class TrackingConfig:
    environment: Environment = Environment.DEVELOPMENT
    collector_url: Optional[str] = None
    timeout: float = 5.0
    attempts: int = 3
    verify_timeout: float = 5.0

    @property
    def mismatch_policy(self) -> MismatchPolicy:
        return self.environment.mismatch_policy

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TrackingConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        raw_environment = env.get("ANALYTICS_ENVIRONMENT", defaults.environment.value)
        try:
            environment = Environment(raw_environment.strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown ANALYTICS_ENVIRONMENT '{raw_environment}'") from exc
        return cls(
            environment=environment,
            collector_url=env.get("ANALYTICS_COLLECTOR_URL") or defaults.collector_url,
            timeout=float(env.get("ANALYTICS_TIMEOUT", defaults.timeout)),
            attempts=max(1, int(env.get("ANALYTICS_ATTEMPTS", defaults.attempts))),
            verify_timeout=float(env.get("ANALYTICS_VERIFY_TIMEOUT", defaults.verify_timeout)),
        )
