"""Process configuration for courier.

``CourierSettings`` reads ``COURIER_*`` environment variables (and a ``.env``
file) once at startup. Per-dependency knobs live in ``DependencyPolicy`` and
can be overridden with the nested delimiter::

    COURIER_DEPENDENCIES__INFERENCE__DAILY_QUOTA=1000
    COURIER_DEPENDENCIES__CALENDAR__COOLDOWN_SECONDS=60

Examples:
    >>> settings = CourierSettings(database_path=":memory:")
    >>> settings.policy_for("inference").rate_limit_per_minute
    20
    >>> settings.policy_for("unknown-service").failure_threshold
    5
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DependencyPolicy(BaseModel):
    """Breaker, timeout and quota settings for one external dependency.

    Fields
    ──────
    failure_threshold     : consecutive failures that open the breaker
    cooldown_seconds      : time Open before a probe is allowed
    probe_timeout_seconds : a probe slot not reported within this is freed
    call_timeout_seconds  : per-call timeout, the call is abandoned after it
    rate_limit_per_minute : sliding-window limit per identifier (None = off)
    daily_quota           : calls per UTC day (None = unlimited)
    """

    failure_threshold: int = Field(default=5, ge=1)
    cooldown_seconds: float = Field(default=30.0, gt=0)
    probe_timeout_seconds: float = Field(default=60.0, gt=0)
    call_timeout_seconds: float = Field(default=30.0, gt=0)
    rate_limit_per_minute: int | None = Field(default=None, ge=1)
    daily_quota: int | None = Field(default=None, ge=1)


def _default_dependencies() -> dict[str, DependencyPolicy]:
    return {
        "messaging": DependencyPolicy(),
        "calendar": DependencyPolicy(),
        "inference": DependencyPolicy(call_timeout_seconds=60.0, rate_limit_per_minute=20, daily_quota=500),
        "object_store": DependencyPolicy(call_timeout_seconds=120.0),
        "push": DependencyPolicy(),
    }


class CourierSettings(BaseSettings):
    """Settings for the store, worker, retry policy and dependencies."""

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: str = Field(
        default_factory=lambda: str(Path.home() / ".courier" / "courier.db"),
        description="SQLite database file, or ':memory:'",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Worker ───────────────────────────────────────────────────
    worker_concurrency: int = Field(default=4, ge=1)
    poll_interval: float = Field(default=2.0, gt=0)
    batch_size: int = Field(default=10, ge=1)
    visibility_timeout_seconds: float = Field(default=300.0, gt=0)
    handler_modules: list[str] = Field(
        default_factory=list,
        description="Import targets ('pkg.module:register') that register job handlers",
    )

    # ── Retry ────────────────────────────────────────────────────
    default_max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=1.0, gt=0)
    backoff_max_seconds: float = Field(default=60.0, gt=0)
    rate_limit_deferrals: int = Field(
        default=5,
        ge=0,
        description="Rate-limited outcomes per job that reschedule without using an attempt",
    )

    # ── Retention ────────────────────────────────────────────────
    dead_letter_retention_days: int = Field(default=30, ge=1)
    finished_job_retention_hours: int = Field(default=24, ge=1)
    quota_counter_retention_days: int = Field(default=7, ge=1)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)

    # ── Cost control ─────────────────────────────────────────────
    quota_near_limit_ratio: float = Field(default=0.8, gt=0, le=1)
    result_cache_ttl_seconds: float = Field(default=3600.0, gt=0)

    # ── API ──────────────────────────────────────────────────────
    host: str = "127.0.0.1"
    port: int = 8080

    dependencies: dict[str, DependencyPolicy] = Field(default_factory=_default_dependencies)

    def policy_for(self, dependency: str) -> DependencyPolicy:
        """Policy for ``dependency``; unknown names get the defaults."""
        return self.dependencies.get(dependency) or DependencyPolicy()


@lru_cache(maxsize=1)
def get_settings() -> CourierSettings:
    """Process-wide settings instance."""
    return CourierSettings()


__all__ = ["CourierSettings", "DependencyPolicy", "get_settings"]
