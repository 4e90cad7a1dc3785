from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from skillmaster_core.quota import QuotaPeriod, QuotaPolicy

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

_DEFAULT_MODELS = {
    "openai": "llama3-8b-8192",
    "anthropic": "claude-sonnet-4-5-20250929",
}

_DEFAULT_QUOTAS = {
    "tutor": {"FreeLimit": 10, "Period": "day"},
    "coach": {"FreeLimit": 10, "Period": "day"},
    "roadmap": {"FreeLimit": 3, "Period": "month"},
}


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    base_url: str | None
    request_timeout_seconds: float
    requests_per_second: float
    retry_max_attempts: int
    retry_base_delay_seconds: float
    retry_multiplier: float
    retry_max_delay_seconds: float
    retry_jitter_seconds: float
    rate_limit_backoff_factor: float
    quotas: dict[str, QuotaPolicy]
    quota_timezone: str
    tutor_max_tokens: int
    coach_max_tokens: int
    resources_max_tokens: int
    exams_max_tokens: int
    max_context_messages: int
    rollback_failed_turns: bool
    db_path: str
    usage_retention_days: int
    users: dict[str, str] = field(default_factory=dict)
    default_user_id: str = "local"
    log_level: str = "INFO"
    log_consumers: list | None = None

    def quota_for(self, endpoint: str) -> QuotaPolicy:
        return self.quotas.get(endpoint) or QuotaPolicy(free_limit=10)


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _parse_quotas(raw: object) -> dict[str, QuotaPolicy]:
    merged: dict[str, dict] = {name: dict(entry) for name, entry in _DEFAULT_QUOTAS.items()}
    if isinstance(raw, dict):
        for name, entry in raw.items():
            if isinstance(entry, dict):
                merged.setdefault(name.lower(), {}).update(entry)
            else:
                merged.setdefault(name.lower(), {})["FreeLimit"] = entry

    policies: dict[str, QuotaPolicy] = {}
    for name, entry in merged.items():
        period = str(entry.get("Period", "day")).strip().lower()
        if period not in {p.value for p in QuotaPeriod}:
            raise ValueError(f"Unknown quota period for {name!r}: {period!r}. Supported: 'day', 'month'")
        policies[name] = QuotaPolicy(free_limit=int(entry.get("FreeLimit", 10)), period=QuotaPeriod(period))
    return policies


def parse_app_config(config: dict) -> AppConfig:
    provider_name = config.get("Provider", "openai").strip().lower()
    base_url = config.get("BaseUrl", GROQ_BASE_URL if provider_name == "openai" else None)
    return AppConfig(
        provider_name=provider_name,
        model=config.get("Model", _DEFAULT_MODELS.get(provider_name, "llama3-8b-8192")),
        base_url=(str(base_url).strip() or None) if base_url else None,
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 30)),
        requests_per_second=float(config.get("RequestsPerSecond", 25)),
        retry_max_attempts=int(config.get("RetryMaxAttempts", 3)),
        retry_base_delay_seconds=float(config.get("RetryBaseDelaySeconds", 1.0)),
        retry_multiplier=float(config.get("RetryMultiplier", 2.0)),
        retry_max_delay_seconds=float(config.get("RetryMaxDelaySeconds", 30)),
        retry_jitter_seconds=float(config.get("RetryJitterSeconds", 1.0)),
        rate_limit_backoff_factor=float(config.get("RateLimitBackoffFactor", 4.0)),
        quotas=_parse_quotas(config.get("Quotas")),
        quota_timezone=str(config.get("QuotaTimezone", "UTC")),
        tutor_max_tokens=int(config.get("TutorMaxTokens", 1024)),
        coach_max_tokens=int(config.get("CoachMaxTokens", 500)),
        resources_max_tokens=int(config.get("ResourcesMaxTokens", 200)),
        exams_max_tokens=int(config.get("ExamsMaxTokens", 100)),
        max_context_messages=int(config.get("MaxContextMessages", 20)),
        rollback_failed_turns=_to_bool(config.get("RollbackFailedTurns", False), default=False),
        db_path=str(config.get("DbPath", ".skillmaster/core.db")),
        usage_retention_days=int(config.get("UsageRetentionDays", 90)),
        users={str(k): str(v) for k, v in (config.get("Users") or {"local": "free"}).items()},
        default_user_id=str(config.get("DefaultUserId", "local")),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def apply_env_overrides(app: AppConfig, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Operational limits can be supplied by the deployment without editing config.json."""
    env = os.environ if environ is None else environ

    rps = env.get("SKILLMASTER_REQUESTS_PER_SECOND")
    if rps:
        app.requests_per_second = float(rps)

    prefix = "SKILLMASTER_FREE_QUOTA_"
    for key, value in env.items():
        if not key.startswith(prefix) or not value:
            continue
        endpoint = key[len(prefix):].lower()
        current = app.quotas.get(endpoint) or QuotaPolicy(free_limit=0)
        app.quotas[endpoint] = QuotaPolicy(free_limit=int(value), period=current.period)
    return app


def resolve_runtime_env(app: AppConfig, environ: Mapping[str, str] | None = None) -> RuntimeEnv:
    env = os.environ if environ is None else environ
    if app.provider_name == "anthropic":
        provider_env_var = "ANTHROPIC_API_KEY"
    elif app.base_url and "groq.com" in app.base_url:
        provider_env_var = "GROQ_API_KEY"
    else:
        provider_env_var = "OPENAI_API_KEY"

    return RuntimeEnv(
        provider_api_key=env.get(provider_env_var, ""),
        provider_env_var=provider_env_var,
    )
