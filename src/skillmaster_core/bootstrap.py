from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from skillmaster_core.app_config import AppConfig, RuntimeEnv
from skillmaster_core.artifacts import ArtifactGenerator, default_artifact_specs
from skillmaster_core.auth import StaticUserDirectory
from skillmaster_core.conversation import SessionSettings
from skillmaster_core.dispatcher import Dispatcher, RetryPolicy
from skillmaster_core.logging_config import setup_logging
from skillmaster_core.prompts import tutor_system_prompt
from skillmaster_core.provider import CompletionProvider, create_provider
from skillmaster_core.quota import QuotaTracker
from skillmaster_core.rate_limiter import RateLimiter
from skillmaster_core.services.roadmap_service import RoadmapService
from skillmaster_core.services.tutor_service import TutorService
from skillmaster_core.storage import (
    ConversationRepository,
    RoadmapRepository,
    SqliteUsageStore,
    Store,
    prune_usage,
)


@dataclass
class AppRuntime:
    tutor: TutorService
    roadmaps: RoadmapService
    users: StaticUserDirectory
    store: Store
    rate_limiter: RateLimiter
    log_descriptions: list[str]


def build_retry_policy(app: AppConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=app.retry_max_attempts,
        base_delay=app.retry_base_delay_seconds,
        multiplier=app.retry_multiplier,
        max_delay=app.retry_max_delay_seconds,
        jitter=app.retry_jitter_seconds,
        rate_limit_factor=app.rate_limit_backoff_factor,
    )


def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    provider: CompletionProvider | None = None,
    configure_logging: bool = True,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers) if configure_logging else []

    db_path = app.db_path
    if db_path != ":memory:" and not Path(db_path).is_absolute():
        db_path = str(Path.cwd() / db_path)
    store = Store(db_path)

    usage_store = SqliteUsageStore(store)
    prune_usage(usage_store, retention_days=app.usage_retention_days)
    quota = QuotaTracker(usage_store, timezone=app.quota_timezone)

    if provider is None:
        provider = create_provider(
            app.provider_name,
            env.provider_api_key,
            base_url=app.base_url,
            timeout_seconds=app.request_timeout_seconds,
        )
    rate_limiter = RateLimiter(app.requests_per_second)
    dispatcher = Dispatcher(
        provider,
        rate_limiter,
        model=app.model,
        retry_policy=build_retry_policy(app),
    )

    users = StaticUserDirectory(app.users)
    tutor = TutorService(
        users=users,
        repository=ConversationRepository(store),
        quota=quota,
        dispatcher=dispatcher,
        settings=SessionSettings(
            endpoint="tutor",
            quota_policy=app.quota_for("tutor"),
            max_tokens=app.tutor_max_tokens,
            max_context_messages=app.max_context_messages,
            system_prompt=tutor_system_prompt(),
            rollback_failed_turns=app.rollback_failed_turns,
        ),
    )
    roadmaps = RoadmapService(
        users=users,
        repository=RoadmapRepository(store),
        quota=quota,
        dispatcher=dispatcher,
        generator=ArtifactGenerator(
            dispatcher,
            default_artifact_specs(app.resources_max_tokens, app.exams_max_tokens),
        ),
        roadmap_policy=app.quota_for("roadmap"),
        coach_policy=app.quota_for("coach"),
        coach_max_tokens=app.coach_max_tokens,
    )

    return AppRuntime(
        tutor=tutor,
        roadmaps=roadmaps,
        users=users,
        store=store,
        rate_limiter=rate_limiter,
        log_descriptions=log_descriptions,
    )
