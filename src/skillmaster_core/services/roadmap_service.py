from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field

from loguru import logger

from skillmaster_core.artifacts import ARTIFACT_FIELDS, ArtifactGenerator
from skillmaster_core.auth import UserDirectory
from skillmaster_core.conversation import QUOTA_EXCEEDED_NOTICE, UPSTREAM_ERROR_NOTICE, TurnStatus
from skillmaster_core.dispatcher import CompletionRequest, Dispatcher, Failure
from skillmaster_core.errors import NotFoundError
from skillmaster_core.models import Roadmap, RoadmapArtifacts, RoadmapRequest
from skillmaster_core.prompts import coach_prompt
from skillmaster_core.quota import QuotaPeriod, QuotaPolicy, QuotaTracker
from skillmaster_core.response_parser import parse_reply
from skillmaster_core.storage.roadmap_repository import RoadmapRepository


@dataclass(frozen=True)
class RoadmapOutcome:
    status: TurnStatus
    remaining_quota: int
    roadmap: Roadmap | None = None
    notice: str | None = None


@dataclass(frozen=True)
class CoachOutcome:
    status: TurnStatus
    remaining_quota: int
    reply: str | None = None
    notice: str | None = None
    warnings: list[str] = field(default_factory=list)


class RoadmapService:
    def __init__(
        self,
        *,
        users: UserDirectory,
        repository: RoadmapRepository,
        quota: QuotaTracker,
        dispatcher: Dispatcher,
        generator: ArtifactGenerator,
        roadmap_policy: QuotaPolicy | None = None,
        coach_policy: QuotaPolicy | None = None,
        coach_max_tokens: int = 500,
    ):
        self._users = users
        self._repository = repository
        self._quota = quota
        self._dispatcher = dispatcher
        self._generator = generator
        self._roadmap_policy = roadmap_policy or QuotaPolicy(free_limit=3, period=QuotaPeriod.MONTH)
        self._coach_policy = coach_policy or QuotaPolicy(free_limit=10)
        self._coach_max_tokens = coach_max_tokens
        self._artifact_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def create_roadmap(self, user_id: str, request: RoadmapRequest) -> RoadmapOutcome:
        user = self._users.get_user(user_id)
        policy = self._roadmap_policy
        limit = policy.limit_for(user.tier)
        decision = await self._quota.check_and_consume(user.id, "roadmap", limit, period=policy.period)
        if not decision.allowed:
            return RoadmapOutcome(
                status=TurnStatus.QUOTA_EXCEEDED,
                remaining_quota=0,
                notice=f"Free tier limit: {limit} roadmaps per {policy.period.value}. Upgrade for unlimited.",
            )

        roadmap = Roadmap(
            user_id=user.id,
            skill=request.skill,
            level=request.level,
            goals=request.goals,
            time_available=request.time_available,
        )
        self._repository.save(roadmap)
        logger.info(f"Created roadmap {roadmap.id} ({roadmap.skill}, {roadmap.level}) for user {user.id}")
        return RoadmapOutcome(status=TurnStatus.OK, remaining_quota=decision.remaining, roadmap=roadmap)

    def list_roadmaps(self, user_id: str) -> list[Roadmap]:
        user = self._users.get_user(user_id)
        return self._repository.list_for_user(user.id)

    async def get_roadmap_artifacts(self, roadmap_id: str, *, user_id: str | None = None) -> RoadmapArtifacts:
        """Resources and exam suggestions for a roadmap.

        Resolved fields are cached. Fields that degraded last time are
        generated again; a failure on one field never hides the other.
        """
        roadmap = self._load_roadmap(roadmap_id, user_id)
        async with self._artifact_lock(roadmap_id):
            stored = self._repository.load_artifacts(roadmap_id)
            missing = [name for name in ARTIFACT_FIELDS if stored.get(name) is None]
            if not missing:
                return RoadmapArtifacts(resources=list(stored["resources"]), exams=list(stored["exams"]))

            generated = await self._generator.generate(roadmap.to_request(), fields=missing)
            resolved = {name: getattr(generated, name) for name in missing if name not in generated.unresolved}
            self._repository.save_artifacts(roadmap_id, resolved)

        artifacts = RoadmapArtifacts(warnings=list(generated.warnings), unresolved=set(generated.unresolved))
        for name in ARTIFACT_FIELDS:
            value = stored.get(name)
            setattr(artifacts, name, list(value) if value is not None else getattr(generated, name))
        return artifacts

    async def ask_coach(self, user_id: str, roadmap_id: str, question: str) -> CoachOutcome:
        user = self._users.get_user(user_id)
        roadmap = self._load_roadmap(roadmap_id, user.id)
        if not question or not question.strip():
            raise ValueError("Question must not be empty")

        policy = self._coach_policy
        decision = await self._quota.check_and_consume(
            user.id, "coach", policy.limit_for(user.tier), period=policy.period
        )
        if not decision.allowed:
            return CoachOutcome(status=TurnStatus.QUOTA_EXCEEDED, remaining_quota=0, notice=QUOTA_EXCEEDED_NOTICE)

        result = await self._dispatcher.execute(
            CompletionRequest(
                messages=[{"role": "user", "content": coach_prompt(roadmap, question.strip())}],
                max_tokens=self._coach_max_tokens,
                label=f"coach[{roadmap.id[:8]}]",
            )
        )
        if isinstance(result, Failure):
            return CoachOutcome(
                status=TurnStatus.UPSTREAM_ERROR,
                remaining_quota=decision.remaining,
                notice=UPSTREAM_ERROR_NOTICE,
            )
        reply = parse_reply(result.text)
        return CoachOutcome(
            status=TurnStatus.OK,
            remaining_quota=decision.remaining,
            reply=reply.text,
            warnings=list(reply.warnings),
        )

    def _load_roadmap(self, roadmap_id: str, user_id: str | None) -> Roadmap:
        roadmap = self._repository.load(roadmap_id)
        if roadmap is None or (user_id is not None and roadmap.user_id != user_id):
            raise NotFoundError(f"Roadmap not found: {roadmap_id}")
        return roadmap

    def _artifact_lock(self, roadmap_id: str) -> asyncio.Lock:
        lock = self._artifact_locks.get(roadmap_id)
        if lock is None:
            lock = asyncio.Lock()
            self._artifact_locks[roadmap_id] = lock
        return lock
