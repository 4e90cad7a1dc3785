from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from loguru import logger

from skillmaster_core.dispatcher import CompletionRequest, Dispatcher, Failure
from skillmaster_core.models import RoadmapArtifacts, RoadmapRequest
from skillmaster_core.prompts import exams_prompt, resources_prompt
from skillmaster_core.response_parser import parse_list

ARTIFACT_FIELDS = ("resources", "exams")


@dataclass(frozen=True)
class ArtifactSpec:
    build_prompt: Callable[[RoadmapRequest], str]
    max_tokens: int


def default_artifact_specs(resources_max_tokens: int = 200, exams_max_tokens: int = 100) -> dict[str, ArtifactSpec]:
    return {
        "resources": ArtifactSpec(resources_prompt, resources_max_tokens),
        "exams": ArtifactSpec(exams_prompt, exams_max_tokens),
    }


class ArtifactGenerator:
    """Generates roadmap artifacts with one concurrent upstream call per field.

    A field whose call fails, or whose output cannot be parsed, resolves to an
    empty list and is reported in ``unresolved``; the other fields keep their
    results. Retrying is left to the Dispatcher.
    """

    def __init__(self, dispatcher: Dispatcher, specs: dict[str, ArtifactSpec] | None = None):
        self._dispatcher = dispatcher
        self._specs = specs or default_artifact_specs()

    async def generate(self, request: RoadmapRequest, *, fields: Iterable[str] = ARTIFACT_FIELDS) -> RoadmapArtifacts:
        names = [name for name in fields if name in self._specs]
        results = await asyncio.gather(*(self._generate_field(name, request) for name in names))

        artifacts = RoadmapArtifacts()
        for name, (items, warnings) in zip(names, results):
            setattr(artifacts, name, items)
            if warnings:
                artifacts.unresolved.add(name)
                artifacts.warnings.extend(f"{name}: {w}" for w in warnings)

        logger.info(
            f"Artifacts for {request.skill!r} ({request.level}): "
            f"resources={len(artifacts.resources)} exams={len(artifacts.exams)} "
            f"unresolved={sorted(artifacts.unresolved) or '-'}"
        )
        return artifacts

    async def _generate_field(self, name: str, request: RoadmapRequest) -> tuple[list[str], list[str]]:
        spec = self._specs[name]
        result = await self._dispatcher.execute(
            CompletionRequest(
                messages=[{"role": "user", "content": spec.build_prompt(request)}],
                max_tokens=spec.max_tokens,
                label=f"roadmap.{name}",
            )
        )
        if isinstance(result, Failure):
            return [], [f"upstream failure after {result.attempts} attempt(s)"]
        parsed = parse_list(result.text)
        return parsed.items, list(parsed.warnings)
