from __future__ import annotations

import json
from datetime import datetime

from skillmaster_core.models import Roadmap, utc_now
from skillmaster_core.storage.store import Store


class RoadmapRepository:
    def __init__(self, store: Store):
        self._store = store

    def save(self, roadmap: Roadmap) -> None:
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO roadmaps (id, user_id, skill, level, goals, time_available, progress, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET progress = excluded.progress
                """,
                (
                    roadmap.id,
                    roadmap.user_id,
                    roadmap.skill,
                    roadmap.level,
                    roadmap.goals,
                    roadmap.time_available,
                    roadmap.progress,
                    roadmap.created_at.isoformat(timespec="microseconds"),
                ),
            )

    def load(self, roadmap_id: str) -> Roadmap | None:
        row = self._store.execute("SELECT * FROM roadmaps WHERE id = ? LIMIT 1", (roadmap_id,)).fetchone()
        return _to_roadmap(row) if row is not None else None

    def list_for_user(self, user_id: str) -> list[Roadmap]:
        rows = self._store.execute(
            "SELECT * FROM roadmaps WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        ).fetchall()
        return [_to_roadmap(row) for row in rows]

    def load_artifacts(self, roadmap_id: str) -> dict[str, list[str] | None]:
        """Stored artifact fields; a field is None until it has been resolved."""
        row = self._store.execute(
            "SELECT resources_json, exams_json FROM roadmap_artifacts WHERE roadmap_id = ?",
            (roadmap_id,),
        ).fetchone()
        if row is None:
            return {"resources": None, "exams": None}
        return {
            "resources": _decode(row["resources_json"]),
            "exams": _decode(row["exams_json"]),
        }

    def save_artifacts(self, roadmap_id: str, fields: dict[str, list[str]]) -> None:
        """Persist resolved fields, leaving the others untouched."""
        if not fields:
            return
        resources = fields.get("resources")
        exams = fields.get("exams")
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO roadmap_artifacts (roadmap_id, resources_json, exams_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(roadmap_id) DO UPDATE SET
                    resources_json = COALESCE(excluded.resources_json, roadmap_artifacts.resources_json),
                    exams_json = COALESCE(excluded.exams_json, roadmap_artifacts.exams_json),
                    updated_at = excluded.updated_at
                """,
                (
                    roadmap_id,
                    json.dumps(resources, ensure_ascii=True) if resources is not None else None,
                    json.dumps(exams, ensure_ascii=True) if exams is not None else None,
                    utc_now().isoformat(timespec="seconds"),
                ),
            )


def _to_roadmap(row) -> Roadmap:
    return Roadmap(
        id=row["id"],
        user_id=row["user_id"],
        skill=row["skill"],
        level=row["level"],
        goals=row["goals"],
        time_available=row["time_available"],
        progress=int(row["progress"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _decode(value: str | None) -> list[str] | None:
    if value is None:
        return None
    decoded = json.loads(value)
    return [str(item) for item in decoded] if isinstance(decoded, list) else None
