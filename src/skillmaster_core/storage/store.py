from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class Store:
    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._initialize_schema()

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        return self._conn.executemany(query, seq_of_params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    @contextmanager
    def transaction(self) -> Iterator[Store]:
        try:
            yield self
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                payload_json TEXT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (conversation_id, seq)
            );

            CREATE TABLE IF NOT EXISTS usage_counters (
                user_id TEXT NOT NULL,
                endpoint TEXT NOT NULL,
                period TEXT NOT NULL,
                count INTEGER NOT NULL CHECK (count >= 0),
                updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, endpoint, period)
            );

            CREATE TABLE IF NOT EXISTS roadmaps (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                skill TEXT NOT NULL,
                level TEXT NOT NULL,
                goals TEXT NOT NULL DEFAULT '',
                time_available TEXT NOT NULL DEFAULT '',
                progress INTEGER NOT NULL DEFAULT 0 CHECK (progress BETWEEN 0 AND 100),
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS roadmap_artifacts (
                roadmap_id TEXT PRIMARY KEY REFERENCES roadmaps(id) ON DELETE CASCADE,
                resources_json TEXT NULL,
                exams_json TEXT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_user_updated
                ON conversations(user_id, updated_at);
            CREATE INDEX IF NOT EXISTS idx_usage_counters_period
                ON usage_counters(period);
            CREATE INDEX IF NOT EXISTS idx_roadmaps_user_created
                ON roadmaps(user_id, created_at);
            """
        )
        self._conn.commit()
