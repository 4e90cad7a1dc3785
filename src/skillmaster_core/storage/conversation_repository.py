from __future__ import annotations

import json
from datetime import datetime

from loguru import logger

from skillmaster_core.models import Conversation, Message, Role
from skillmaster_core.storage.store import Store


class ConversationRepository:
    def __init__(self, store: Store):
        self._store = store

    def save(self, conversation: Conversation) -> None:
        """Upsert the conversation row and insert any messages not yet stored.

        Messages are append-only, so only the tail past the highest stored
        sequence number is written.
        """
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO conversations (id, user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at
                """,
                (
                    conversation.id,
                    conversation.user_id,
                    _iso(conversation.created_at),
                    _iso(conversation.updated_at),
                ),
            )
            row = self._store.execute(
                "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE conversation_id = ?",
                (conversation.id,),
            ).fetchone()
            stored = int(row["max_seq"])
            params: list[tuple] = []
            for seq, message in enumerate(conversation.messages[stored:], start=stored + 1):
                params.append(
                    (
                        conversation.id,
                        seq,
                        message.role.value,
                        message.content,
                        json.dumps(message.payload, ensure_ascii=True) if message.payload is not None else None,
                        _iso(message.timestamp),
                    )
                )
            if params:
                self._store.executemany(
                    """
                    INSERT INTO messages (conversation_id, seq, role, content, payload_json, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
        logger.debug(f"Saved conversation {conversation.id}: {len(params)} new message(s)")

    def load(self, conversation_id: str) -> Conversation | None:
        row = self._store.execute(
            "SELECT * FROM conversations WHERE id = ? LIMIT 1",
            (conversation_id,),
        ).fetchone()
        if row is None:
            return None
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            messages=self._load_messages(conversation_id),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def list_for_user(self, user_id: str, *, limit: int = 50) -> list[Conversation]:
        rows = self._store.execute(
            """
            SELECT id
            FROM conversations
            WHERE user_id = ?
            ORDER BY updated_at DESC, created_at DESC
            LIMIT ?
            """,
            (user_id, max(1, limit)),
        ).fetchall()
        conversations: list[Conversation] = []
        for row in rows:
            conversation = self.load(str(row["id"]))
            if conversation is not None:
                conversations.append(conversation)
        return conversations

    def _load_messages(self, conversation_id: str) -> list[Message]:
        rows = self._store.execute(
            """
            SELECT role, content, payload_json, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY seq ASC
            """,
            (conversation_id,),
        ).fetchall()
        return [
            Message(
                role=Role(row["role"]),
                content=row["content"],
                timestamp=datetime.fromisoformat(row["created_at"]),
                payload=_parse_payload(row["payload_json"]),
            )
            for row in rows
        ]


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_payload(payload_json: str | None) -> dict | None:
    if payload_json is None:
        return None
    try:
        parsed = json.loads(payload_json)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
