from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(UTC)


class Tier(str, Enum):
    FREE = "free"
    PAID = "paid"
    ELITE = "elite"

    @classmethod
    def parse(cls, value: str | None) -> "Tier":
        try:
            return cls((value or "free").strip().lower())
        except ValueError:
            return cls.FREE


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class User:
    id: str
    tier: Tier = Tier.FREE


@dataclass(frozen=True)
class Message:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    payload: dict[str, Any] | None = None

    def to_chat(self) -> dict:
        return {"role": self.role.value, "content": self.content}

    def to_record(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(timespec="microseconds"),
            "payload": self.payload,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Message":
        return cls(
            role=Role(record["role"]),
            content=record["content"],
            timestamp=datetime.fromisoformat(record["timestamp"]),
            payload=record.get("payload"),
        )


@dataclass
class Conversation:
    user_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def title(self) -> str:
        for message in self.messages:
            if message.role is Role.USER:
                return preview(message.content, max_chars=60)
        return f"Conversation {self.created_at.isoformat(timespec='minutes')[:16].replace('T', ' ')}"

    def append(self, message: Message) -> int:
        self.messages.append(message)
        self.updated_at = message.timestamp
        return len(self.messages)


@dataclass(frozen=True)
class UsageCounter:
    user_id: str
    endpoint: str
    period: str
    count: int


@dataclass(frozen=True)
class RoadmapRequest:
    skill: str
    level: str
    goals: str = ""
    time_available: str = ""


@dataclass
class Roadmap:
    user_id: str
    skill: str
    level: str
    goals: str = ""
    time_available: str = ""
    progress: int = 0
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_request(self) -> RoadmapRequest:
        return RoadmapRequest(
            skill=self.skill,
            level=self.level,
            goals=self.goals,
            time_available=self.time_available,
        )


@dataclass
class RoadmapArtifacts:
    resources: list[str] = field(default_factory=list)
    exams: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    # Fields that degraded to an empty list and should be generated again later.
    unresolved: set[str] = field(default_factory=set)


def preview(text: str, max_chars: int = 140) -> str:
    text = " ".join(text.split())
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."
