from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from skillmaster_core.dispatcher import CompletionRequest, Dispatcher, Failure
from skillmaster_core.errors import UnauthorizedError
from skillmaster_core.logging_config import request_logger
from skillmaster_core.models import Conversation, Message, Role, User, utc_now
from skillmaster_core.quota import QuotaPolicy, QuotaTracker
from skillmaster_core.response_parser import extract_code_block, parse_reply
from skillmaster_core.storage.conversation_repository import ConversationRepository

QUOTA_EXCEEDED_NOTICE = "Daily limit reached. Upgrade to Pro for unlimited questions!"
UPSTREAM_ERROR_NOTICE = "Something went wrong talking to the AI tutor. Please try again."


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_UPSTREAM = "awaiting_upstream"


class TurnStatus(str, Enum):
    OK = "ok"
    QUOTA_EXCEEDED = "quota_exceeded"
    UPSTREAM_ERROR = "upstream_error"


@dataclass(frozen=True)
class TurnOutcome:
    status: TurnStatus
    conversation_id: str
    remaining_quota: int
    assistant_message: Message | None = None
    notice: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.OK


@dataclass(frozen=True)
class SessionSettings:
    endpoint: str = "tutor"
    quota_policy: QuotaPolicy = field(default_factory=lambda: QuotaPolicy(free_limit=10))
    max_tokens: int = 1024
    max_context_messages: int = 20
    system_prompt: str = ""
    rollback_failed_turns: bool = False


class ConversationSession:
    """State machine for one tutoring conversation.

    ``submit_turn`` calls are queued and processed one at a time in the order
    they were submitted. A turn's user message is appended when the turn
    leaves the queue, which keeps every user/assistant pair adjacent and in
    submission order. ``state`` is a synchronous snapshot for UI polling.
    """

    def __init__(
        self,
        conversation: Conversation,
        *,
        quota: QuotaTracker,
        dispatcher: Dispatcher,
        repository: ConversationRepository | None = None,
        settings: SessionSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._conversation = conversation
        self._quota = quota
        self._dispatcher = dispatcher
        self._repository = repository
        self._settings = settings or SessionSettings()
        self._clock = clock
        self._state = SessionState.IDLE
        self._turn_lock = asyncio.Lock()
        self._pending_turns = 0

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending_turns(self) -> int:
        return self._pending_turns

    async def submit_turn(self, user: User, text: str) -> TurnOutcome:
        if user.id != self._conversation.user_id:
            raise UnauthorizedError(f"User {user.id} does not own conversation {self._conversation.id}")

        self._pending_turns += 1
        try:
            async with self._turn_lock:
                self._state = SessionState.AWAITING_UPSTREAM
                try:
                    return await self._process_turn(user, text)
                finally:
                    self._state = SessionState.IDLE
        finally:
            self._pending_turns -= 1

    async def _process_turn(self, user: User, text: str) -> TurnOutcome:
        settings = self._settings
        conversation = self._conversation
        user_message = Message(Role.USER, text, timestamp=self._clock())
        conversation.append(user_message)

        decision = await self._quota.check_and_consume(
            user.id,
            settings.endpoint,
            settings.quota_policy.limit_for(user.tier),
            period=settings.quota_policy.period,
        )
        if not decision.allowed:
            self._persist()
            return TurnOutcome(
                status=TurnStatus.QUOTA_EXCEEDED,
                conversation_id=conversation.id,
                remaining_quota=0,
                notice=QUOTA_EXCEEDED_NOTICE,
            )

        request = CompletionRequest(
            messages=self._context_messages(),
            max_tokens=settings.max_tokens,
            label=settings.endpoint,
            conversation_id=conversation.id,
        )
        log = request_logger(request.label, conversation_id=conversation.id)
        try:
            result = await self._dispatcher.execute(request)
        except asyncio.CancelledError:
            log.info("Turn cancelled; quota is not refunded")
            self._persist()
            raise

        if isinstance(result, Failure):
            if settings.rollback_failed_turns and conversation.messages and conversation.messages[-1] is user_message:
                conversation.messages.pop()
            self._persist()
            return TurnOutcome(
                status=TurnStatus.UPSTREAM_ERROR,
                conversation_id=conversation.id,
                remaining_quota=decision.remaining,
                notice=UPSTREAM_ERROR_NOTICE,
            )

        reply = parse_reply(result.text)
        assistant_message = Message(
            Role.ASSISTANT,
            reply.text,
            timestamp=self._clock(),
            payload=None if reply.is_fallback else extract_code_block(reply.text),
        )
        conversation.append(assistant_message)
        self._persist()
        log.bind(event="turn_completed", user_id=user.id, remaining=decision.remaining).info(
            f"Turn completed: messages={len(conversation.messages)} remaining={decision.remaining}"
        )
        return TurnOutcome(
            status=TurnStatus.OK,
            conversation_id=conversation.id,
            remaining_quota=decision.remaining,
            assistant_message=assistant_message,
            warnings=list(reply.warnings),
        )

    def _context_messages(self) -> list[dict]:
        history = self._conversation.messages
        limit = self._settings.max_context_messages
        if limit > 0 and len(history) > limit:
            history = history[-limit:]
            # The window must open on a user message.
            start = next((i for i, m in enumerate(history) if m.role is Role.USER), len(history))
            history = history[start:]
        messages = [m.to_chat() for m in history]
        if self._settings.system_prompt:
            messages.insert(0, {"role": "system", "content": self._settings.system_prompt})
        return messages

    def _persist(self) -> None:
        if self._repository is not None:
            self._repository.save(self._conversation)
