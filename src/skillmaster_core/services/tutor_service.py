from __future__ import annotations

import weakref
from collections.abc import Callable
from datetime import datetime

from loguru import logger

from skillmaster_core.auth import UserDirectory
from skillmaster_core.conversation import ConversationSession, SessionSettings, TurnOutcome
from skillmaster_core.dispatcher import Dispatcher
from skillmaster_core.errors import NotFoundError
from skillmaster_core.models import Conversation, User, utc_now
from skillmaster_core.quota import QuotaTracker
from skillmaster_core.storage.conversation_repository import ConversationRepository


class TutorService:
    """Conversation API used by the UI layer.

    Sessions stay registered only while something holds them, so concurrent
    turns on one conversation share a session (and its queue) and idle
    conversations are reloaded from the repository on the next turn.
    """

    def __init__(
        self,
        *,
        users: UserDirectory,
        repository: ConversationRepository,
        quota: QuotaTracker,
        dispatcher: Dispatcher,
        settings: SessionSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._users = users
        self._repository = repository
        self._quota = quota
        self._dispatcher = dispatcher
        self._settings = settings or SessionSettings()
        self._clock = clock
        self._sessions: weakref.WeakValueDictionary[str, ConversationSession] = weakref.WeakValueDictionary()

    def list_conversations(self, user_id: str, *, limit: int = 50) -> list[Conversation]:
        user = self._users.get_user(user_id)
        return self._repository.list_for_user(user.id, limit=limit)

    def get_conversation(self, user_id: str, conversation_id: str) -> Conversation:
        user = self._users.get_user(user_id)
        session = self._sessions.get(conversation_id)
        conversation = session.conversation if session is not None else self._repository.load(conversation_id)
        if conversation is None or conversation.user_id != user.id:
            raise NotFoundError(f"Conversation not found: {conversation_id}")
        return conversation

    def active_session(self, conversation_id: str) -> ConversationSession | None:
        return self._sessions.get(conversation_id)

    async def submit_turn(self, conversation_id: str | None, user_id: str, text: str) -> TurnOutcome:
        user = self._users.get_user(user_id)
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")
        session = self._session_for(conversation_id, user)
        return await session.submit_turn(user, text.strip())

    def remaining_quota(self, user_id: str) -> int:
        user = self._users.get_user(user_id)
        policy = self._settings.quota_policy
        return self._quota.remaining(
            user.id,
            self._settings.endpoint,
            policy.limit_for(user.tier),
            period=policy.period,
        )

    def _session_for(self, conversation_id: str | None, user: User) -> ConversationSession:
        if conversation_id is None:
            now = self._clock()
            conversation = Conversation(user_id=user.id, created_at=now, updated_at=now)
            logger.info(f"Starting conversation {conversation.id} for user {user.id}")
        else:
            session = self._sessions.get(conversation_id)
            if session is not None:
                if session.conversation.user_id != user.id:
                    raise NotFoundError(f"Conversation not found: {conversation_id}")
                return session
            conversation = self._repository.load(conversation_id)
            if conversation is None or conversation.user_id != user.id:
                raise NotFoundError(f"Conversation not found: {conversation_id}")

        session = ConversationSession(
            conversation,
            quota=self._quota,
            dispatcher=self._dispatcher,
            repository=self._repository,
            settings=self._settings,
            clock=self._clock,
        )
        self._sessions[conversation.id] = session
        return session
