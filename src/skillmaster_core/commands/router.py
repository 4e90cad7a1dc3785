from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_new: Callable[[], Awaitable[None]],
        on_conversations: Callable[[str], Awaitable[None]],
        on_usage: Callable[[], Awaitable[None]],
        on_roadmap: Callable[[str], Awaitable[None]],
        on_coach: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_new = on_new
        self._on_conversations = on_conversations
        self._on_usage = on_usage
        self._on_roadmap = on_roadmap
        self._on_coach = on_coach
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, _ = trimmed.partition(" ")
        if command == "/help":
            await self._on_help()
            return True
        if command == "/new":
            await self._on_new()
            return True
        if command == "/conversations":
            await self._on_conversations(trimmed)
            return True
        if command == "/usage":
            await self._on_usage()
            return True
        if command == "/roadmap":
            await self._on_roadmap(trimmed)
            return True
        if command == "/coach":
            await self._on_coach(trimmed)
            return True

        self._on_unknown(trimmed)
        return True
