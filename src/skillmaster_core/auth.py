from __future__ import annotations

from typing import Protocol, runtime_checkable

from skillmaster_core.errors import UnauthorizedError
from skillmaster_core.models import Tier, User


@runtime_checkable
class UserDirectory(Protocol):
    def get_user(self, user_id: str) -> User:
        """Resolve a signed-in user; raise UnauthorizedError otherwise."""
        ...


class StaticUserDirectory:
    """Fixed user table, used by the CLI and tests in place of the real auth service."""

    def __init__(self, users: dict[str, Tier | str] | None = None):
        self._users = {user_id: Tier.parse(t.value if isinstance(t, Tier) else t) for user_id, t in (users or {}).items()}

    def get_user(self, user_id: str) -> User:
        tier = self._users.get(user_id)
        if tier is None:
            raise UnauthorizedError(f"Unknown or signed-out user: {user_id!r}")
        return User(id=user_id, tier=tier)

    def set_tier(self, user_id: str, tier: Tier) -> None:
        self._users[user_id] = tier
