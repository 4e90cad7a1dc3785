from __future__ import annotations


class SkillMasterError(Exception):
    """Base class for errors raised by the orchestration core."""


class UpstreamError(SkillMasterError):
    """The AI completion service could not produce a result."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamTransientError(UpstreamError):
    """Network error, timeout or 5xx. Safe to retry."""


class UpstreamRateLimitError(UpstreamTransientError):
    """The upstream explicitly asked us to slow down (HTTP 429)."""

    def __init__(self, message: str, *, retry_after: float | None = None, status_code: int | None = 429):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class UpstreamRequestError(UpstreamError):
    """The upstream rejected the request itself (4xx other than 429). Retrying will not help."""


class UnauthorizedError(SkillMasterError):
    """The caller is not signed in, or the user is unknown to the auth collaborator."""


class NotFoundError(SkillMasterError, LookupError):
    """A conversation or roadmap does not exist or belongs to another user."""
