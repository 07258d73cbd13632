"""
Error taxonomy shared by the services and the HTTP layer.

Services raise these; the exception handlers in chatrelay.main turn them into
`{"error": message}` payloads. Only `message` is ever shown to the caller.
"""
from typing import Optional


class ChatRelayError(Exception):
    """Base class. `status_code` is the HTTP status the error maps to."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.public_message
        super().__init__(self.message)


class ValidationError(ChatRelayError):
    """Bad or missing input. Never retried."""

    status_code = 400
    public_message = "Invalid request"


class RateLimited(ChatRelayError):
    status_code = 429
    public_message = "Too many requests. Please wait a moment before sending another message."


class Unauthorized(ChatRelayError):
    status_code = 401
    public_message = "Unauthorized"


class NotFound(ChatRelayError):
    """Session absent OR not owned by the caller. Both look the same on purpose."""

    status_code = 404
    public_message = "Session not found"


class DependencyFailure(ChatRelayError):
    """Store, embedding or generation provider failed.

    The detail stays in the logs, callers only ever see the generic message.
    """

    status_code = 500

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(None)


class GenerationInterrupted(DependencyFailure):
    """The provider failed after some chunks were already delivered."""


class InternalError(ChatRelayError):
    status_code = 500
