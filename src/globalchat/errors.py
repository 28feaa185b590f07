"""
Error types raised by the moderation engine.

Every error carries a stable machine-readable ``code`` (one of the reason
codes in globalchat.constants) and a human ``message``. Callers map the
classes onto their own transport: validation and not-found errors are
client mistakes, SendDenied is a policy decision, PersistenceError is fatal
to the current operation.
"""

from datetime import datetime

from globalchat.constants import PERSISTENCE_FAILED, format_denial_message


class ChatError(Exception):
    """Base class for all chat errors."""

    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        self.message = message or format_denial_message(code)
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ChatValidationError(ChatError):
    """Input rejected before any state was touched."""


class ChatNotFoundError(ChatError):
    """The referenced message or user state does not exist."""


class SendDenied(ChatError):
    """
    Policy denial (ban, mute, rate limit, duplicate, disabled feature).

    Attributes:
        retry_after_seconds: Whole seconds until a rate-limited user may retry.
        until: Expiry instant of a temporary mute or ban.
    """

    def __init__(
        self,
        code: str,
        retry_after_seconds: int | None = None,
        until: datetime | None = None,
    ) -> None:
        self.retry_after_seconds = retry_after_seconds
        self.until = until
        super().__init__(
            code,
            format_denial_message(code, retry_after_seconds=retry_after_seconds, until=until),
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.retry_after_seconds is not None:
            data["retryAfter"] = self.retry_after_seconds
        if self.until is not None:
            data["until"] = self.until.isoformat()
        return data


class PersistenceError(ChatError):
    """The store rejected a write; nothing was broadcast."""

    def __init__(self, detail: str) -> None:
        super().__init__(PERSISTENCE_FAILED)
        self.detail = detail
