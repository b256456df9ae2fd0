from __future__ import annotations


class ModerationError(Exception):
    """Base for every error the moderation core raises on purpose."""

    code = "moderation_error"
    http_status = 400

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def as_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ValidationError(ModerationError):
    # raised before any mutation
    code = "validation_error"
    http_status = 422


class NotFoundError(ModerationError):
    code = "not_found"
    http_status = 404


class InvalidStateError(ModerationError):
    code = "invalid_state"
    http_status = 409


class ConcurrentModificationError(ModerationError):
    """A conditional update lost its race. Never retried by the core."""

    code = "concurrent_modification"
    http_status = 409


class SideEffectError(ModerationError):
    """Notification/audit write failed after the state change committed."""

    code = "side_effect_failed"
    http_status = 500
