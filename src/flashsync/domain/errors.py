"""
Error taxonomy shared by every layer.

Each error carries a stable ``code`` and a ``retryable`` flag so callers can
decide between transparent retry, "will retry" status and an explicit banner.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class AppError:
    """Structured error handed to the presentation layer."""

    code: str
    message: str
    retryable: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: dict[str, Any] | None = None


class FlashsyncError(Exception):
    code = "UNKNOWN_ERROR"
    retryable = False

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_app_error(self) -> AppError:
        return AppError(
            code=self.code,
            message=self.message,
            retryable=self.retryable,
            context=self.context,
        )


class ValidationError(FlashsyncError):
    """Malformed legacy record or invalid aggregated progress. Never retried."""

    code = "VALIDATION_ERROR"


class SessionError(FlashsyncError):
    code = "SESSION_ERROR"


class RemoteError(FlashsyncError):
    """A remote document-store call failed for a non-retryable reason."""

    code = "REMOTE_ERROR"


class TransientRemoteError(RemoteError):
    """Network / unavailable / timeout class failures."""

    code = "NETWORK_ERROR"
    retryable = True


class PermissionDeniedError(RemoteError):
    code = "PERMISSION_DENIED"


_CARD_SET_MESSAGES = {
    "CARD_SET_NOT_FOUND": (
        "Card set{name} could not be found{file}. Please check if the file exists "
        "or try selecting a different card set.",
        False,
    ),
    "CARD_SET_INVALID_DATA": (
        "Card set{name} contains invalid data{file}. The file might be corrupted "
        "or in the wrong format.",
        False,
    ),
    "CARD_SET_LOAD_FAILED": (
        "Failed to load card set{name}{file}. This might be a temporary issue - "
        "please try again.",
        True,
    ),
    "CARD_SET_EMPTY": (
        "Card set{name} doesn't contain any cards{file}.",
        False,
    ),
}


class CardSetError(FlashsyncError):
    """Seed card set could not be loaded."""

    def __init__(
        self,
        code: str,
        card_set_id: str | None = None,
        data_file: str | None = None,
        detail: str | None = None,
    ):
        template, retryable = _CARD_SET_MESSAGES.get(
            code, ("Card set{name} failed to load{file}.", False)
        )
        message = template.format(
            name=f' "{card_set_id}"' if card_set_id else "",
            file=f" ({data_file})" if data_file else "",
        )
        context = {"card_set_id": card_set_id, "data_file": data_file}
        if detail:
            context["detail"] = detail
        super().__init__(message, context=context)
        self.code = code
        self.retryable = retryable
        self.card_set_id = card_set_id
        self.data_file = data_file
