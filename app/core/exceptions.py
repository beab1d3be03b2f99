"""
Error taxonomy for the auth, registration and profile flows.

Every failure carries a FailureKind tag so callers (and the HTTP layer) can
handle each outcome explicitly instead of parsing messages.
"""

from enum import Enum
from typing import Any, Dict, Optional


class FailureKind(str, Enum):
    PASSWORD_MISMATCH = "password_mismatch"
    INVALID_AVATAR = "invalid_avatar"
    USERNAME_TAKEN = "username_taken"
    IDENTITY_SERVICE_ERROR = "identity_service_error"
    ACCOUNT_CREATION_FAILED = "account_creation_failed"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    PROFILE_NOT_READY = "profile_not_ready"
    PROFILE_NOT_FOUND = "profile_not_found"
    PROFILE_STORE_ERROR = "profile_store_error"
    DISPLAY_NAME_UPDATE_FAILED = "display_name_update_failed"
    SESSION_UNVERIFIED = "session_unverified"
    AVATAR_UPLOAD_FAILED = "avatar_upload_failed"
    AVATAR_URL_PERSIST_FAILED = "avatar_url_persist_failed"
    REGISTRATION_NOT_FOUND = "registration_not_found"
    INVALID_STATE = "invalid_state"


class AppError(Exception):
    """Base exception for the application."""

    status_code = 500

    def __init__(
        self,
        message: str,
        kind: FailureKind,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.kind = kind
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "kind": self.kind.value}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    """Local input error; raised before any network call."""

    status_code = 400


class ConflictError(AppError):
    """Uniqueness conflict (username already taken)."""

    status_code = 409

    def __init__(self, message: str = "Username already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, FailureKind.USERNAME_TAKEN, details)


class ServiceError(AppError):
    """Wrapped failure from the identity service, profile store or blob store."""

    status_code = 502


class PollTimeoutError(AppError):
    """A polling ceiling was reached."""

    status_code = 504


class NotFoundError(AppError):
    status_code = 404


class InvalidStateError(AppError):
    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, FailureKind.INVALID_STATE, details)
