"""
Identity Service: thin wrapper over ``client.auth`` of one Supabase client.

Sessions live on the client instance, so a wrapper built on a per-flow client
(see SupabaseClient.create_session_client) observes only that user's session.
"""
import logging
from typing import Any, Callable, Dict, Optional

from supabase import Client

from app.core.exceptions import FailureKind, ServiceError
from app.modules.auth.schemas import Account, Session, SignUpResult

logger = logging.getLogger(__name__)

SessionCallback = Callable[[str, Optional[Session]], None]


def _error_message(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


def _to_account(user: Any) -> Optional[Account]:
    if not user:
        return None
    return Account(
        id=str(user.id),
        email=getattr(user, "email", None),
        user_metadata=getattr(user, "user_metadata", None) or {},
        app_metadata=getattr(user, "app_metadata", None) or {},
    )


def _to_session(session: Any) -> Optional[Session]:
    if not session or not getattr(session, "access_token", None):
        return None
    return Session(
        access_token=session.access_token,
        refresh_token=getattr(session, "refresh_token", None),
        expires_at=getattr(session, "expires_at", None),
    )


class IdentityService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SignUpResult:
        """Create an account; the session is present only when email confirmation is off."""
        try:
            response = self.supabase.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": metadata or {}}
            })
        except Exception as e:
            message = _error_message(e)
            logger.warning(f"sign_up failed for {email}: {message}")
            raise ServiceError(message, FailureKind.IDENTITY_SERVICE_ERROR)
        return SignUpResult(
            account=_to_account(response.user),
            session=_to_session(response.session),
        )

    def sign_in(self, email: str, password: str) -> SignUpResult:
        try:
            response = self.supabase.auth.sign_in_with_password({
                "email": email,
                "password": password
            })
        except Exception as e:
            raise ServiceError(_error_message(e), FailureKind.IDENTITY_SERVICE_ERROR)
        return SignUpResult(
            account=_to_account(response.user),
            session=_to_session(response.session),
        )

    def get_session(self) -> Optional[Session]:
        try:
            return _to_session(self.supabase.auth.get_session())
        except Exception as e:
            raise ServiceError(_error_message(e), FailureKind.IDENTITY_SERVICE_ERROR)

    def get_account(self, jwt: Optional[str] = None) -> Optional[Account]:
        try:
            response = self.supabase.auth.get_user(jwt) if jwt else self.supabase.auth.get_user()
        except Exception as e:
            raise ServiceError(_error_message(e), FailureKind.IDENTITY_SERVICE_ERROR)
        return _to_account(response.user) if response else None

    def set_session(self, access_token: str, refresh_token: str) -> Optional[Session]:
        try:
            response = self.supabase.auth.set_session(access_token, refresh_token)
        except Exception as e:
            raise ServiceError(_error_message(e), FailureKind.IDENTITY_SERVICE_ERROR)
        return _to_session(response.session) if response else None

    def sign_out(self, jwt: Optional[str] = None) -> None:
        """Sign out this client's session, or revoke the given access token."""
        try:
            if jwt:
                self.supabase.auth.admin.sign_out(jwt)
            else:
                self.supabase.auth.sign_out()
        except Exception as e:
            raise ServiceError(_error_message(e), FailureKind.IDENTITY_SERVICE_ERROR)

    def subscribe(self, callback: SessionCallback):
        """Register for auth-state changes (SIGNED_IN, TOKEN_REFRESHED, SIGNED_OUT, ...).

        Returns the SDK subscription; call ``unsubscribe()`` on it when done.
        """
        def _listener(event, session):
            event_name = getattr(event, "value", event)
            callback(str(event_name), _to_session(session))

        return self.supabase.auth.on_auth_state_change(_listener)
