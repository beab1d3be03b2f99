import hashlib
import logging
import time
from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException
from supabase import Client

from app.core.exceptions import ServiceError
from app.modules.auth.identity import IdentityService
from app.modules.auth.schemas import CurrentUserResponse, LoginRequest, TokenResponse
from app.modules.users.schemas import ProfileResponse
from app.modules.users.service import ProfileService

logger = logging.getLogger(__name__)

# In-memory cache for get_current_user to reduce Supabase auth calls (e.g. many parallel requests with same token)
_AUTH_USER_CACHE: Dict[str, tuple] = {}
_AUTH_CACHE_TTL_SEC = 60
_AUTH_CACHE_MAX_SIZE = 500


def _cache_key(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def clear_auth_cache() -> None:
    _AUTH_USER_CACHE.clear()


class AuthService:
    def __init__(self, supabase: Client, session_client_factory: Optional[Callable[[], Client]] = None):
        self.supabase = supabase
        # sign-in stores a session on the client, so it runs on a throwaway one
        self.session_client_factory = session_client_factory or (lambda: supabase)
        self.identity = IdentityService(supabase)
        self.profiles = ProfileService(supabase)

    def login(self, login_data: LoginRequest) -> TokenResponse:
        """Authenticate with email/password and return tokens plus the profile"""
        identity = IdentityService(self.session_client_factory())
        try:
            result = identity.sign_in(login_data.email, login_data.password)
        except ServiceError as e:
            logger.info(f"Login rejected for {login_data.email}: {e.message}")
            raise HTTPException(status_code=401, detail="Invalid credentials")

        if not result.account or not result.session:
            raise HTTPException(status_code=401, detail="Login failed")

        profile = self.profiles.get_by_id(result.account.id)
        if not profile:
            raise HTTPException(status_code=404, detail="Failed to get user profile")

        return TokenResponse(
            access_token=result.session.access_token,
            refresh_token=result.session.refresh_token,
            token_type="bearer",
            user_id=result.account.id,
            email=result.account.email or login_data.email,
            profile=ProfileResponse(**profile.model_dump()),
        )

    def get_current_user(self, token: str) -> Dict[str, Any]:
        """Get current user details from Supabase Auth token. Uses short TTL cache to reduce auth API calls."""
        cache_key = _cache_key(token)
        now = time.monotonic()
        if cache_key in _AUTH_USER_CACHE:
            user_data, expiry = _AUTH_USER_CACHE[cache_key]
            if now < expiry:
                return user_data
            del _AUTH_USER_CACHE[cache_key]
        try:
            account = self.identity.get_account(jwt=token)
        except ServiceError as e:
            logger.debug(f"Token rejected: {e.message}")
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        if not account:
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        user_data = {
            "id": account.id,
            "email": account.email,
            "user_metadata": account.user_metadata,
            "app_metadata": account.app_metadata,
        }
        if len(_AUTH_USER_CACHE) < _AUTH_CACHE_MAX_SIZE:
            _AUTH_USER_CACHE[cache_key] = (user_data, now + _AUTH_CACHE_TTL_SEC)
        return user_data

    def get_current_user_with_profile(self, token: str) -> CurrentUserResponse:
        user_data = self.get_current_user(token)
        profile = self.profiles.get_by_id(user_data["id"])
        return CurrentUserResponse(
            id=user_data["id"],
            email=user_data["email"],
            user_metadata=user_data["user_metadata"],
            profile=ProfileResponse(**profile.model_dump()) if profile else None,
        )

    def logout(self, token: str) -> bool:
        """Revoke the token's session; the JWT itself stays valid until it expires"""
        _AUTH_USER_CACHE.pop(_cache_key(token), None)
        try:
            self.identity.sign_out(jwt=token)
            return True
        except ServiceError as e:
            logger.warning(f"Logout failed: {e.message}")
            return False
