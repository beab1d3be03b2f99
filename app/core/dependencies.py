"""
Core dependencies for route protection
"""

from fastapi import Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.database.supabase_client import get_supabase, get_session_client_factory
from app.modules.auth.service import AuthService
from app.modules.users.schemas import Profile
from app.modules.users.service import ProfileService
from supabase import Client
from typing import Callable

security = HTTPBearer()


def get_auth_service(
    supabase: Client = Depends(get_supabase),
    session_client_factory: Callable[[], Client] = Depends(get_session_client_factory)
) -> AuthService:
    return AuthService(supabase, session_client_factory)


def get_profile_service(supabase: Client = Depends(get_supabase)) -> ProfileService:
    return ProfileService(supabase)


def get_current_token(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """Extract JWT token from Authorization header"""
    return credentials.credentials


def get_current_user_id(
    token: str = Depends(get_current_token),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    return auth_service.get_current_user(token)


def get_current_profile(
    user_data: dict = Depends(get_current_user_id),
    profiles: ProfileService = Depends(get_profile_service)
) -> Profile:
    """Signed-in user's profile row; 404 while the signup trigger has not created it"""
    return profiles.require_by_id(user_data["id"])
