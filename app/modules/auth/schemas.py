from pydantic import BaseModel, EmailStr
from typing import Optional, Dict, Any

from app.modules.users.schemas import ProfileResponse


class Account(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = {}
    app_metadata: Dict[str, Any] = {}


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


class SignUpResult(BaseModel):
    account: Optional[Account] = None
    session: Optional[Session] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    user_id: str
    email: str
    profile: ProfileResponse


class CurrentUserResponse(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = {}
    profile: Optional[ProfileResponse] = None
