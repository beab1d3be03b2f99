from pydantic import BaseModel, computed_field
from typing import Optional
from datetime import datetime

from app.modules.avatars.storage import fallback_avatar_url


class Profile(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileResponse(Profile):
    @computed_field
    @property
    def display_avatar_url(self) -> str:
        return self.avatar_url or fallback_avatar_url(self.display_name or self.username)


class UsernameAvailability(BaseModel):
    username: str
    available: bool


class ProfileUpdateResponse(BaseModel):
    profile: ProfileResponse
    message: str = "Profile updated!"
