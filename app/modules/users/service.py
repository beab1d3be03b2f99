import logging
from typing import Any, Dict, Optional

from supabase import Client

from app.config import settings
from app.core.exceptions import AppError, ConflictError, FailureKind, NotFoundError, ServiceError
from app.modules.avatars.schemas import AvatarFile
from app.modules.avatars.storage import AvatarStorage, avatar_key
from app.modules.users.schemas import Profile

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    if code == UNIQUE_VIOLATION:
        return True
    message = str(exc).lower()
    return "duplicate key" in message or "unique constraint" in message


class ProfileService:
    def __init__(self, supabase: Client, table: Optional[str] = None):
        self.supabase = supabase
        self.table = table or settings.profiles_table

    def _find_one(self, column: str, value: str) -> Optional[Profile]:
        try:
            result = self.supabase.table(self.table)\
                .select("*")\
                .eq(column, value)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Profile lookup by {column} failed: {e}")
            raise ServiceError(str(e), FailureKind.PROFILE_STORE_ERROR)
        if not result.data:
            return None
        return Profile(**result.data[0])

    def get_by_id(self, profile_id: str) -> Optional[Profile]:
        return self._find_one("id", profile_id)

    def get_by_username(self, username: str) -> Optional[Profile]:
        return self._find_one("username", username)

    def require_by_id(self, profile_id: str) -> Profile:
        profile = self.get_by_id(profile_id)
        if not profile:
            raise NotFoundError("Failed to get user profile", FailureKind.PROFILE_NOT_FOUND)
        return profile

    def update_fields(self, profile_id: str, fields: Dict[str, Any]) -> Profile:
        """Update display_name / avatar_url on the row keyed by ``profile_id``."""
        try:
            result = self.supabase.table(self.table)\
                .update(fields)\
                .eq("id", profile_id)\
                .execute()
        except Exception as e:
            if is_unique_violation(e):
                raise ConflictError(details={"cause": str(e)})
            logger.error(f"Profile update failed for {profile_id}: {e}")
            raise ServiceError(str(e), FailureKind.PROFILE_STORE_ERROR)
        if not result.data:
            raise NotFoundError("Failed to get user profile", FailureKind.PROFILE_NOT_FOUND)
        return Profile(**result.data[0])

    def update_display_name(self, profile: Profile, display_name: Optional[str]) -> Profile:
        """Write display_name only when it differs from the stored value."""
        if not display_name or display_name == profile.display_name:
            return profile
        try:
            return self.update_fields(profile.id, {"display_name": display_name})
        except AppError as e:
            raise ServiceError("Failed to update display name", FailureKind.DISPLAY_NAME_UPDATE_FAILED,
                               {"cause": e.message})

    def replace_avatar(
        self,
        profile: Profile,
        avatar: AvatarFile,
        storage: AvatarStorage,
        upload_message: str = "Failed to upload avatar",
        persist_message: str = "Avatar uploaded, but failed to update profile",
    ) -> Profile:
        """Upload under the account's key, then persist a freshly cache-busted URL."""
        key = avatar_key(profile.id, avatar.filename, avatar.content_type)
        try:
            storage.upload(key, avatar.content, avatar.content_type)
        except ServiceError as e:
            raise ServiceError(upload_message, FailureKind.AVATAR_UPLOAD_FAILED, {"cause": e.message})
        avatar_url = storage.cache_busted_url(key)
        try:
            return self.update_fields(profile.id, {"avatar_url": avatar_url})
        except (ServiceError, NotFoundError) as e:
            raise ServiceError(persist_message, FailureKind.AVATAR_URL_PERSIST_FAILED,
                               {"cause": e.message, "avatar_url": avatar_url})

    def update_settings(
        self,
        profile: Profile,
        storage: AvatarStorage,
        display_name: Optional[str] = None,
        avatar: Optional[AvatarFile] = None,
    ) -> Profile:
        """Settings page save: display name first, then avatar.

        The first failure is raised; an earlier successful step is kept.
        """
        profile = self.update_display_name(profile, display_name)
        if avatar:
            profile = self.replace_avatar(profile, avatar, storage)
        logger.info(f"Updated settings for {profile.id}")
        return profile
