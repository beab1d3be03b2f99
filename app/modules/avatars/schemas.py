from dataclasses import dataclass
from typing import Optional

from fastapi import UploadFile

from app.config import settings
from app.core.exceptions import FailureKind, ValidationError


@dataclass
class AvatarFile:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    def validate(self, max_bytes: Optional[int] = None) -> "AvatarFile":
        limit = max_bytes if max_bytes is not None else settings.avatar_max_bytes
        if not self.content_type.startswith("image/"):
            raise ValidationError("Avatar must be an image", FailureKind.INVALID_AVATAR,
                                  {"content_type": self.content_type})
        if not self.content:
            raise ValidationError("Avatar file is empty", FailureKind.INVALID_AVATAR)
        if len(self.content) > limit:
            raise ValidationError("Avatar file is too large", FailureKind.INVALID_AVATAR,
                                  {"size": len(self.content), "max_bytes": limit})
        return self

    @classmethod
    async def from_upload(cls, upload: Optional[UploadFile]) -> Optional["AvatarFile"]:
        """Read a multipart upload; an absent or unnamed file field means no avatar."""
        if upload is None or not upload.filename:
            return None
        content = await upload.read()
        return cls(
            filename=upload.filename,
            content=content,
            content_type=upload.content_type or "application/octet-stream",
        ).validate()
