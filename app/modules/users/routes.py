from fastapi import APIRouter, Depends, File, Form, UploadFile
from app.database.supabase_client import get_service_supabase
from app.modules.avatars.schemas import AvatarFile
from app.modules.avatars.storage import AvatarStorage
from app.modules.users.schemas import (
    Profile, ProfileResponse, ProfileUpdateResponse, UsernameAvailability
)
from app.modules.users.service import ProfileService
from app.core.dependencies import get_current_profile, get_profile_service
from app.core.exceptions import FailureKind, NotFoundError
from supabase import Client
from typing import Optional

router = APIRouter(prefix="/users", tags=["users"])


def get_avatar_storage(supabase: Client = Depends(get_service_supabase)) -> AvatarStorage:
    return AvatarStorage(supabase)


def get_profile_writer(supabase: Client = Depends(get_service_supabase)) -> ProfileService:
    """Settings writes happen after the bearer token is verified, so they bypass RLS"""
    return ProfileService(supabase)


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(profile: Profile = Depends(get_current_profile)):
    """Get the signed-in user's profile"""
    return ProfileResponse(**profile.model_dump())


@router.patch("/me", response_model=ProfileUpdateResponse)
async def update_my_profile(
    display_name: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    profile: Profile = Depends(get_current_profile),
    service: ProfileService = Depends(get_profile_writer),
    storage: AvatarStorage = Depends(get_avatar_storage)
):
    """Settings save: change display name and/or replace the avatar"""
    avatar_file = await AvatarFile.from_upload(avatar)
    updated = service.update_settings(profile, storage, display_name=display_name, avatar=avatar_file)
    return ProfileUpdateResponse(profile=ProfileResponse(**updated.model_dump()))


@router.get("/availability/{username}", response_model=UsernameAvailability)
async def check_username(
    username: str,
    service: ProfileService = Depends(get_profile_service)
):
    """Whether a username is free; advisory only, sign-up can still conflict"""
    return UsernameAvailability(username=username, available=service.get_by_username(username) is None)


@router.get("/by-username/{username}", response_model=ProfileResponse)
async def get_profile_by_username(
    username: str,
    service: ProfileService = Depends(get_profile_service)
):
    """Public profile lookup"""
    profile = service.get_by_username(username)
    if not profile:
        raise NotFoundError("User not found", FailureKind.PROFILE_NOT_FOUND)
    return ProfileResponse(**profile.model_dump())
