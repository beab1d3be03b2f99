from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import EmailStr
from typing import Callable, Optional

from app.config import settings
from app.core.exceptions import FailureKind, NotFoundError
from app.database.supabase_client import get_session_client_factory
from app.modules.avatars.schemas import AvatarFile
from app.modules.registration import registry
from app.modules.registration.flow import RegistrationFlow
from app.modules.registration.schemas import (
    ConfirmationRequest, CredentialsRequest, RegistrationResult,
    RegistrationState, RegistrationStatusResponse,
)

router = APIRouter(prefix="/auth/register", tags=["registration"])


def get_flow_factory(client_factory: Callable = Depends(get_session_client_factory)) -> Callable[[], RegistrationFlow]:
    return lambda: RegistrationFlow.for_client(client_factory())


def get_pending(account_id: str) -> registry.PendingRegistration:
    entry = registry.get(account_id)
    if entry is None:
        raise NotFoundError("Registration not found or already completed", FailureKind.REGISTRATION_NOT_FOUND)
    return entry


@router.post("", response_model=RegistrationStatusResponse, status_code=201)
async def submit_credentials(
    request: CredentialsRequest,
    new_flow: Callable[[], RegistrationFlow] = Depends(get_flow_factory)
):
    """Step 1: create the account. Continues at the profile step, or waits for email confirmation."""
    flow = new_flow()
    state = await flow.submit_credentials(
        request.email, request.username, request.password, request.confirm_password
    )
    entry = registry.register(flow.account_id, flow)
    if state == RegistrationState.AWAITING_EMAIL_CONFIRMATION:
        registry.start_confirmation_watch(flow.account_id, entry)
    return flow.status()


@router.post("/quick", response_model=RegistrationResult, status_code=201)
async def register_single_step(
    display_name: str = Form(...),
    username: str = Form(...),
    email: EmailStr = Form(...),
    password: str = Form(..., min_length=settings.password_min_length),
    avatar: Optional[UploadFile] = File(None),
    new_flow: Callable[[], RegistrationFlow] = Depends(get_flow_factory)
):
    """Register in one request (projects without email confirmation)."""
    avatar_file = await AvatarFile.from_upload(avatar)
    flow = new_flow()
    return await flow.register(display_name, username, email, password, avatar_file)


@router.get("/{account_id}", response_model=RegistrationStatusResponse)
async def get_registration_status(
    account_id: str,
    entry: registry.PendingRegistration = Depends(get_pending)
):
    """Poll the registration state (e.g. while waiting for email confirmation).

    A registration that can go no further is reported once, then dropped.
    """
    status = entry.flow.status()
    if entry.flow.is_terminal:
        registry.unregister(account_id)
    return status


@router.post("/{account_id}/confirm", response_model=RegistrationStatusResponse)
async def confirm_email(
    request: ConfirmationRequest,
    entry: registry.PendingRegistration = Depends(get_pending)
):
    """Email link callback: hand the confirmed session to the waiting registration."""
    entry.flow.confirm(request.access_token, request.refresh_token)
    return entry.flow.status()


@router.post("/{account_id}/profile", response_model=RegistrationResult)
async def complete_profile(
    account_id: str,
    display_name: str = Form(...),
    avatar: Optional[UploadFile] = File(None),
    entry: registry.PendingRegistration = Depends(get_pending)
):
    """Step 2: set the display name and optional avatar."""
    avatar_file = await AvatarFile.from_upload(avatar)
    result = await entry.flow.complete_profile(display_name, avatar_file)
    registry.unregister(account_id)
    return result
