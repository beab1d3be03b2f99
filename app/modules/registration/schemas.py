from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from app.config import settings
from app.core.exceptions import FailureKind
from app.modules.users.schemas import ProfileResponse


class RegistrationState(str, Enum):
    COLLECTING_CREDENTIALS = "collecting_credentials"
    AWAITING_EMAIL_CONFIRMATION = "awaiting_email_confirmation"
    COMPLETING_PROFILE = "completing_profile"
    DONE = "done"
    FAILED = "failed"


class CredentialsRequest(BaseModel):
    email: EmailStr
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=settings.password_min_length)
    confirm_password: str


class ConfirmationRequest(BaseModel):
    access_token: str
    refresh_token: str


class Failure(BaseModel):
    kind: FailureKind
    message: str


class RegistrationStatusResponse(BaseModel):
    account_id: Optional[str] = None
    email: Optional[str] = None
    state: RegistrationState
    failed_in: Optional[RegistrationState] = None
    failure: Optional[Failure] = None


class RegistrationResult(BaseModel):
    """Outcome of a completed registration; warnings are soft avatar failures."""
    state: RegistrationState = RegistrationState.DONE
    profile: ProfileResponse
    warnings: List[Failure] = []
