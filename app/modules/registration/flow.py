"""
Two-step registration with email confirmation.

    collecting_credentials -> [awaiting_email_confirmation] -> completing_profile -> done

Any step may end in ``failed``. The failure is recorded on the flow and
raised to the caller. A profile step that failed may be resubmitted, because
every write there is an update keyed by the account id.
"""
import asyncio
import logging
from typing import Optional

from supabase import Client

from app.config import settings
from app.core.exceptions import (
    AppError, ConflictError, FailureKind, InvalidStateError, PollTimeoutError,
    ServiceError, ValidationError,
)
from app.core.polling import PollExhausted, RetryPolicy, Sleep, poll
from app.modules.auth.identity import IdentityService
from app.modules.auth.schemas import Account, Session
from app.modules.avatars.schemas import AvatarFile
from app.modules.avatars.storage import AvatarStorage
from app.modules.registration.schemas import (
    Failure, RegistrationResult, RegistrationState, RegistrationStatusResponse,
)
from app.modules.users.schemas import Profile, ProfileResponse
from app.modules.users.service import ProfileService, is_unique_violation

logger = logging.getLogger(__name__)


def _policy(attempts: int, interval: float) -> RetryPolicy:
    return RetryPolicy(max_attempts=attempts, interval=interval)


class RegistrationFlow:
    def __init__(
        self,
        identity: IdentityService,
        profiles: ProfileService,
        avatars: AvatarStorage,
        sleep: Sleep = asyncio.sleep,
    ):
        self.identity = identity
        self.profiles = profiles
        self.avatars = avatars
        self.sleep = sleep

        self.confirmation_policy = _policy(settings.confirmation_poll_attempts, settings.confirmation_poll_interval)
        self.profile_policy = _policy(settings.profile_poll_attempts, settings.profile_poll_interval)
        self.session_policy = _policy(settings.session_verify_attempts, settings.session_verify_interval)

        self.state = RegistrationState.COLLECTING_CREDENTIALS
        self.account: Optional[Account] = None
        self.email: Optional[str] = None
        self.failure: Optional[AppError] = None
        self.failed_in: Optional[RegistrationState] = None

    @classmethod
    def for_client(cls, supabase: Client, sleep: Sleep = asyncio.sleep) -> "RegistrationFlow":
        return cls(IdentityService(supabase), ProfileService(supabase), AvatarStorage(supabase), sleep=sleep)

    @property
    def account_id(self) -> Optional[str]:
        return self.account.id if self.account else None

    def _transition(self, state: RegistrationState) -> None:
        logger.info(f"Registration {self.account_id or self.email}: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, error: AppError) -> AppError:
        self.failed_in = self.state
        self.failure = error
        logger.warning(
            f"Registration {self.account_id or self.email} failed in {self.state.value}: "
            f"{error.kind.value} ({error.message})"
        )
        self.state = RegistrationState.FAILED
        return error

    def _expect(self, *states: RegistrationState) -> None:
        if self.state in states:
            return
        if self.state == RegistrationState.FAILED and self.failed_in in states:
            return
        raise InvalidStateError(
            f"Registration is {self.state.value}, expected {' or '.join(s.value for s in states)}"
        )

    @property
    def is_terminal(self) -> bool:
        """No step can run any more: done, or failed before the profile step."""
        return self.state == RegistrationState.DONE or (
            self.state == RegistrationState.FAILED
            and self.failed_in != RegistrationState.COMPLETING_PROFILE
        )

    def _resume(self, state: RegistrationState) -> None:
        self._expect(state)
        self.state = state
        self.failure = None
        self.failed_in = None

    def status(self) -> RegistrationStatusResponse:
        failure = None
        if self.failure:
            failure = Failure(kind=self.failure.kind, message=self.failure.message)
        return RegistrationStatusResponse(
            account_id=self.account_id,
            email=self.email,
            state=self.state,
            failed_in=self.failed_in,
            failure=failure,
        )

    async def submit_credentials(
        self, email: str, username: str, password: str, confirm_password: str
    ) -> RegistrationState:
        self._resume(RegistrationState.COLLECTING_CREDENTIALS)
        self.email = email
        if password != confirm_password:
            raise self._fail(ValidationError("Passwords do not match", FailureKind.PASSWORD_MISMATCH))

        try:
            if self.profiles.get_by_username(username):
                raise ConflictError()
            result = self.identity.sign_up(email, password, {"username": username})
        except ConflictError as e:
            raise self._fail(e)
        except ServiceError as e:
            # the profile trigger rejects a duplicate username raced past the pre-check
            if is_unique_violation(e):
                raise self._fail(ConflictError(details={"cause": e.message}))
            raise self._fail(e)

        if not result.account:
            raise self._fail(ServiceError("Failed to create user", FailureKind.ACCOUNT_CREATION_FAILED))

        self.account = result.account
        if result.session:
            self._transition(RegistrationState.COMPLETING_PROFILE)
        else:
            self._transition(RegistrationState.AWAITING_EMAIL_CONFIRMATION)
        return self.state

    async def await_confirmation(self) -> Session:
        """Wait for the session that appears once the email link is followed.

        A timeout is final: the link handed over later has nothing waiting for it.
        """
        if self.state != RegistrationState.AWAITING_EMAIL_CONFIRMATION:
            raise InvalidStateError(f"Registration is {self.state.value}, expected awaiting_email_confirmation")
        try:
            session = await poll(
                self.identity.get_session, self.confirmation_policy, self.sleep, label="email confirmation"
            )
        except PollExhausted:
            raise self._fail(PollTimeoutError(
                "Email was not confirmed in time. Please register again.",
                FailureKind.CONFIRMATION_TIMEOUT,
            ))
        except ServiceError as e:
            raise self._fail(e)
        self._transition(RegistrationState.COMPLETING_PROFILE)
        return session

    def confirm(self, access_token: str, refresh_token: str) -> RegistrationState:
        """Hand over the session from the confirmation link; the running poll picks it up."""
        if self.state != RegistrationState.AWAITING_EMAIL_CONFIRMATION:
            raise InvalidStateError(f"Registration is {self.state.value}, expected awaiting_email_confirmation")
        self.identity.set_session(access_token, refresh_token)
        return self.state

    async def _wait_for_profile(self, policy: RetryPolicy) -> Profile:
        try:
            return await poll(
                lambda: self.profiles.get_by_id(self.account_id), policy, self.sleep, label="profile row"
            )
        except PollExhausted:
            raise PollTimeoutError("Profile creation failed. Please try again.", FailureKind.PROFILE_NOT_READY)

    async def _verify_session(self) -> Session:
        try:
            return await poll(self.identity.get_session, self.session_policy, self.sleep, label="session check")
        except PollExhausted:
            raise PollTimeoutError(
                "Could not verify authentication for avatar upload.", FailureKind.SESSION_UNVERIFIED
            )

    async def complete_profile(
        self, display_name: Optional[str], avatar: Optional[AvatarFile] = None
    ) -> RegistrationResult:
        self._resume(RegistrationState.COMPLETING_PROFILE)

        try:
            profile = await self._wait_for_profile(self.profile_policy)
            profile = self.profiles.update_display_name(profile, display_name)
            if avatar:
                await self._verify_session()
                profile = self.profiles.replace_avatar(
                    profile, avatar, self.avatars,
                    upload_message="Failed to upload avatar. You can update it later.",
                    persist_message="Avatar uploaded, but failed to update profile. You can update it later.",
                )
        except AppError as e:
            # failures here leave the step resumable; the form can be resubmitted
            raise self._fail(e)

        self._transition(RegistrationState.DONE)
        return RegistrationResult(profile=ProfileResponse(**profile.model_dump()))

    async def register(
        self,
        display_name: str,
        username: str,
        email: str,
        password: str,
        avatar: Optional[AvatarFile] = None,
    ) -> RegistrationResult:
        """Single-step sign-up: the profile trigger receives display_name and username.

        Used when email confirmation is disabled for the project. Avatar
        failures come back as warnings, since the account is already usable.
        """
        self._resume(RegistrationState.COLLECTING_CREDENTIALS)
        self.email = email
        try:
            if self.profiles.get_by_username(username):
                raise ConflictError()
            result = self.identity.sign_up(email, password, {"display_name": display_name, "username": username})
            if not result.account:
                raise ServiceError("Failed to create user", FailureKind.ACCOUNT_CREATION_FAILED)
            self.account = result.account
            self._transition(RegistrationState.COMPLETING_PROFILE)
            profile = await self._wait_for_profile(
                _policy(settings.quick_register_profile_attempts, settings.quick_register_profile_interval)
            )
        except ServiceError as e:
            if e.kind == FailureKind.IDENTITY_SERVICE_ERROR and is_unique_violation(e):
                raise self._fail(ConflictError(details={"cause": e.message}))
            raise self._fail(e)
        except AppError as e:
            raise self._fail(e)

        warnings = []
        if avatar:
            try:
                profile = self.profiles.replace_avatar(
                    profile, avatar, self.avatars,
                    upload_message="Registered, but failed to upload avatar. You can update your avatar later.",
                    persist_message=(
                        "Registered and avatar uploaded, but failed to update profile with avatar. "
                        "You can update your avatar later."
                    ),
                )
            except ServiceError as e:
                warnings.append(Failure(kind=e.kind, message=e.message))

        self._transition(RegistrationState.DONE)
        return RegistrationResult(profile=ProfileResponse(**profile.model_dump()), warnings=warnings)
