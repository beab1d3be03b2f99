from fastapi import APIRouter, Depends, HTTPException
from app.modules.auth.schemas import LoginRequest, TokenResponse, CurrentUserResponse
from app.modules.auth.service import AuthService
from app.core.dependencies import get_auth_service, get_current_token

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: LoginRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Login and get access token"""
    return service.login(login_data)


@router.post("/logout", status_code=200)
async def logout(
    token: str = Depends(get_current_token),
    service: AuthService = Depends(get_auth_service)
):
    """Logout and invalidate token"""
    if not service.logout(token):
        raise HTTPException(status_code=502, detail="Logout failed")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    token: str = Depends(get_current_token),
    service: AuthService = Depends(get_auth_service)
):
    """Get current authenticated user and their profile"""
    return service.get_current_user_with_profile(token)
