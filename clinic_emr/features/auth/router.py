from fastapi import APIRouter, Depends, status
from clinic_emr.features.auth.schemas import (
    CreateUserRequest,
    LoginRequest,
    LoginResponse,
    UserResponse,
)
from clinic_emr.features.auth.service import AuthService
from clinic_emr.features.auth.dependencies import get_current_admin, get_current_user
from clinic_emr.features.auth.models import User


router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=LoginResponse)
async def login(login_data: LoginRequest):
    """
    Authenticate user and return access token.

    - **email**: User's email address
    - **password**: User's password
    """
    user, access_token = await AuthService.login(login_data)

    return LoginResponse(
        access_token=access_token,
        token_type="bearer",
        user=AuthService.user_to_response(user),
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get the currently authenticated user."""
    return AuthService.user_to_response(current_user)


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    current_admin: User = Depends(get_current_admin),
):
    """Create a staff account. Clinic admins create users in their own clinic."""
    user = await AuthService.register_user(request, current_admin)
    return AuthService.user_to_response(user)
