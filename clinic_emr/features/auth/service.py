from typing import Optional
from clinic_emr.features.auth.models import User
from clinic_emr.features.auth.schemas import CreateUserRequest, LoginRequest, UserResponse
from clinic_emr.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
)
from clinic_emr.shared.exceptions import CredentialsException, ConflictException, ForbiddenException
from clinic_emr.core.logging import logger


class AuthService:
    """Authentication service for handling auth business logic."""

    @staticmethod
    def issue_token(user: User) -> str:
        """Create an access token carrying the actor claims the engines need."""
        return create_access_token(
            data={
                "sub": user.email,
                "user_id": str(user.id),
                "role": user.role,
                "clinic_id": user.clinic_id,
            }
        )

    @staticmethod
    async def create_user(
        email: str,
        password: str,
        name: str,
        role: str = "clinic_admin",
        clinic_id: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        """Create a user account (used by seeding and by register_user)."""
        existing_user = await User.find_one(User.email == email)
        if existing_user:
            raise ConflictException("Email already registered")

        user = User(
            email=email,
            password_hash=get_password_hash(password),
            name=name,
            role=role,
            clinic_id=clinic_id,
            phone=phone,
        )
        await user.insert()

        logger.info(f"Created {role} user {email}")
        return user

    @staticmethod
    async def register_user(request: CreateUserRequest, actor: User) -> User:
        """
        Create a user on behalf of an admin.

        Clinic admins create users in their own clinic and cannot create super master admins.

        Raises:
            ForbiddenException: If a clinic admin asks for a super master admin
            ConflictException: If the email is already registered
        """
        clinic_id = request.clinic_id
        if actor.role != "super_master_admin":
            if request.role == "super_master_admin":
                raise ForbiddenException("Only super master admins can create super master admins")
            clinic_id = actor.clinic_id

        return await AuthService.create_user(
            email=request.email,
            password=request.password,
            name=request.name,
            role=request.role,
            clinic_id=clinic_id,
            phone=request.phone,
        )

    @staticmethod
    async def login(login_data: LoginRequest) -> tuple[User, str]:
        """
        Authenticate user and return access token.

        Returns:
            tuple: (user, access_token)
        """
        user = await User.find_one(User.email == login_data.email)
        if not user:
            raise CredentialsException("Invalid email or password")

        if not verify_password(login_data.password, user.password_hash):
            raise CredentialsException("Invalid email or password")

        if not user.is_active:
            raise CredentialsException("Account is inactive")

        access_token = AuthService.issue_token(user)
        logger.info(f"User {user.email} logged in ({user.role})")

        return user, access_token

    @staticmethod
    async def get_user_by_email(email: str) -> Optional[User]:
        """Get user by email."""
        return await User.find_one(User.email == email)

    @staticmethod
    def user_to_response(user: User) -> UserResponse:
        """Convert User model to response schema."""
        return UserResponse(
            id=str(user.id),
            email=user.email,
            name=user.name,
            phone=user.phone,
            role=user.role,
            clinic_id=user.clinic_id,
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )
