"""Authentication API endpoints."""

from fastapi import APIRouter, status

from westroy.api.deps import CurrentUser, DbSession
from westroy.core.config import settings
from westroy.core.exceptions import AuthenticationError
from westroy.core.security import create_access_token
from westroy.schemas.user import TokenResponse, UserLogin, UserRegister, UserResponse
from westroy.services.user_service import UserService

router = APIRouter()


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserRegister, db: DbSession):
    """Register a new client or producer.

    Raises:
        400: Email already registered
    """
    return await UserService(db).create_user(user_data)


@router.post("/login", response_model=TokenResponse)
async def login(user_data: UserLogin, db: DbSession):
    """Login and get access token.

    Raises:
        401: Invalid credentials
    """
    user = await UserService(db).authenticate(user_data.email, user_data.password)
    if not user:
        raise AuthenticationError("Invalid email or password")

    access_token = create_access_token(
        data={"sub": str(user.user_id), "email": user.email, "role": user.role}
    )
    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUser):
    """Get current user information."""
    return current_user
