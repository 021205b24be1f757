"""
Authentication API endpoints.
"""

from fastapi import APIRouter, HTTPException, status, Depends, Form

from ..core.errors import PersistenceError
from ..models import UserCreate, Token, User
from ..utils.auth import (
    authenticate_user,
    create_access_token,
    get_password_hash,
    create_user_in_db,
    get_user_by_username,
    get_current_user_id,
    get_user_from_db
)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _public_user(user: dict) -> User:
    return User(**{k: v for k, v in user.items() if k != 'hashed_password'})


@router.post("/register", response_model=User, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate):
    """
    Register a new user.

    Raises:
        HTTPException: If username already exists
    """
    if await get_user_by_username(user_data.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already registered"
        )

    try:
        user = await create_user_in_db(
            username=user_data.username,
            hashed_password=get_password_hash(user_data.password),
            email=user_data.email
        )
    except PersistenceError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message
        ) from e

    return _public_user(user)


@router.post("/login", response_model=Token)
async def login(username: str = Form(...), password: str = Form(...)):
    """
    Login and get access token.

    Raises:
        HTTPException: If authentication fails
    """
    user = await authenticate_user(username, password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(data={"sub": user["user_id"], "username": user["username"]})
    return Token(access_token=access_token, token_type="bearer")


@router.get("/me", response_model=User)
async def get_current_user(user_id: str = Depends(get_current_user_id)):
    """Get current user information."""
    user = await get_user_from_db(user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return _public_user(user)
