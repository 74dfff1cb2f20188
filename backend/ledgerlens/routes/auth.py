from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ledgerlens.core.database import get_db
from ledgerlens.core.security import get_current_user
from ledgerlens.models.user import User
from ledgerlens.schemas.user import (
    UserCreate,
    UserLogin,
    UserResponse,
    Token,
    TokenWithUser,
)
from ledgerlens.services import auth_service


router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post(
    "/register",
    response_model=TokenWithUser,
    status_code=status.HTTP_201_CREATED,
)
def register(user: UserCreate, db: Session = Depends(get_db)):
    """
    Register a new user.

    - email: must be unique (case-insensitive)
    - password: min 8 characters
    - full_name: optional

    Returns the access token and the created user.
    """
    try:
        new_user = auth_service.create_user(db, user)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return TokenWithUser(
        access_token=auth_service.issue_token(new_user),
        token_type="bearer",
        user=UserResponse.model_validate(new_user),
    )


@router.post("/login", response_model=Token)
def login(credentials: UserLogin, db: Session = Depends(get_db)):
    """Exchange email and password for an access token."""
    user = auth_service.authenticate_user(db, credentials.email, credentials.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Token(access_token=auth_service.issue_token(user), token_type="bearer")


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Profile of the bearer of the token."""
    return current_user
