from sqlalchemy.orm import Session
from typing import Optional
import logging

from ledgerlens.models.user import User
from ledgerlens.schemas.user import UserCreate
from ledgerlens.core.security import create_access_token, get_password_hash, verify_password

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """
    Get user by email (case-insensitive).

    Returns:
        User object if found, None otherwise
    """
    return db.query(User).filter(User.email == normalize_email(email)).first()


def create_user(db: Session, user: UserCreate) -> User:
    """
    Create a new user with a bcrypt-hashed password.

    Raises:
        ValueError: If the email is already registered
    """
    email = normalize_email(user.email)
    if get_user_by_email(db, email):
        raise ValueError("Email already registered")

    db_user = User(
        email=email,
        hashed_password=get_password_hash(user.password),
        full_name=(user.full_name or "").strip() or None,
    )

    db.add(db_user)
    db.commit()
    db.refresh(db_user)  # id, created_at

    logger.info(f"Registered user {db_user.id}")
    return db_user


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    """
    Check email and password.

    Returns:
        User object if credentials are valid, None otherwise
    """
    user = get_user_by_email(db, email)
    if not user:
        return None

    if not verify_password(password, user.hashed_password):
        return None

    return user


def issue_token(user: User) -> str:
    """Access token carrying user_id and email claims."""
    return create_access_token(data={"user_id": str(user.id), "email": user.email})
