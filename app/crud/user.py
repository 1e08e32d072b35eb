"""
CRUD operations for User model.

This is the persistent credential store: lookups by email, account
creation and password updates. Email uniqueness is enforced by the
database constraint on users.email.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session
from app.core.keys import normalize_email
from app.models.user import User


def get_by_email(db: Session, email: str) -> Optional[User]:
    """
    Retrieve a user by email.

    Args:
        db: Database session
        email: Email address (normalized before lookup)

    Returns:
        User instance if found, None otherwise
    """
    return db.query(User).filter(User.email == normalize_email(email)).first()


def get_by_id(db: Session, user_id: uuid.UUID) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def create(db: Session, name: str, email: str, hashed_password: str) -> User:
    """
    Create a new user with its own tenant.

    Raises:
        sqlalchemy.exc.IntegrityError: If the email is already registered
    """
    db_user = User(
        id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        name=name,
        email=normalize_email(email),
        hashed_password=hashed_password,
        is_active=True,
    )

    db.add(db_user)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_user)

    return db_user


def update_password(db: Session, email: str, hashed_password: str) -> Optional[User]:
    """
    Replace a user's password hash.

    Returns:
        Updated User instance, or None if no such user
    """
    db_user = get_by_email(db, email)
    if not db_user:
        return None

    db_user.hashed_password = hashed_password
    db.commit()
    db.refresh(db_user)

    return db_user


def touch_last_login(db: Session, db_user: User) -> None:
    db_user.last_login_at = datetime.now(timezone.utc)
    db.commit()
