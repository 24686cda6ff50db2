from __future__ import annotations

import logging

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth_models import User, UserRole
from .auth_security import hash_password, verify_password
from .errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

# same rule as the register / login bodies
_email_adapter = TypeAdapter(EmailStr)


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    try:
        _email_adapter.validate_python(email)
    except PydanticValidationError as e:
        raise ValidationError("Invalid email address.", error=e.errors()[0]["msg"]) from e
    return email


def create_user(s: Session, name: str, email: str, password: str, role: UserRole = UserRole.FRONT_DESK) -> User:
    if not email or not password:
        raise ValidationError("Email and password are required.")
    email = normalize_email(email)

    exists = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if exists:
        raise ConflictError("Email already in use.")

    u = User(name=name.strip(), email=email, password_hash=hash_password(password), role=role, is_active=True)
    s.add(u)
    s.flush()
    logger.info("user %s registered with role %s", u.id, role.value)
    return u


def authenticate(s: Session, email: str, password: str) -> User | None:
    email = email.strip().lower()
    u = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not u or not u.is_active:
        return None
    if not verify_password(password, u.password_hash):
        return None
    return u


def get_user_by_id(s: Session, user_id: int) -> User | None:
    return s.get(User, user_id)
