"""
Security utilities: password hashing and JWT tokens.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext
import enum

from app.core.config import settings
from app.core.errors import AuthenticationError

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=12,
)


def get_role_value(role: Union[str, enum.Enum]) -> str:
    """Get the string value of a role stored either as a string or an Enum."""
    if isinstance(role, str) and not isinstance(role, enum.Enum):
        return role
    if hasattr(role, 'value'):
        return role.value
    return str(role)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    if expires_delta is not None:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises AuthenticationError with a reason for expired or malformed tokens.
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError("Token expired", {"reason": "Please log in again"})
    except JWTError:
        raise AuthenticationError("Invalid token", {"reason": "Token verification failed"})
