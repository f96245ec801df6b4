"""
Authentication utilities for JWT-based auth.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, Header, Depends, Request
from sqlalchemy.orm import Session
from database import get_db
from models import User

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    data: dict,
    secret_key: str,
    algorithm: str = "HS256",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing data to encode (e.g., {"sub": "42"})
        secret_key: Signing key
        algorithm: JWT signing algorithm
        expires_delta: Optional expiration time delta. Defaults to 7 days.

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=7))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def issue_token(user: User, request: Request) -> str:
    """Sign a token for ``user`` using the application's settings."""
    settings = request.app.state.settings
    return create_access_token(
        {"sub": str(user.id)},
        settings.jwt_secret_key,
        settings.jwt_algorithm,
        timedelta(days=settings.access_token_expire_days),
    )


def decode_access_token(token: str, secret_key: str, algorithm: str = "HS256") -> Optional[int]:
    """Return the user id carried by ``token``, or None if it is invalid or expired."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if subject is None:
        return None
    try:
        return int(subject)
    except (TypeError, ValueError):
        return None


def _bearer_token(authorization: str) -> str:
    # Extract token from "Bearer <token>"
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication header format",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return parts[1]


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get the current authenticated user from JWT token.

    Reads Authorization: Bearer <token> header and validates the JWT.
    """
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = _bearer_token(authorization)
    settings = request.app.state.settings
    user_id = decode_access_token(token, settings.jwt_secret_key, settings.jwt_algorithm)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    return user


def get_optional_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """Like get_current_user, but anonymous callers (or bad tokens) yield None."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    settings = request.app.state.settings
    user_id = decode_access_token(parts[1], settings.jwt_secret_key, settings.jwt_algorithm)
    if user_id is None:
        return None
    return db.get(User, user_id)


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency restricting a route to admins."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")
    return user


def is_owner_or_admin(user: Optional[User], owner_id: int) -> bool:
    """Capability check shared by every ownership-guarded handler."""
    if user is None:
        return False
    return user.id == owner_id or user.is_admin


def ensure_owner_or_admin(user: Optional[User], owner_id: int) -> None:
    if not is_owner_or_admin(user, owner_id):
        raise HTTPException(status_code=403, detail="Access denied")
