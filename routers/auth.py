"""
Registration, login and profile endpoints (/api/auth).
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from auth import get_current_user, hash_password, issue_token, verify_password
from database import get_db
from models import User
from schemas import ChangePasswordRequest, LoginRequest, ProfileUpdate, RegisterRequest, model_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    """
    Create an account and return it with a fresh access token.

    Username, email and phone number must all be unused.
    """
    existing = db.execute(
        select(User.id).where(
            or_(
                User.username == payload.username,
                User.email == payload.email,
                User.phone == payload.phone,
            )
        )
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Username, email, or phone number already exists")

    user = User(
        username=payload.username,
        email=payload.email,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        location=payload.location,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s (id=%s)", user.username, user.id)

    return {
        "success": True,
        "message": "User registered successfully",
        "user": model_to_dict(user),
        "token": issue_token(user, request),
    }


@router.post("/login")
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = db.execute(select(User).where(User.email == payload.email)).scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return {
        "success": True,
        "message": "Login successful",
        "user": model_to_dict(user),
        "token": issue_token(user, request),
    }


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"success": True, "user": model_to_dict(user)}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update the caller's display fields; omitted fields keep their value."""
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)

    return {
        "success": True,
        "message": "Profile updated successfully",
        "user": model_to_dict(user),
    }


@router.put("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    db.commit()
    logger.info("Password changed for user id=%s", user.id)

    return {"success": True, "message": "Password changed successfully"}
