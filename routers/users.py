"""
Public user profiles, user listings and admin account management (/api/users).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from auth import ensure_owner_or_admin, get_current_user, require_admin
from database import get_db
from models import Favorite, Message, Payment, Product, User
from query_builder import ListQuery, PageRequest
from routers.products import image_count_column, primary_image_column, to_flag
from schemas import UserAdminUpdate, model_to_dict, row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

PROFILE_PRODUCT_LIMIT = 10


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _count(db: Session, stmt) -> int:
    return db.execute(stmt).scalar_one()


def user_stats(db: Session, user_id: int) -> dict:
    own_products = select(Product.id).where(Product.user_id == user_id)
    return {
        "total_listings": _count(db, select(func.count(Product.id)).where(Product.user_id == user_id)),
        "sold_items": _count(
            db,
            select(func.count(Product.id)).where(Product.user_id == user_id, Product.is_active.is_(False)),
        ),
        "sales_count": _count(
            db, select(func.count(Payment.id)).where(Payment.product_id.in_(own_products))
        ),
        "message_count": _count(
            db,
            select(func.count(Message.id)).where(
                or_(Message.sender_id == user_id, Message.receiver_id == user_id)
            ),
        ),
    }


@router.get("/{user_id}")
def get_user_profile(user_id: int, db: Session = Depends(get_db)):
    """Profile, newest active listings and activity counters for any user."""
    user = _get_user_or_404(db, user_id)

    products = db.execute(
        select(Product, primary_image_column(), image_count_column())
        .where(Product.user_id == user_id, Product.is_active.is_(True))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(PROFILE_PRODUCT_LIMIT)
    ).all()

    return {
        "success": True,
        "user": model_to_dict(user),
        "products": [row_to_dict(row) for row in products],
        "stats": user_stats(db, user_id),
    }


@router.get("/{user_id}/products")
def get_user_products(
    user_id: int,
    is_active: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = ListQuery(
        [Product, primary_image_column(), image_count_column()],
        Product.__table__,
        Product.user_id == user_id,
    )
    active = to_flag("is_active", is_active)
    if active is not None:
        query.where(Product.is_active.is_(active))
    query.order_by("created_at", "desc", {"created_at": Product.created_at}, "created_at", tiebreaker=Product.id)

    result = query.fetch(db, PageRequest(page, limit))
    return {
        "success": True,
        "products": [row_to_dict(row) for row in result.items],
        "pagination": result.pagination(),
    }


@router.get("/{user_id}/favorites")
def get_user_favorites(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active products the user has favorited. Visible to that user and to admins."""
    ensure_owner_or_admin(user, user_id)

    query = ListQuery(
        [
            Product,
            primary_image_column(),
            image_count_column(),
            User.username.label("seller_name"),
            User.location.label("seller_location"),
            Favorite.created_at.label("favorited_at"),
        ],
        Favorite.__table__
        .join(Product.__table__, Favorite.product_id == Product.id)
        .join(User.__table__, Product.user_id == User.id),
        Favorite.user_id == user_id,
        Product.is_active.is_(True),
    )
    query.order_by(
        "favorited_at", "desc", {"favorited_at": Favorite.created_at}, "favorited_at", tiebreaker=Favorite.id
    )

    result = query.fetch(db, PageRequest(page, limit))
    return {
        "success": True,
        "favorites": [row_to_dict(row) for row in result.items],
        "pagination": result.pagination(),
    }


@router.put("/{user_id}")
def update_user(
    user_id: int,
    payload: UserAdminUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Change a user's verification flag and/or role."""
    user = _get_user_or_404(db, user_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)
    db.commit()
    db.refresh(user)
    logger.info("Admin %s updated user %s (role=%s, verified=%s)", admin.id, user.id, user.role, user.is_verified)

    return {"success": True, "message": "User updated successfully", "user": model_to_dict(user)}


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    user = _get_user_or_404(db, user_id)
    username = user.username
    # Products, payments, messages and favorites cascade in the database
    db.delete(user)
    db.commit()
    logger.info("Admin %s deleted user %s", admin.id, user_id)

    return {"success": True, "message": f"User {username} deleted successfully"}
