"""
Buyer/seller messaging endpoints (/api/messages).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import and_, func, or_, select, union, update
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from models import Message, Product, ProductImage, User
from query_builder import ListQuery, PageRequest
from routers.products import to_int
from schemas import MessageCreate, model_to_dict, row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


def between(user_id: int, other_id: int):
    """Messages exchanged in either direction between two users."""
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == other_id),
        and_(Message.sender_id == other_id, Message.receiver_id == user_id),
    )


def _user_column(user_column, foreign_key, label: str):
    return select(user_column).where(User.id == foreign_key).scalar_subquery().label(label)


def _mark_read(db: Session, receiver_id: int, sender_id: int) -> int:
    result = db.execute(
        update(Message)
        .where(Message.receiver_id == receiver_id, Message.sender_id == sender_id, Message.is_read.is_(False))
        .values(is_read=True)
    )
    db.commit()
    return result.rowcount


@router.post("", status_code=201)
def send_message(
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if db.get(User, payload.receiver_id) is None:
        raise HTTPException(status_code=404, detail="Receiver not found")

    if payload.product_id is not None and db.get(Product, payload.product_id) is None:
        raise HTTPException(status_code=404, detail="Product not found")

    message = Message(
        sender_id=user.id,
        receiver_id=payload.receiver_id,
        product_id=payload.product_id,
        content=payload.content,
    )
    db.add(message)
    db.commit()
    db.refresh(message)

    return {"success": True, "message": "Message sent successfully", "data": model_to_dict(message)}


@router.get("/conversations")
def list_conversations(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """One entry per user the caller has exchanged messages with, latest activity first."""
    partner_ids = union(
        select(Message.sender_id.label("user_id")).where(Message.receiver_id == user.id),
        select(Message.receiver_id.label("user_id")).where(Message.sender_id == user.id),
    ).subquery()
    partners = db.execute(
        select(User).where(User.id.in_(select(partner_ids.c.user_id)), User.id != user.id)
    ).scalars().all()

    conversations = []
    for other in partners:
        last = db.execute(
            select(Message)
            .where(between(user.id, other.id))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        ).scalar_one()
        unread = db.execute(
            select(func.count(Message.id)).where(
                Message.sender_id == other.id,
                Message.receiver_id == user.id,
                Message.is_read.is_(False),
            )
        ).scalar_one()
        conversations.append({
            "user_id": other.id,
            "username": other.username,
            "avatar_url": other.avatar_url,
            "phone": other.phone,
            "last_message": last.content,
            "last_message_time": last.created_at,
            "last_message_id": last.id,
            "is_read": last.is_read,
            "unread_count": unread,
        })

    conversations.sort(key=lambda c: (c["last_message_time"], c["last_message_id"]), reverse=True)
    return {"success": True, "conversations": conversations}


@router.get("/conversation/{user_id}")
def get_conversation(
    user_id: int,
    product_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Page through the thread with another user, oldest message first.

    Fetching the thread marks every message that user sent to the caller as
    read; the caller's own messages are left untouched.
    """
    other = db.get(User, user_id)
    if other is None:
        raise HTTPException(status_code=404, detail="User not found")

    query = ListQuery(
        [
            Message,
            _user_column(User.username, Message.sender_id, "sender_name"),
            _user_column(User.avatar_url, Message.sender_id, "sender_avatar"),
            _user_column(User.username, Message.receiver_id, "receiver_name"),
            _user_column(User.avatar_url, Message.receiver_id, "receiver_avatar"),
            select(Product.title).where(Product.id == Message.product_id)
            .scalar_subquery().label("product_title"),
            select(ProductImage.image_url)
            .where(ProductImage.product_id == Message.product_id, ProductImage.is_primary.is_(True))
            .order_by(ProductImage.id)
            .limit(1)
            .scalar_subquery().label("product_image"),
        ],
        Message.__table__,
        between(user.id, user_id),
    )
    query.where_if(to_int("product_id", product_id), lambda v: Message.product_id == v)
    query.order_by("created_at", "desc", {"created_at": Message.created_at}, "created_at", tiebreaker=Message.id)

    result = query.fetch(db, PageRequest(page, limit))
    messages = [row_to_dict(row) for row in reversed(result.items)]
    other_user = model_to_dict(other)

    _mark_read(db, receiver_id=user.id, sender_id=user_id)

    return {
        "success": True,
        "messages": messages,
        "pagination": result.pagination(),
        "other_user": other_user,
    }


@router.get("/unread-count")
def unread_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    count = db.execute(
        select(func.count(Message.id)).where(Message.receiver_id == user.id, Message.is_read.is_(False))
    ).scalar_one()
    return {"success": True, "unread_count": count}


@router.put("/read/{user_id}")
def mark_read(user_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _mark_read(db, receiver_id=user.id, sender_id=user_id)
    return {"success": True, "message": "Messages marked as read"}


@router.delete("/{message_id}")
def delete_message(message_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Delete a message the caller sent or received."""
    message = db.execute(
        select(Message).where(
            Message.id == message_id,
            or_(Message.sender_id == user.id, Message.receiver_id == user.id),
        )
    ).scalar_one_or_none()
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found or you do not have permission")

    db.delete(message)
    db.commit()
    return {"success": True, "message": "Message deleted successfully"}
