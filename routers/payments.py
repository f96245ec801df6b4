"""
Payment endpoints (/api/payments).

Payments go through the simulated mobile-money gateway; a completed payment
marks the product as sold (inactive) in the same transaction.
"""
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db, transaction
from gateway import MobileMoneyGateway, generate_reference, get_payment_gateway
from models import PAYMENT_STATUSES, Payment, Product, User
from query_builder import ListQuery, PageRequest
from routers.products import primary_image_column
from schemas import PaymentRequest, model_to_dict, row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

CENTS = Decimal("0.01")


def _check_status(status: Optional[str]) -> None:
    if status and status not in PAYMENT_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"status must be one of: {', '.join(PAYMENT_STATUSES)}",
        )


def _paginated_payments(db: Session, query: ListQuery, status: Optional[str], page: int, limit: int):
    query.where_if(status, lambda v: Payment.status == v)
    query.order_by("created_at", "desc", {"created_at": Payment.created_at}, "created_at", tiebreaker=Payment.id)
    return query.fetch(db, PageRequest(page, limit))


@router.post("/process")
def process_payment(
    payload: PaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MobileMoneyGateway = Depends(get_payment_gateway),
):
    """
    Pay for a product.

    Rejected before anything is written when the product is missing or
    inactive, belongs to the caller, or the amount differs from the current
    price. The payment is recorded at the listed price. The payment insert,
    gateway status and product deactivation then commit or roll back together.
    """
    product = db.execute(
        select(Product).where(Product.id == payload.product_id, Product.is_active.is_(True))
    ).scalar_one_or_none()
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found or inactive")

    if product.user_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot buy your own product")

    if payload.amount.quantize(CENTS) != Decimal(product.price).quantize(CENTS):
        raise HTTPException(status_code=400, detail="Payment amount does not match product price")

    reference = payload.reference or generate_reference()
    if db.execute(select(Payment.id).where(Payment.reference == reference)).first():
        raise HTTPException(status_code=400, detail="Payment reference already exists")

    with transaction(db):
        payment = Payment(
            user_id=user.id,
            product_id=product.id,
            amount=product.price,
            payment_method=payload.payment_method,
            phone_number=payload.phone_number,
            reference=reference,
            status="pending",
        )
        db.add(payment)
        db.flush()

        result = gateway.charge(payment)
        payment.status = result.status
        payment.transaction_id = result.transaction_id
        if result.status == "completed":
            product.is_active = False

    db.refresh(payment)
    logger.info("Payment %s for product %s is %s", payment.reference, product.id, payment.status)

    if payment.status == "failed":
        raise HTTPException(status_code=400, detail="Payment was declined")

    return {
        "success": True,
        "message": (
            "Payment processed successfully" if payment.status == "completed"
            else "Payment is awaiting confirmation"
        ),
        "payment": model_to_dict(payment),
    }


@router.get("/my-payments")
def my_payments(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Payments made by the caller, newest first."""
    _check_status(status)
    query = ListQuery(
        [
            Payment,
            Product.title.label("product_title"),
            Product.price.label("product_price"),
            primary_image_column("product_image"),
            User.username.label("seller_name"),
        ],
        Payment.__table__
        .join(Product.__table__, Payment.product_id == Product.id)
        .join(User.__table__, Product.user_id == User.id),
        Payment.user_id == user.id,
    )
    result = _paginated_payments(db, query, status, page, limit)
    return {
        "success": True,
        "payments": [row_to_dict(row) for row in result.items],
        "pagination": result.pagination(),
    }


@router.get("/seller/sales")
def seller_sales(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Payments received for the caller's products, with buyer contact details."""
    _check_status(status)
    query = ListQuery(
        [
            Payment,
            Product.title.label("product_title"),
            Product.price.label("product_price"),
            primary_image_column("product_image"),
            User.username.label("buyer_name"),
            User.email.label("buyer_email"),
            User.phone.label("buyer_phone"),
        ],
        Payment.__table__
        .join(Product.__table__, Payment.product_id == Product.id)
        .join(User.__table__, Payment.user_id == User.id),
        Product.user_id == user.id,
    )
    result = _paginated_payments(db, query, status, page, limit)
    return {
        "success": True,
        "sales": [row_to_dict(row) for row in result.items],
        "pagination": result.pagination(),
    }


@router.get("/{payment_id}")
def get_payment(
    payment_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = db.execute(
        select(
            Payment,
            Product.title.label("product_title"),
            Product.description.label("product_description"),
            primary_image_column("product_image"),
            User.username.label("seller_name"),
            User.email.label("seller_email"),
            User.phone.label("seller_phone"),
        )
        .select_from(
            Payment.__table__
            .join(Product.__table__, Payment.product_id == Product.id)
            .join(User.__table__, Product.user_id == User.id)
        )
        .where(Payment.id == payment_id, Payment.user_id == user.id)
    ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Payment not found")

    return {"success": True, "payment": row_to_dict(row)}


@router.post("/{payment_id}/cancel")
def cancel_payment(
    payment_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel one of the caller's pending payments and put the product back on sale."""
    payment = db.execute(
        select(Payment).where(
            Payment.id == payment_id,
            Payment.user_id == user.id,
            Payment.status == "pending",
        )
    ).scalar_one_or_none()
    if payment is None:
        raise HTTPException(status_code=404, detail="Payment not found or cannot be cancelled")

    with transaction(db):
        payment.status = "cancelled"
        product = db.get(Product, payment.product_id)
        if product is not None:
            product.is_active = True

    logger.info("Payment %s cancelled by user %s", payment_id, user.id)
    return {"success": True, "message": "Payment cancelled successfully"}
