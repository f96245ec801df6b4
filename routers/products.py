"""
Product listing endpoints (/api/products).

Create and update accept multipart form data so images can be uploaded with
the listing; every other endpoint speaks JSON.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from auth import ensure_owner_or_admin, get_current_user, get_optional_user
from database import get_db, transaction
from models import Category, Favorite, Product, ProductImage, User
from query_builder import ListQuery, PageRequest, contains, search_any
from schemas import model_to_dict, row_to_dict
from uploads import discard_images, save_images, validate_images

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

REQUIRED_FIELDS = ("title", "description", "price", "category_id", "condition", "location")


# ============================================================================
# SHARED QUERY PIECES
# ============================================================================

def primary_image_column(label: str = "primary_image"):
    return (
        select(ProductImage.image_url)
        .where(ProductImage.product_id == Product.id, ProductImage.is_primary.is_(True))
        .order_by(ProductImage.id)
        .limit(1)
        .scalar_subquery()
        .label(label)
    )


def image_count_column():
    return (
        select(func.count(ProductImage.id))
        .where(ProductImage.product_id == Product.id)
        .scalar_subquery()
        .label("image_count")
    )


def favorite_count_column():
    return (
        select(func.count(Favorite.id))
        .where(Favorite.product_id == Product.id)
        .scalar_subquery()
        .label("favorite_count")
    )


def product_with_images(db: Session, product: Product) -> dict:
    images = db.execute(
        select(ProductImage)
        .where(ProductImage.product_id == product.id)
        .order_by(ProductImage.is_primary.desc(), ProductImage.id)
    ).scalars().all()
    data = model_to_dict(product)
    data["images"] = [model_to_dict(image) for image in images]
    return data


# ============================================================================
# FORM AND QUERY-STRING COERCION
# ============================================================================

def to_decimal(field: str, value: Optional[str]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        number = Decimal(value)
    except InvalidOperation:
        raise HTTPException(status_code=400, detail=f"{field} must be a number")
    if not number.is_finite():
        raise HTTPException(status_code=400, detail=f"{field} must be a number")
    return number


def to_int(field: str, value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be an integer")


def _to_bool(value: Optional[str]) -> bool:
    # Form checkboxes arrive as strings; only "true" counts
    return value == "true"


def to_flag(field: str, value: Optional[str]) -> Optional[bool]:
    """Tri-state query filter: blank means unset, otherwise true/false."""
    if value is None or value == "":
        return None
    lowered = value.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise HTTPException(status_code=400, detail=f"{field} must be true or false")


def _parse_price(value: Optional[str]) -> Decimal:
    try:
        price = Decimal(value)
    except (InvalidOperation, TypeError):
        raise HTTPException(status_code=400, detail="Price must be a positive number")
    if not price.is_finite() or price <= 0:
        raise HTTPException(status_code=400, detail="Price must be a positive number")
    return price


def _check_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is not None and db.get(Category, category_id) is None:
        raise HTTPException(status_code=400, detail="Category does not exist")


def _add_images(db: Session, product_id: int, urls: List[str]) -> None:
    # Only the first image of a batch is primary; earlier primaries are left alone
    for index, url in enumerate(urls):
        db.add(ProductImage(product_id=product_id, image_url=url, is_primary=index == 0))


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.post("", status_code=201)
def create_product(
    request: Request,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    original_price: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    condition_rating: Optional[str] = Form(None),
    functionality_rating: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    is_negotiable: Optional[str] = Form(None),
    is_hot_sale: Optional[str] = Form(None),
    discount_percentage: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a listing together with up to 10 images.

    The product row and all image rows are written in one transaction; the
    first uploaded image becomes the primary image.
    """
    values = {
        "title": title, "description": description, "price": price,
        "category_id": category_id, "condition": condition, "location": location,
    }
    if any(not values[field] for field in REQUIRED_FIELDS):
        raise HTTPException(status_code=400, detail="All required fields must be filled")

    settings = request.app.state.settings
    parsed_price = _parse_price(price)
    parsed_category = to_int("category_id", category_id)
    _check_category(db, parsed_category)
    uploads = validate_images(images, settings.max_upload_files, settings.max_upload_size)

    product = Product(
        user_id=user.id,
        category_id=parsed_category,
        title=title,
        description=description,
        price=parsed_price,
        original_price=to_decimal("original_price", original_price),
        condition=condition,
        condition_rating=condition_rating,
        functionality_rating=functionality_rating,
        location=location,
        latitude=to_decimal("latitude", latitude),
        longitude=to_decimal("longitude", longitude),
        is_negotiable=_to_bool(is_negotiable),
        is_hot_sale=_to_bool(is_hot_sale),
        discount_percentage=to_int("discount_percentage", discount_percentage),
    )

    stored = []
    try:
        with transaction(db):
            db.add(product)
            db.flush()
            stored = save_images(uploads, settings.upload_dir)
            _add_images(db, product.id, stored)
    except Exception:
        discard_images(stored, settings.upload_dir)
        raise

    db.refresh(product)
    logger.info("User %s created product %s with %d image(s)", user.id, product.id, len(uploads))

    return {
        "success": True,
        "message": "Product created successfully",
        "product": product_with_images(db, product),
    }


@router.get("")
def list_products(
    category: Optional[str] = Query(None, description="Filter by category id"),
    location: Optional[str] = Query(None, description="Case-insensitive location match"),
    min_price: Optional[str] = Query(None),
    max_price: Optional[str] = Query(None),
    condition: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Matches title or description"),
    exclude_my_products: bool = Query(False),
    sort_by: str = Query("created_at"),
    order: str = Query("desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    List active products with optional filters.

    Filters are applied in this order: category, location, min_price,
    max_price, condition, search, then (signed-in callers only)
    exclude_my_products. Blank values count as not supplied.
    """
    category_id = to_int("category", category)
    lowest = to_decimal("min_price", min_price)
    highest = to_decimal("max_price", max_price)

    favorite_count = favorite_count_column()
    query = ListQuery(
        [
            Product,
            User.username,
            User.location.label("seller_location"),
            primary_image_column(),
            image_count_column(),
            favorite_count,
        ],
        Product.__table__.join(User.__table__, Product.user_id == User.id),
        Product.is_active.is_(True),
    )
    query.where_if(category_id, lambda v: Product.category_id == v)
    query.where_if(location, lambda v: contains(Product.location, v))
    query.where_if(lowest, lambda v: Product.price >= v)
    query.where_if(highest, lambda v: Product.price <= v)
    query.where_if(condition, lambda v: Product.condition == v)
    query.where_if(search, lambda v: search_any(v, Product.title, Product.description))
    if user is not None and exclude_my_products:
        query.where(Product.user_id != user.id)

    query.order_by(
        sort_by,
        order,
        {
            "created_at": Product.created_at,
            "price": Product.price,
            "views": Product.views,
            "favorite_count": favorite_count,
        },
        default="created_at",
        tiebreaker=Product.id,
    )

    result = query.fetch(db, PageRequest(page, limit))
    return {
        "success": True,
        "products": [row_to_dict(row) for row in result.items],
        "pagination": result.pagination(),
    }


@router.get("/{product_id}")
def get_product(
    product_id: int,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Active product with seller details and images. Each call counts as one view."""
    row = db.execute(
        select(
            Product,
            User.username,
            User.email,
            User.phone,
            User.location.label("seller_location"),
            User.avatar_url.label("seller_avatar"),
        )
        .join(User, Product.user_id == User.id)
        .where(Product.id == product_id, Product.is_active.is_(True))
    ).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Product not found")

    data = row_to_dict(row)
    data["images"] = product_with_images(db, row.Product)["images"]
    data["is_favorite"] = False
    if user is not None:
        data["is_favorite"] = db.execute(
            select(Favorite.id).where(Favorite.product_id == product_id, Favorite.user_id == user.id)
        ).first() is not None

    db.execute(update(Product).where(Product.id == product_id).values(views=Product.views + 1))
    db.commit()

    return {"success": True, "product": data}


@router.put("/{product_id}")
def update_product(
    product_id: int,
    request: Request,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    original_price: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    condition_rating: Optional[str] = Form(None),
    functionality_rating: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    is_negotiable: Optional[str] = Form(None),
    is_hot_sale: Optional[str] = Form(None),
    discount_percentage: Optional[str] = Form(None),
    is_active: Optional[str] = Form(None),
    delete_old_images: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Update the fields that were submitted; others keep their value.

    New images are appended, with the first of the batch flagged primary.
    With ``delete_old_images=true`` the previous images are removed first.
    Existing primary flags are not revisited, so a product can end up with
    more than one primary image.
    """
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    ensure_owner_or_admin(user, product.user_id)

    settings = request.app.state.settings
    uploads = validate_images(images, settings.max_upload_files, settings.max_upload_size)

    text_fields = {
        "title": title,
        "description": description,
        "condition": condition,
        "condition_rating": condition_rating,
        "functionality_rating": functionality_rating,
        "location": location,
    }
    for field, value in text_fields.items():
        if value is not None:
            setattr(product, field, value)

    if price is not None:
        product.price = _parse_price(price)
    if original_price is not None:
        product.original_price = to_decimal("original_price", original_price)
    if category_id is not None:
        product.category_id = to_int("category_id", category_id)
        _check_category(db, product.category_id)
    if latitude is not None:
        product.latitude = to_decimal("latitude", latitude)
    if longitude is not None:
        product.longitude = to_decimal("longitude", longitude)
    if discount_percentage is not None:
        product.discount_percentage = to_int("discount_percentage", discount_percentage)
    if is_negotiable is not None:
        product.is_negotiable = _to_bool(is_negotiable)
    if is_hot_sale is not None:
        product.is_hot_sale = _to_bool(is_hot_sale)
    if is_active is not None:
        product.is_active = _to_bool(is_active)

    stored = []
    try:
        with transaction(db):
            if uploads:
                if _to_bool(delete_old_images):
                    db.execute(delete(ProductImage).where(ProductImage.product_id == product_id))
                stored = save_images(uploads, settings.upload_dir)
                _add_images(db, product_id, stored)
    except Exception:
        discard_images(stored, settings.upload_dir)
        raise

    db.refresh(product)

    return {
        "success": True,
        "message": "Product updated successfully",
        "product": product_with_images(db, product),
    }


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    ensure_owner_or_admin(user, product.user_id)

    # Images, favorites, payments and messages go with it (ON DELETE CASCADE)
    db.delete(product)
    db.commit()
    logger.info("User %s deleted product %s", user.id, product_id)

    return {"success": True, "message": "Product deleted successfully"}


@router.post("/{product_id}/favorite")
def toggle_favorite(
    product_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Add the product to the caller's favorites, or remove it if already there."""
    product = db.execute(
        select(Product.id).where(Product.id == product_id, Product.is_active.is_(True))
    ).first()
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")

    favorite = db.execute(
        select(Favorite).where(Favorite.product_id == product_id, Favorite.user_id == user.id)
    ).scalar_one_or_none()

    if favorite is not None:
        db.delete(favorite)
        db.commit()
        return {"success": True, "message": "Product removed from favorites", "is_favorite": False}

    db.add(Favorite(user_id=user.id, product_id=product_id))
    db.commit()
    return {"success": True, "message": "Product added to favorites", "is_favorite": True}
