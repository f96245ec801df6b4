"""
Category endpoints (/api/categories). Reads are public, writes are admin-only.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from auth import require_admin
from database import get_db
from models import Category, Product, User
from schemas import CategoryCreate, CategoryUpdate, model_to_dict, row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])


def _with_product_count():
    active_products = (
        select(func.count(Product.id))
        .where(Product.category_id == Category.id, Product.is_active.is_(True))
        .scalar_subquery()
        .label("product_count")
    )
    return select(Category, active_products)


def _get_or_404(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def _name_taken(db: Session, name: str, exclude_id: int = None) -> bool:
    stmt = select(Category.id).where(Category.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    return db.execute(stmt).first() is not None


@router.get("")
def list_categories(db: Session = Depends(get_db)):
    rows = db.execute(_with_product_count().order_by(Category.name.asc())).all()
    return {"success": True, "categories": [row_to_dict(row) for row in rows]}


@router.get("/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    row = db.execute(_with_product_count().where(Category.id == category_id)).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"success": True, "category": row_to_dict(row)}


@router.post("", status_code=201)
def create_category(
    payload: CategoryCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if _name_taken(db, payload.name):
        raise HTTPException(status_code=400, detail="Category with this name already exists")

    category = Category(name=payload.name, icon=payload.icon, description=payload.description)
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info("Admin %s created category %r", admin.id, category.name)

    return {
        "success": True,
        "message": "Category created successfully",
        "category": model_to_dict(category),
    }


@router.put("/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    category = _get_or_404(db, category_id)

    if payload.name and payload.name != category.name:
        if _name_taken(db, payload.name, exclude_id=category_id):
            raise HTTPException(status_code=400, detail="Category with this name already exists")
        category.name = payload.name
    # icon and description are replaced as sent, including with null
    category.icon = payload.icon
    category.description = payload.description

    db.commit()
    db.refresh(category)

    return {
        "success": True,
        "message": "Category updated successfully",
        "category": model_to_dict(category),
    }


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Delete a category that no product (active or sold) refers to."""
    category = _get_or_404(db, category_id)

    product_count = db.execute(
        select(func.count(Product.id)).where(Product.category_id == category_id)
    ).scalar_one()
    if product_count > 0:
        raise HTTPException(status_code=400, detail="Cannot delete category with existing products")

    db.delete(category)
    db.commit()
    logger.info("Admin %s deleted category %s", admin.id, category_id)

    return {"success": True, "message": "Category deleted successfully"}
