"""
Filtered, sorted and paginated list queries.

A ``ListQuery`` collects a projection, a FROM/JOIN clause and a list of
predicates. The page query and the total-count query are both composed from
that one predicate list, so they always agree on which rows match:

    query = ListQuery([Product, User.username], product_join, Product.is_active.is_(True))
    query.where_if(params.location, lambda v: contains(Product.location, v))
    query.order_by(params.sort_by, params.order, SORT_FIELDS, "created_at")
    page = query.fetch(db, PageRequest(page=1, limit=20))
"""
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

DEFAULT_PAGE = 1
MAX_LIMIT = 100


def contains(column, text: str):
    """Case-insensitive substring match."""
    return column.ilike(f"%{text}%")


def search_any(text: str, *columns):
    """Case-insensitive substring match on any of ``columns``, OR-combined."""
    return or_(*(contains(column, text) for column in columns))


def is_present(value: Any) -> bool:
    return value is not None and value != ""


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


@dataclass
class Page:
    """One page of rows plus the size of the whole filtered set."""
    items: List[Any]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return total_pages(self.total, self.limit)

    def pagination(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
        }


class ListQuery:
    def __init__(self, columns: Sequence[Any], from_clause, *criteria):
        self.columns = list(columns)
        self.from_clause = from_clause
        self.criteria = list(criteria)
        self._order_by: List[Any] = []

    def where(self, *criteria) -> "ListQuery":
        self.criteria.extend(criteria)
        return self

    def where_if(self, value: Any, factory: Callable[[Any], Any]) -> "ListQuery":
        """Append ``factory(value)`` only when the filter value was supplied."""
        if is_present(value):
            self.criteria.append(factory(value))
        return self

    def order_by(
        self,
        field: Optional[str],
        order: Optional[str],
        allowed: Dict[str, Any],
        default: str,
        tiebreaker=None,
    ) -> "ListQuery":
        """
        Sort by one of the ``allowed`` fields.

        Unknown field names fall back to ``default`` so callers can never sort
        on arbitrary expressions; anything other than "asc" sorts descending.
        """
        column = allowed.get(field) if field else None
        if column is None:
            column = allowed[default]
        ascending = (order or "").lower() == "asc"
        self._order_by = [column.asc() if ascending else column.desc()]
        if tiebreaker is not None:
            self._order_by.append(tiebreaker.asc() if ascending else tiebreaker.desc())
        return self

    def rows_statement(self, page_request: PageRequest):
        stmt = select(*self.columns).select_from(self.from_clause).where(*self.criteria)
        if self._order_by:
            stmt = stmt.order_by(*self._order_by)
        return stmt.limit(page_request.limit).offset(page_request.offset)

    def count_statement(self):
        return select(func.count()).select_from(self.from_clause).where(*self.criteria)

    def fetch(self, db: Session, page_request: PageRequest) -> Page:
        total = db.execute(self.count_statement()).scalar_one()
        rows = db.execute(self.rows_statement(page_request)).all()
        return Page(items=rows, total=total, page=page_request.page, limit=page_request.limit)
