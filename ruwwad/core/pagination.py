"""
Pagination helpers shared by the list endpoints.
"""
from typing import Any, Generic, List, TypeVar

from pydantic import BaseModel
from sqlalchemy.orm import Query

T = TypeVar('T')

MAX_PAGE_SIZE = 100


class Page(BaseModel, Generic[T]):
    """Standard paginated response"""
    items: List[T]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


def build_page(items: List[Any], total: int, page: int, page_size: int) -> dict:
    total_pages = (total + page_size - 1) // page_size if total > 0 else 1
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_previous": page > 1,
    }


def paginate(query: Query, page: int = 1, page_size: int = 20) -> dict:
    """
    Apply offset pagination to an ORM query.

    Page numbers are 1-indexed; page_size is capped at MAX_PAGE_SIZE.
    """
    page = max(1, page)
    page_size = max(1, min(MAX_PAGE_SIZE, page_size))

    total = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return build_page(items, total, page, page_size)
