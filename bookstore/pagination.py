import math
from typing import Optional

from pydantic import BaseModel


class PaginationMeta(BaseModel):
    current_page: int
    total_pages: int
    total_docs: int
    limit: int
    has_next_page: bool
    has_prev_page: bool
    next_page: Optional[int]
    prev_page: Optional[int]


def compute_pagination(page: int, limit: int, total_docs: int) -> PaginationMeta:
    """Page metadata for a listing. Inputs are expected to be validated already."""
    total_pages = math.ceil(total_docs / limit)
    has_next_page = page < total_pages
    has_prev_page = page > 1

    return PaginationMeta(
        current_page=page,
        total_pages=total_pages,
        total_docs=total_docs,
        limit=limit,
        has_next_page=has_next_page,
        has_prev_page=has_prev_page,
        next_page=page + 1 if has_next_page else None,
        prev_page=page - 1 if has_prev_page else None,
    )
