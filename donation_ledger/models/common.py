"""Shared read schemas."""

from sqlmodel import SQLModel


class Pagination(SQLModel):
    """Page metadata returned with every paginated listing."""

    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)
