"""Page/limit query parameters shared by list endpoints."""

from dataclasses import dataclass

from fastapi import Query

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class PaginationParams:
    page: int = 1
    limit: int = 50

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def pages(self, total: int) -> int:
        """Number of pages needed for total rows."""
        return max(1, -(-total // self.limit))


def get_pagination(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
) -> PaginationParams:
    return PaginationParams(page=page, limit=limit)
