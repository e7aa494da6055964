from typing import Generic, Literal, Self, TypeVar

from pydantic import BaseModel, Field

from app.utils.misc import get_utc_iso_now

T = TypeVar("T")


class PaginationData(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @classmethod
    def from_total(cls, *, page: int, page_size: int, total_items: int) -> Self:
        return cls(
            page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=(total_items + page_size - 1) // page_size,
        )


class APIResponse(BaseModel, Generic[T]):
    """Envelope for every response, errors included (`status="error"` with a `message`)."""

    status: Literal["success", "error"] = "success"
    data: T | None = None
    message: str | None = None
    timestamp: str = Field(default_factory=get_utc_iso_now)

    pagination: PaginationData | None = None


class PaginatedResponse(APIResponse[T], Generic[T]):
    """API response format for paginated results."""

    data: T | None = None
    pagination: PaginationData  # pyright: ignore[reportGeneralTypeIssues]
