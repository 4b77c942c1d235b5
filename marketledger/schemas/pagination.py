from typing import Generic, List, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DirectPaginatedResponse(BaseModel, Generic[T]):
    """limit/offset 페이지 (목록은 최신순)"""

    data: List[T]
    total_count: int
    has_next: bool
    limit: int
    offset: int

    @classmethod
    def page(cls, data: List[T], total_count: int, limit: int, offset: int) -> "DirectPaginatedResponse[T]":
        return cls(
            data=data,
            total_count=total_count,
            has_next=offset + limit < total_count,
            limit=limit,
            offset=offset,
        )


class PaginationLimits:
    """엔드포인트별 페이지 크기 제한 (서비스에서도 max 로 잘라낸다)"""

    TOKEN_TRANSACTIONS = {"min": 1, "max": 100, "default": 50}
    MARKET_COMMITMENTS = {"min": 1, "max": 100, "default": 50}
