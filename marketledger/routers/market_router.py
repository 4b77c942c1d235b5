"""
마켓 API 라우터

- POST /markets: 마켓 생성 (2개면 binary, 3개 이상이면 multi-option)
- GET /markets/user/{user_id}/commitments: 사용자 커밋먼트 전체
- GET /markets/{market_id}: 마켓 조회
- GET /markets/{market_id}/commitments: 커밋먼트 목록 (최신순, 페이징)
- GET /markets/{market_id}/analytics: 마켓 집계
- GET /markets/{market_id}/payout-preview: 정산 지급 계획 미리보기 (쓰기 없음)
- GET /markets/{market_id}/distributions: 사용자별 지급 기록
"""

from typing import List

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query

from marketledger.containers import Container
from marketledger.schemas.commitment import CommitmentSchema
from marketledger.schemas.market import MarketAnalytics, MarketCreateRequest, MarketSchema
from marketledger.schemas.pagination import DirectPaginatedResponse, PaginationLimits
from marketledger.schemas.resolution import PayoutCalculation, PayoutDistributionSchema
from marketledger.services.market_service import MarketService
from marketledger.services.payout_distribution_service import PayoutDistributionService
from marketledger.services.resolution_service import ResolutionService

router = APIRouter(prefix="/markets", tags=["markets"])


@router.post("", response_model=MarketSchema, status_code=201)
@inject
async def create_market(
    request: MarketCreateRequest,
    market_service: MarketService = Depends(Provide[Container.services.market_service]),
) -> MarketSchema:
    return market_service.create_market(request)


@router.get("/user/{user_id}/commitments", response_model=List[CommitmentSchema])
@inject
async def get_user_commitments(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    market_service: MarketService = Depends(Provide[Container.services.market_service]),
) -> List[CommitmentSchema]:
    """사용자의 모든 커밋먼트 (최신순, 취소/정산 포함)"""
    return market_service.get_user_commitments(user_id)


@router.get("/{market_id}", response_model=MarketSchema)
@inject
async def get_market(
    market_id: str = Path(..., description="마켓 ID"),
    market_service: MarketService = Depends(Provide[Container.services.market_service]),
) -> MarketSchema:
    return market_service.get_market(market_id)


@router.get(
    "/{market_id}/commitments",
    response_model=DirectPaginatedResponse[CommitmentSchema],
)
@inject
async def get_market_commitments(
    market_id: str = Path(..., description="마켓 ID"),
    limit: int = Query(
        PaginationLimits.MARKET_COMMITMENTS["default"],
        ge=PaginationLimits.MARKET_COMMITMENTS["min"],
        le=PaginationLimits.MARKET_COMMITMENTS["max"],
    ),
    offset: int = Query(0, ge=0),
    market_service: MarketService = Depends(Provide[Container.services.market_service]),
) -> DirectPaginatedResponse[CommitmentSchema]:
    return market_service.get_market_commitments(market_id, limit=limit, offset=offset)


@router.get("/{market_id}/analytics", response_model=MarketAnalytics)
@inject
async def get_market_analytics(
    market_id: str = Path(..., description="마켓 ID"),
    market_service: MarketService = Depends(Provide[Container.services.market_service]),
) -> MarketAnalytics:
    """
    마켓 집계

    yes/no 비율은 기준 선택지(정산된 마켓은 승리 선택지, 그 외에는 첫 번째 선택지)와
    나머지 선택지로 나눠 계산한다.
    """
    return market_service.get_market_analytics(market_id)


@router.get("/{market_id}/payout-preview", response_model=PayoutCalculation)
@inject
async def preview_payouts(
    market_id: str = Path(..., description="마켓 ID"),
    winning_option_id: str = Query(..., min_length=1, description="가정할 승리 선택지"),
    creator_fee_percentage: float = Query(0.02, description="생성자 수수료율 (0.01 ~ 0.05)"),
    resolution_service: ResolutionService = Depends(
        Provide[Container.services.resolution_service]
    ),
) -> PayoutCalculation:
    return resolution_service.preview_payouts(
        market_id, winning_option_id, creator_fee_percentage
    )


@router.get("/{market_id}/distributions", response_model=List[PayoutDistributionSchema])
@inject
async def get_market_distributions(
    market_id: str = Path(..., description="마켓 ID"),
    distributor: PayoutDistributionService = Depends(
        Provide[Container.services.payout_distribution_service]
    ),
) -> List[PayoutDistributionSchema]:
    return distributor.get_market_payout_distributions(market_id)
