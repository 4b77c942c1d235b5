"""
관리자 API 라우터 - 마켓 정산/취소, 잔액 일괄 점검

- POST /admin/markets/{market_id}/resolve: 승리 선택지 확정 및 지급
- POST /admin/markets/{market_id}/cancel: 마켓 취소 및 전액 환불
- POST /admin/resolutions/{resolution_id}/retry: 실패한 사용자 지급 재실행
- POST /admin/balances/reconcile: 여러 사용자(또는 전체) 잔액 일괄 재계산
- GET /admin/balances/health: 전체 잔액 현황 및 표본 감사

관리자 권한 확인은 앞단 게이트웨이에서 처리한다.
"""

import logging

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path

from marketledger.containers import Container
from marketledger.schemas.balance import (
    BalanceHealthReport,
    ReconciliationReport,
    ReconcileUsersRequest,
)
from marketledger.schemas.resolution import (
    CancelMarketRequest,
    RefundResult,
    ResolutionResult,
    ResolveMarketRequest,
)
from marketledger.services.reconciliation_service import ReconciliationService
from marketledger.services.resolution_service import ResolutionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/markets/{market_id}/resolve", response_model=ResolutionResult)
@inject
async def resolve_market(
    request: ResolveMarketRequest,
    market_id: str = Path(..., description="마켓 ID"),
    resolution_service: ResolutionService = Depends(
        Provide[Container.services.resolution_service]
    ),
) -> ResolutionResult:
    """
    마켓 정산

    승리 선택지에 커밋먼트가 없으면 success=false, error.code=NO_WINNERS 를 반환하고
    아무것도 변경하지 않는다 (refund_on_no_winners=true 면 마켓 취소 후 환불).
    일부 사용자 지급이 실패하면 success=false 와 함께 실패 목록을 반환한다.
    """
    logger.info(f"Resolve requested for market {market_id} by {request.resolved_by}")
    return resolution_service.resolve_market(
        market_id=market_id,
        winning_option_id=request.winning_option_id,
        evidence=request.evidence,
        resolved_by=request.resolved_by,
        creator_fee_percentage=request.creator_fee_percentage,
        refund_on_no_winners=request.refund_on_no_winners,
    )


@router.post("/markets/{market_id}/cancel", response_model=RefundResult)
@inject
async def cancel_market(
    request: CancelMarketRequest,
    market_id: str = Path(..., description="마켓 ID"),
    resolution_service: ResolutionService = Depends(
        Provide[Container.services.resolution_service]
    ),
) -> RefundResult:
    logger.info(f"Cancel requested for market {market_id} by {request.cancelled_by}")
    return resolution_service.cancel_market(
        market_id, cancelled_by=request.cancelled_by, reason=request.reason
    )


@router.post("/resolutions/{resolution_id}/retry", response_model=ResolutionResult)
@inject
async def retry_distribution(
    resolution_id: str = Path(..., description="정산 ID"),
    resolution_service: ResolutionService = Depends(
        Provide[Container.services.resolution_service]
    ),
) -> ResolutionResult:
    return resolution_service.retry_distribution(resolution_id)


@router.post("/balances/reconcile", response_model=ReconciliationReport)
@inject
async def reconcile_balances(
    request: ReconcileUsersRequest,
    reconciliation_service: ReconciliationService = Depends(
        Provide[Container.services.reconciliation_service]
    ),
) -> ReconciliationReport:
    """
    일괄 잔액 재계산

    user_ids 를 비워 보내면 잔액 행이 있는 모든 사용자를 대상으로 한다.
    """
    if request.user_ids:
        return reconciliation_service.reconcile_users(request.user_ids)
    logger.info("System-wide balance reconciliation requested")
    return reconciliation_service.reconcile_all_users()


@router.get("/balances/health", response_model=BalanceHealthReport)
@inject
async def get_balance_health(
    reconciliation_service: ReconciliationService = Depends(
        Provide[Container.services.reconciliation_service]
    ),
) -> BalanceHealthReport:
    return reconciliation_service.generate_health_report()
