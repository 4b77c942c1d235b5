"""
토큰 원장 API 라우터

- POST /tokens/commit: 마켓 선택지에 토큰 커밋
- GET /tokens/balance/{user_id}: 잔액 조회
- GET /tokens/transactions/{user_id}: 거래 내역 (최신순, 페이징)
- POST /tokens/purchase: 토큰 발행 (결제/지갑 연동 레이어에서 호출)
- POST /tokens/reconcile/{user_id}: 거래 로그 기준 잔액 재계산
- GET /tokens/audit/{user_id}: 잔액 감사 (쓰기 없음)
- GET /tokens/commitments/{commitment_id}/rollback-eligibility: 커밋 취소 가능 여부
- POST /tokens/commitments/{commitment_id}/rollback: 커밋 취소 및 환불
- GET /tokens/rollbacks/{user_id}: 환불 거래 내역
- GET /tokens/distributions/{user_id}: 정산 지급 기록

인증/권한은 앞단 게이트웨이에서 처리한다.
"""

import logging
from typing import List

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query

from marketledger.containers import Container
from marketledger.schemas.balance import (
    BalanceAuditResult,
    TokenPurchaseRequest,
    UserBalanceSchema,
)
from marketledger.schemas.commitment import CommitmentRequest, CommitmentResult
from marketledger.schemas.pagination import DirectPaginatedResponse, PaginationLimits
from marketledger.schemas.resolution import PayoutDistributionSchema
from marketledger.schemas.rollback import (
    CommitmentRollbackRequest,
    RollbackEligibility,
    RollbackResult,
)
from marketledger.schemas.transaction import TokenTransactionSchema
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.services.commitment_rollback_service import CommitmentRollbackService
from marketledger.services.commitment_service import CommitmentEngine
from marketledger.services.payout_distribution_service import PayoutDistributionService
from marketledger.services.reconciliation_service import ReconciliationService
from marketledger.services.transaction_log import TransactionLog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.post("/commit", response_model=CommitmentResult)
@inject
async def commit_tokens(
    request: CommitmentRequest,
    commitment_engine: CommitmentEngine = Depends(
        Provide[Container.services.commitment_engine]
    ),
) -> CommitmentResult:
    """
    토큰 커밋

    position(yes/no) 또는 option_id 로 선택지를 지정한다. 잔액 부족, 마켓 종료 등
    도메인 오류는 success=false 와 error{code, message} 로 반환된다.
    """
    return commitment_engine.submit(request)


@router.get("/balance/{user_id}", response_model=UserBalanceSchema)
@inject
async def get_balance(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    balance_ledger: BalanceLedger = Depends(Provide[Container.services.balance_ledger]),
) -> UserBalanceSchema:
    """잔액 조회 (처음 조회하는 사용자는 0 잔액 계정이 생성된다)"""
    return balance_ledger.get_balance(user_id)


@router.get(
    "/transactions/{user_id}",
    response_model=DirectPaginatedResponse[TokenTransactionSchema],
)
@inject
async def get_transactions(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    limit: int = Query(
        PaginationLimits.TOKEN_TRANSACTIONS["default"],
        ge=PaginationLimits.TOKEN_TRANSACTIONS["min"],
        le=PaginationLimits.TOKEN_TRANSACTIONS["max"],
        description="페이지 크기",
    ),
    offset: int = Query(0, ge=0, description="오프셋"),
    transaction_log: TransactionLog = Depends(Provide[Container.services.transaction_log]),
) -> DirectPaginatedResponse[TokenTransactionSchema]:
    return transaction_log.get_user_transactions(user_id, limit=limit, offset=offset)


@router.post("/purchase", response_model=UserBalanceSchema)
@inject
async def purchase_tokens(
    request: TokenPurchaseRequest,
    balance_ledger: BalanceLedger = Depends(Provide[Container.services.balance_ledger]),
) -> UserBalanceSchema:
    """
    토큰 발행

    reference_id 가 같은 요청은 한 번만 반영된다.
    """
    return balance_ledger.purchase(request)


@router.post("/reconcile/{user_id}", response_model=UserBalanceSchema)
@inject
async def reconcile_balance(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    reconciliation_service: ReconciliationService = Depends(
        Provide[Container.services.reconciliation_service]
    ),
) -> UserBalanceSchema:
    return reconciliation_service.reconcile(user_id)


@router.get("/audit/{user_id}", response_model=BalanceAuditResult)
@inject
async def audit_balance(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    reconciliation_service: ReconciliationService = Depends(
        Provide[Container.services.reconciliation_service]
    ),
) -> BalanceAuditResult:
    return reconciliation_service.audit_user_balance(user_id)


@router.get(
    "/commitments/{commitment_id}/rollback-eligibility",
    response_model=RollbackEligibility,
)
@inject
async def get_rollback_eligibility(
    commitment_id: str = Path(..., min_length=1, description="커밋먼트 ID"),
    rollback_service: CommitmentRollbackService = Depends(
        Provide[Container.services.commitment_rollback_service]
    ),
) -> RollbackEligibility:
    return rollback_service.can_rollback(commitment_id)


@router.post("/commitments/{commitment_id}/rollback", response_model=RollbackResult)
@inject
async def rollback_commitment(
    request: CommitmentRollbackRequest,
    commitment_id: str = Path(..., min_length=1, description="커밋먼트 ID"),
    rollback_service: CommitmentRollbackService = Depends(
        Provide[Container.services.commitment_rollback_service]
    ),
) -> RollbackResult:
    """
    커밋 취소 및 스테이크 환불

    마켓이 active 이고 커밋 후 ROLLBACK_WINDOW_HOURS 이내인 active 커밋먼트만 취소된다.
    """
    logger.info(f"Rollback requested for commitment {commitment_id} ({request.rollback_type})")
    return rollback_service.rollback_commitment(
        commitment_id, reason=request.reason, rollback_type=request.rollback_type
    )


@router.get("/rollbacks/{user_id}", response_model=List[TokenTransactionSchema])
@inject
async def get_rollback_history(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    rollback_service: CommitmentRollbackService = Depends(
        Provide[Container.services.commitment_rollback_service]
    ),
) -> List[TokenTransactionSchema]:
    return rollback_service.get_rollback_history(user_id)


@router.get("/distributions/{user_id}", response_model=List[PayoutDistributionSchema])
@inject
async def get_user_distributions(
    user_id: str = Path(..., min_length=1, description="사용자 ID"),
    distributor: PayoutDistributionService = Depends(
        Provide[Container.services.payout_distribution_service]
    ),
) -> List[PayoutDistributionSchema]:
    return distributor.get_user_payout_distributions(user_id)
