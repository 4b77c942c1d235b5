"""
마켓 정산 워크플로우

관리자가 승리 선택지를 확정하면:
1. 마켓 상태/승리 선택지/생성자 수수료 검증
2. 지급 계획 계산 (승자가 없으면 아무것도 쓰지 않고 NO_WINNERS 반환)
3. 정산 기록 생성 + 마켓 resolved 변경 (하나의 원자 단위)
4. 사용자별 지급 분배
5. 정산 상태 completed / partial 기록

이미 정산된 마켓에 다시 요청하면 기존 정산 기록을 재사용해 분배만 다시 실행한다.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from marketledger.config import Settings
from marketledger.core.exceptions import (
    DistributionPartialFailureError,
    MarketNotActiveError,
    MarketNotFoundError,
    NoWinnersError,
    NotFoundError,
    OptionNotFoundError,
    ValidationError,
)
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.commitment import CommitmentStatusEnum
from marketledger.models.market import MarketStatusEnum
from marketledger.models.resolution import ResolutionStatusEnum
from marketledger.models.transaction import TransactionTypeEnum
from marketledger.repositories.commitment_repository import CommitmentRepository
from marketledger.repositories.market_repository import MarketRepository
from marketledger.repositories.resolution_repository import ResolutionRepository
from marketledger.schemas.commitment import CommitmentSchema
from marketledger.schemas.market import MarketSchema
from marketledger.schemas.resolution import (
    DistributionError,
    DistributionResult,
    MarketResolutionSchema,
    PayoutCalculation,
    PayoutSummary,
    RefundResult,
    ResolutionResult,
)
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.services.payout_calculation_service import PayoutCalculator
from marketledger.services.payout_distribution_service import PayoutDistributionService
from marketledger.utils.ids import new_id
from marketledger.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

RESOLVABLE_STATUSES = (MarketStatusEnum.ACTIVE, MarketStatusEnum.PENDING_RESOLUTION)


class ResolutionService:
    def __init__(
        self,
        uow: UnitOfWork,
        calculator: PayoutCalculator,
        distributor: PayoutDistributionService,
        ledger: BalanceLedger,
        settings: Settings,
    ):
        self.uow = uow
        self.calculator = calculator
        self.distributor = distributor
        self.ledger = ledger
        self.settings = settings

    def resolve_market(
        self,
        market_id: str,
        winning_option_id: str,
        evidence: Optional[List[str]],
        resolved_by: str,
        creator_fee_percentage: float,
        refund_on_no_winners: bool = False,
        require_complete: bool = False,
    ) -> ResolutionResult:
        """
        마켓 정산

        Args:
            refund_on_no_winners: 승자가 없을 때 마켓을 취소하고 전액 환불
            require_complete: 일부 사용자 지급이 실패하면 DistributionPartialFailureError 발생

        Raises:
            MarketNotFoundError, MarketNotActiveError, OptionNotFoundError, ValidationError
        """
        self.calculator.validate_creator_fee_percentage(creator_fee_percentage)

        try:
            resolution, calculation = self.uow.within_transaction(
                lambda session: self._open_resolution(
                    session,
                    market_id,
                    winning_option_id,
                    list(evidence or []),
                    resolved_by,
                    creator_fee_percentage,
                ),
                label=f"resolve:{market_id}",
            )
        except NoWinnersError as e:
            return self._handle_no_winners(market_id, resolved_by, refund_on_no_winners, e)

        logger.info(
            f"Market {market_id} resolved with option {winning_option_id} by {resolved_by} "
            f"(resolution {resolution.id})"
        )
        return self._run_distribution(resolution, calculation, require_complete)

    def retry_distribution(
        self, resolution_id: str, require_complete: bool = False
    ) -> ResolutionResult:
        """실패/부분 완료된 정산의 분배 재실행 (completed 사용자는 건너뜀)"""

        def _load(session: Session) -> Tuple[MarketResolutionSchema, PayoutCalculation]:
            resolution = ResolutionRepository(session).get_by_id(resolution_id)
            if resolution is None:
                raise NotFoundError(
                    message=f"Resolution not found: {resolution_id}",
                    details={"resolution_id": resolution_id},
                )
            market, commitments = self._load_market(session, resolution.market_id)
            calculation = self.calculator.calculate_payouts(
                market,
                commitments,
                resolution.winning_option_id,
                resolution.creator_fee_percentage,
            )
            return resolution, calculation

        resolution, calculation = self.uow.read(_load)
        logger.info(f"Retrying payout distribution for resolution {resolution_id}")
        return self._run_distribution(resolution, calculation, require_complete)

    def preview_payouts(
        self, market_id: str, winning_option_id: str, creator_fee_percentage: float
    ) -> PayoutCalculation:
        """
        지급 계획 미리보기 (쓰기 없음)

        승자가 없어도 오류 대신 전체 winner_pool 이 unallocated 인 계산을 반환한다.
        """

        def _calculate(session: Session) -> PayoutCalculation:
            market, commitments = self._load_market(session, market_id)
            try:
                return self.calculator.calculate_payouts(
                    market, commitments, winning_option_id, creator_fee_percentage
                )
            except NoWinnersError as e:
                return e.calculation

        return self.uow.read(_calculate)

    def cancel_market(
        self, market_id: str, cancelled_by: str, reason: Optional[str] = None
    ) -> RefundResult:
        """
        마켓 취소 및 전액 환불

        마켓을 cancelled 로 바꾼 뒤 사용자 단위로 active 커밋먼트를 환불한다.
        이미 환불된 커밋먼트는 active 가 아니므로 다시 환불되지 않는다.
        """

        def _close(session: Session) -> Dict[str, List[CommitmentSchema]]:
            repo = MarketRepository(session)
            market = repo.get_model(market_id, for_update=True)
            if market is None:
                raise MarketNotFoundError(market_id)
            if market.status not in RESOLVABLE_STATUSES + (MarketStatusEnum.CANCELLED,):
                raise MarketNotActiveError(market_id, market.status.value)
            if market.status != MarketStatusEnum.CANCELLED:
                repo.set_status(market, MarketStatusEnum.CANCELLED, resolved_at=utc_now())

            grouped: Dict[str, List[CommitmentSchema]] = OrderedDict()
            active = CommitmentRepository(session).list_for_market(
                market_id, status=CommitmentStatusEnum.ACTIVE
            )
            for commitment in sorted(active, key=lambda c: c.user_id):
                grouped.setdefault(commitment.user_id, []).append(commitment)
            return grouped

        grouped = self.uow.within_transaction(_close, label=f"cancel:{market_id}")
        logger.info(
            f"Market {market_id} cancelled by {cancelled_by} ({reason or 'no reason'}); "
            f"refunding {len(grouped)} users"
        )

        result = RefundResult(success=True, market_id=market_id)
        for user_id, commitments in grouped.items():
            try:
                refunded = self.uow.within_transaction(
                    lambda session: self._refund_user(
                        session, market_id, user_id, commitments, cancelled_by, reason
                    ),
                    label=f"refund:{market_id}:{user_id}",
                )
            except Exception as e:
                code = getattr(e, "error_code", "REFUND_FAILED")
                logger.error(f"Refund for user {user_id} on market {market_id} failed: {str(e)}")
                result.errors.append(DistributionError(user_id=user_id, code=code, message=str(e)))
                continue

            if refunded == 0:
                result.skipped_users += 1
            else:
                result.refunded_users += 1
                result.refunded_tokens += refunded

        result.success = not result.errors
        return result

    def _open_resolution(
        self,
        session: Session,
        market_id: str,
        winning_option_id: str,
        evidence: List[str],
        resolved_by: str,
        creator_fee_percentage: float,
    ) -> Tuple[MarketResolutionSchema, PayoutCalculation]:
        market_repo = MarketRepository(session)
        market_model = market_repo.get_model(market_id, for_update=True)
        if market_model is None:
            raise MarketNotFoundError(market_id)

        resolutions = ResolutionRepository(session)
        existing = resolutions.get_for_market(market_id)
        if existing is not None:
            if existing.winning_option_id != winning_option_id:
                raise ValidationError(
                    message=f"Market {market_id} was already resolved with option {existing.winning_option_id}",
                    details={"market_id": market_id, "resolution_id": existing.id},
                )
        elif market_model.status not in RESOLVABLE_STATUSES:
            raise MarketNotActiveError(market_id, market_model.status.value)

        market, commitments = self._load_market(session, market_id)
        if market.find_option(winning_option_id) is None:
            raise OptionNotFoundError(market_id, winning_option_id)

        if existing is not None:
            calculation = self.calculator.calculate_payouts(
                market, commitments, winning_option_id, existing.creator_fee_percentage
            )
            logger.info(f"Market {market_id} already has resolution {existing.id}; re-running distribution")
            return existing, calculation

        calculation = self.calculator.calculate_payouts(
            market, commitments, winning_option_id, creator_fee_percentage
        )
        now = utc_now()
        resolution = resolutions.add(
            id=new_id(),
            market_id=market_id,
            winning_option_id=winning_option_id,
            resolved_by=resolved_by,
            resolved_at=now,
            evidence=evidence,
            total_payout=calculation.total_payout,
            winner_count=calculation.winner_count,
            house_fee=calculation.house_fee,
            creator_fee=calculation.creator_fee,
            creator_fee_percentage=creator_fee_percentage,
            status=ResolutionStatusEnum.PENDING,
        )
        market_repo.set_status(market_model, MarketStatusEnum.RESOLVED, resolved_at=now)
        return resolution, calculation

    def _run_distribution(
        self,
        resolution: MarketResolutionSchema,
        calculation: PayoutCalculation,
        require_complete: bool,
    ) -> ResolutionResult:
        distribution = self.distributor.distribute(
            resolution.market_id, resolution.id, calculation
        )
        status = (
            ResolutionStatusEnum.COMPLETED if distribution.success else ResolutionStatusEnum.PARTIAL
        )
        self.uow.within_transaction(
            lambda session: self._set_resolution_status(session, resolution.id, status),
            label=f"resolution-status:{resolution.id}",
        )

        result = ResolutionResult(
            success=distribution.success,
            resolution_id=resolution.id,
            payout_summary=self._summarize(calculation, distribution),
            distribution=distribution,
        )
        if not distribution.success:
            error = DistributionPartialFailureError(
                message=f"{len(distribution.errors)} payouts failed for resolution {resolution.id}",
                details={
                    "resolution_id": resolution.id,
                    "failed_users": [e.user_id for e in distribution.errors],
                },
                result=result,
            )
            result.error = error.to_error()
            if require_complete:
                raise error
        return result

    def _handle_no_winners(
        self,
        market_id: str,
        resolved_by: str,
        refund_on_no_winners: bool,
        error: NoWinnersError,
    ) -> ResolutionResult:
        calculation: PayoutCalculation = error.calculation
        failure = error.to_error()
        failure["details"] = {"unallocated": calculation.unallocated, "total_pool": calculation.total_pool}

        if not refund_on_no_winners:
            logger.warning(f"Resolution of market {market_id} aborted: no winners")
            return ResolutionResult(success=False, error=failure)

        refund = self.cancel_market(market_id, resolved_by, reason="no winning commitments")
        failure["details"]["refund"] = refund.model_dump()
        return ResolutionResult(success=refund.success, error=failure)

    def _refund_user(
        self,
        session: Session,
        market_id: str,
        user_id: str,
        commitments: List[CommitmentSchema],
        cancelled_by: str,
        reason: Optional[str],
    ) -> int:
        ids = [c.id for c in commitments]
        refunded = CommitmentRepository(session).mark_resolved(
            ids, CommitmentStatusEnum.CANCELLED, utc_now()
        )
        if refunded == 0:
            return 0
        if refunded != len(ids):
            # 일부만 active 로 남아 있다. cancel_market 을 다시 실행하면 현재 상태 기준으로 환불된다
            raise ValidationError(
                message=f"Commitments for user {user_id} changed during refund",
                details={"user_id": user_id, "market_id": market_id},
            )
        amount = sum(c.tokens_committed for c in commitments)
        self.ledger.mutate(
            session,
            user_id=user_id,
            amount=amount,
            type=TransactionTypeEnum.REFUND,
            related_id=market_id,
            metadata={
                "commitment_ids": ids,
                "cancelled_by": cancelled_by,
                "rollback_type": "market_cancelled",
                "reason": reason,
            },
        )
        return amount

    def _set_resolution_status(
        self, session: Session, resolution_id: str, status: ResolutionStatusEnum
    ) -> None:
        resolution = ResolutionRepository(session).get_model(resolution_id)
        resolution.status = status  # type: ignore[union-attr]
        session.flush()

    def _load_market(
        self, session: Session, market_id: str
    ) -> Tuple[MarketSchema, List[CommitmentSchema]]:
        market_repo = MarketRepository(session)
        market_model = market_repo.get_model(market_id)
        if market_model is None:
            raise MarketNotFoundError(market_id)
        commitments = [
            c
            for c in CommitmentRepository(session).list_for_market(market_id)
            if c.status != CommitmentStatusEnum.CANCELLED
        ]
        return market_repo.to_schema(market_model), commitments

    def _summarize(
        self, calculation: PayoutCalculation, distribution: DistributionResult
    ) -> PayoutSummary:
        return PayoutSummary(
            total_pool=calculation.total_pool,
            house_fee=calculation.house_fee,
            creator_fee=calculation.creator_fee,
            winner_pool=calculation.winner_pool,
            winner_count=calculation.winner_count,
            loser_count=calculation.loser_count,
            total_distributed=distribution.total_distributed,
            unallocated=calculation.unallocated,
            recipient_count=distribution.recipient_count,
            failed_count=len(distribution.errors),
        )
