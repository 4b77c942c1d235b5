"""
개별 커밋 취소 (rollback)

마켓이 열려 있는 동안, 커밋 후 ROLLBACK_WINDOW_HOURS 이내의 active 커밋먼트를
취소하고 스테이크를 committed -> available 로 돌려준다.

- 환불은 refund 거래로 기록되고 원래 commit 거래는 수정하지 않는다.
- 커밋먼트는 cancelled 로 바뀌며, 마켓/선택지 집계 카운터에서 빠진다.
- 마켓 행을 잠근 뒤 같은 원자 단위에서 처리하므로 정산/취소와 겹치지 않는다.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from marketledger.config import Settings
from marketledger.core.exceptions import (
    CommitmentNotFoundError,
    MarketNotActiveError,
    RollbackNotAllowedError,
)
from marketledger.core.targeting import CommitmentTarget
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.commitment import Commitment, CommitmentStatusEnum
from marketledger.models.market import Market, MarketStatusEnum
from marketledger.models.transaction import TransactionTypeEnum
from marketledger.repositories.commitment_repository import CommitmentRepository
from marketledger.repositories.market_repository import MarketRepository
from marketledger.repositories.transaction_repository import TransactionRepository
from marketledger.schemas.rollback import RollbackEligibility, RollbackResult, RollbackType
from marketledger.schemas.transaction import TokenTransactionSchema
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class CommitmentRollbackService:
    def __init__(self, uow: UnitOfWork, ledger: BalanceLedger, settings: Settings):
        self.uow = uow
        self.ledger = ledger
        self.settings = settings

    def can_rollback(self, commitment_id: str) -> RollbackEligibility:
        """취소 가능 여부 조회 (쓰기 없음)"""

        def _check(session: Session) -> RollbackEligibility:
            commitment = CommitmentRepository(session).get_model(commitment_id)
            if commitment is None:
                return RollbackEligibility(
                    commitment_id=commitment_id, can_rollback=False, reason="Commitment not found"
                )
            market = MarketRepository(session).get_model(commitment.market_id)
            reason = self._ineligibility(commitment, market)
            return RollbackEligibility(
                commitment_id=commitment_id,
                can_rollback=reason is None,
                reason=reason,
                expires_at=self._expires_at(commitment),
            )

        return self.uow.read(_check)

    def rollback_commitment(
        self,
        commitment_id: str,
        reason: str,
        rollback_type: RollbackType = "manual_refund",
    ) -> RollbackResult:
        """
        커밋먼트 1건 취소 + 스테이크 환불

        Raises:
            CommitmentNotFoundError: 커밋먼트 없음
            RollbackNotAllowedError: active 가 아니거나, 마켓이 닫혔거나, 취소 기한 경과
        """
        result = self.uow.within_transaction(
            lambda session: self._rollback(session, commitment_id, reason, rollback_type),
            label=f"rollback:{commitment_id}",
        )
        logger.info(
            f"Commitment {commitment_id} rolled back for user {result.commitment.user_id}: "
            f"{result.refunded_tokens} tokens refunded ({rollback_type})"
        )
        return result

    def get_rollback_history(self, user_id: str) -> List[TokenTransactionSchema]:
        """사용자의 환불 거래 (개별 취소 + 마켓 취소, 최신순)"""
        return self.uow.read(
            lambda session: TransactionRepository(session).list_for_user_by_type(
                user_id, TransactionTypeEnum.REFUND
            )
        )

    def _rollback(
        self,
        session: Session,
        commitment_id: str,
        reason: str,
        rollback_type: RollbackType,
    ) -> RollbackResult:
        commitments = CommitmentRepository(session)
        commitment_model = commitments.get_model(commitment_id)
        if commitment_model is None:
            raise CommitmentNotFoundError(commitment_id)
        commitment = commitments.to_schema(commitment_model)

        market_repo = MarketRepository(session)
        market = market_repo.get_model(commitment.market_id, for_update=True)
        not_allowed = self._ineligibility(commitment_model, market)
        if not_allowed is not None:
            raise RollbackNotAllowedError(commitment_id, not_allowed)

        now = utc_now()
        if commitments.mark_resolved([commitment_id], CommitmentStatusEnum.CANCELLED, now) != 1:
            raise RollbackNotAllowedError(commitment_id, "commitment is no longer active")

        balance, transaction = self.ledger.mutate(
            session,
            user_id=commitment.user_id,
            amount=commitment.tokens_committed,
            type=TransactionTypeEnum.REFUND,
            related_id=commitment.market_id,
            metadata={
                "commitment_id": commitment_id,
                "option_id": commitment.option_id,
                "rollback_reason": reason,
                "rollback_type": rollback_type,
            },
        )

        # 레거시 binary 레코드는 position 만 가지고 있다
        option_id = CommitmentTarget.of(commitment).resolve_option_id(
            market_repo.to_schema(market)  # type: ignore[arg-type]
        )
        still_active = market_repo.decrement_counters(
            commitment.market_id,
            option_id,
            commitment.tokens_committed,
            option_participant_left=not commitments.user_has_commitment(
                commitment.user_id, commitment.market_id, option_id
            ),
            market_participant_left=not commitments.user_has_commitment(
                commitment.user_id, commitment.market_id
            ),
        )
        if not still_active:
            raise MarketNotActiveError(commitment.market_id, "closed")

        return RollbackResult(
            commitment=commitment.model_copy(
                update={"status": CommitmentStatusEnum.CANCELLED, "resolved_at": now}
            ),
            refunded_tokens=commitment.tokens_committed,
            rollback_type=rollback_type,
            transaction_id=transaction.id,
            balance=balance,
        )

    def _ineligibility(self, commitment: Commitment, market: Optional[Market]) -> Optional[str]:
        """취소할 수 없는 이유 (가능하면 None)"""
        if commitment.status != CommitmentStatusEnum.ACTIVE:
            return f"commitment is {commitment.status.value}"
        if market is None or market.status != MarketStatusEnum.ACTIVE:
            return "market is no longer active"
        if utc_now() >= ensure_utc(market.ends_at):
            return "market has ended"
        if utc_now() > self._expires_at(commitment):
            return f"rollback window of {self.settings.ROLLBACK_WINDOW_HOURS}h has passed"
        return None

    def _expires_at(self, commitment: Commitment):
        return ensure_utc(commitment.committed_at) + timedelta(
            hours=self.settings.ROLLBACK_WINDOW_HOURS
        )
