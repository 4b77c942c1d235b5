"""
정산 지급 분배

계산된 지급 계획을 사용자 단위의 원자 작업으로 원장에 반영한다.
한 사용자의 실패는 다른 사용자의 지급을 되돌리지 않으며, 이미 completed 인
사용자는 다시 처리하지 않으므로 같은 정산에 대해 몇 번이고 재실행할 수 있다.
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from marketledger.config import Settings
from marketledger.core.exceptions import BaseAPIException, InvariantViolationError
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.commitment import CommitmentStatusEnum
from marketledger.models.resolution import DistributionStatusEnum
from marketledger.models.transaction import TransactionTypeEnum
from marketledger.repositories.commitment_repository import CommitmentRepository
from marketledger.repositories.resolution_repository import DistributionRepository
from marketledger.schemas.resolution import (
    CommitmentPayout,
    DistributionError,
    DistributionResult,
    PayoutCalculation,
    PayoutDistributionSchema,
)
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class PayoutDistributionService:
    def __init__(self, uow: UnitOfWork, ledger: BalanceLedger, settings: Settings):
        self.uow = uow
        self.ledger = ledger
        self.settings = settings

    def distribute(
        self, market_id: str, resolution_id: str, calculation: PayoutCalculation
    ) -> DistributionResult:
        """
        지급 계획 분배

        사용자별로:
        1. (user_id, resolution_id) 지급 기록이 completed 면 건너뛴다.
        2. 승리 스테이크가 있으면 win (지급액 합, 해제 스테이크 합),
           패배 스테이크가 있으면 loss 를 원장에 반영한다.
        3. 커밋먼트를 won/lost 로 변경하고 지급 기록을 completed 로 남긴다.

        실패한 사용자는 별도 작업으로 failed 기록을 남기고 errors 에 모은다.
        """
        by_user = self._group_by_user(calculation.commitment_payouts)
        user_ids = list(by_user.keys())
        batch_size = max(1, self.settings.PAYOUT_BATCH_SIZE)

        result = DistributionResult(
            success=True, market_id=market_id, resolution_id=resolution_id
        )

        for start in range(0, len(user_ids), batch_size):
            batch = user_ids[start : start + batch_size]
            for user_id in batch:
                payouts = by_user[user_id]
                try:
                    distribution = self.uow.within_transaction(
                        lambda session: self._distribute_user(
                            session, market_id, resolution_id, user_id, payouts
                        ),
                        label=f"payout:{resolution_id}:{user_id}",
                    )
                except Exception as e:
                    self._handle_failure(result, market_id, resolution_id, user_id, payouts, e)
                    continue

                if distribution is None:
                    result.skipped_count += 1
                    continue

                result.completed_count += 1
                result.distributions.append(distribution)
                result.transaction_ids.extend(distribution.transaction_ids)
                if distribution.total_payout > 0:
                    result.total_distributed += distribution.total_payout
                    result.recipient_count += 1

            logger.info(
                f"Payout batch {start // batch_size + 1} for resolution {resolution_id}: "
                f"{min(start + batch_size, len(user_ids))}/{len(user_ids)} users processed"
            )

        result.success = not result.errors
        if result.errors:
            logger.error(
                f"Payout distribution for resolution {resolution_id} finished with "
                f"{len(result.errors)} failed users"
            )
        else:
            logger.info(
                f"Payout distribution for resolution {resolution_id} completed: "
                f"{result.total_distributed} tokens to {result.recipient_count} users"
            )
        return result

    def get_market_payout_distributions(self, market_id: str) -> List[PayoutDistributionSchema]:
        """마켓의 사용자별 지급 기록 (실패/부분 포함)"""
        return self.uow.read(
            lambda session: DistributionRepository(session).list_for_market(market_id)
        )

    def get_user_payout_distributions(self, user_id: str) -> List[PayoutDistributionSchema]:
        return self.uow.read(
            lambda session: DistributionRepository(session).list_for_user(user_id)
        )

    def _distribute_user(
        self,
        session: Session,
        market_id: str,
        resolution_id: str,
        user_id: str,
        payouts: List[CommitmentPayout],
    ) -> Optional[PayoutDistributionSchema]:
        distributions = DistributionRepository(session)
        if distributions.is_completed(user_id, resolution_id):
            return None

        winning = [p for p in payouts if p.is_winner]
        losing = [p for p in payouts if not p.is_winner]
        total_payout = sum(p.payout_amount for p in winning)
        winning_stake = sum(p.tokens_committed for p in winning)
        losing_stake = sum(p.tokens_committed for p in losing)

        transaction_ids: List[str] = []
        if winning_stake > 0:
            _, transaction = self.ledger.mutate(
                session,
                user_id=user_id,
                amount=total_payout,
                type=TransactionTypeEnum.WIN,
                related_id=resolution_id,
                released=winning_stake,
                metadata={
                    "market_id": market_id,
                    "commitment_ids": [p.commitment_id for p in winning],
                    "profit": total_payout - winning_stake,
                },
            )
            transaction_ids.append(transaction.id)
        if losing_stake > 0:
            _, transaction = self.ledger.mutate(
                session,
                user_id=user_id,
                amount=losing_stake,
                type=TransactionTypeEnum.LOSS,
                related_id=resolution_id,
                metadata={
                    "market_id": market_id,
                    "commitment_ids": [p.commitment_id for p in losing],
                },
            )
            transaction_ids.append(transaction.id)

        now = utc_now()
        commitments = CommitmentRepository(session)
        settled = commitments.mark_resolved(
            [p.commitment_id for p in winning], CommitmentStatusEnum.WON, now
        ) + commitments.mark_resolved(
            [p.commitment_id for p in losing], CommitmentStatusEnum.LOST, now
        )
        if settled != len(payouts):
            # 이미 정산된 커밋먼트에 다시 지급하려는 경우
            raise InvariantViolationError(
                message=f"Expected {len(payouts)} active commitments for user {user_id}, found {settled}",
                details={"user_id": user_id, "resolution_id": resolution_id},
            )

        return distributions.upsert(
            user_id,
            resolution_id,
            market_id=market_id,
            total_payout=total_payout,
            total_profit=total_payout - winning_stake,
            total_lost=losing_stake,
            winning_commitments=[self._commitment_entry(p) for p in winning],
            losing_commitments=[self._commitment_entry(p) for p in losing],
            transaction_ids=transaction_ids,
            status=DistributionStatusEnum.COMPLETED,
            error_message=None,
            processed_at=now,
        )

    def _handle_failure(
        self,
        result: DistributionResult,
        market_id: str,
        resolution_id: str,
        user_id: str,
        payouts: List[CommitmentPayout],
        error: Exception,
    ) -> None:
        if isinstance(error, BaseAPIException):
            code, message = error.error_code, error.message
        else:
            code, message = "DISTRIBUTION_FAILED", str(error)
        logger.error(f"Payout for user {user_id} on resolution {resolution_id} failed: {code} {message}")
        result.errors.append(DistributionError(user_id=user_id, code=code, message=message))

        try:
            self.uow.within_transaction(
                lambda session: DistributionRepository(session).upsert(
                    user_id,
                    resolution_id,
                    market_id=market_id,
                    total_payout=sum(p.payout_amount for p in payouts if p.is_winner),
                    total_profit=0,
                    total_lost=0,
                    winning_commitments=[],
                    losing_commitments=[],
                    transaction_ids=[],
                    status=DistributionStatusEnum.FAILED,
                    error_message=message,
                    processed_at=utc_now(),
                ),
                label=f"payout-failure:{resolution_id}:{user_id}",
            )
        except Exception as e:
            # 원래 오류는 이미 errors 에 기록되어 있다
            logger.error(f"Could not record failed payout for user {user_id}: {str(e)}")

    def _group_by_user(
        self, payouts: List[CommitmentPayout]
    ) -> Dict[str, List[CommitmentPayout]]:
        grouped: Dict[str, List[CommitmentPayout]] = OrderedDict()
        for payout in sorted(payouts, key=lambda p: p.user_id):
            grouped.setdefault(payout.user_id, []).append(payout)
        return grouped

    def _commitment_entry(self, payout: CommitmentPayout) -> Dict:
        return {
            "commitment_id": payout.commitment_id,
            "option_id": payout.option_id,
            "tokens_committed": payout.tokens_committed,
            "payout_amount": payout.payout_amount,
            "profit": payout.profit,
        }
