"""
잔액 정합성 재계산 (reconciliation)

append-only 거래 로그와 active 커밋먼트로부터 잔액을 다시 계산한다.

- total_earned = purchase 합 + win 지급액 합
- total_spent  = loss 합 + win 에서 해제된 스테이크 합
- committed    = active 커밋먼트 토큰 합
- available    = max(0, total_earned - total_spent - committed)
"""

import logging
import time
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from marketledger.config import Settings
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.commitment import CommitmentStatusEnum
from marketledger.models.transaction import TransactionStatusEnum, TransactionTypeEnum
from marketledger.repositories.balance_repository import BalanceRepository
from marketledger.repositories.commitment_repository import CommitmentRepository
from marketledger.schemas.balance import (
    BalanceAuditResult,
    BalanceHealthReport,
    BalanceInconsistency,
    CalculatedBalance,
    ReconciliationReport,
    UserBalanceSchema,
)
from marketledger.schemas.transaction import TokenTransactionSchema
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.services.transaction_log import TransactionLog
from marketledger.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

BALANCE_FIELDS = ("available_tokens", "committed_tokens", "total_earned", "total_spent")


class ReconciliationService:
    def __init__(
        self,
        uow: UnitOfWork,
        transaction_log: TransactionLog,
        ledger: BalanceLedger,
        settings: Settings,
    ):
        self.uow = uow
        self.transaction_log = transaction_log
        self.ledger = ledger
        self.settings = settings

    def reconcile(self, user_id: str) -> UserBalanceSchema:
        """거래 로그 기준으로 잔액을 다시 계산해 저장 (version 증가)"""

        def _unit(session: Session) -> UserBalanceSchema:
            calculated, _, _ = self._calculate(session, user_id)
            stored = BalanceRepository(session).get_by_id(user_id)
            inconsistencies = self._compare(stored, calculated)
            if inconsistencies:
                logger.warning(
                    f"Reconciling balance for user {user_id}: "
                    + ", ".join(f"{i.field} {i.stored_value}->{i.calculated_value}" for i in inconsistencies)
                )
            return self.ledger.restate(session, user_id, calculated)

        balance = self.uow.within_transaction(_unit, label=f"reconcile:{user_id}")
        logger.info(f"Balance reconciled for user {user_id} (version {balance.version})")
        return balance

    def audit_user_balance(self, user_id: str) -> BalanceAuditResult:
        """저장된 잔액과 재계산 값 비교 (쓰기 없음)"""

        def _audit(session: Session) -> BalanceAuditResult:
            calculated, transaction_count, active_count = self._calculate(session, user_id)
            stored = BalanceRepository(session).get_by_id(user_id)
            return BalanceAuditResult(
                user_id=user_id,
                current_balance=stored,
                calculated_balance=calculated,
                inconsistencies=self._compare(stored, calculated),
                transaction_count=transaction_count,
                active_commitment_count=active_count,
                conserved=self._is_conserved(stored),
            )

        return self.uow.read(_audit)

    def check_conservation(self, user_id: str) -> bool:
        """available + committed == total_earned - total_spent"""
        stored = self.uow.read(lambda session: BalanceRepository(session).get_by_id(user_id))
        return self._is_conserved(stored)

    def reconcile_users(self, user_ids: Sequence[str]) -> ReconciliationReport:
        """
        여러 사용자 감사 후 불일치가 있는 사용자만 재계산

        사용자 단위로 독립 실행되며, 한 사용자의 실패는 errors 에 기록하고
        다음 사용자로 넘어간다.
        """
        started = time.monotonic()
        report = ReconciliationReport()

        for user_id in user_ids:
            report.total_users_checked += 1
            try:
                audit = self.audit_user_balance(user_id)
            except Exception as e:
                logger.error(f"Balance audit failed for user {user_id}: {str(e)}")
                report.errors.append(f"Failed to audit balance for user {user_id}: {str(e)}")
                continue

            if not audit.inconsistencies:
                continue
            report.users_with_inconsistencies += 1
            report.inconsistencies.extend(audit.inconsistencies)
            try:
                self.reconcile(user_id)
                report.users_fixed += 1
            except Exception as e:
                logger.error(f"Balance fix failed for user {user_id}: {str(e)}")
                report.errors.append(f"Failed to fix balance for user {user_id}: {str(e)}")

        report.execution_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Reconciled {report.total_users_checked} users: "
            f"{report.users_with_inconsistencies} inconsistent, {report.users_fixed} fixed, "
            f"{len(report.errors)} errors"
        )
        return report

    def reconcile_all_users(self) -> ReconciliationReport:
        """잔액 행이 있는 모든 사용자 대상 reconcile_users"""
        user_ids = self.uow.read(lambda session: BalanceRepository(session).list_user_ids())
        return self.reconcile_users(user_ids)

    def generate_health_report(self) -> BalanceHealthReport:
        """
        전체 잔액 집계 + 표본 감사 (쓰기 없음)

        inconsistency_rate 는 user_id 순 앞쪽 HEALTH_SAMPLE_SIZE 명을 감사한 비율이다.
        """
        balances = self.uow.read(lambda session: BalanceRepository(session).list_all())
        total_users = len(balances)
        in_circulation = sum(b.available_tokens + b.committed_tokens for b in balances)
        committed = sum(b.committed_tokens for b in balances)

        sample = [b.user_id for b in balances[: self.settings.HEALTH_SAMPLE_SIZE]]
        inconsistent = sum(
            1 for user_id in sample if self.audit_user_balance(user_id).inconsistencies
        )

        return BalanceHealthReport(
            total_users=total_users,
            users_with_balances=sum(
                1 for b in balances if b.available_tokens > 0 or b.committed_tokens > 0
            ),
            total_tokens_in_circulation=in_circulation,
            total_tokens_committed=committed,
            average_balance_per_user=in_circulation / total_users if total_users else 0.0,
            sampled_users=len(sample),
            inconsistency_rate=inconsistent / len(sample) if sample else 0.0,
            non_conserved_users=[b.user_id for b in balances if not self._is_conserved(b)],
            generated_at=utc_now(),
        )

    def _calculate(
        self, session: Session, user_id: str
    ) -> Tuple[CalculatedBalance, int, int]:
        transactions: List[TokenTransactionSchema] = [
            t
            for t in self.transaction_log.list_for_user(session, user_id)
            if t.status == TransactionStatusEnum.COMPLETED
        ]
        earned = spent = 0
        for t in transactions:
            if t.type == TransactionTypeEnum.PURCHASE:
                earned += t.amount
            elif t.type == TransactionTypeEnum.WIN:
                earned += t.amount
                spent += t.released_amount
            elif t.type == TransactionTypeEnum.LOSS:
                spent += t.amount

        commitments = CommitmentRepository(session)
        committed = commitments.sum_active_tokens_for_user(user_id)
        active_count = len(commitments.list_for_user(user_id, status=CommitmentStatusEnum.ACTIVE))

        calculated = CalculatedBalance(
            available_tokens=max(0, earned - spent - committed),
            committed_tokens=committed,
            total_earned=earned,
            total_spent=spent,
        )
        return calculated, len(transactions), active_count

    def _compare(
        self, stored: Optional[UserBalanceSchema], calculated: CalculatedBalance
    ) -> List[BalanceInconsistency]:
        inconsistencies = []
        for field in BALANCE_FIELDS:
            stored_value = getattr(stored, field) if stored is not None else 0
            calculated_value = getattr(calculated, field)
            if stored_value != calculated_value:
                inconsistencies.append(
                    BalanceInconsistency(
                        field=field,
                        stored_value=stored_value,
                        calculated_value=calculated_value,
                        difference=calculated_value - stored_value,
                    )
                )
        return inconsistencies

    def _is_conserved(self, stored: Optional[UserBalanceSchema]) -> bool:
        if stored is None:
            return True
        return (
            stored.available_tokens + stored.committed_tokens
            == stored.total_earned - stored.total_spent
        )
