"""
토큰 잔액 원장 (Balance Ledger)

사용자 잔액 행을 변경하는 유일한 경로. 모든 변경은 같은 트랜잭션 안에서
거래 로그 1건과 함께 기록된다.

변경 타입별 규칙:
- purchase: available += amount, total_earned += amount
- commit:   available -= amount, committed += amount (available 부족 시 InsufficientBalance)
- win:      committed -= released, available += amount,
            total_earned += amount, total_spent += released
- loss:     committed -= amount, total_spent += amount
- refund:   committed -= amount, available += amount

win 은 지급액(amount)과 해제되는 스테이크(released)를 따로 받는다. 스테이크는
지출로, 지급액 전체는 획득으로 잡아서
available + committed == total_earned - total_spent 가 항상 유지된다.
"""

import logging
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy.orm import Session

from marketledger.config import Settings
from marketledger.core.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
)
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.balance import UserBalance
from marketledger.models.transaction import TransactionTypeEnum
from marketledger.repositories.balance_repository import BalanceRepository
from marketledger.schemas.balance import (
    CalculatedBalance,
    TokenPurchaseRequest,
    UserBalanceSchema,
)
from marketledger.schemas.transaction import TokenTransactionSchema
from marketledger.services.transaction_log import TransactionLog
from marketledger.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


class BalanceLedger:
    """사용자 토큰 잔액 원장"""

    def __init__(self, uow: UnitOfWork, transaction_log: TransactionLog, settings: Settings):
        self.uow = uow
        self.transaction_log = transaction_log
        self.settings = settings

    def get_balance(self, user_id: str) -> UserBalanceSchema:
        """
        사용자 잔액 조회

        잔액 행이 없으면 0 잔액 계정을 생성해서 반환한다.
        """
        return self.uow.within_transaction(
            lambda session: self._load_schema(session, user_id),
            label=f"balance:{user_id}",
        )

    def apply_mutation(
        self,
        user_id: str,
        amount: int,
        type: Union[TransactionTypeEnum, str],
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        released: Optional[int] = None,
    ) -> UserBalanceSchema:
        """
        잔액 변경 1건을 독립된 원자 단위로 실행

        낙관적 락 충돌 시 최신 잔액으로 규칙 검사부터 다시 수행한다.

        Returns:
            UserBalanceSchema: 변경 후 잔액
        """
        balance, _ = self.uow.within_transaction(
            lambda session: self.mutate(
                session,
                user_id=user_id,
                amount=amount,
                type=type,
                related_id=related_id,
                metadata=metadata,
                released=released,
            ),
            label=f"ledger:{user_id}",
        )
        return balance

    def mutate(
        self,
        session: Session,
        user_id: str,
        amount: int,
        type: Union[TransactionTypeEnum, str],
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        released: Optional[int] = None,
    ) -> Tuple[UserBalanceSchema, TokenTransactionSchema]:
        """
        호출자가 연 트랜잭션 안에서 잔액 변경 + 거래 로그 기록

        커밋 엔진, 지급 서비스처럼 다른 쓰기와 함께 원자적으로 커밋되어야 하는
        경우에 사용한다. commit 은 호출자(UnitOfWork)가 한다.
        """
        tx_type = TransactionTypeEnum(type)
        released_amount = amount if released is None else released
        self._validate_amounts(tx_type, amount, released_amount)

        repo = BalanceRepository(session)
        balance = repo.get_or_create_model(user_id)

        available = balance.available_tokens
        committed = balance.committed_tokens
        earned = balance.total_earned
        spent = balance.total_spent

        if tx_type == TransactionTypeEnum.PURCHASE:
            available += amount
            earned += amount
        elif tx_type == TransactionTypeEnum.COMMIT:
            if available < amount:
                raise InsufficientBalanceError(
                    message=f"Insufficient balance. Available: {available}, Required: {amount}",
                    details={"available": available, "required": amount},
                )
            available -= amount
            committed += amount
        elif tx_type == TransactionTypeEnum.WIN:
            committed -= released_amount
            available += amount
            earned += amount
            spent += released_amount
        elif tx_type == TransactionTypeEnum.LOSS:
            committed -= amount
            spent += amount
        elif tx_type == TransactionTypeEnum.REFUND:
            committed -= amount
            available += amount

        if available < 0 or committed < 0:
            raise InvariantViolationError(
                message=f"{tx_type.value} of {amount} would leave a negative balance for {user_id}",
                details={
                    "user_id": user_id,
                    "type": tx_type.value,
                    "amount": amount,
                    "available": available,
                    "committed": committed,
                },
            )

        balance_before = balance.available_tokens
        balance.available_tokens = available
        balance.committed_tokens = committed
        balance.total_earned = earned
        balance.total_spent = spent
        balance.last_updated = utc_now()
        # version 증가와 충돌 검사는 flush 시점의 UPDATE ... WHERE version = :seen
        session.flush()

        transaction = self.transaction_log.append(
            session,
            user_id=user_id,
            type=tx_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=available,
            related_id=related_id,
            metadata=metadata,
            released_amount=released_amount if tx_type == TransactionTypeEnum.WIN else 0,
        )

        logger.debug(
            f"Ledger {tx_type.value} user={user_id} amount={amount} "
            f"available {balance_before}->{available} version={balance.version}"
        )
        return repo.to_schema(balance), transaction

    def purchase(self, request: TokenPurchaseRequest) -> UserBalanceSchema:
        """
        토큰 발행 (purchase)

        reference_id 가 주어지면 같은 참조로 이미 발행된 경우 잔액을 다시
        변경하지 않고 현재 잔액을 반환한다.
        """

        def _unit(session: Session) -> UserBalanceSchema:
            if request.reference_id:
                existing = self.transaction_log.find_by_related_id(
                    session,
                    user_id=request.user_id,
                    type=TransactionTypeEnum.PURCHASE,
                    related_id=request.reference_id,
                )
                if existing is not None:
                    logger.info(
                        f"Purchase {request.reference_id} already applied for user {request.user_id}"
                    )
                    return self._load_schema(session, request.user_id)

            balance, _ = self.mutate(
                session,
                user_id=request.user_id,
                amount=request.amount,
                type=TransactionTypeEnum.PURCHASE,
                related_id=request.reference_id,
                metadata={"reason": request.reason} if request.reason else None,
            )
            return balance

        balance = self.uow.within_transaction(_unit, label=f"purchase:{request.user_id}")
        logger.info(f"Issued {request.amount} tokens to user {request.user_id}")
        return balance

    def restate(
        self, session: Session, user_id: str, calculated: CalculatedBalance
    ) -> UserBalanceSchema:
        """
        재계산된 값으로 잔액 행을 덮어쓴다 (reconciliation 전용)

        거래 로그로부터 유도된 값이므로 새로운 거래를 기록하지 않는다.
        """
        repo = BalanceRepository(session)
        balance: UserBalance = repo.get_or_create_model(user_id)
        balance.available_tokens = calculated.available_tokens
        balance.committed_tokens = calculated.committed_tokens
        balance.total_earned = calculated.total_earned
        balance.total_spent = calculated.total_spent
        balance.last_updated = utc_now()
        session.flush()
        return repo.to_schema(balance)

    def _load_schema(self, session: Session, user_id: str) -> UserBalanceSchema:
        repo = BalanceRepository(session)
        return repo.to_schema(repo.get_or_create_model(user_id))

    def _validate_amounts(
        self, tx_type: TransactionTypeEnum, amount: int, released: int
    ) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise InvalidAmountError(
                message=f"Token amount must be an integer: {amount!r}",
                details={"amount": amount},
            )
        if tx_type == TransactionTypeEnum.WIN:
            # 지급액은 0일 수 있다 (수수료로 전액 소진된 경우)
            if amount < 0 or released <= 0:
                raise InvalidAmountError(
                    message=f"Invalid win amounts: payout={amount}, released={released}",
                    details={"amount": amount, "released": released},
                )
            return
        if amount <= 0:
            raise InvalidAmountError(
                message=f"Token amount must be positive: {amount}",
                details={"amount": amount},
            )
