from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.transaction import TransactionStatusEnum, TransactionTypeEnum
from marketledger.repositories.transaction_repository import TransactionRepository
from marketledger.schemas.pagination import DirectPaginatedResponse, PaginationLimits
from marketledger.schemas.transaction import TokenTransactionSchema
from marketledger.utils.ids import new_id
from marketledger.utils.timezone_utils import utc_now


class TransactionLog:
    """
    append-only 토큰 거래 로그

    append 는 호출자가 연 트랜잭션(session) 안에서만 수행되며, 잔액 변경과
    항상 같은 원자 단위로 커밋된다. 기록된 거래는 수정/삭제되지 않는다.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def append(
        self,
        session: Session,
        user_id: str,
        type: TransactionTypeEnum,
        amount: int,
        balance_before: int,
        balance_after: int,
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        released_amount: int = 0,
    ) -> TokenTransactionSchema:
        return TransactionRepository(session).append(
            id=new_id(),
            user_id=user_id,
            type=type,
            amount=amount,
            released_amount=released_amount,
            balance_before=balance_before,
            balance_after=balance_after,
            related_id=related_id,
            meta=dict(metadata or {}),
            timestamp=utc_now(),
            status=TransactionStatusEnum.COMPLETED,
        )

    def get_user_transactions(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> DirectPaginatedResponse[TokenTransactionSchema]:
        """사용자 거래 내역 조회 (최신순, 페이징)"""
        limit = min(limit, PaginationLimits.TOKEN_TRANSACTIONS["max"])

        entries, total_count = self.uow.read(
            lambda session: TransactionRepository(session).page_for_user(
                user_id, limit=limit, offset=offset
            )
        )
        return DirectPaginatedResponse[TokenTransactionSchema].page(entries, total_count, limit, offset)

    def list_for_user(self, session: Session, user_id: str) -> List[TokenTransactionSchema]:
        """사용자 거래 전체 (오래된 순) - 재계산 원천 데이터"""
        return TransactionRepository(session).list_for_user(user_id)

    def find_by_related_id(
        self, session: Session, user_id: str, type: TransactionTypeEnum, related_id: str
    ) -> Optional[TokenTransactionSchema]:
        """멱등성 체크용 - 같은 참조 ID 로 이미 기록된 거래"""
        return TransactionRepository(session).find_one(
            user_id=user_id, type=type, related_id=related_id
        )
