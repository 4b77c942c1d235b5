from typing import List, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from marketledger.models.transaction import TokenTransaction, TransactionTypeEnum
from marketledger.repositories.base import BaseRepository
from marketledger.schemas.transaction import TokenTransactionSchema


class TransactionRepository(BaseRepository[TokenTransaction, TokenTransactionSchema]):
    """append-only 거래 로그 - 수정/삭제 메서드를 제공하지 않는다"""

    def __init__(self, db: Session):
        super().__init__(TokenTransaction, TokenTransactionSchema, db)

    def append(self, **kwargs) -> TokenTransactionSchema:
        instance = self.create(**kwargs)
        return self._to_schema(instance)  # type: ignore[return-value]

    def list_for_user(self, user_id: str) -> List[TokenTransactionSchema]:
        """사용자 거래 전체 (오래된 순)"""
        instances = (
            self.db.query(self.model_class)
            .filter(self.model_class.user_id == user_id)
            .order_by(self.model_class.timestamp, self.model_class.id)
            .all()
        )
        return self._to_schemas(instances)

    def page_for_user(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> Tuple[List[TokenTransactionSchema], int]:
        """사용자 거래 페이지 조회 (최신순)"""
        query = self.db.query(self.model_class).filter(
            self.model_class.user_id == user_id
        )
        total_count = query.count()
        instances = (
            query.order_by(desc(self.model_class.timestamp), desc(self.model_class.id))
            .limit(limit)
            .offset(offset)
            .all()
        )
        return self._to_schemas(instances), total_count

    def list_for_user_by_type(
        self, user_id: str, type: TransactionTypeEnum
    ) -> List[TokenTransactionSchema]:
        """사용자의 특정 타입 거래 (최신순)"""
        instances = (
            self.db.query(self.model_class)
            .filter(self.model_class.user_id == user_id, self.model_class.type == type)
            .order_by(desc(self.model_class.timestamp), desc(self.model_class.id))
            .all()
        )
        return self._to_schemas(instances)
