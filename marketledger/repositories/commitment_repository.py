from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import desc, func, update
from sqlalchemy.orm import Session

from marketledger.models.commitment import Commitment, CommitmentStatusEnum
from marketledger.repositories.base import BaseRepository
from marketledger.schemas.commitment import CommitmentSchema


class CommitmentRepository(BaseRepository[Commitment, CommitmentSchema]):
    def __init__(self, db: Session):
        super().__init__(Commitment, CommitmentSchema, db)

    def add(self, **kwargs) -> CommitmentSchema:
        instance = self.create(**kwargs)
        return self._to_schema(instance)  # type: ignore[return-value]

    def get_model(self, commitment_id: str) -> Optional[Commitment]:
        return self._get_model(commitment_id)

    def to_schema(self, commitment: Commitment) -> CommitmentSchema:
        return self._to_schema(commitment)  # type: ignore[return-value]

    def list_for_market(
        self, market_id: str, status: Optional[CommitmentStatusEnum] = None
    ) -> List[CommitmentSchema]:
        query = self.db.query(self.model_class).filter(
            self.model_class.market_id == market_id
        )
        if status is not None:
            query = query.filter(self.model_class.status == status)
        instances = query.order_by(self.model_class.committed_at, self.model_class.id).all()
        return self._to_schemas(instances)

    def page_for_market(
        self, market_id: str, limit: int = 50, offset: int = 0
    ) -> Tuple[List[CommitmentSchema], int]:
        query = self.db.query(self.model_class).filter(
            self.model_class.market_id == market_id
        )
        total_count = query.count()
        instances = (
            query.order_by(desc(self.model_class.committed_at), desc(self.model_class.id))
            .limit(limit)
            .offset(offset)
            .all()
        )
        return self._to_schemas(instances), total_count

    def list_for_user(
        self, user_id: str, status: Optional[CommitmentStatusEnum] = None
    ) -> List[CommitmentSchema]:
        query = self.db.query(self.model_class).filter(
            self.model_class.user_id == user_id
        )
        if status is not None:
            query = query.filter(self.model_class.status == status)
        instances = query.order_by(
            desc(self.model_class.committed_at), desc(self.model_class.id)
        ).all()
        return self._to_schemas(instances)

    def sum_active_tokens_for_user(self, user_id: str) -> int:
        result = (
            self.db.query(func.sum(self.model_class.tokens_committed))
            .filter(
                self.model_class.user_id == user_id,
                self.model_class.status == CommitmentStatusEnum.ACTIVE,
            )
            .scalar()
        )
        return int(result or 0)

    def user_has_commitment(
        self, user_id: str, market_id: str, option_id: Optional[str] = None
    ) -> bool:
        """취소된 커밋먼트는 참여로 보지 않는다 (참여자 카운터와 같은 기준)"""
        query = self.db.query(self.model_class.id).filter(
            self.model_class.user_id == user_id,
            self.model_class.market_id == market_id,
            self.model_class.status != CommitmentStatusEnum.CANCELLED,
        )
        if option_id is not None:
            query = query.filter(self.model_class.option_id == option_id)
        return query.first() is not None

    def mark_resolved(
        self,
        commitment_ids: Sequence[str],
        status: CommitmentStatusEnum,
        resolved_at: datetime,
    ) -> int:
        """
        active 커밋먼트만 상태 변경 (won/lost/cancelled)

        Returns:
            int: 실제로 변경된 행 수
        """
        if not commitment_ids:
            return 0
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id.in_(list(commitment_ids)),
                self.model_class.status == CommitmentStatusEnum.ACTIVE,
            )
            .values(status=status, resolved_at=resolved_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
