from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from marketledger.models.resolution import (
    DistributionStatusEnum,
    MarketResolution,
    PayoutDistribution,
)
from marketledger.repositories.base import BaseRepository
from marketledger.utils.ids import new_id
from marketledger.schemas.resolution import (
    MarketResolutionSchema,
    PayoutDistributionSchema,
)


class ResolutionRepository(BaseRepository[MarketResolution, MarketResolutionSchema]):
    def __init__(self, db: Session):
        super().__init__(MarketResolution, MarketResolutionSchema, db)

    def get_model(self, resolution_id: str) -> Optional[MarketResolution]:
        return self._get_model(resolution_id)

    def get_for_market(self, market_id: str) -> Optional[MarketResolutionSchema]:
        instance = (
            self.db.query(self.model_class)
            .filter(self.model_class.market_id == market_id)
            .first()
        )
        return self._to_schema(instance)

    def add(self, **kwargs) -> MarketResolutionSchema:
        instance = self.create(**kwargs)
        return self._to_schema(instance)  # type: ignore[return-value]


class DistributionRepository(BaseRepository[PayoutDistribution, PayoutDistributionSchema]):
    """사용자 x 정산 지급 기록 - (user_id, resolution_id) 가 유일"""

    def __init__(self, db: Session):
        super().__init__(PayoutDistribution, PayoutDistributionSchema, db)

    def get_model_for_user(
        self, user_id: str, resolution_id: str
    ) -> Optional[PayoutDistribution]:
        return (
            self.db.query(self.model_class)
            .filter(
                self.model_class.user_id == user_id,
                self.model_class.resolution_id == resolution_id,
            )
            .first()
        )

    def is_completed(self, user_id: str, resolution_id: str) -> bool:
        instance = self.get_model_for_user(user_id, resolution_id)
        return (
            instance is not None
            and instance.status == DistributionStatusEnum.COMPLETED
        )

    def upsert(self, user_id: str, resolution_id: str, **fields) -> PayoutDistributionSchema:
        instance = self.get_model_for_user(user_id, resolution_id)
        if instance is None:
            instance = self.create(
                id=new_id(), user_id=user_id, resolution_id=resolution_id, **fields
            )
        else:
            for key, value in fields.items():
                setattr(instance, key, value)
            self.db.flush()
        return self._to_schema(instance)  # type: ignore[return-value]

    def list_for_resolution(self, resolution_id: str) -> List[PayoutDistributionSchema]:
        instances = (
            self.db.query(self.model_class)
            .filter(self.model_class.resolution_id == resolution_id)
            .order_by(self.model_class.user_id)
            .all()
        )
        return self._to_schemas(instances)

    def list_for_market(self, market_id: str) -> List[PayoutDistributionSchema]:
        instances = (
            self.db.query(self.model_class)
            .filter(self.model_class.market_id == market_id)
            .order_by(self.model_class.user_id)
            .all()
        )
        return self._to_schemas(instances)

    def list_for_user(self, user_id: str) -> List[PayoutDistributionSchema]:
        """사용자 지급 기록 (최근 처리순)"""
        instances = (
            self.db.query(self.model_class)
            .filter(self.model_class.user_id == user_id)
            .order_by(desc(self.model_class.processed_at), self.model_class.id)
            .all()
        )
        return self._to_schemas(instances)
