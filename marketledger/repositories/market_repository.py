from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketledger.models.market import Market, MarketOption, MarketStatusEnum
from marketledger.repositories.base import BaseRepository
from marketledger.schemas.market import MarketSchema


class MarketRepository(BaseRepository[Market, MarketSchema]):
    def __init__(self, db: Session):
        super().__init__(Market, MarketSchema, db)

    def get_model(self, market_id: str, for_update: bool = False) -> Optional[Market]:
        """
        마켓 조회

        for_update=True 는 정산/취소에서 사용한다. 행 잠금을 잡고 있는 동안
        커밋 생성의 카운터 UPDATE 가 대기하므로, 정산 이후에 커밋이 끼어들 수 없다.
        """
        if not for_update:
            return self._get_model(market_id)
        return (
            self.db.query(Market)
            .filter(Market.id == market_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def to_schema(self, market: Market) -> MarketSchema:
        return self._to_schema(market)  # type: ignore[return-value]

    def increment_counters(
        self,
        market_id: str,
        option_id: str,
        tokens: int,
        new_option_participant: bool,
        new_market_participant: bool,
    ) -> bool:
        """
        선택지/마켓 집계 카운터 증가

        동시 커밋에서 갱신 유실이 없도록 파이썬에서 읽은 값이 아니라
        SQL 표현식(col = col + n)으로 증가시킨다.
        마켓 UPDATE 는 active 상태일 때만 적용되며, 그 사이 정산/취소된
        마켓이면 False 를 반환한다.
        """
        self.db.execute(
            update(MarketOption)
            .where(MarketOption.market_id == market_id, MarketOption.id == option_id)
            .values(
                total_tokens=MarketOption.total_tokens + tokens,
                participant_count=MarketOption.participant_count
                + (1 if new_option_participant else 0),
            )
        )
        result = self.db.execute(
            update(Market)
            .where(Market.id == market_id, Market.status == MarketStatusEnum.ACTIVE)
            .values(
                total_tokens_staked=Market.total_tokens_staked + tokens,
                total_participants=Market.total_participants
                + (1 if new_market_participant else 0),
            )
        )
        return (result.rowcount or 0) == 1

    def decrement_counters(
        self,
        market_id: str,
        option_id: str,
        tokens: int,
        option_participant_left: bool,
        market_participant_left: bool,
    ) -> bool:
        """increment_counters 의 역연산 (개별 커밋 취소). active 마켓에만 적용"""
        self.db.execute(
            update(MarketOption)
            .where(MarketOption.market_id == market_id, MarketOption.id == option_id)
            .values(
                total_tokens=MarketOption.total_tokens - tokens,
                participant_count=MarketOption.participant_count
                - (1 if option_participant_left else 0),
            )
        )
        result = self.db.execute(
            update(Market)
            .where(Market.id == market_id, Market.status == MarketStatusEnum.ACTIVE)
            .values(
                total_tokens_staked=Market.total_tokens_staked - tokens,
                total_participants=Market.total_participants
                - (1 if market_participant_left else 0),
            )
        )
        return (result.rowcount or 0) == 1

    def set_status(self, market: Market, status: MarketStatusEnum, **fields) -> None:
        market.status = status
        for key, value in fields.items():
            setattr(market, key, value)
        self.db.flush()
