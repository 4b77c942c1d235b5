import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from marketledger.models.base import BaseModel


class ResolutionStatusEnum(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class DistributionStatusEnum(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class MarketResolution(BaseModel):
    """
    마켓 정산 결과 - 마켓당 1건

    생성 이후에는 지급 상태(status)만 변경된다.
    """

    __tablename__ = "market_resolutions"
    __table_args__ = (UniqueConstraint("market_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    market_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("markets.id"), nullable=False
    )
    winning_option_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resolved_by: Mapped[str] = mapped_column(String(128), nullable=False)
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    evidence: Mapped[List[Any]] = mapped_column(JSON, default=list, nullable=False)
    total_payout: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    winner_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    house_fee: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    creator_fee: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    creator_fee_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[ResolutionStatusEnum] = mapped_column(
        Enum(ResolutionStatusEnum, values_callable=lambda e: [m.value for m in e]),
        default=ResolutionStatusEnum.PENDING,
        nullable=False,
    )


class PayoutDistribution(BaseModel):
    """사용자 x 정산 단위의 지급 기록 - 한 사용자의 해당 마켓 커밋먼트 전체를 집계"""

    __tablename__ = "payout_distributions"
    __table_args__ = (UniqueConstraint("user_id", "resolution_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    market_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resolution_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("market_resolutions.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    total_payout: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_profit: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_lost: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    winning_commitments: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    losing_commitments: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    transaction_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[DistributionStatusEnum] = mapped_column(
        Enum(DistributionStatusEnum, values_callable=lambda e: [m.value for m in e]),
        default=DistributionStatusEnum.PENDING,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
