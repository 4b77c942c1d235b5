import enum
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Enum, Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from marketledger.models.base import BaseModel


class PositionEnum(enum.Enum):
    YES = "yes"
    NO = "no"


class CommitmentStatusEnum(enum.Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"
    CANCELLED = "cancelled"


class Commitment(BaseModel):
    __tablename__ = "prediction_commitments"
    __table_args__ = (
        Index("ix_prediction_commitments_market_id", "market_id"),
        Index("ix_prediction_commitments_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    market_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("markets.id"), nullable=False
    )

    # 하위 호환: 과거 binary 레코드는 position 만, 초기 multi-option 레코드는
    # option_id 만 가지고 있을 수 있다. 새 레코드는 항상 둘 다 기록한다.
    position: Mapped[Optional[PositionEnum]] = mapped_column(
        Enum(PositionEnum, values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )
    option_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    tokens_committed: Mapped[int] = mapped_column(BigInteger, nullable=False)
    odds: Mapped[float] = mapped_column(Float, nullable=False)
    potential_winning: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[CommitmentStatusEnum] = mapped_column(
        Enum(CommitmentStatusEnum, values_callable=lambda e: [m.value for m in e]),
        default=CommitmentStatusEnum.ACTIVE,
        nullable=False,
    )
    committed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # 커밋 시점의 마켓 배당/선택지 스냅샷 (감사 및 대시보드 표시용)
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
