import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketledger.models.base import BaseModel


class MarketStatusEnum(enum.Enum):
    ACTIVE = "active"
    PENDING_RESOLUTION = "pending_resolution"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class Market(BaseModel):
    __tablename__ = "markets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[MarketStatusEnum] = mapped_column(
        Enum(MarketStatusEnum, values_callable=lambda e: [m.value for m in e]),
        default=MarketStatusEnum.ACTIVE,
        nullable=False,
    )
    total_participants: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens_staked: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    options: Mapped[List["MarketOption"]] = relationship(
        back_populates="market",
        order_by="MarketOption.sort_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class MarketOption(BaseModel):
    """마켓 선택지 - 2개면 binary, 그 이상이면 multi-option 마켓"""

    __tablename__ = "market_options"

    market_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("markets.id"), primary_key=True
    )
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)
    total_tokens: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    participant_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    market: Mapped[Market] = relationship(back_populates="options")
