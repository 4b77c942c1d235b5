"""
토큰 거래 로그 모델

잔액 변경 1건당 정확히 1건이 같은 트랜잭션 안에서 기록되는 append-only 테이블.
한번 생성된 레코드는 수정/삭제되지 않으며, 정합성 재계산(reconciliation)의 원천 데이터다.
"""

import enum
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from marketledger.models.base import BaseModel


class TransactionTypeEnum(enum.Enum):
    PURCHASE = "purchase"
    COMMIT = "commit"
    WIN = "win"
    LOSS = "loss"
    REFUND = "refund"


class TransactionStatusEnum(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TokenTransaction(BaseModel):
    __tablename__ = "token_transactions"
    __table_args__ = (
        Index("ix_token_transactions_user_timestamp", "user_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[TransactionTypeEnum] = mapped_column(
        Enum(TransactionTypeEnum, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # win 거래에서 committed 상태에서 해제된 스테이크 (그 외 타입은 0)
    released_amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    # 거래 전/후의 available 잔액
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # 마켓 ID 또는 정산(resolution) ID
    related_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[TransactionStatusEnum] = mapped_column(
        Enum(TransactionStatusEnum, values_callable=lambda e: [m.value for m in e]),
        default=TransactionStatusEnum.COMPLETED,
        nullable=False,
    )
