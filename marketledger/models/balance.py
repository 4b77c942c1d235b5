"""
토큰 잔액 모델

사용자별 토큰 계정. 잔액 행은 Balance Ledger 만 수정하며,
version 컬럼으로 낙관적 락을 건다 (UPDATE ... WHERE version = :seen).
"""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from marketledger.models.base import BaseModel


class UserBalance(BaseModel):
    __tablename__ = "user_balances"
    __table_args__ = (
        CheckConstraint("available_tokens >= 0", name="ck_balance_available_non_negative"),
        CheckConstraint("committed_tokens >= 0", name="ck_balance_committed_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    available_tokens: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    committed_tokens: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_earned: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # SQLAlchemy 가 UPDATE 마다 version 을 1 증가시키고, 다른 writer 가 먼저
    # 커밋했다면 StaleDataError 를 발생시킨다.
    __mapper_args__ = {"version_id_col": version}
