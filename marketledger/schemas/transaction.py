from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field

from marketledger.models.transaction import TransactionStatusEnum, TransactionTypeEnum


class TokenTransactionSchema(BaseModel):
    """토큰 거래 로그 항목"""

    id: str = Field(..., description="거래 ID")
    user_id: str = Field(..., description="사용자 ID")
    type: TransactionTypeEnum = Field(..., description="거래 타입")
    amount: int = Field(..., description="거래 금액")
    released_amount: int = Field(0, description="win 거래에서 해제된 스테이크")
    balance_before: int = Field(..., description="거래 전 available 잔액")
    balance_after: int = Field(..., description="거래 후 available 잔액")
    related_id: Optional[str] = Field(None, description="마켓 또는 정산 ID")
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
        description="부가 정보",
    )
    timestamp: datetime = Field(..., description="거래 시각")
    status: TransactionStatusEnum = Field(..., description="거래 상태")

    class Config:
        from_attributes = True
