from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from marketledger.schemas.balance import UserBalanceSchema
from marketledger.schemas.commitment import CommitmentSchema

RollbackType = Literal["commitment_failed", "market_cancelled", "manual_refund"]


class CommitmentRollbackRequest(BaseModel):
    """개별 커밋 취소 요청"""

    reason: str = Field(..., min_length=1, max_length=255, description="취소 사유")
    rollback_type: RollbackType = Field("manual_refund", description="취소 유형")


class RollbackEligibility(BaseModel):
    commitment_id: str
    can_rollback: bool
    reason: Optional[str] = Field(None, description="취소할 수 없는 이유")
    expires_at: Optional[datetime] = Field(None, description="취소 가능 기한")


class RollbackResult(BaseModel):
    """개별 커밋 취소 결과"""

    commitment: CommitmentSchema
    refunded_tokens: int
    rollback_type: RollbackType
    transaction_id: str
    balance: UserBalanceSchema
