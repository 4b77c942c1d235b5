from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class UserBalanceSchema(BaseModel):
    """사용자 토큰 잔액"""

    user_id: str = Field(..., description="사용자 ID")
    available_tokens: int = Field(..., description="사용 가능한 토큰")
    committed_tokens: int = Field(..., description="커밋(스테이킹)된 토큰")
    total_earned: int = Field(..., description="누적 획득 토큰 (구매 + 지급)")
    total_spent: int = Field(..., description="누적 소진 토큰 (정산된 스테이크)")
    version: int = Field(..., description="낙관적 락 버전")
    last_updated: datetime = Field(..., description="마지막 변경 시각")

    class Config:
        from_attributes = True


class TokenPurchaseRequest(BaseModel):
    """토큰 발행(구매) 요청 - 지갑/결제 연동 레이어에서 호출"""

    user_id: str = Field(..., min_length=1, description="사용자 ID")
    amount: int = Field(..., gt=0, description="발행할 토큰 수")
    reference_id: Optional[str] = Field(None, max_length=64, description="외부 결제/발행 참조 ID")
    reason: Optional[str] = Field(None, max_length=255, description="발행 사유")


class BalanceInconsistency(BaseModel):
    """저장된 값과 재계산 값의 차이"""

    field: str
    stored_value: int
    calculated_value: int
    difference: int


class CalculatedBalance(BaseModel):
    available_tokens: int
    committed_tokens: int
    total_earned: int
    total_spent: int


class BalanceAuditResult(BaseModel):
    """잔액 감사 결과 (쓰기 없음)"""

    user_id: str
    current_balance: Optional[UserBalanceSchema] = None
    calculated_balance: CalculatedBalance
    inconsistencies: List[BalanceInconsistency] = Field(default_factory=list)
    transaction_count: int = 0
    active_commitment_count: int = 0
    conserved: bool = Field(..., description="available + committed == earned - spent 여부")


class ReconciliationReport(BaseModel):
    """여러 사용자 일괄 재계산 결과"""

    total_users_checked: int = 0
    users_with_inconsistencies: int = 0
    users_fixed: int = 0
    inconsistencies: List[BalanceInconsistency] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    execution_time_ms: int = 0


class ReconcileUsersRequest(BaseModel):
    """user_ids 가 비어 있으면 잔액 행이 있는 모든 사용자를 대상으로 한다"""

    user_ids: List[str] = Field(default_factory=list)


class BalanceHealthReport(BaseModel):
    """전체 잔액 현황 (쓰기 없음)"""

    total_users: int
    users_with_balances: int
    total_tokens_in_circulation: int
    total_tokens_committed: int
    average_balance_per_user: float
    sampled_users: int
    inconsistency_rate: float
    non_conserved_users: List[str] = Field(default_factory=list)
    generated_at: datetime
