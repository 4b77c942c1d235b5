from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from marketledger.models.commitment import PositionEnum
from marketledger.models.resolution import DistributionStatusEnum, ResolutionStatusEnum

IdentificationMethod = Literal["position-based", "optionId-based", "hybrid"]
CommitmentType = Literal["binary", "multi-option", "hybrid"]


class CommitmentAuditTrail(BaseModel):
    """커밋먼트별 승/패 판정 근거 (스키마 변천 추적용)"""

    commitment_type: CommitmentType
    original_position: Optional[PositionEnum] = None
    original_option_id: Optional[str] = None
    derived_position: Optional[PositionEnum] = None
    derived_option_id: Optional[str] = None
    winner_identification_method: IdentificationMethod
    calculated_at: datetime


class CommitmentPayout(BaseModel):
    """커밋먼트 1건의 지급 계획"""

    commitment_id: str
    user_id: str
    tokens_committed: int
    odds: float
    is_winner: bool
    payout_amount: int = 0
    profit: int = 0
    win_share: float = 0.0
    option_id: str
    position: PositionEnum
    audit_trail: CommitmentAuditTrail


class UserPayoutSummary(BaseModel):
    """사용자별 집계 지급액"""

    user_id: str
    tokens_staked: int
    payout_amount: int
    profit: int
    win_share: float


class FeeBreakdown(BaseModel):
    house_fee_percentage: float
    creator_fee_percentage: float
    total_fee_percentage: float
    remaining_for_winners: float


class VerificationChecks(BaseModel):
    all_commitments_processed: bool
    payout_sum_within_pool: bool
    no_double_payouts: bool
    audit_trail_complete: bool

    @property
    def passed(self) -> bool:
        return (
            self.all_commitments_processed
            and self.payout_sum_within_pool
            and self.no_double_payouts
            and self.audit_trail_complete
        )


class IdentificationSummary(BaseModel):
    position_based: int = 0
    option_id_based: int = 0
    hybrid: int = 0


class CalculationAuditTrail(BaseModel):
    calculated_at: datetime
    total_commitments_processed: int
    binary_commitments: int
    multi_option_commitments: int
    hybrid_commitments: int
    winner_identification_summary: IdentificationSummary
    verification_checks: VerificationChecks


class PayoutCalculation(BaseModel):
    """정산 지급 계획 - 계산기는 이 결과만 만들고 어떤 쓰기도 하지 않는다"""

    market_id: str
    market_type: str
    total_options: int
    winning_option_id: str
    total_pool: int
    house_fee: int
    creator_fee: int
    total_fees: int
    winner_pool: int
    winner_count: int
    loser_count: int
    total_payout: int
    unallocated: int = Field(..., description="반올림 잔여분 또는 승자가 없을 때 배분되지 않은 풀")
    commitment_payouts: List[CommitmentPayout] = Field(default_factory=list)
    payouts: List[UserPayoutSummary] = Field(default_factory=list)
    fee_breakdown: FeeBreakdown
    audit_trail: CalculationAuditTrail

    @property
    def winners(self) -> List[CommitmentPayout]:
        return [p for p in self.commitment_payouts if p.is_winner]

    @property
    def losers(self) -> List[CommitmentPayout]:
        return [p for p in self.commitment_payouts if not p.is_winner]


class PayoutDistributionSchema(BaseModel):
    id: str
    market_id: str
    resolution_id: str
    user_id: str
    total_payout: int
    total_profit: int
    total_lost: int
    winning_commitments: List[Dict[str, Any]] = Field(default_factory=list)
    losing_commitments: List[Dict[str, Any]] = Field(default_factory=list)
    transaction_ids: List[str] = Field(default_factory=list)
    status: DistributionStatusEnum
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DistributionError(BaseModel):
    user_id: str
    code: str
    message: str


class DistributionResult(BaseModel):
    success: bool
    market_id: str
    resolution_id: str
    total_distributed: int = 0
    recipient_count: int = 0
    completed_count: int = 0
    skipped_count: int = Field(0, description="이미 completed 상태라 건너뛴 사용자 수")
    transaction_ids: List[str] = Field(default_factory=list)
    distributions: List[PayoutDistributionSchema] = Field(default_factory=list)
    errors: List[DistributionError] = Field(default_factory=list)


class MarketResolutionSchema(BaseModel):
    id: str
    market_id: str
    winning_option_id: str
    resolved_by: str
    resolved_at: datetime
    evidence: List[Any] = Field(default_factory=list)
    total_payout: int
    winner_count: int
    house_fee: int
    creator_fee: int
    creator_fee_percentage: float
    status: ResolutionStatusEnum

    class Config:
        from_attributes = True


class ResolveMarketRequest(BaseModel):
    """마켓 정산 요청 (관리자 워크플로우)"""

    winning_option_id: str = Field(..., min_length=1)
    evidence: List[str] = Field(default_factory=list)
    resolved_by: str = Field(..., min_length=1)
    creator_fee_percentage: float = Field(..., ge=0, le=1)
    refund_on_no_winners: bool = False


class CancelMarketRequest(BaseModel):
    cancelled_by: str = Field(..., min_length=1)
    reason: Optional[str] = None


class PayoutSummary(BaseModel):
    total_pool: int
    house_fee: int
    creator_fee: int
    winner_pool: int
    winner_count: int
    loser_count: int
    total_distributed: int
    unallocated: int
    recipient_count: int
    failed_count: int


class ResolutionResult(BaseModel):
    success: bool
    resolution_id: Optional[str] = None
    payout_summary: Optional[PayoutSummary] = None
    distribution: Optional[DistributionResult] = None
    error: Optional[Dict[str, Any]] = None


class RefundResult(BaseModel):
    success: bool
    market_id: str
    refunded_users: int = 0
    refunded_tokens: int = 0
    skipped_users: int = 0
    errors: List[DistributionError] = Field(default_factory=list)
