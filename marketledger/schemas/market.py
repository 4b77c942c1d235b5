from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from marketledger.models.market import MarketStatusEnum


class MarketOptionSchema(BaseModel):
    """마켓 선택지"""

    id: str = Field(..., description="선택지 ID")
    text: str = Field(..., description="선택지 텍스트")
    total_tokens: int = Field(0, description="선택지에 스테이킹된 토큰 합계")
    participant_count: int = Field(0, description="선택지 참여자 수")

    class Config:
        from_attributes = True


class MarketSchema(BaseModel):
    """마켓 정보"""

    id: str
    title: str
    status: MarketStatusEnum
    options: List[MarketOptionSchema] = Field(default_factory=list)
    total_participants: int = 0
    total_tokens_staked: int = 0
    ends_at: datetime
    created_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_binary(self) -> bool:
        # 마켓 타입은 저장하지 않고 선택지 개수로 판단한다
        return len(self.options) <= 2

    @property
    def market_type(self) -> str:
        return "binary" if self.is_binary else "multi-option"

    def find_option(self, option_id: Optional[str]) -> Optional[MarketOptionSchema]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def option_index(self, option_id: Optional[str]) -> int:
        for index, option in enumerate(self.options):
            if option.id == option_id:
                return index
        return -1


class MarketOptionCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    text: str = Field(..., min_length=1)


class MarketCreateRequest(BaseModel):
    """마켓 생성 요청"""

    title: str = Field(..., min_length=1)
    options: List[MarketOptionCreate] = Field(..., min_length=2)
    ends_at: datetime
    created_by: Optional[str] = None
    market_id: Optional[str] = Field(None, max_length=64, description="지정하지 않으면 자동 생성")

    @field_validator("options")
    @classmethod
    def unique_option_ids(cls, options: List[MarketOptionCreate]) -> List[MarketOptionCreate]:
        ids = [option.id for option in options]
        if len(ids) != len(set(ids)):
            raise ValueError("option ids must be unique")
        return options


class MarketAnalytics(BaseModel):
    """
    마켓 집계 정보

    yes/no 비율은 레거시 binary 대시보드 호환용이다. N-option 마켓에서도
    기준 선택지(정산된 마켓은 승리 선택지, 그 외에는 첫 번째 선택지)와 나머지로 나눠 계산한다.
    """

    market_id: str
    market_type: str
    total_tokens: int
    participant_count: int
    commitment_count: int
    focus_option_id: Optional[str] = None
    yes_tokens: int
    no_tokens: int
    yes_percentage: float
    no_percentage: float
    average_commitment: float
    largest_commitment: int
    smallest_commitment: int
    option_breakdown: List[MarketOptionSchema] = Field(default_factory=list)
