from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

from marketledger.models.commitment import CommitmentStatusEnum, PositionEnum


class ClientInfo(BaseModel):
    source: Optional[Literal["web", "mobile", "api"]] = "web"


class CommitmentRequest(BaseModel):
    """
    토큰 커밋 요청

    position(레거시 yes/no) 또는 option_id 중 하나 이상이 필요하다.
    금액 범위 검증은 설정값에 따라 서비스에서 수행한다.
    """

    user_id: str = Field(..., min_length=1, description="사용자 ID")
    market_id: str = Field(..., min_length=1, description="마켓 ID")
    tokens_to_commit: int = Field(..., description="커밋할 토큰 수")
    position: Optional[PositionEnum] = Field(None, description="레거시 binary 포지션")
    option_id: Optional[str] = Field(None, description="선택지 ID")
    client_info: Optional[ClientInfo] = None


class CommitmentSchema(BaseModel):
    """커밋먼트 (예측 스테이크)"""

    id: str
    user_id: str
    market_id: str
    position: Optional[PositionEnum] = None
    option_id: Optional[str] = None
    tokens_committed: int
    odds: float
    potential_winning: float
    status: CommitmentStatusEnum
    committed_at: datetime
    resolved_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
    )

    class Config:
        from_attributes = True


class CommitmentError(BaseModel):
    code: str
    message: str


class CommitmentResult(BaseModel):
    """커밋 결과 - UI/API 레이어로 반환되는 형태"""

    success: bool
    commitment_id: Optional[str] = None
    commitment: Optional[CommitmentSchema] = None
    error: Optional[CommitmentError] = None
