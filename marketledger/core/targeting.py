"""
커밋먼트 대상 선택지 해석 (position / option_id 이중 주소 체계)

플랫폼이 binary(yes/no) 마켓에서 N-option 마켓으로 확장되면서 커밋먼트는 두 가지
주소 필드를 갖게 되었다.

- position: 레거시 yes/no. 2-option 마켓에서만 의미가 있다.
- option_id: 정식 주소. 항상 마켓의 선택지 하나로 해석되어야 한다.

저장된 레코드는 생성 시점에 따라 둘 중 하나만 가지고 있을 수 있으므로, 어떤 필드가
있든 동일한 규칙으로 선택지를 결정하는 곳은 이 모듈 하나뿐이다. 커밋 생성(쓰기 시점)과
정산 계산/집계(읽기 시점) 모두 CommitmentTarget 을 통해서만 해석한다.

규칙:
1. 선택지가 정확히 2개인 마켓: position 이 우선. yes -> 첫 번째, no -> 두 번째 선택지.
   option_id 가 함께 주어졌는데 다르면 position 으로 덮어쓰고 경고를 남긴다.
   position 이 없으면 option_id 로 선택지를 찾고 position 을 역산한다.
2. 선택지가 3개 이상인 마켓: option_id 가 우선. position 만 있으면 yes/no 를
   첫 번째/두 번째 선택지로 매핑한다 (레거시 fallback).
3. 최종 선택지가 첫 번째 선택지일 때만 position 은 yes, 그 외에는 no.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from marketledger.core.exceptions import AmbiguousTargetError, OptionNotFoundError
from marketledger.models.commitment import PositionEnum
from marketledger.schemas.market import MarketSchema

logger = logging.getLogger(__name__)

POSITION_BASED = "position-based"
OPTION_ID_BASED = "optionId-based"
HYBRID = "hybrid"


@dataclass(frozen=True)
class ResolvedTarget:
    option_id: str
    position: PositionEnum
    method: str
    override_warning: Optional[str] = None


@dataclass(frozen=True)
class CommitmentTarget:
    position: Optional[PositionEnum] = None
    option_id: Optional[str] = None

    @classmethod
    def from_fields(
        cls,
        position: Union[PositionEnum, str, None],
        option_id: Optional[str],
    ) -> "CommitmentTarget":
        if isinstance(position, str):
            try:
                position = PositionEnum(position.lower())
            except ValueError:
                raise AmbiguousTargetError(
                    message=f"Invalid position: {position}",
                    details={"position": position},
                )
        option_id = option_id or None
        if position is None and option_id is None:
            raise AmbiguousTargetError()
        return cls(position=position, option_id=option_id)

    @classmethod
    def of(cls, commitment) -> "CommitmentTarget":
        """저장된 커밋먼트(모델 또는 스키마)에서 주소 필드를 읽어온다"""
        return cls.from_fields(
            getattr(commitment, "position", None),
            getattr(commitment, "option_id", None),
        )

    @property
    def kind(self) -> str:
        if self.position is not None and self.option_id is not None:
            return "both"
        if self.position is not None:
            return "position"
        return "option"

    @property
    def commitment_type(self) -> str:
        """감사 로그용 레코드 형식 (binary / multi-option / hybrid)"""
        return {"both": "hybrid", "position": "binary", "option": "multi-option"}[self.kind]

    def resolve(self, market: MarketSchema, strict: bool = True) -> ResolvedTarget:
        """
        마켓 기준으로 최종 선택지와 position 을 결정

        Args:
            market: 선택지 목록을 가진 마켓
            strict: True 면 알 수 없는 option_id 에 OptionNotFoundError 를 발생시킨다.
                정산 계산처럼 이미 저장된 레코드를 읽을 때는 False 로 두어
                해당 커밋먼트를 어떤 선택지와도 일치하지 않는 것으로 취급한다.
        """
        options = market.options
        if len(options) < 2:
            raise AmbiguousTargetError(
                message=f"Market {market.id} does not define at least two options",
                details={"market_id": market.id},
            )

        if len(options) == 2:
            return self._resolve_binary(market, strict)
        return self._resolve_multi(market, strict)

    def resolve_option_id(self, market: MarketSchema, strict: bool = True) -> str:
        return self.resolve(market, strict).option_id

    def resolve_position(self, market: MarketSchema, strict: bool = True) -> PositionEnum:
        return self.resolve(market, strict).position

    def _position_to_option_id(self, market: MarketSchema) -> str:
        index = 0 if self.position == PositionEnum.YES else 1
        return market.options[index].id

    def _option_to_position(self, market: MarketSchema, option_id: str) -> PositionEnum:
        return PositionEnum.YES if market.option_index(option_id) == 0 else PositionEnum.NO

    def _require_option(self, market: MarketSchema, strict: bool) -> bool:
        if market.find_option(self.option_id) is not None:
            return True
        if strict:
            raise OptionNotFoundError(market.id, str(self.option_id))
        logger.warning(
            f"Stored option id {self.option_id} is not part of market {market.id}"
        )
        return False

    def _resolve_binary(self, market: MarketSchema, strict: bool) -> ResolvedTarget:
        if self.position is None:
            self._require_option(market, strict)
            return ResolvedTarget(
                option_id=self.option_id,  # type: ignore[arg-type]
                position=self._option_to_position(market, self.option_id),  # type: ignore[arg-type]
                method=OPTION_ID_BASED,
            )

        derived_option_id = self._position_to_option_id(market)
        if self.option_id is None:
            return ResolvedTarget(
                option_id=derived_option_id,
                position=self.position,
                method=POSITION_BASED,
            )
        if self.option_id == derived_option_id:
            return ResolvedTarget(
                option_id=derived_option_id,
                position=self.position,
                method=HYBRID,
            )

        warning = (
            f"optionId {self.option_id} doesn't match position {self.position.value}, "
            f"using position ({derived_option_id})"
        )
        return ResolvedTarget(
            option_id=derived_option_id,
            position=self.position,
            method=POSITION_BASED,
            override_warning=warning,
        )

    def _resolve_multi(self, market: MarketSchema, strict: bool) -> ResolvedTarget:
        if self.option_id is None:
            # 레거시 fallback: yes/no -> 첫 번째/두 번째 선택지
            option_id = self._position_to_option_id(market)
            return ResolvedTarget(
                option_id=option_id,
                position=self._option_to_position(market, option_id),
                method=POSITION_BASED,
            )

        self._require_option(market, strict)
        position = self._option_to_position(market, self.option_id)
        if self.position is None:
            return ResolvedTarget(
                option_id=self.option_id,
                position=position,
                method=OPTION_ID_BASED,
            )
        if self.position == position:
            return ResolvedTarget(
                option_id=self.option_id,
                position=position,
                method=HYBRID,
            )

        warning = (
            f"position {self.position.value} doesn't match optionId {self.option_id}, "
            f"using optionId"
        )
        return ResolvedTarget(
            option_id=self.option_id,
            position=position,
            method=OPTION_ID_BASED,
            override_warning=warning,
        )
