"""
커밋먼트 엔진

사용자가 마켓 선택지에 토큰을 스테이킹한다. 마켓 검증, 대상 선택지 해석,
배당 계산, 원장 commit, 커밋먼트 저장, 마켓 집계 갱신이 하나의 원자 단위로 실행된다.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from marketledger.config import Settings
from marketledger.core.exceptions import (
    BaseAPIException,
    InvalidAmountError,
    InvariantViolationError,
    MarketEndedError,
    MarketNotActiveError,
    MarketNotFoundError,
)
from marketledger.core.targeting import CommitmentTarget, ResolvedTarget
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.commitment import CommitmentStatusEnum, PositionEnum
from marketledger.models.market import MarketStatusEnum
from marketledger.models.transaction import TransactionTypeEnum
from marketledger.repositories.commitment_repository import CommitmentRepository
from marketledger.repositories.market_repository import MarketRepository
from marketledger.schemas.commitment import (
    CommitmentError,
    CommitmentRequest,
    CommitmentResult,
    CommitmentSchema,
)
from marketledger.schemas.market import MarketSchema
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.utils.ids import new_id
from marketledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class CommitmentEngine:
    """토큰 커밋 처리"""

    def __init__(self, uow: UnitOfWork, ledger: BalanceLedger, settings: Settings):
        self.uow = uow
        self.ledger = ledger
        self.settings = settings

    def submit(self, request: CommitmentRequest) -> CommitmentResult:
        """
        커밋 요청을 처리하고 결과 객체로 반환 (API 레이어용)

        도메인 오류는 {code, message} 로 변환한다. 원장 불변식 위반은
        결과로 감추지 않고 그대로 전파한다.
        """
        try:
            commitment = self.create_commitment(request)
        except InvariantViolationError:
            raise
        except BaseAPIException as e:
            logger.warning(
                f"Commitment rejected for user {request.user_id} on market {request.market_id}: "
                f"{e.error_code} {e.message}"
            )
            return CommitmentResult(
                success=False,
                error=CommitmentError(code=e.error_code, message=e.message),
            )

        return CommitmentResult(
            success=True,
            commitment_id=commitment.id,
            commitment=commitment,
        )

    def create_commitment(self, request: CommitmentRequest) -> CommitmentSchema:
        """
        토큰 커밋 생성

        Raises:
            MarketNotFoundError, MarketNotActiveError, MarketEndedError,
            AmbiguousTargetError, OptionNotFoundError, InvalidAmountError,
            InsufficientBalanceError, ConcurrencyExhaustedError
        """
        commitment = self.uow.within_transaction(
            lambda session: self._create(session, request),
            label=f"commit:{request.user_id}:{request.market_id}",
        )
        logger.info(
            f"User {request.user_id} committed {commitment.tokens_committed} tokens "
            f"to {commitment.option_id} on market {commitment.market_id} (odds {commitment.odds:.2f})"
        )
        return commitment

    def calculate_odds(self, target_tokens: int, total_tokens: int) -> float:
        """
        선택지 배당 계산

        아직 스테이킹이 없는 마켓은 기본 배당, 그 외에는 점유율의 역수를
        [MIN_ODDS, MAX_ODDS] 로 제한한다.
        """
        if total_tokens <= 0:
            return self.settings.DEFAULT_ODDS
        share = max(target_tokens / total_tokens, self.settings.ODDS_EPSILON)
        return max(self.settings.MIN_ODDS, min(1 / share, self.settings.MAX_ODDS))

    def _create(self, session: Session, request: CommitmentRequest) -> CommitmentSchema:
        market_repo = MarketRepository(session)
        market_model = market_repo.get_model(request.market_id)
        if market_model is None:
            raise MarketNotFoundError(request.market_id)
        market = market_repo.to_schema(market_model)
        self._validate_market(market)

        target = CommitmentTarget.from_fields(request.position, request.option_id).resolve(market)
        if target.override_warning:
            logger.warning(f"Commitment addressing override on market {market.id}: {target.override_warning}")

        option = market.find_option(target.option_id)
        odds = self.calculate_odds(option.total_tokens, market.total_tokens_staked)  # type: ignore[union-attr]
        self._validate_amount(request.tokens_to_commit)

        commitment_id = new_id()
        _, transaction = self.ledger.mutate(
            session,
            user_id=request.user_id,
            amount=request.tokens_to_commit,
            type=TransactionTypeEnum.COMMIT,
            related_id=market.id,
            metadata={
                "commitment_id": commitment_id,
                "option_id": target.option_id,
                "position": target.position.value,
                "odds": odds,
            },
        )

        commitment_repo = CommitmentRepository(session)
        new_option_participant = not commitment_repo.user_has_commitment(
            request.user_id, market.id, target.option_id
        )
        new_market_participant = not commitment_repo.user_has_commitment(
            request.user_id, market.id
        )

        commitment = commitment_repo.add(
            id=commitment_id,
            user_id=request.user_id,
            market_id=market.id,
            position=target.position,
            option_id=target.option_id,
            tokens_committed=request.tokens_to_commit,
            odds=odds,
            potential_winning=request.tokens_to_commit * odds,
            status=CommitmentStatusEnum.ACTIVE,
            committed_at=utc_now(),
            meta=self._build_snapshot(
                market,
                target,
                request,
                balance_at_commitment=transaction.balance_before,
            ),
        )

        still_active = market_repo.increment_counters(
            market.id,
            target.option_id,
            request.tokens_to_commit,
            new_option_participant=new_option_participant,
            new_market_participant=new_market_participant,
        )
        if not still_active:
            # 검증 이후 다른 트랜잭션이 마켓을 정산/취소했다
            raise MarketNotActiveError(market.id, "closed")
        return commitment

    def _validate_market(self, market: MarketSchema) -> None:
        if market.status != MarketStatusEnum.ACTIVE:
            raise MarketNotActiveError(market.id, market.status.value)
        ends_at = ensure_utc(market.ends_at)
        if utc_now() >= ends_at:
            raise MarketEndedError(market.id, ends_at.isoformat())

    def _validate_amount(self, tokens: int) -> None:
        if tokens < self.settings.MIN_COMMITMENT_TOKENS:
            raise InvalidAmountError(
                message=f"Minimum commitment is {self.settings.MIN_COMMITMENT_TOKENS} tokens",
                details={"tokens": tokens, "min": self.settings.MIN_COMMITMENT_TOKENS},
            )
        if tokens > self.settings.MAX_COMMITMENT_TOKENS:
            raise InvalidAmountError(
                message=f"Maximum commitment is {self.settings.MAX_COMMITMENT_TOKENS} tokens",
                details={"tokens": tokens, "max": self.settings.MAX_COMMITMENT_TOKENS},
            )

    def _build_snapshot(
        self,
        market: MarketSchema,
        target: ResolvedTarget,
        request: CommitmentRequest,
        balance_at_commitment: int,
    ) -> Dict[str, Any]:
        """커밋 시점의 마켓 상태 스냅샷 (커밋 반영 전 값)"""
        total = market.total_tokens_staked
        option_odds = {
            option.id: self.calculate_odds(option.total_tokens, total)
            for option in market.options
        }
        first, second = market.options[0], market.options[1]
        selected = market.find_option(target.option_id)
        source: Optional[str] = None
        if request.client_info is not None:
            source = request.client_info.source
        requested_position: Optional[PositionEnum] = request.position

        return {
            "market_status": market.status.value,
            "market_title": market.title,
            "market_ends_at": ensure_utc(market.ends_at).isoformat(),
            "market_type": market.market_type,
            "market_option_count": len(market.options),
            "selected_option_text": selected.text if selected else None,
            "odds_snapshot": {
                "yes_odds": option_odds[first.id],
                "no_odds": option_odds[second.id],
                "total_yes_tokens": first.total_tokens,
                "total_no_tokens": second.total_tokens,
                "total_participants": market.total_participants,
                "total_tokens": total,
                "option_odds": option_odds,
                "option_tokens": {option.id: option.total_tokens for option in market.options},
                "option_participants": {
                    option.id: option.participant_count for option in market.options
                },
            },
            "user_balance_at_commitment": balance_at_commitment,
            "commitment_source": source or "web",
            "addressing": {
                "method": target.method,
                "requested_position": requested_position.value if requested_position else None,
                "requested_option_id": request.option_id,
                "override_warning": target.override_warning,
            },
        }
