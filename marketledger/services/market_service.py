import logging
from typing import List

from sqlalchemy.orm import Session

from marketledger.config import Settings
from marketledger.core.exceptions import MarketNotFoundError, ValidationError
from marketledger.core.targeting import CommitmentTarget
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.commitment import CommitmentStatusEnum
from marketledger.models.market import Market, MarketOption, MarketStatusEnum
from marketledger.repositories.commitment_repository import CommitmentRepository
from marketledger.repositories.market_repository import MarketRepository
from marketledger.repositories.resolution_repository import ResolutionRepository
from marketledger.schemas.commitment import CommitmentSchema
from marketledger.schemas.market import MarketAnalytics, MarketCreateRequest, MarketSchema
from marketledger.schemas.pagination import DirectPaginatedResponse, PaginationLimits
from marketledger.utils.ids import new_id
from marketledger.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class MarketService:
    """마켓 생성/조회/집계"""

    def __init__(self, uow: UnitOfWork, settings: Settings):
        self.uow = uow
        self.settings = settings

    def create_market(self, request: MarketCreateRequest) -> MarketSchema:
        if ensure_utc(request.ends_at) <= utc_now():
            raise ValidationError(
                message="Market end time must be in the future",
                details={"ends_at": request.ends_at.isoformat()},
            )

        def _create(session: Session) -> MarketSchema:
            market_id = request.market_id or new_id()
            repo = MarketRepository(session)
            if repo.get_model(market_id) is not None:
                raise ValidationError(
                    message=f"Market already exists: {market_id}",
                    details={"market_id": market_id},
                )
            market = Market(
                id=market_id,
                title=request.title,
                status=MarketStatusEnum.ACTIVE,
                total_participants=0,
                total_tokens_staked=0,
                ends_at=ensure_utc(request.ends_at),
                created_by=request.created_by,
                options=[
                    MarketOption(
                        id=option.id,
                        text=option.text,
                        sort_order=index,
                        total_tokens=0,
                        participant_count=0,
                    )
                    for index, option in enumerate(request.options)
                ],
            )
            session.add(market)
            session.flush()
            return repo.to_schema(market)

        market = self.uow.within_transaction(_create, label="create-market")
        logger.info(f"Created {market.market_type} market {market.id} with {len(market.options)} options")
        return market

    def get_market(self, market_id: str) -> MarketSchema:
        def _get(session: Session) -> MarketSchema:
            repo = MarketRepository(session)
            market = repo.get_model(market_id)
            if market is None:
                raise MarketNotFoundError(market_id)
            return repo.to_schema(market)

        return self.uow.read(_get)

    def get_market_commitments(
        self, market_id: str, limit: int = 50, offset: int = 0
    ) -> DirectPaginatedResponse[CommitmentSchema]:
        """마켓 커밋먼트 목록 (최신순)"""
        limit = min(limit, PaginationLimits.MARKET_COMMITMENTS["max"])

        def _page(session: Session):
            if MarketRepository(session).get_model(market_id) is None:
                raise MarketNotFoundError(market_id)
            return CommitmentRepository(session).page_for_market(
                market_id, limit=limit, offset=offset
            )

        commitments, total_count = self.uow.read(_page)
        return DirectPaginatedResponse[CommitmentSchema].page(commitments, total_count, limit, offset)

    def get_user_commitments(self, user_id: str) -> List[CommitmentSchema]:
        return self.uow.read(lambda session: CommitmentRepository(session).list_for_user(user_id))

    def get_market_analytics(self, market_id: str) -> MarketAnalytics:
        """
        마켓 집계

        yes/no 비율은 기준 선택지와 나머지 선택지 합으로 계산한다.
        기준 선택지는 정산된 마켓이면 승리 선택지, 아니면 첫 번째 선택지.
        """

        def _analyze(session: Session) -> MarketAnalytics:
            repo = MarketRepository(session)
            market_model = repo.get_model(market_id)
            if market_model is None:
                raise MarketNotFoundError(market_id)
            market = repo.to_schema(market_model)

            commitments = [
                c
                for c in CommitmentRepository(session).list_for_market(market_id)
                if c.status != CommitmentStatusEnum.CANCELLED
            ]

            focus_option_id = market.options[0].id if market.options else None
            resolution = ResolutionRepository(session).get_for_market(market_id)
            if resolution is not None:
                focus_option_id = resolution.winning_option_id

            tokens = [c.tokens_committed for c in commitments]
            total_tokens = sum(tokens)
            yes_tokens = sum(
                c.tokens_committed
                for c in commitments
                if CommitmentTarget.of(c).resolve_option_id(market, strict=False) == focus_option_id
            )
            no_tokens = total_tokens - yes_tokens

            return MarketAnalytics(
                market_id=market.id,
                market_type=market.market_type,
                total_tokens=total_tokens,
                participant_count=len({c.user_id for c in commitments}),
                commitment_count=len(commitments),
                focus_option_id=focus_option_id,
                yes_tokens=yes_tokens,
                no_tokens=no_tokens,
                yes_percentage=round(yes_tokens / total_tokens * 100, 2) if total_tokens else 0.0,
                no_percentage=round(no_tokens / total_tokens * 100, 2) if total_tokens else 0.0,
                average_commitment=round(total_tokens / len(tokens), 2) if tokens else 0.0,
                largest_commitment=max(tokens) if tokens else 0,
                smallest_commitment=min(tokens) if tokens else 0,
                option_breakdown=market.options,
            )

        return self.uow.read(_analyze)
