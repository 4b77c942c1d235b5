from datetime import timedelta
from typing import Dict, Iterable, Optional, Tuple

import pytest

import marketledger.models  # noqa: F401  - 테이블 등록
from marketledger.config import Settings
from marketledger.database.connection import build_engine, build_session_factory
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.models.base import Base
from marketledger.models.commitment import CommitmentStatusEnum, PositionEnum
from marketledger.models.market import Market
from marketledger.models.transaction import TransactionTypeEnum
from marketledger.repositories.balance_repository import BalanceRepository
from marketledger.repositories.commitment_repository import CommitmentRepository
from marketledger.repositories.market_repository import MarketRepository
from marketledger.schemas.commitment import CommitmentRequest
from marketledger.schemas.market import MarketCreateRequest, MarketOptionCreate
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.services.commitment_rollback_service import CommitmentRollbackService
from marketledger.services.commitment_service import CommitmentEngine
from marketledger.services.market_service import MarketService
from marketledger.services.payout_calculation_service import PayoutCalculator
from marketledger.services.payout_distribution_service import PayoutDistributionService
from marketledger.services.reconciliation_service import ReconciliationService
from marketledger.services.resolution_service import ResolutionService
from marketledger.services.transaction_log import TransactionLog
from marketledger.utils.ids import new_id
from marketledger.utils.timezone_utils import utc_now


@pytest.fixture
def settings(tmp_path):
    """테스트용 설정 - 임시 sqlite 파일 DB"""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'ledger.db'}",
        LEDGER_MAX_RETRIES=5,
        PAYOUT_BATCH_SIZE=50,
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def uow(session_factory, settings):
    return UnitOfWork(session_factory, max_retries=settings.LEDGER_MAX_RETRIES)


@pytest.fixture
def transaction_log(uow):
    return TransactionLog(uow)


@pytest.fixture
def ledger(uow, transaction_log, settings):
    return BalanceLedger(uow, transaction_log, settings)


@pytest.fixture
def commitment_engine(uow, ledger, settings):
    return CommitmentEngine(uow, ledger, settings)


@pytest.fixture
def commitment_rollback_service(uow, ledger, settings):
    return CommitmentRollbackService(uow, ledger, settings)


@pytest.fixture
def market_service(uow, settings):
    return MarketService(uow, settings)


@pytest.fixture
def calculator(settings):
    return PayoutCalculator(settings)


@pytest.fixture
def distributor(uow, ledger, settings):
    return PayoutDistributionService(uow, ledger, settings)


@pytest.fixture
def resolution_service(uow, calculator, distributor, ledger, settings):
    return ResolutionService(uow, calculator, distributor, ledger, settings)


@pytest.fixture
def reconciliation_service(uow, transaction_log, ledger, settings):
    return ReconciliationService(uow, transaction_log, ledger, settings)


@pytest.fixture
def make_market(market_service):
    """마켓 생성 헬퍼 - 선택지 ID 목록을 받는다"""

    def _make(options: Iterable[str] = ("yes", "no"), market_id: Optional[str] = None, title: str = "Will it happen?"):
        return market_service.create_market(
            MarketCreateRequest(
                title=title,
                options=[MarketOptionCreate(id=o, text=o.upper()) for o in options],
                ends_at=utc_now() + timedelta(days=1),
                market_id=market_id,
            )
        )

    return _make


@pytest.fixture
def fund(ledger):
    """사용자에게 토큰 발행"""

    def _fund(user_id: str, amount: int):
        return ledger.apply_mutation(user_id, amount, TransactionTypeEnum.PURCHASE)

    return _fund


@pytest.fixture
def commit(commitment_engine):
    def _commit(
        user_id: str,
        market_id: str,
        tokens: int,
        option_id: Optional[str] = None,
        position: Optional[str] = None,
    ):
        return commitment_engine.create_commitment(
            CommitmentRequest(
                user_id=user_id,
                market_id=market_id,
                tokens_to_commit=tokens,
                option_id=option_id,
                position=position,
            )
        )

    return _commit


@pytest.fixture
def seed_stakes(uow, ledger):
    """
    여러 사용자의 스테이크를 한 번의 트랜잭션으로 적재

    stakes: {user_id: (option_id, tokens)} - 사용자마다 tokens 만큼 발행 후 커밋한다.
    """

    def _seed(market_id: str, stakes: Dict[str, Tuple[str, int]]) -> None:
        def _unit(session):
            commitments = CommitmentRepository(session)
            markets = MarketRepository(session)
            for user_id, (option_id, tokens) in stakes.items():
                ledger.mutate(session, user_id, tokens, TransactionTypeEnum.PURCHASE)
                ledger.mutate(session, user_id, tokens, TransactionTypeEnum.COMMIT, related_id=market_id)
                commitments.add(
                    id=new_id(),
                    user_id=user_id,
                    market_id=market_id,
                    position=None,
                    option_id=option_id,
                    tokens_committed=tokens,
                    odds=2.0,
                    potential_winning=tokens * 2.0,
                    status=CommitmentStatusEnum.ACTIVE,
                    committed_at=utc_now(),
                    meta={},
                )
                markets.increment_counters(market_id, option_id, tokens, True, True)

        uow.within_transaction(_unit, label="seed")

    return _seed


@pytest.fixture
def insert_commitment(uow):
    """주소 필드를 그대로 저장 (과거 스키마 레코드 재현용, 원장 변경 없음)"""

    def _insert(
        user_id: str,
        market_id: str,
        tokens: int,
        option_id: Optional[str] = None,
        position: Optional[PositionEnum] = None,
    ) -> str:
        commitment_id = new_id()
        uow.within_transaction(
            lambda session: CommitmentRepository(session).add(
                id=commitment_id,
                user_id=user_id,
                market_id=market_id,
                position=position,
                option_id=option_id,
                tokens_committed=tokens,
                odds=2.0,
                potential_winning=tokens * 2.0,
                status=CommitmentStatusEnum.ACTIVE,
                committed_at=utc_now(),
                meta={},
            )
        )
        return commitment_id

    return _insert


@pytest.fixture
def read_balance(uow):
    """잔액 행을 생성하지 않고 조회"""

    def _read(user_id: str):
        return uow.read(lambda session: BalanceRepository(session).get_by_id(user_id))

    return _read


@pytest.fixture
def expire_market(uow):
    def _expire(market_id: str) -> None:
        def _unit(session):
            market = session.get(Market, market_id)
            market.ends_at = utc_now() - timedelta(minutes=1)

        uow.within_transaction(_unit)

    return _expire


class FlakyLedger(BalanceLedger):
    """특정 사용자의 win 반영에서 일시적 오류를 흉내내는 원장"""

    def __init__(self, *args, failing_user: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing_user = failing_user

    def mutate(self, session, user_id, amount, type, *args, **kwargs):
        if user_id == self.failing_user and TransactionTypeEnum(type) == TransactionTypeEnum.WIN:
            raise RuntimeError("simulated transient error")
        return super().mutate(session, user_id, amount, type, *args, **kwargs)


@pytest.fixture
def flaky_distributor(uow, transaction_log, settings):
    """failing_user 의 지급만 실패하는 분배 서비스"""

    def _build(failing_user: str) -> PayoutDistributionService:
        ledger = FlakyLedger(uow, transaction_log, settings, failing_user=failing_user)
        return PayoutDistributionService(uow, ledger, settings)

    return _build
