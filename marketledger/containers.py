from dependency_injector import containers, providers

from marketledger.config import Settings
from marketledger.database.connection import build_engine, build_session_factory
from marketledger.database.unit_of_work import UnitOfWork
from marketledger.services.balance_ledger import BalanceLedger
from marketledger.services.commitment_rollback_service import CommitmentRollbackService
from marketledger.services.commitment_service import CommitmentEngine
from marketledger.services.market_service import MarketService
from marketledger.services.payout_calculation_service import PayoutCalculator
from marketledger.services.payout_distribution_service import PayoutDistributionService
from marketledger.services.reconciliation_service import ReconciliationService
from marketledger.services.resolution_service import ResolutionService
from marketledger.services.transaction_log import TransactionLog


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class DatabaseModule(containers.DeclarativeContainer):
    """Engine, session factory and unit of work (created lazily on first use)."""

    config = providers.DependenciesContainer()

    engine = providers.Singleton(build_engine, settings=config.config)
    session_factory = providers.Singleton(build_session_factory, engine=engine)
    unit_of_work = providers.Singleton(
        UnitOfWork,
        session_factory=session_factory,
        max_retries=config.config.provided.LEDGER_MAX_RETRIES,
    )


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies."""

    config = providers.DependenciesContainer()
    database = providers.DependenciesContainer()

    transaction_log = providers.Singleton(TransactionLog, uow=database.unit_of_work)
    balance_ledger = providers.Singleton(
        BalanceLedger,
        uow=database.unit_of_work,
        transaction_log=transaction_log,
        settings=config.config,
    )
    commitment_engine = providers.Factory(
        CommitmentEngine,
        uow=database.unit_of_work,
        ledger=balance_ledger,
        settings=config.config,
    )
    commitment_rollback_service = providers.Factory(
        CommitmentRollbackService,
        uow=database.unit_of_work,
        ledger=balance_ledger,
        settings=config.config,
    )
    market_service = providers.Factory(
        MarketService, uow=database.unit_of_work, settings=config.config
    )
    payout_calculator = providers.Factory(PayoutCalculator, settings=config.config)
    payout_distribution_service = providers.Factory(
        PayoutDistributionService,
        uow=database.unit_of_work,
        ledger=balance_ledger,
        settings=config.config,
    )
    resolution_service = providers.Factory(
        ResolutionService,
        uow=database.unit_of_work,
        calculator=payout_calculator,
        distributor=payout_distribution_service,
        ledger=balance_ledger,
        settings=config.config,
    )
    reconciliation_service = providers.Factory(
        ReconciliationService,
        uow=database.unit_of_work,
        transaction_log=transaction_log,
        ledger=balance_ledger,
        settings=config.config,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "marketledger.routers.token_router",
            "marketledger.routers.market_router",
            "marketledger.routers.admin_router",
        ],
    )

    config = providers.Container(ConfigModule)
    database = providers.Container(DatabaseModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, database=database
    )
