"""Assemble the engine from runtime settings and a database session."""
from __future__ import annotations

from sqlmodel import Session

from reward_node.config.runtime import RuntimeSettings
from reward_node.db import DBDistributionRepository, DBEpochRepository
from reward_node.providers.performance import DBPerformanceProvider
from reward_node.providers.wallet import WalletServiceClient
from reward_node.services.allocation import AllocationCalculator
from reward_node.services.distribution import DistributionEngine
from reward_node.services.epochs import EpochService
from reward_node.services.executor import DistributionExecutor
from reward_node.services.ranking import RankingService
from reward_node.services.treasury import ReservationBook, TreasuryLedger

RESERVATIONS = ReservationBook()


def build_wallet_client(settings: RuntimeSettings) -> WalletServiceClient:
    return WalletServiceClient(
        base_url=settings.wallet_service_url,
        token=settings.wallet_service_token,
        timeout_seconds=settings.wallet_service_timeout_seconds,
    )


def build_engine(session: Session, settings: RuntimeSettings) -> DistributionEngine:
    epoch_repository = DBEpochRepository(session)
    distribution_repository = DBDistributionRepository(session)
    wallet = build_wallet_client(settings)

    return DistributionEngine(
        epoch_repository=epoch_repository,
        distribution_repository=distribution_repository,
        ranking_service=RankingService(DBPerformanceProvider(session)),
        allocation_calculator=AllocationCalculator(token_decimals=settings.token_decimals),
        treasury_ledger=TreasuryLedger(
            balance_provider=wallet,
            treasury_account=settings.treasury_account,
            distribution_repository=distribution_repository,
            reservations=RESERVATIONS,
        ),
        executor=DistributionExecutor(
            epoch_repository=epoch_repository,
            distribution_repository=distribution_repository,
            transfer_provider=wallet,
            max_concurrency=settings.distribution_max_concurrency,
            max_retries=settings.transfer_max_retries,
            backoff_seconds=settings.transfer_backoff_seconds,
        ),
        deadline_seconds=settings.distribution_deadline_seconds,
        cap_to_available=settings.cap_to_available,
    )


def build_epoch_service(session: Session) -> EpochService:
    return EpochService(DBEpochRepository(session))
