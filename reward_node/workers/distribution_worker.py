from __future__ import annotations

import asyncio
import logging

from reward_node.config.runtime import RuntimeSettings
from reward_node.db import create_session, wait_for_notify
from reward_node.services.epochs import EpochService
from reward_node.services.scheduler import DistributionScheduler
from reward_node.wiring import build_engine


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        force=True,
    )


def build_service() -> DistributionScheduler:
    settings = RuntimeSettings.from_env()
    session = create_session()

    engine = build_engine(session, settings)
    return DistributionScheduler(
        epoch_service=EpochService(engine.epoch_repository),
        engine=engine,
        interval_seconds=settings.distribution_interval_seconds,
        auto_distribute=settings.auto_distribute,
        wait_for_signal=lambda timeout: wait_for_notify(timeout=timeout),
        repositories=[
            engine.epoch_repository,
            engine.distribution_repository,
            engine.ranking_service.performance_provider,
        ],
    )


async def main() -> None:
    configure_logging()
    logger = logging.getLogger(__name__)
    logger.info("distribution worker bootstrap")

    service = build_service()
    await service.run()


if __name__ == "__main__":
    asyncio.run(main())
