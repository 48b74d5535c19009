"""Construction of the long-lived service objects used by CLI commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cloudmover.core.config import AppConfig
from cloudmover.core.events import EventBus, EventName, JobEvent
from cloudmover.providers.pool import ProviderFactory, ProviderPool, http_provider_factory
from cloudmover.scheduler.service import TaskScheduler
from cloudmover.store.database import JobStore
from cloudmover.sync.duplicates import DuplicateDetector
from cloudmover.sync.engine import SyncEngine
from cloudmover.worker.queue_worker import QueueWorker

logger = logging.getLogger("cloudmover.events")


def log_event(event: JobEvent) -> None:
    """Event bus subscriber writing job events to the log."""
    payload = event.payload
    if event.name is EventName.PROGRESS:
        logger.debug(
            "Job %s progress: %s/%s files (%s%%)",
            event.job_id,
            payload.get("completed"),
            payload.get("total"),
            payload.get("pct"),
        )
    elif event.name is EventName.COMPLETED:
        logger.info("Job %s completed for user %s", event.job_id, event.user_id)
    elif event.name is EventName.FAILED:
        logger.warning("Job %s failed for user %s: %s", event.job_id, event.user_id, payload.get("error"))
    elif event.name is EventName.RETRY:
        logger.info(
            "Job %s scheduled for retry #%s at %s",
            event.job_id,
            payload.get("attempts"),
            payload.get("next_run_at"),
        )
    else:
        logger.info("Job %s cancelled by user %s", event.job_id, event.user_id)


@dataclass
class Services:
    """Everything a running process owns."""

    config: AppConfig
    store: JobStore
    pool: ProviderPool
    bus: EventBus
    detector: DuplicateDetector
    engine: SyncEngine
    worker: QueueWorker
    scheduler: TaskScheduler

    def close(self) -> None:
        """Stop background services and release connections."""
        self.scheduler.stop()
        self.worker.stop()
        self.pool.close()
        self.store.close()


def build_services(config: AppConfig, factory: ProviderFactory | None = None) -> Services:
    """Wire the store, provider pool, event bus, worker and scheduler.

    Args:
        config: Application configuration.
        factory: Provider client factory. Defaults to the REST adapters with
            access tokens read from the environment.

    Returns:
        Services, not yet started.
    """
    store = JobStore(config.database_url)
    pool = ProviderPool(factory or http_provider_factory(), max_size=config.worker.provider_pool_size)
    bus = EventBus()
    bus.subscribe(log_event)
    detector = DuplicateDetector(store)
    engine = SyncEngine(store, pool, detector, config.sync)
    worker = QueueWorker(store, pool, bus=bus, config=config.worker, detector=detector)
    scheduler = TaskScheduler(store, engine, config.scheduler)
    return Services(
        config=config,
        store=store,
        pool=pool,
        bus=bus,
        detector=detector,
        engine=engine,
        worker=worker,
        scheduler=scheduler,
    )
