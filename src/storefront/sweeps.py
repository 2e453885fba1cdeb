"""Periodic background sweeps.

``SweepRunner`` owns one asyncio task per job. Jobs are synchronous calls
into the managers; each run happens in a worker thread inside the domain
context so it never blocks the event loop. A failing run is logged and the
job waits for its next interval.

Every job is also available as a plain function taking a ``Services``
bundle, which is what ``manage.py sweep`` and the tests call.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from protean import Domain

from storefront.services import Services

logger = structlog.get_logger(__name__)


def retry_undelivered_notifications(services: Services):
    return services.notifications.retry_undelivered()


def detect_abandoned_checkouts(services: Services):
    return services.orders.detect_abandoned_checkouts()


def expire_stale_payments(services: Services):
    return services.payments.expire_stale_payments()


def purge_notifications(services: Services):
    return services.notifications.purge_expired()


SWEEPS: dict[str, Callable[[Services], Any]] = {
    "retry_undelivered_notifications": retry_undelivered_notifications,
    "detect_abandoned_checkouts": detect_abandoned_checkouts,
    "expire_stale_payments": expire_stale_payments,
    "purge_notifications": purge_notifications,
}


@dataclass(frozen=True)
class SweepJob:
    name: str
    interval_seconds: float
    run: Callable[[Services], Any]


def default_jobs(services: Services) -> list[SweepJob]:
    settings = services.settings
    intervals = {
        "retry_undelivered_notifications": settings.sweep_notifications_seconds,
        "detect_abandoned_checkouts": settings.sweep_checkouts_seconds,
        "expire_stale_payments": settings.sweep_payments_seconds,
        "purge_notifications": settings.sweep_purge_seconds,
    }
    return [SweepJob(name, intervals[name], fn) for name, fn in SWEEPS.items()]


def run_sweep(domain: Domain, services: Services, name: str):
    """Run one sweep synchronously inside the domain context."""
    try:
        sweep = SWEEPS[name]
    except KeyError:
        raise ValueError(f"Unknown sweep: {name}. Choose from {', '.join(SWEEPS)}")
    with domain.domain_context():
        return sweep(services)


class SweepRunner:
    def __init__(self, domain: Domain, services: Services, jobs: list[SweepJob] | None = None):
        self.domain = domain
        self.services = services
        self.jobs = jobs if jobs is not None else default_jobs(services)
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._tasks = [asyncio.create_task(self._loop(job), name=f"sweep:{job.name}") for job in self.jobs]
        logger.info("Sweep runner started", jobs=[job.name for job in self.jobs])

    async def stop(self) -> None:
        self._stop.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Sweep runner stopped")

    def _run_in_context(self, job: SweepJob):
        with self.domain.domain_context():
            return job.run(self.services)

    async def run_once(self, job: SweepJob):
        try:
            result = await asyncio.to_thread(self._run_in_context, job)
        except Exception:
            logger.exception("Sweep run failed", sweep=job.name)
            return None
        logger.info("Sweep run complete", sweep=job.name, result=repr(result))
        return result

    async def _loop(self, job: SweepJob) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=job.interval_seconds)
            except TimeoutError:
                await self.run_once(job)
