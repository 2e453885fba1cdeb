"""Background sweeps, run directly and through SweepRunner."""

import asyncio

import pytest

from storefront.domain import storefront
from storefront.notifications.content import NotificationContent
from storefront.notifications.service import RetryReport
from storefront.sweeps import SWEEPS, SweepJob, SweepRunner, default_jobs, run_sweep


class TestRunSweep:
    def test_every_sweep_is_registered(self):
        assert sorted(SWEEPS) == [
            "detect_abandoned_checkouts",
            "expire_stale_payments",
            "purge_notifications",
            "retry_undelivered_notifications",
        ]

    def test_default_jobs_use_configured_intervals(self, services):
        intervals = {job.name: job.interval_seconds for job in default_jobs(services)}
        assert intervals["expire_stale_payments"] == services.settings.sweep_payments_seconds
        assert intervals["retry_undelivered_notifications"] == services.settings.sweep_notifications_seconds

    def test_retry_sweep_returns_report(self, services, connection):
        services.notifications.create("cust-001", NotificationContent("system", "Hi", "Hello"))
        services.connections.register("cust-001", connection)

        report = run_sweep(storefront, services, "retry_undelivered_notifications")

        assert report == RetryReport(total=1, success=1)

    def test_payment_sweep_with_nothing_due(self, services, place_order):
        place_order()
        assert run_sweep(storefront, services, "expire_stale_payments") == 0

    def test_unknown_sweep(self, services):
        with pytest.raises(ValueError, match="Unknown sweep"):
            run_sweep(storefront, services, "defragment")


class TestSweepRunner:
    def test_run_once_returns_job_result(self, services):
        job = SweepJob("answer", 60, lambda _: 42)
        runner = SweepRunner(storefront, services, jobs=[job])

        assert asyncio.run(runner.run_once(job)) == 42

    def test_failing_job_is_contained(self, services):
        def explode(_):
            raise RuntimeError("boom")

        job = SweepJob("explode", 60, explode)
        runner = SweepRunner(storefront, services, jobs=[job])

        assert asyncio.run(runner.run_once(job)) is None

    def test_jobs_run_on_their_interval_until_stopped(self, services):
        runs = []
        job = SweepJob("tick", 0.01, lambda _: runs.append(1))

        async def scenario():
            runner = SweepRunner(storefront, services, jobs=[job])
            runner.start()
            assert runner.running
            await asyncio.sleep(0.2)
            await runner.stop()
            return runner

        runner = asyncio.run(scenario())

        assert not runner.running
        assert len(runs) >= 2
