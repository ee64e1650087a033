"""StatusMonitor: Periodic contract status and relayer balance checks.

Architecture:
    - One refresh cycle fetches every tracked symbol through BatchQueryEngine
      and classifies the results with PriceClassifier
    - The relayer balance is checked on its own schedule
    - Each job runs under a PeriodicJob that never lets two runs overlap
    - Job failures are logged and alerted via catch_incident, the schedule
      keeps running
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .AlertSink import catch_incident

if TYPE_CHECKING:
    from .AlertSink import AlertSink
    from .BatchQueryEngine import BatchQueryEngine
    from .MonitorStore import MonitorStore
    from .PriceClassifier import ClassificationRecord, PriceClassifier
    from .RelayerBalanceChecker import RelayerBalanceChecker

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Runs an async job on a fixed period without overlapping runs.

    Runs fire on multiples of the period (a 600 s period fires at every tenth
    minute of the hour). A trigger that arrives while a run is still in
    flight is dropped.

    :ivar name: Job name for logging.
    :ivar period: Seconds between runs.
    :ivar job: Async callable to run.
    """

    def __init__(
        self,
        name: str,
        period: float,
        job: Callable[[], Awaitable[Any]],
        clock: Callable[[], float] = time.time,
    ) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self.name = name
        self.period = period
        self.job = job
        self.clock = clock
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        """Whether a run is in flight."""
        return self._lock.locked()

    def seconds_until_next_run(self) -> float:
        """Seconds until the next period boundary."""
        return self.period - (self.clock() % self.period)

    async def run_once(self) -> Any:
        """Run the job unless a run is already in flight.

        :returns: The job result, or None if the trigger was dropped.
        """
        if self._lock.locked():
            logger.warning(f"[{self.name}] previous run still in progress, skipping")
            return None

        async with self._lock:
            started = self.clock()
            logger.debug(f"[{self.name}] run started")
            result = await self.job()
            logger.debug(f"[{self.name}] run finished in {self.clock() - started:.1f}s")
            return result

    async def run_forever(self) -> None:
        """Run the job on every period boundary until cancelled."""
        logger.info(f"[{self.name}] scheduled every {self.period}s")
        while True:
            await asyncio.sleep(self.seconds_until_next_run())
            await self.run_once()


class StatusMonitor:
    """Orchestrates the contract status and relayer balance jobs.

    :ivar store: Monitor store.
    :ivar engine: Query engine for the reference contract.
    :ivar classifier: Classifier for fetched prices.
    :ivar balance_checker: Optional relayer balance checker.
    :ivar alert_sink: Sink receiving incident alerts.
    :ivar check_period: Seconds between runs of each job.
    """

    def __init__(
        self,
        store: MonitorStore,
        engine: BatchQueryEngine,
        classifier: PriceClassifier,
        alert_sink: AlertSink,
        balance_checker: RelayerBalanceChecker | None = None,
        check_period: float = 600,
    ) -> None:
        self.store = store
        self.engine = engine
        self.classifier = classifier
        self.alert_sink = alert_sink
        self.balance_checker = balance_checker
        self.check_period = check_period

        self.jobs: list[PeriodicJob] = []
        if balance_checker is not None:
            self.jobs.append(
                PeriodicJob(
                    "update_balance",
                    check_period,
                    catch_incident(self.update_balance, alert_sink, "update_balance"),
                )
            )
        self.jobs.append(
            PeriodicJob(
                "update_contract_status",
                check_period,
                catch_incident(
                    self.refresh_contract_status, alert_sink, "update_contract_status"
                ),
            )
        )

    async def refresh_contract_status(self) -> list[ClassificationRecord]:
        """Run one refresh cycle over all tracked symbols.

        :returns: Classification records stored this cycle.
        :raises StoreError: If the store fails.
        """
        configs = self.store.find_all_symbols()
        if not configs:
            logger.info("No tracked symbols, nothing to refresh")
            return []

        symbols = [config.symbol for config in configs]
        logger.info(f"Refreshing contract status for {len(symbols)} symbols")
        quanta = await self.engine.fetch(symbols)
        return self.classifier.classify_all(quanta, configs)

    async def update_balance(self) -> None:
        """Run the relayer balance check in a worker thread."""
        if self.balance_checker is None:
            return
        await asyncio.to_thread(self.balance_checker.check)

    async def run_once(self) -> None:
        """Run every job a single time, sequentially."""
        for job in self.jobs:
            await job.run_once()

    async def run(self) -> None:
        """Run all jobs on their schedule until cancelled."""
        logger.info(f"Starting {len(self.jobs)} jobs every {self.check_period}s")
        try:
            await asyncio.gather(*(job.run_forever() for job in self.jobs))
        finally:
            await self.alert_sink.aclose()
