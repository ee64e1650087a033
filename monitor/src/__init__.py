"""
Oracle Status Monitor

This module watches an on-chain price reference contract:
- BatchQueryEngine: Paged getReferenceDataBulk queries with bounded retry
- PriceClassifier: Staleness and real-world deviation checks
- MonitorStore: SQLite persistence for inputs and classifications
- AlertSink: Fire-and-forget alert delivery
- RelayerBalanceChecker: Relayer balance threshold check
- StatusMonitor: Periodic orchestration of both jobs
"""

from .AlertSink import AlertSink, LogAlertSink, WebhookAlertSink, catch_incident
from .BatchQueryEngine import BatchQueryEngine, BatchQueryError, Pacing, PriceQuantum
from .MonitorStore import (
    LatestSubmissionRecord,
    MonitorStore,
    ReferencePriceRecord,
    RelayerBalanceRecord,
    StoreError,
    TrackedSymbolConfig,
)
from .PriceClassifier import (
    ClassificationError,
    ClassificationRecord,
    PriceClassifier,
    Status,
)
from .RelayerBalanceChecker import RelayerBalanceChecker
from .StatusMonitor import PeriodicJob, StatusMonitor

__all__ = [
    "AlertSink",
    "BatchQueryEngine",
    "BatchQueryError",
    "ClassificationError",
    "ClassificationRecord",
    "LatestSubmissionRecord",
    "LogAlertSink",
    "MonitorStore",
    "Pacing",
    "PeriodicJob",
    "PriceClassifier",
    "PriceQuantum",
    "ReferencePriceRecord",
    "RelayerBalanceChecker",
    "RelayerBalanceRecord",
    "StatusMonitor",
    "Status",
    "StoreError",
    "TrackedSymbolConfig",
    "WebhookAlertSink",
    "catch_incident",
]
