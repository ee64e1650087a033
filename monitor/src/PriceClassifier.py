"""PriceClassifier: Staleness and deviation checks for contract prices.

Each fetched quantum is compared against the symbol's expected update
interval and its real-world reference price:

    1. Delay: the contract value is older than 10 x the expected interval
    2. WrongPrice: contract rate / real-world value is outside [0.9, 1.1]
    3. Ok: otherwise

Staleness is checked first, so a stale value is reported as Delay even when
it also deviates. The deviation ratio is computed with exact rationals; the
bounds 0.9 and 1.1 themselves are Ok.

.. code-block:: python

    >>> classifier = PriceClassifier(store, LogAlertSink())
    >>> record = classifier.classify(quantum, TrackedSymbolConfig("BTC", 60))
    >>> record.status
    <Status.OK: 'Ok'>
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from fractions import Fraction
from typing import TYPE_CHECKING, Callable, Iterable

from .BatchQueryEngine import PriceQuantum
from .MonitorStore import (
    LatestSubmissionRecord,
    ReferencePriceRecord,
    TrackedSymbolConfig,
)

if TYPE_CHECKING:
    from .AlertSink import AlertSink
    from .MonitorStore import MonitorStore

logger = logging.getLogger(__name__)

# A value older than this many expected intervals is considered delayed.
STALENESS_MULTIPLIER = 10

# Accepted range of contract rate / real-world value (inclusive).
MIN_DEVIATION = Fraction(9, 10)
MAX_DEVIATION = Fraction(11, 10)


class Status(str, enum.Enum):
    """Classification of a contract price."""

    OK = "Ok"
    DELAY = "Delay"
    WRONG_PRICE = "WrongPrice"


class ClassificationError(ValueError):
    """Raised when a symbol cannot be classified (missing or invalid inputs)."""

    pass


@dataclass(frozen=True)
class ClassificationRecord:
    """Classification of one symbol in one refresh cycle.

    :ivar symbol: Symbol identifier.
    :ivar contract_value: Contract rate.
    :ivar timestamp: Last update time of the contract value (UTC).
    :ivar request_id: Request ID of the latest known submission.
    :ivar tx_hash: Transaction hash of the latest known submission.
    :ivar status: Classification result.
    """

    symbol: str
    contract_value: int
    timestamp: datetime
    request_id: int | None
    tx_hash: str | None
    status: Status


def deviation_ratio(rate: int, reference_value: Decimal | Fraction | int) -> Fraction:
    """Return rate / reference_value as an exact fraction.

    :param rate: Contract rate.
    :param reference_value: Real-world value (int, Decimal or Fraction).
    :returns: Exact ratio.
    :raises ClassificationError: If the reference value is not a positive
        finite number.
    """
    try:
        value = Fraction(reference_value)
    except (ValueError, OverflowError, TypeError) as e:
        raise ClassificationError(
            f"Reference value must be a finite number, got {reference_value}"
        ) from e
    if value <= 0:
        raise ClassificationError(f"Reference value must be positive, got {reference_value}")
    return Fraction(rate) / value


class PriceClassifier:
    """Classifies contract prices and records the result.

    :ivar store: Store providing reference prices and submissions and
        receiving classifications.
    :ivar alert_sink: Sink receiving Delay/WrongPrice alerts.
    :ivar clock: Callable returning the current epoch time in seconds.
    """

    def __init__(
        self,
        store: MonitorStore,
        alert_sink: AlertSink,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the classifier.

        :param store: Monitor store.
        :param alert_sink: Alert sink.
        :param clock: Wall clock in epoch seconds (default: time.time).
        """
        self.store = store
        self.alert_sink = alert_sink
        self.clock = clock

    @staticmethod
    def evaluate(
        quantum: PriceQuantum,
        config: TrackedSymbolConfig,
        reference: ReferencePriceRecord | None,
        submission: LatestSubmissionRecord | None,
        now: float,
    ) -> ClassificationRecord:
        """Classify a quantum without side effects.

        :param quantum: Fetched contract value.
        :param config: Symbol configuration with expected interval.
        :param reference: Real-world price of the symbol.
        :param submission: Latest known submission of the symbol.
        :param now: Current epoch time in seconds.
        :returns: Classification record.
        :raises ClassificationError: If reference or submission is missing,
            or the reference value is not positive.
        """
        symbol = quantum.symbol
        if reference is None:
            raise ClassificationError(f"No real-world price for {symbol}")
        if submission is None:
            raise ClassificationError(f"No submission record for {symbol}")

        ratio = deviation_ratio(quantum.rate, reference.value)
        age = now - quantum.last_updated_base

        if age > STALENESS_MULTIPLIER * config.interval:
            status = Status.DELAY
        elif ratio < MIN_DEVIATION or ratio > MAX_DEVIATION:
            status = Status.WRONG_PRICE
        else:
            status = Status.OK

        return ClassificationRecord(
            symbol=symbol,
            contract_value=quantum.rate,
            timestamp=datetime.fromtimestamp(quantum.last_updated_base, tz=timezone.utc),
            request_id=submission.request_id,
            tx_hash=submission.tx_hash,
            status=status,
        )

    def classify(
        self, quantum: PriceQuantum, config: TrackedSymbolConfig
    ) -> ClassificationRecord:
        """Classify one symbol, store the result and alert if abnormal.

        :param quantum: Fetched contract value.
        :param config: Symbol configuration.
        :returns: Stored classification record.
        :raises ClassificationError: If inputs are missing or invalid. Nothing
            is stored in that case.
        :raises StoreError: If reading or writing the store fails.
        """
        symbol = quantum.symbol
        reference = self.store.find_reference_price(symbol)
        submission = self.store.find_latest_submission(symbol)
        record = self.evaluate(quantum, config, reference, submission, self.clock())

        self.store.upsert_classification(record)

        if record.status is Status.DELAY:
            self.alert_sink.notify(
                "The price value from the contract is too old.",
                f"Last update of {symbol} in contract is {record.timestamp.isoformat()}",
            )
        elif record.status is Status.WRONG_PRICE:
            assert reference is not None
            self.alert_sink.notify(
                "Data deviation from real data source too much",
                f"Value of {symbol} in contract is {quantum.rate} "
                f"but in the real world is {reference.value}",
            )

        logger.debug(f"{symbol}: {record.status.value} (rate={quantum.rate})")
        return record

    def classify_all(
        self,
        quanta: Iterable[PriceQuantum],
        configs: Iterable[TrackedSymbolConfig],
    ) -> list[ClassificationRecord]:
        """Classify every tracked symbol that has a fetched quantum.

        Quanta are matched to configs by symbol. Symbols that failed
        classification are alerted and skipped, keeping their previous record.

        :param quanta: Quanta returned by the query engine.
        :param configs: Tracked symbol configurations.
        :returns: Stored classification records.
        :raises StoreError: If the store fails; the cycle is aborted.
        """
        by_symbol = {quantum.symbol: quantum for quantum in quanta}
        records: list[ClassificationRecord] = []

        for config in configs:
            quantum = by_symbol.get(config.symbol)
            if quantum is None:
                logger.warning(f"{config.symbol}: no contract value this cycle")
                continue

            try:
                records.append(self.classify(quantum, config))
            except ClassificationError as e:
                logger.error(f"{config.symbol}: cannot classify: {e}")
                self.alert_sink.notify("Cannot classify contract price", str(e))

        counts = {status: 0 for status in Status}
        for record in records:
            counts[record.status] += 1
        logger.info(
            f"Classified {len(records)} symbols: "
            + ", ".join(f"{status.value}={count}" for status, count in counts.items())
        )
        return records
