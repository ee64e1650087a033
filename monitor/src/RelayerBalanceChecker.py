"""RelayerBalanceChecker: Keeps an eye on the relayer's gas balance."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from .MonitorStore import RelayerBalanceRecord

if TYPE_CHECKING:
    from .AlertSink import AlertSink
    from .MonitorStore import MonitorStore

logger = logging.getLogger(__name__)


class RelayerBalanceChecker:
    """Checks the relayer balance against a threshold and records it.

    :ivar address: Relayer account address.
    :ivar threshold: Minimum balance in wei before alerting.
    :ivar network_name: Network name used in alerts.
    """

    def __init__(
        self,
        address: str,
        threshold: int,
        get_balance: Callable[[str], int],
        store: MonitorStore,
        alert_sink: AlertSink,
        network_name: str = "",
    ) -> None:
        self.address = address
        self.threshold = threshold
        self.get_balance = get_balance
        self.store = store
        self.alert_sink = alert_sink
        self.network_name = network_name

    def fetch_balance(self) -> int:
        """Read the balance, treating an unreachable node as an empty account."""
        try:
            return int(self.get_balance(self.address))
        except Exception as e:
            logger.warning(f"Failed to read balance of {self.address}: {e}")
            return 0

    def check(self) -> RelayerBalanceRecord:
        """Check the balance once.

        :returns: The recorded balance observation.
        :raises StoreError: If the balance cannot be recorded.
        """
        balance = self.fetch_balance()
        if balance < self.threshold:
            self.alert_sink.notify(
                "Relayer account less than threshold",
                f"Balance of {self.address} on {self.network_name} is {balance}, "
                "please send some tokens before system downed",
            )
        else:
            logger.info(f"Relayer {self.address} balance: {balance}")

        record = RelayerBalanceRecord(
            timestamp=datetime.now(timezone.utc),
            address=self.address,
            balance=balance,
        )
        self.store.record_balance(record)
        return record
