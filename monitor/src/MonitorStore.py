"""MonitorStore: SQLite persistence for the status monitor.

Tables:
    - symbol_details: tracked symbols and their expected update interval
    - real_world_prices: latest real-world price per symbol (external writer)
    - latest_results: latest on-chain submission per symbol (external writer)
    - contract_price_details: classification per symbol (upserted every cycle)
    - relayer_balances: balance history of the relayer account

Contract rates, request IDs and balances exceed 64-bit range and real-world
prices need exact decimals, so all of them are stored as TEXT and parsed back
into ``int`` / ``Decimal``.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from .PriceClassifier import ClassificationRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS symbol_details (
    symbol TEXT PRIMARY KEY,
    interval INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS real_world_prices (
    symbol TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS latest_results (
    symbol TEXT PRIMARY KEY,
    request_id TEXT,
    tx_hash TEXT
);
CREATE TABLE IF NOT EXISTS contract_price_details (
    symbol TEXT PRIMARY KEY,
    contract_value TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    request_id TEXT,
    tx_hash TEXT,
    status TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS relayer_balances (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    address TEXT NOT NULL,
    balance TEXT NOT NULL
);
"""


class StoreError(Exception):
    """Raised when the database cannot be read or written."""

    pass


def _to_text(value: int | None) -> str | None:
    return None if value is None else str(value)


def _to_int(value: str | int | None) -> int | None:
    return None if value is None else int(value)


@dataclass(frozen=True)
class TrackedSymbolConfig:
    """A tracked symbol.

    :ivar symbol: Symbol identifier (e.g., "BTC").
    :ivar interval: Expected update interval of the feed in seconds.
    """

    symbol: str
    interval: int


@dataclass(frozen=True)
class ReferencePriceRecord:
    """Latest real-world price of a symbol.

    :ivar symbol: Symbol identifier.
    :ivar value: Price in the same units as the contract rate.
    :ivar updated_at: When the price was ingested, if known.
    """

    symbol: str
    value: Decimal
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LatestSubmissionRecord:
    """Latest known submission of a symbol to the contract.

    :ivar symbol: Symbol identifier.
    :ivar request_id: Request identifier of the submission.
    :ivar tx_hash: Transaction hash of the submission.
    """

    symbol: str
    request_id: int | None
    tx_hash: str | None


@dataclass(frozen=True)
class RelayerBalanceRecord:
    """One relayer balance observation.

    :ivar timestamp: Observation time.
    :ivar address: Relayer address.
    :ivar balance: Balance in the smallest native unit.
    """

    timestamp: datetime
    address: str
    balance: int


class MonitorStore:
    """SQLite-backed store for monitor inputs and outputs.

    :ivar db_path: Path to the database file (":memory:" for in-memory).
    """

    def __init__(self, db_path: str = "monitor.db") -> None:
        """Open the database and create tables.

        :param db_path: Database file path.
        :raises StoreError: If the database cannot be initialized.
        """
        self.db_path = db_path
        self._lock = threading.Lock()
        # A single connection keeps ":memory:" databases alive.
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Cannot open database {db_path}: {e}") from e
        logger.debug(f"MonitorStore opened at {db_path}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                raise StoreError(f"Database error: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # Symbol configuration

    def save_symbol(self, config: TrackedSymbolConfig) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO symbol_details (symbol, interval) VALUES (?, ?) "
                "ON CONFLICT(symbol) DO UPDATE SET interval = excluded.interval",
                (config.symbol, config.interval),
            )

    def find_all_symbols(self) -> list[TrackedSymbolConfig]:
        """Return all tracked symbols in insertion order."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT symbol, interval FROM symbol_details ORDER BY rowid"
            ).fetchall()
        return [TrackedSymbolConfig(row["symbol"], row["interval"]) for row in rows]

    # Real-world prices

    def save_reference_price(self, record: ReferencePriceRecord) -> None:
        updated_at = record.updated_at or datetime.now(timezone.utc)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO real_world_prices (symbol, value, updated_at) "
                "VALUES (?, ?, ?) ON CONFLICT(symbol) DO UPDATE SET "
                "value = excluded.value, updated_at = excluded.updated_at",
                (record.symbol, str(record.value), updated_at.isoformat()),
            )

    def find_reference_price(self, symbol: str) -> ReferencePriceRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT symbol, value, updated_at FROM real_world_prices "
                "WHERE symbol = ?",
                (symbol,),
            ).fetchone()
        if row is None:
            return None
        updated_at = (
            datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None
        )
        return ReferencePriceRecord(row["symbol"], Decimal(row["value"]), updated_at)

    # Latest submissions

    def save_latest_submission(self, record: LatestSubmissionRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO latest_results (symbol, request_id, tx_hash) "
                "VALUES (?, ?, ?) ON CONFLICT(symbol) DO UPDATE SET "
                "request_id = excluded.request_id, tx_hash = excluded.tx_hash",
                (record.symbol, _to_text(record.request_id), record.tx_hash),
            )

    def find_latest_submission(self, symbol: str) -> LatestSubmissionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT symbol, request_id, tx_hash FROM latest_results "
                "WHERE symbol = ?",
                (symbol,),
            ).fetchone()
        if row is None:
            return None
        return LatestSubmissionRecord(
            row["symbol"], _to_int(row["request_id"]), row["tx_hash"]
        )

    # Classifications

    def upsert_classification(self, record: ClassificationRecord) -> None:
        """Insert or overwrite the classification of a symbol.

        :param record: Classification to store.
        :raises StoreError: If the write fails.
        """
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO contract_price_details "
                "(symbol, contract_value, timestamp, request_id, tx_hash, status, "
                "updated_at) VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(symbol) DO UPDATE SET "
                "contract_value = excluded.contract_value, "
                "timestamp = excluded.timestamp, "
                "request_id = excluded.request_id, "
                "tx_hash = excluded.tx_hash, "
                "status = excluded.status, "
                "updated_at = excluded.updated_at",
                (
                    record.symbol,
                    str(record.contract_value),
                    record.timestamp.isoformat(),
                    _to_text(record.request_id),
                    record.tx_hash,
                    record.status.value,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )

    def find_classification(self, symbol: str) -> ClassificationRecord | None:
        from .PriceClassifier import ClassificationRecord, Status

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT symbol, contract_value, timestamp, request_id, tx_hash, "
                "status FROM contract_price_details WHERE symbol = ?",
                (symbol,),
            ).fetchone()
        if row is None:
            return None
        return ClassificationRecord(
            symbol=row["symbol"],
            contract_value=int(row["contract_value"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            request_id=_to_int(row["request_id"]),
            tx_hash=row["tx_hash"],
            status=Status(row["status"]),
        )

    # Relayer balances

    def record_balance(self, record: RelayerBalanceRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO relayer_balances (timestamp, address, balance) "
                "VALUES (?, ?, ?)",
                (record.timestamp.isoformat(), record.address, str(record.balance)),
            )

    def find_balances(self, address: str) -> list[RelayerBalanceRecord]:
        """Return the balance history of an address, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT timestamp, address, balance FROM relayer_balances "
                "WHERE address = ? ORDER BY id",
                (address,),
            ).fetchall()
        return [
            RelayerBalanceRecord(
                datetime.fromisoformat(row["timestamp"]),
                row["address"],
                int(row["balance"]),
            )
            for row in rows
        ]
