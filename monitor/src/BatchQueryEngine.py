"""BatchQueryEngine: Paged bulk queries against the on-chain reference contract.

The reference contract answers ``getReferenceDataBulk`` for many symbols in a
single call, but the number of symbols per call is bounded. This module splits
the tracked universe into fixed-size pages and queries them one at a time.

Recovery policy:
    - A failed page is retried in place until it has failed max_retries times
    - A page that keeps failing is skipped for this cycle and alerted on
    - Every attempt (success, retry or skip) is followed by the pacing delay
    - Pages are never fetched concurrently

The wire format is positional (3 values per symbol, in call order). Decoded
quanta are tagged with their symbol so downstream code never pairs by index.

.. code-block:: python

    >>> engine = BatchQueryEngine(query_page, LogAlertSink(), page_size=2)
    >>> engine.paginate(["btc", "eth", "rose"])
    [['btc', 'eth'], ['rose']]
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

if TYPE_CHECKING:
    from .AlertSink import AlertSink

logger = logging.getLogger(__name__)

# Number of values per symbol in the getReferenceDataBulk response.
VALUES_PER_SYMBOL = 3

QueryPage = Callable[[list[str]], Awaitable[Sequence[int]]]


class BatchQueryError(Exception):
    """Raised when a page response cannot be decoded."""

    pass


@dataclass(frozen=True)
class PriceQuantum:
    """One decoded on-chain price observation.

    :ivar symbol: Symbol the observation belongs to.
    :ivar rate: Contract rate as an arbitrary-precision integer.
    :ivar last_updated_base: Epoch seconds of the last base price update.
    :ivar last_updated_quote: Epoch seconds of the last quote price update.
    """

    symbol: str
    rate: int
    last_updated_base: int
    last_updated_quote: int


class Pacing:
    """Fixed delay awaited after every page attempt.

    :ivar delay: Seconds to wait. Zero or negative disables pacing.
    """

    def __init__(self, delay: float = 3.0) -> None:
        self.delay = delay

    async def wait(self) -> None:
        """Wait out the pacing delay."""
        if self.delay > 0:
            await asyncio.sleep(self.delay)

    def __repr__(self) -> str:
        return f"Pacing({self.delay!r})"


class BatchQueryEngine:
    """Fetches reference data for a symbol list in sequential pages.

    :ivar query_page: Async callable issuing one bulk query.
    :ivar alert_sink: Destination for failure alerts.
    :ivar page_size: Maximum symbols per query.
    :ivar max_retries: Failed attempts allowed per page before it is skipped.
    :ivar pacing: Delay policy applied after every attempt.
    """

    DEFAULT_PAGE_SIZE = 25
    DEFAULT_MAX_RETRIES = 3

    def __init__(
        self,
        query_page: QueryPage,
        alert_sink: AlertSink,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        pacing: Pacing | None = None,
    ) -> None:
        """Initialize the engine.

        :param query_page: Async callable taking a page of symbols and returning
            the flat response values (3 per symbol).
        :param alert_sink: Sink receiving query failure alerts.
        :param page_size: Maximum symbols per query (default: 25).
        :param max_retries: Failed attempts allowed per page (default: 3).
        :param pacing: Pacing policy (default: 3 second delay).
        :raises ValueError: If page_size or max_retries is less than 1.
        """
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.query_page = query_page
        self.alert_sink = alert_sink
        self.page_size = page_size
        self.max_retries = max_retries
        self.pacing = pacing if pacing is not None else Pacing()

    def paginate(self, symbols: Sequence[str]) -> list[list[str]]:
        """Split symbols into consecutive pages of at most page_size.

        :param symbols: Ordered symbols.
        :returns: List of pages, preserving input order.
        """
        return [
            list(symbols[start:start + self.page_size])
            for start in range(0, len(symbols), self.page_size)
        ]

    @staticmethod
    def decode(symbols: Sequence[str], values: Sequence[int]) -> list[PriceQuantum]:
        """Group flat response values into symbol-tagged quanta.

        :param symbols: Symbols of the page, in call order.
        :param values: Flat response, 3 values per symbol.
        :returns: One PriceQuantum per symbol.
        :raises BatchQueryError: If the response length does not match.
        """
        expected = VALUES_PER_SYMBOL * len(symbols)
        if len(values) != expected:
            raise BatchQueryError(
                f"Expected {expected} values for {len(symbols)} symbols, "
                f"got {len(values)}"
            )

        quanta = []
        for i, symbol in enumerate(symbols):
            offset = i * VALUES_PER_SYMBOL
            quanta.append(
                PriceQuantum(
                    symbol=symbol,
                    rate=int(values[offset]),
                    last_updated_base=int(values[offset + 1]),
                    last_updated_quote=int(values[offset + 2]),
                )
            )
        return quanta

    async def fetch(self, symbols: Sequence[str]) -> list[PriceQuantum]:
        """Fetch quanta for all symbols.

        Symbols of a page that exhausted its retries are absent from the
        result; every returned quantum carries its own symbol.

        :param symbols: Ordered symbols to query.
        :returns: Quanta of the symbols that round-tripped, in input order.
        """
        pages = self.paginate(symbols)
        results: list[PriceQuantum] = []

        index = 0
        failures = 0
        while index < len(pages):
            page = pages[index]
            try:
                values = await self.query_page(page)
                results.extend(self.decode(page, values))
                logger.debug(
                    f"Page {index + 1}/{len(pages)}: {len(page)} symbols fetched"
                )
                index += 1
                failures = 0
            except Exception as e:
                failures += 1
                logger.warning(
                    f"Page {index + 1}/{len(pages)} query failed "
                    f"(attempt {failures}/{self.max_retries}): {e}"
                )
                self.alert_sink.notify("Fail to query getReferenceDataBulk", str(e))
                if failures >= self.max_retries:
                    logger.error(
                        f"Skipping page {index + 1}/{len(pages)} "
                        f"({', '.join(page)}) after {failures} failures"
                    )
                    self.alert_sink.notify(
                        "Reach max retry",
                        f"MAX_RETRY: {self.max_retries}, "
                        f"MAX_QUERY_SYMBOLS: {self.page_size}",
                    )
                    index += 1
                    failures = 0

            await self.pacing.wait()

        if len(results) < len(symbols):
            logger.warning(
                f"Fetched {len(results)}/{len(symbols)} symbols from contract"
            )
        return results
