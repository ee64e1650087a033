"""Unit tests for BatchQueryEngine."""

import asyncio

import pytest

from monitor.src.AlertSink import AlertSink
from monitor.src.BatchQueryEngine import (
    BatchQueryEngine,
    BatchQueryError,
    Pacing,
    PriceQuantum,
)


class RecordingAlertSink(AlertSink):
    def __init__(self) -> None:
        self.alerts: list[tuple[str, str]] = []

    def notify(self, title: str, body: str) -> None:
        self.alerts.append((title, body))

    def titles(self, title: str) -> int:
        return sum(1 for t, _ in self.alerts if t == title)


class RecordingPacing(Pacing):
    def __init__(self) -> None:
        super().__init__(0)
        self.waits = 0

    async def wait(self) -> None:
        self.waits += 1


class FakeQuery:
    """Scripted query capability.

    Each call pops the next outcome: an exception instance is raised,
    anything else means success. Successful calls answer
    (rate=index*100, base=1000+index, quote=2000+index) per symbol, where
    index is the symbol's position in the universe.
    """

    def __init__(self, universe: list[str], outcomes: list | None = None) -> None:
        self.universe = universe
        self.outcomes = list(outcomes or [])
        self.calls: list[list[str]] = []

    async def __call__(self, symbols: list[str]) -> list[int]:
        self.calls.append(list(symbols))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
        values: list[int] = []
        for symbol in symbols:
            i = self.universe.index(symbol)
            values.extend([i * 100, 1000 + i, 2000 + i])
        return values


def run(coro):
    return asyncio.run(coro)


def make_engine(query, sink=None, page_size=25, max_retries=3, pacing=None):
    return BatchQueryEngine(
        query_page=query,
        alert_sink=sink or RecordingAlertSink(),
        page_size=page_size,
        max_retries=max_retries,
        pacing=pacing or RecordingPacing(),
    )


class TestBatchQueryEngineInit:
    """Test BatchQueryEngine initialization."""

    def test_default_values(self) -> None:
        """Defaults should match the contract query limits."""
        engine = BatchQueryEngine(FakeQuery([]), RecordingAlertSink())
        assert engine.page_size == 25
        assert engine.max_retries == 3
        assert engine.pacing.delay == 3.0

    def test_invalid_page_size(self) -> None:
        with pytest.raises(ValueError, match="page_size must be at least 1"):
            make_engine(FakeQuery([]), page_size=0)

    def test_invalid_max_retries(self) -> None:
        with pytest.raises(ValueError, match="max_retries must be at least 1"):
            make_engine(FakeQuery([]), max_retries=0)


class TestPaginate:
    """Test page splitting."""

    def test_pages_preserve_order(self) -> None:
        engine = make_engine(FakeQuery([]), page_size=2)
        assert engine.paginate(["a", "b", "c", "d", "e"]) == [
            ["a", "b"],
            ["c", "d"],
            ["e"],
        ]

    def test_exact_multiple(self) -> None:
        engine = make_engine(FakeQuery([]), page_size=3)
        assert engine.paginate(["a", "b", "c"]) == [["a", "b", "c"]]

    def test_empty(self) -> None:
        engine = make_engine(FakeQuery([]))
        assert engine.paginate([]) == []


class TestDecode:
    """Test response decoding."""

    def test_groups_of_three(self) -> None:
        quanta = BatchQueryEngine.decode(["btc", "eth"], [10, 11, 12, 20, 21, 22])
        assert quanta == [
            PriceQuantum("btc", 10, 11, 12),
            PriceQuantum("eth", 20, 21, 22),
        ]

    def test_large_rate_kept_exact(self) -> None:
        """Rates beyond 64-bit range must not be truncated."""
        rate = 2**200 + 1
        quanta = BatchQueryEngine.decode(["btc"], [rate, 1, 2])
        assert quanta[0].rate == rate

    def test_length_mismatch(self) -> None:
        with pytest.raises(BatchQueryError, match="Expected 6 values"):
            BatchQueryEngine.decode(["btc", "eth"], [1, 2, 3])


class TestFetch:
    """Test paged fetching with retries."""

    def test_single_page_first_try(self) -> None:
        """One symbol, page size 25, success on first try."""
        sink = RecordingAlertSink()
        query = FakeQuery(["BTC"])
        engine = make_engine(query, sink=sink)

        result = run(engine.fetch(["BTC"]))

        assert result == [PriceQuantum("BTC", 0, 1000, 2000)]
        assert sink.alerts == []
        assert query.calls == [["BTC"]]

    def test_empty_universe(self) -> None:
        query = FakeQuery([])
        pacing = RecordingPacing()
        engine = make_engine(query, pacing=pacing)

        assert run(engine.fetch([])) == []
        assert query.calls == []
        assert pacing.waits == 0

    def test_order_preserved_across_pages(self) -> None:
        universe = [f"S{i}" for i in range(7)]
        query = FakeQuery(universe)
        engine = make_engine(query, page_size=3)

        result = run(engine.fetch(universe))

        assert [q.symbol for q in result] == universe
        assert [q.rate for q in result] == [i * 100 for i in range(7)]
        assert query.calls == [["S0", "S1", "S2"], ["S3", "S4", "S5"], ["S6"]]

    def test_retry_then_success(self) -> None:
        """Two failures then success with max_retries=3."""
        sink = RecordingAlertSink()
        query = FakeQuery(["BTC"], [RuntimeError("boom"), RuntimeError("boom")])
        engine = make_engine(query, sink=sink, max_retries=3)

        result = run(engine.fetch(["BTC"]))

        assert result == [PriceQuantum("BTC", 0, 1000, 2000)]
        assert sink.titles("Fail to query getReferenceDataBulk") == 2
        assert sink.titles("Reach max retry") == 0
        assert query.calls == [["BTC"], ["BTC"], ["BTC"]]

    def test_always_failing_page_skipped(self) -> None:
        """Always failing with max_retries=2 skips the page."""
        sink = RecordingAlertSink()
        query = FakeQuery(["BTC"], [RuntimeError("down")] * 10)
        engine = make_engine(query, sink=sink, max_retries=2)

        result = run(engine.fetch(["BTC"]))

        assert result == []
        assert sink.titles("Fail to query getReferenceDataBulk") == 2
        assert sink.titles("Reach max retry") == 1
        assert len(query.calls) == 2

    def test_max_retry_alert_names_limits(self) -> None:
        sink = RecordingAlertSink()
        query = FakeQuery(["BTC"], [RuntimeError("down")])
        engine = make_engine(query, sink=sink, page_size=5, max_retries=1)

        run(engine.fetch(["BTC"]))

        body = dict(sink.alerts)["Reach max retry"]
        assert body == "MAX_RETRY: 1, MAX_QUERY_SYMBOLS: 5"

    def test_failure_alert_carries_error(self) -> None:
        sink = RecordingAlertSink()
        query = FakeQuery(["BTC"], [ConnectionError("node unreachable")])
        engine = make_engine(query, sink=sink)

        run(engine.fetch(["BTC"]))

        assert ("Fail to query getReferenceDataBulk", "node unreachable") in sink.alerts

    def test_skipped_page_does_not_shift_later_symbols(self) -> None:
        """Symbols after a skipped page keep their own values."""
        universe = ["A", "B", "C", "D", "E"]
        # Page 1 succeeds, page 2 fails twice (skipped), page 3 succeeds.
        query = FakeQuery(
            universe, [None, RuntimeError("x"), RuntimeError("y"), None]
        )
        sink = RecordingAlertSink()
        engine = make_engine(query, sink=sink, page_size=2, max_retries=2)

        result = run(engine.fetch(universe))

        assert [q.symbol for q in result] == ["A", "B", "E"]
        assert result[2] == PriceQuantum("E", 400, 1004, 2004)
        assert sink.titles("Reach max retry") == 1
        assert query.calls == [["A", "B"], ["C", "D"], ["C", "D"], ["E"]]

    def test_retry_counter_resets_per_page(self) -> None:
        """A page that recovered does not consume the next page's retries."""
        universe = ["A", "B"]
        query = FakeQuery(
            universe,
            [RuntimeError("1"), None, RuntimeError("2"), None],
        )
        sink = RecordingAlertSink()
        engine = make_engine(query, sink=sink, page_size=1, max_retries=2)

        result = run(engine.fetch(universe))

        assert [q.symbol for q in result] == ["A", "B"]
        assert sink.titles("Reach max retry") == 0

    def test_retried_page_appears_once(self) -> None:
        universe = ["A", "B", "C"]
        query = FakeQuery(universe, [None, RuntimeError("flaky")])
        engine = make_engine(query, page_size=1, max_retries=3)

        result = run(engine.fetch(universe))

        assert [q.symbol for q in result] == ["A", "B", "C"]

    def test_malformed_response_is_retried(self) -> None:
        sink = RecordingAlertSink()
        calls = []

        async def query(symbols: list[str]) -> list[int]:
            calls.append(symbols)
            if len(calls) == 1:
                return [1, 2]
            return [5, 6, 7]

        engine = make_engine(query, sink=sink)
        result = run(engine.fetch(["BTC"]))

        assert result == [PriceQuantum("BTC", 5, 6, 7)]
        assert sink.titles("Fail to query getReferenceDataBulk") == 1

    def test_pacing_after_every_attempt(self) -> None:
        universe = ["A", "B", "C"]
        query = FakeQuery(universe, [None, RuntimeError("x"), None, None])
        pacing = RecordingPacing()
        engine = make_engine(query, page_size=1, pacing=pacing)

        run(engine.fetch(universe))

        assert pacing.waits == len(query.calls) == 4

    def test_pacing_after_skipped_page(self) -> None:
        """A page skipped after max_retries is still followed by a wait."""
        universe = ["A", "B"]
        query = FakeQuery(universe, [RuntimeError("x"), RuntimeError("y"), None])
        sink = RecordingAlertSink()
        pacing = RecordingPacing()
        engine = make_engine(query, sink=sink, page_size=1, max_retries=2, pacing=pacing)

        result = run(engine.fetch(universe))

        assert [q.symbol for q in result] == ["B"]
        assert sink.titles("Reach max retry") == 1
        assert pacing.waits == len(query.calls) == 3

    def test_pages_fetched_sequentially(self) -> None:
        in_flight = 0
        max_in_flight = 0

        async def query(symbols: list[str]) -> list[int]:
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return [1, 2, 3] * len(symbols)

        engine = make_engine(query, page_size=1)
        run(engine.fetch(["A", "B", "C", "D"]))

        assert max_in_flight == 1


class TestPacing:
    """Test the pacing policy."""

    def test_zero_delay_does_not_sleep(self, monkeypatch) -> None:
        slept = []

        async def fake_sleep(delay):
            slept.append(delay)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        run(Pacing(0).wait())
        run(Pacing(2.5).wait())

        assert slept == [2.5]
