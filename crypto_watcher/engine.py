"""Per-tick orchestration: fetch, fold into history, analyse, rank, render."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from loguru import logger

from crypto_watcher.errors import FetchError, StoreWriteError, WatcherError
from crypto_watcher.indicators import (
    MINUTE_MS,
    VolatilityStrategy,
    percent_change,
    rank_by_volatility,
)
from crypto_watcher.model import (
    GlobalMetrics,
    PricePoint,
    Snapshot,
    SymbolReport,
    TickReport,
    VolatilityResult,
)
from crypto_watcher.signals import Classifier, classify_extended

PREVIOUS_KEY = "previousPrices"
BASELINE_KEY = "initialPrices"


class TickerSource(Protocol):
    async def fetch_snapshot(self, symbol_ids: Sequence[str], now: Optional[int] = None) -> Snapshot:
        ...


class MetricsSource(Protocol):
    async def fetch_global_metrics(self, convert: str) -> GlobalMetrics:
        ...


class HistoryStore(Protocol):
    async def append_many(self, points: Sequence[PricePoint]) -> None:
        ...

    async def price_at_or_before(self, symbol_id: str, timestamp: int) -> Optional[float]:
        ...

    async def prune(self, older_than: int) -> int:
        ...


class StateRepository(Protocol):
    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def increment_run_count(self) -> int:
        ...


@dataclass
class SessionState:
    previous: Optional[Snapshot] = None
    baseline: Optional[Snapshot] = None
    run_count: int = 0


def now_ms() -> int:
    return int(time.time() * 1000)


class TickOrchestrator:
    """Runs one tick at a time over shared session state.

    A tick that fires while another is still running is skipped. History
    is appended and pruned before any analytics read it, and the previous
    snapshot and baseline are only replaced once the tick's rows are built.
    """

    def __init__(
        self,
        coins: Dict[str, str],
        currency: str,
        fetcher: TickerSource,
        history: HistoryStore,
        state_repo: StateRepository,
        volatility_engine: VolatilityStrategy,
        classifier: Classifier = classify_extended,
        renderer: Optional[Callable[[TickReport], None]] = None,
        metrics: Optional[MetricsSource] = None,
        retention_minutes: int = 35,
        fetch_timeout: float = 10.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.coins = dict(coins)
        self.currency = currency
        self.fetcher = fetcher
        self.history = history
        self.state_repo = state_repo
        self.volatility_engine = volatility_engine
        self.classifier = classifier
        self.renderer = renderer
        self.metrics = metrics
        self.retention_ms = retention_minutes * MINUTE_MS
        self.fetch_timeout = fetch_timeout
        self.clock = clock
        self.state = SessionState()
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def restore(self) -> SessionState:
        """Load previous snapshot and baseline from the state repository."""
        previous = await self.state_repo.get(PREVIOUS_KEY)
        baseline = await self.state_repo.get(BASELINE_KEY)
        self.state.previous = Snapshot.from_dict(previous) if previous else None
        self.state.baseline = Snapshot.from_dict(baseline) if baseline else None
        if self.state.baseline is not None:
            logger.info(f"Restored session baseline from {self.state.baseline.taken_at}.")
        return self.state

    async def __call__(self) -> None:
        await self.run_tick()

    async def run_tick(self) -> Optional[TickReport]:
        if self._lock.locked():
            logger.warning("Previous tick still running, skipping this one.")
            return None
        async with self._lock:
            return await self._tick()

    async def _tick(self) -> Optional[TickReport]:
        self.state.run_count = await self._next_run_count()
        now = self.clock()

        try:
            snapshot = await asyncio.wait_for(
                self.fetcher.fetch_snapshot(list(self.coins), now=now),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Ticker fetch timed out after {self.fetch_timeout}s, skipping tick.")
            return None
        except FetchError as exc:
            logger.warning(f"Ticker fetch failed ({type(exc).__name__}): {exc}. Skipping tick.")
            return None

        history_ok = await self._record(snapshot, now)
        report = await self.analyse(snapshot, now, history_ok=history_ok)
        report.global_metrics = await self._global_metrics()
        await self._advance(snapshot)

        if self.renderer is not None:
            self.renderer(report)
        return report

    async def _next_run_count(self) -> int:
        try:
            return await self.state_repo.increment_run_count()
        except StoreWriteError as exc:
            logger.error(f"{exc}")
            return self.state.run_count + 1

    async def _record(self, snapshot: Snapshot, now: int) -> bool:
        points = [p for p in snapshot.points() if p.symbol_id in self.coins]
        try:
            await self.history.append_many(points)
            await self.history.prune(now - self.retention_ms)
        except StoreWriteError as exc:
            logger.error(f"History write failed, continuing without history this tick: {exc}")
            return False
        return True

    async def analyse(self, snapshot: Snapshot, now: int, history_ok: bool = True) -> TickReport:
        previous = self.state.previous
        has_prior = previous is not None
        baseline = self.state.baseline
        report = TickReport(run_count=self.state.run_count, taken_at=now, currency=self.currency)
        results: List[VolatilityResult] = []

        for symbol_id, display in self.coins.items():
            quote = snapshot.get(symbol_id)
            if quote is None:
                logger.warning(f"Could not find price data for: {symbol_id}.")
                report.missing.append(symbol_id)
                continue
            try:
                row = await self._symbol_report(
                    symbol_id, display, snapshot, previous, baseline, now, history_ok
                )
            except WatcherError as exc:
                logger.warning(f"Skipping {symbol_id}: {exc}")
                report.missing.append(symbol_id)
                continue
            report.rows.append(row)
            if row.volatility is not None:
                results.append(VolatilityResult(symbol_id, row.volatility))

        if has_prior:
            ranks = rank_by_volatility(results)
            for row in report.rows:
                row.volatility_rank = ranks.get(row.symbol_id)
        return report

    async def _symbol_report(
        self,
        symbol_id: str,
        display: str,
        snapshot: Snapshot,
        previous: Optional[Snapshot],
        baseline: Optional[Snapshot],
        now: int,
        history_ok: bool,
    ) -> SymbolReport:
        quote = snapshot.quotes[symbol_id]
        current = quote.current
        previous_price = previous.current(symbol_id) if previous is not None else None

        change_15m = change_30m = None
        if history_ok:
            change_15m = percent_change(current, await self._price_ago(symbol_id, now, 15))
            change_30m = percent_change(current, await self._price_ago(symbol_id, now, 30))

        change_session = None
        if baseline is not None:
            change_session = percent_change(current, baseline.current(symbol_id))

        volatility = None
        if previous is not None and (history_ok or not self.volatility_engine.uses_history):
            volatility = await self.volatility_engine.compute_volatility(
                symbol_id, current, now, True, previous_price=previous_price
            )

        signal = None
        if change_15m is not None and change_30m is not None:
            signal = self.classifier(change_15m, change_30m, current, quote.high, quote.low)

        return SymbolReport(
            symbol_id=symbol_id,
            display_symbol=display,
            current=current,
            high=quote.high,
            low=quote.low,
            avg=quote.avg,
            change_tick=percent_change(current, previous_price),
            change_15m=change_15m,
            change_30m=change_30m,
            change_session=change_session,
            volatility=volatility,
            signal=signal,
        )

    async def _price_ago(self, symbol_id: str, now: int, minutes: int) -> Optional[float]:
        return await self.history.price_at_or_before(symbol_id, now - minutes * MINUTE_MS)

    async def _global_metrics(self) -> Optional[GlobalMetrics]:
        if self.metrics is None:
            return None
        try:
            return await asyncio.wait_for(
                self.metrics.fetch_global_metrics(self.currency), timeout=self.fetch_timeout
            )
        except (FetchError, asyncio.TimeoutError) as exc:
            logger.warning(f"Global metrics unavailable: {exc!r}")
            return None

    async def _advance(self, snapshot: Snapshot) -> None:
        self.state.previous = snapshot
        first = self.state.baseline is None
        if first:
            self.state.baseline = snapshot
        try:
            await self.state_repo.set(PREVIOUS_KEY, snapshot.to_dict())
            if first:
                await self.state_repo.set(BASELINE_KEY, snapshot.to_dict())
        except StoreWriteError as exc:
            logger.error(f"Session state not persisted: {exc}")

