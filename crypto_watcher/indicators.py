from __future__ import annotations

import math
from typing import Dict, Iterable, Optional, Protocol, Sequence, Tuple

from loguru import logger

from crypto_watcher.errors import VolatilityError
from crypto_watcher.model import VolatilityResult

MINUTE_MS = 60_000

# (minutes back, weight); shorter horizons weigh more
DEFAULT_HORIZONS: Tuple[Tuple[int, float], ...] = (
    (1, 1.5),
    (5, 1.2),
    (15, 1.0),
    (30, 0.8),
)


class PriceLookup(Protocol):
    async def price_at_or_before(self, symbol_id: str, timestamp: int) -> Optional[float]:
        ...


class VolatilityStrategy(Protocol):
    """Shared interface of the volatility engines.

    ``uses_history`` tells the caller whether scores depend on price history
    reads, so a tick whose history write failed can skip them.
    """

    uses_history: bool

    async def compute_volatility(
        self,
        symbol_id: str,
        current_price: float,
        now: int,
        has_prior_snapshot: bool,
        previous_price: Optional[float] = None,
    ) -> float:
        ...


def percent_change(current: float, reference: Optional[float]) -> Optional[float]:
    """Percent move from *reference* to *current*, or None if it is undefined."""
    if reference is None:
        return None
    try:
        change = (current - reference) / reference * 100
    except ZeroDivisionError:
        return None
    if not math.isfinite(change):
        return None
    return change


def abs_change_pct(symbol_id: str, current: float, past: float) -> float:
    if past == 0:
        raise VolatilityError(f"Reference price for {symbol_id} is zero.", symbol=symbol_id)
    change = abs((current - past) / past) * 100
    if not math.isfinite(change):
        raise VolatilityError(f"Non-finite change for {symbol_id}.", symbol=symbol_id)
    return change


def weighted_average(changes: Sequence[float], weights: Sequence[float]) -> float:
    """Weighted mean of *changes* paired positionally with *weights*."""
    pairs = list(zip(changes, weights))
    total_weight = sum(w for _, w in pairs)
    if not pairs or total_weight == 0:
        return 0.0
    return sum(c * w for c, w in pairs) / total_weight


class VolatilityEngine:
    """Weighted multi-horizon volatility.

    Horizons without history (or with a zero reference price) are dropped,
    and the changes that remain are paired with the weights by position:
    the first resolved change takes 1.5, the second 1.2 and so on. Only the
    weights actually paired enter the total, so a young session is scored
    on the horizons it has, front-weighted.
    """

    uses_history = True

    def __init__(
        self,
        history: PriceLookup,
        horizons: Sequence[Tuple[int, float]] = DEFAULT_HORIZONS,
    ) -> None:
        self.history = history
        self.horizons = tuple(horizons)

    async def compute_volatility(
        self,
        symbol_id: str,
        current_price: float,
        now: int,
        has_prior_snapshot: bool,
        previous_price: Optional[float] = None,
    ) -> float:
        if not has_prior_snapshot:
            return 0.0

        changes = []
        for minutes, _ in self.horizons:
            past = await self.history.price_at_or_before(symbol_id, now - minutes * MINUTE_MS)
            if past is None:
                continue
            try:
                changes.append(abs_change_pct(symbol_id, current_price, past))
            except VolatilityError as exc:
                logger.debug(f"{exc} Skipping {minutes}m horizon.")
        return weighted_average(changes, [w for _, w in self.horizons])


class TickVolatilityEngine:
    """Single-horizon volatility: absolute move since the previous tick."""

    uses_history = False

    async def compute_volatility(
        self,
        symbol_id: str,
        current_price: float,
        now: int,
        has_prior_snapshot: bool,
        previous_price: Optional[float] = None,
    ) -> float:
        if not has_prior_snapshot or previous_price is None:
            return 0.0
        try:
            return abs_change_pct(symbol_id, current_price, previous_price)
        except VolatilityError as exc:
            logger.debug(str(exc))
            return 0.0


def build_volatility_engine(mode: str, history: PriceLookup) -> VolatilityStrategy:
    if mode == "tick":
        return TickVolatilityEngine()
    return VolatilityEngine(history)


def rank_by_volatility(results: Iterable[VolatilityResult]) -> Dict[str, int]:
    """1-based ranks, most volatile first; ties keep snapshot order."""
    ordered = sorted(results, key=lambda r: r.weighted_pct, reverse=True)
    return {r.symbol_id: idx for idx, r in enumerate(ordered, start=1)}
