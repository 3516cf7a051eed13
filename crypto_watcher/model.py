from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional


@dataclass(frozen=True)
class PricePoint:
    symbol_id: str
    timestamp: int  # ms epoch
    price: float


@dataclass(frozen=True)
class TickerQuote:
    current: float
    high: float
    low: float
    avg: float


@dataclass(frozen=True)
class Snapshot:
    """All quotes fetched at one tick."""

    taken_at: int
    quotes: Dict[str, TickerQuote] = field(default_factory=dict)

    def __contains__(self, symbol_id: str) -> bool:
        return symbol_id in self.quotes

    def __iter__(self) -> Iterator[str]:
        return iter(self.quotes)

    def __len__(self) -> int:
        return len(self.quotes)

    def get(self, symbol_id: str) -> Optional[TickerQuote]:
        return self.quotes.get(symbol_id)

    def current(self, symbol_id: str) -> Optional[float]:
        quote = self.quotes.get(symbol_id)
        return quote.current if quote is not None else None

    def points(self) -> List[PricePoint]:
        return [
            PricePoint(symbol_id=sid, timestamp=self.taken_at, price=q.current)
            for sid, q in self.quotes.items()
        ]

    def to_dict(self) -> dict:
        return {
            "taken_at": self.taken_at,
            "quotes": {
                sid: {"current": q.current, "high": q.high, "low": q.low, "avg": q.avg}
                for sid, q in self.quotes.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        quotes = {
            sid: TickerQuote(
                current=float(q["current"]),
                high=float(q["high"]),
                low=float(q["low"]),
                avg=float(q["avg"]),
            )
            for sid, q in data.get("quotes", {}).items()
        }
        return cls(taken_at=int(data.get("taken_at", 0)), quotes=quotes)


class Signal(str, Enum):
    BUY = "Buy"
    SELL = "Sell"
    NEUTRAL = "Neutral"
    WATCH = "Watch"
    BUY_TENTATIVE = "Buy?"
    SELL_TENTATIVE = "Sell?"
    WAIT_TENTATIVE = "Wait?"
    HOLD_CAUTIOUS = "Hold*"
    WAIT_CAUTIOUS = "Wait*"


@dataclass(frozen=True)
class VolatilityResult:
    symbol_id: str
    weighted_pct: float


@dataclass
class SymbolReport:
    """One rendered row. ``None`` means the value is not available."""

    symbol_id: str
    display_symbol: str
    current: float
    high: float
    low: float
    avg: float
    change_tick: Optional[float] = None
    change_15m: Optional[float] = None
    change_30m: Optional[float] = None
    change_session: Optional[float] = None
    volatility: Optional[float] = None
    volatility_rank: Optional[int] = None
    signal: Optional[Signal] = None


@dataclass(frozen=True)
class GlobalMetrics:
    total_market_cap: float
    total_volume_24h: float
    btc_dominance: float
    eth_dominance: float

    @property
    def others_dominance(self) -> float:
        return 100 - self.btc_dominance - self.eth_dominance


@dataclass
class TickReport:
    run_count: int
    taken_at: int
    currency: str
    rows: List[SymbolReport] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    global_metrics: Optional[GlobalMetrics] = None
