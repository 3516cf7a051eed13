"""HTTP clients for ticker prices (Binance) and global metrics (CoinMarketCap)."""

from __future__ import annotations

import json
import time
from typing import Dict, List, Optional, Sequence

import httpx
import pydantic
from loguru import logger
from pydantic import BaseModel, Field

from crypto_watcher.errors import FetchError, ValidationError
from crypto_watcher.model import GlobalMetrics, Snapshot, TickerQuote

BINANCE_URL = "https://api.binance.com"
CMC_URL = "https://pro-api.coinmarketcap.com"


class BinanceTicker(BaseModel):
    symbol: str
    last_price: float = Field(alias="lastPrice")
    high_price: float = Field(alias="highPrice")
    low_price: float = Field(alias="lowPrice")
    weighted_avg_price: float = Field(alias="weightedAvgPrice")


class BinanceErrorBody(BaseModel):
    code: int
    msg: str


class CmcQuote(BaseModel):
    total_market_cap: float
    total_volume_24h: float


class CmcGlobalData(BaseModel):
    btc_dominance: float
    eth_dominance: float = 0.0
    quote: Dict[str, CmcQuote]


class CmcGlobalMetricsResponse(BaseModel):
    data: CmcGlobalData


class BinanceTickerClient:
    """Fetches 24h ticker statistics and folds them into a Snapshot."""

    ENDPOINT = "/api/v3/ticker/24hr"

    def __init__(
        self,
        timeout: float = 10.0,
        base_url: str = BINANCE_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._own_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def fetch_snapshot(self, symbol_ids: Sequence[str], now: Optional[int] = None) -> Snapshot:
        params = {"symbols": json.dumps(list(symbol_ids), separators=(",", ":"))}
        try:
            resp = await self.client.get(self.ENDPOINT, params=params)
        except httpx.TimeoutException as exc:
            raise FetchError(f"Ticker request timed out: {exc}", source=self.ENDPOINT) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Network error: {exc}", source=self.ENDPOINT) from exc

        if resp.status_code == 400:
            raise FetchError(
                f"API error: {self._error_message(resp)}. Check the symbols in the config.",
                source=self.ENDPOINT,
            )
        if resp.is_error:
            raise FetchError(
                f"Network error: HTTP {resp.status_code} {resp.reason_phrase}",
                source=self.ENDPOINT,
            )

        tickers = self._parse(resp)
        taken_at = now if now is not None else int(time.time() * 1000)
        quotes = {
            t.symbol: TickerQuote(
                current=t.last_price,
                high=t.high_price,
                low=t.low_price,
                avg=t.weighted_avg_price,
            )
            for t in tickers
        }
        return Snapshot(taken_at=taken_at, quotes=quotes)

    def _parse(self, resp: httpx.Response) -> List[BinanceTicker]:
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ValidationError(f"Ticker response is not JSON: {exc}", source=self.ENDPOINT) from exc
        if not isinstance(payload, list):
            raise ValidationError("Ticker response is not a list.", source=self.ENDPOINT)
        try:
            return [BinanceTicker.model_validate(item) for item in payload]
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Malformed ticker payload: {exc}", source=self.ENDPOINT) from exc

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            return BinanceErrorBody.model_validate(resp.json()).msg
        except (ValueError, pydantic.ValidationError):
            return "Bad Request"

    async def aclose(self) -> None:
        if self._own_client:
            await self.client.aclose()


class CoinMarketCapClient:
    ENDPOINT = "/v1/global-metrics/quotes/latest"

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        base_url: str = CMC_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            raise FetchError(
                "CoinMarketCap API key is missing. Please set CMC_API_KEY environment variable.",
                source=self.ENDPOINT,
            )
        self._own_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.api_key = api_key

    async def fetch_global_metrics(self, convert: str) -> GlobalMetrics:
        convert = convert.upper()
        try:
            resp = await self.client.get(
                self.ENDPOINT,
                params={"convert": convert},
                headers={"X-CMC_PRO_API_KEY": self.api_key},
            )
        except httpx.HTTPError as exc:
            raise FetchError(f"Network error: {exc}", source=self.ENDPOINT) from exc
        if resp.is_error:
            logger.warning(f"CoinMarketCap API Error ({resp.status_code}): {resp.text[:200]}")
            raise FetchError(
                f"CoinMarketCap API returned status {resp.status_code}", source=self.ENDPOINT
            )

        try:
            data = CmcGlobalMetricsResponse.model_validate(resp.json()).data
        except (ValueError, pydantic.ValidationError) as exc:
            raise ValidationError(f"Malformed global metrics payload: {exc}", source=self.ENDPOINT) from exc

        quote = data.quote.get(convert)
        if quote is None:
            raise ValidationError(
                f"CoinMarketCap API response missing quote for {convert}", source=self.ENDPOINT
            )
        return GlobalMetrics(
            total_market_cap=quote.total_market_cap,
            total_volume_24h=quote.total_volume_24h,
            btc_dominance=data.btc_dominance,
            eth_dominance=data.eth_dominance,
        )

    async def aclose(self) -> None:
        if self._own_client:
            await self.client.aclose()
