from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import AsyncExitStack
from typing import Dict, Optional

from loguru import logger

from crypto_watcher.api import BinanceTickerClient, CoinMarketCapClient
from crypto_watcher.config import WatcherConfig, read_config
from crypto_watcher.engine import TickOrchestrator
from crypto_watcher.errors import ConfigError
from crypto_watcher.indicators import build_volatility_engine
from crypto_watcher.printer import (
    console,
    print_app_start,
    print_config_error,
    print_report,
    print_scheduler_start,
)
from crypto_watcher.scheduler import Scheduler, install_signal_handlers
from crypto_watcher.signals import get_classifier
from crypto_watcher.storage import (
    Database,
    InMemoryPriceHistory,
    InMemoryStateRepository,
    SqlitePriceHistory,
    SqliteStateRepository,
)


def setup_logging(log_cfg: Dict[str, object]) -> None:
    log_level = log_cfg.get('level', 'INFO')
    log_file = log_cfg.get('file', 'crypto_watcher.log')
    max_bytes = log_cfg.get('maxBytes', 10_000_000)
    backup_count = log_cfg.get('backupCount', 5)

    logger.remove()
    logger.add(log_file, rotation=max_bytes, retention=backup_count, level=log_level)
    # console only gets problems; the table owns stdout
    logger.add(sys.stderr, level='WARNING')


async def build_orchestrator(config: WatcherConfig, stack: AsyncExitStack) -> TickOrchestrator:
    if config.storage_backend == 'sqlite':
        db = await stack.enter_async_context(Database(config.storage_path))
        history = SqlitePriceHistory(db.conn)
        state_repo = SqliteStateRepository(db.conn)
    else:
        history = InMemoryPriceHistory()
        state_repo = InMemoryStateRepository()

    fetcher = BinanceTickerClient(timeout=config.fetch_timeout)
    stack.push_async_callback(fetcher.aclose)

    metrics: Optional[CoinMarketCapClient] = None
    if config.cmc_api_key:
        metrics = CoinMarketCapClient(config.cmc_api_key, timeout=config.fetch_timeout)
        stack.push_async_callback(metrics.aclose)

    orchestrator = TickOrchestrator(
        coins=config.coins,
        currency=config.currency,
        fetcher=fetcher,
        history=history,
        state_repo=state_repo,
        volatility_engine=build_volatility_engine(config.volatility_mode, history),
        classifier=get_classifier(config.signal_mode),
        renderer=print_report,
        metrics=metrics,
        retention_minutes=config.retention_minutes,
        fetch_timeout=config.fetch_timeout,
    )
    await orchestrator.restore()
    return orchestrator


async def run(config: WatcherConfig, once: bool = False) -> None:
    stop = asyncio.Event()
    install_signal_handlers(stop)
    async with AsyncExitStack() as stack:
        orchestrator = await build_orchestrator(config, stack)
        print_app_start()
        await orchestrator.run_tick()
        if once:
            return
        scheduler = Scheduler(config.fetch_interval, orchestrator)
        print_scheduler_start(config.fetch_interval)
        await scheduler.run(stop)
    logger.info("Crypto Watcher stopped.")


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Console crypto price watcher")
    parser.add_argument('--config', default='config.yaml', help='Path to config YAML file.')
    parser.add_argument('--once', action='store_true', help='Run a single tick and exit.')
    args = parser.parse_args(argv)

    try:
        config = read_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        print_config_error(str(exc))
        return 1

    setup_logging(config.logging)
    try:
        asyncio.run(run(config, once=args.once))
    except KeyboardInterrupt:
        console.print("[yellow]\nInterrupted, exiting.[/]")
    return 0


if __name__ == '__main__':
    sys.exit(main())
