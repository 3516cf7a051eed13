from __future__ import annotations

from datetime import datetime
from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from crypto_watcher import __version__
from crypto_watcher.model import GlobalMetrics, Signal, SymbolReport, TickReport

NA = "[grey50]N/A[/]"

SIGNAL_STYLES = {
    Signal.BUY: "bold green",
    Signal.SELL: "bold red",
    Signal.HOLD_CAUTIOUS: "bold yellow",
    Signal.WAIT_CAUTIOUS: "bold yellow",
    Signal.BUY_TENTATIVE: "green",
    Signal.SELL_TENTATIVE: "red",
    Signal.WAIT_TENTATIVE: "yellow",
    Signal.WATCH: "blue",
    Signal.NEUTRAL: "grey50",
}

console = Console()


def format_price(price: float) -> str:
    if price > 10000:
        return f"{price:.1f}"
    if price > 100:
        return f"{price:.2f}"
    if price > 1:
        return f"{price:.3f}"
    if price < 0.01:
        return f"{price:.5f}"
    return f"{price:.4f}"


def format_large(num: float) -> str:
    if num >= 1_000_000_000_000:
        return f"{num / 1_000_000_000_000:.2f}T"
    if num >= 1_000_000_000:
        return f"{num / 1_000_000_000:.2f}B"
    if num >= 1_000_000:
        return f"{num / 1_000_000:.2f}M"
    return f"{num:.2f}"


def color_change(change: Optional[float]) -> str:
    if change is None:
        return NA
    if change > 0:
        return f"[green]▲ +{change:.2f}%[/]"
    if change < 0:
        return f"[red]▼ {change:.2f}%[/]"
    return "[white]   0.00%[/]"


def color_price(row: SymbolReport) -> str:
    price = format_price(row.current)
    if row.change_tick is None or row.change_tick == 0:
        return f"[white]{price}[/]"
    return f"[green]{price}[/]" if row.change_tick > 0 else f"[red]{price}[/]"


def color_volatility(volatility: Optional[float]) -> str:
    if volatility is None:
        return NA
    if volatility >= 5:
        return f"[bold red]{volatility:.2f}%[/]"
    if volatility >= 2:
        return f"[yellow]{volatility:.2f}%[/]"
    return f"[green]{volatility:.2f}%[/]"


def color_rank(rank: Optional[int]) -> str:
    return NA if rank is None else str(rank)


def color_signal(signal: Optional[Signal]) -> str:
    if signal is None:
        return NA
    return f"[{SIGNAL_STYLES[signal]}]{signal.value}[/]"


def build_table(report: TickReport) -> Table:
    cur = report.currency.upper()
    table = Table(box=box.SIMPLE_HEAVY, expand=False)
    table.add_column("Symbol", style="blue")
    table.add_column(f"Price {cur}", justify="right")
    table.add_column("24h High", justify="right")
    table.add_column("24h Low", justify="right")
    table.add_column("24h Avg", justify="right")
    table.add_column("% Change", justify="right")
    table.add_column("15m", justify="right")
    table.add_column("30m", justify="right")
    table.add_column("Total % Change", justify="right")
    table.add_column("Volatility", justify="right")
    table.add_column("Vol. Rank", justify="right")
    table.add_column("Signal")
    for row in report.rows:
        table.add_row(
            row.display_symbol,
            color_price(row),
            format_price(row.high),
            format_price(row.low),
            format_price(row.avg),
            color_change(row.change_tick),
            color_change(row.change_15m),
            color_change(row.change_30m),
            color_change(row.change_session),
            color_volatility(row.volatility),
            color_rank(row.volatility_rank),
            color_signal(row.signal),
        )
    return table


def build_metrics_table(metrics: GlobalMetrics, currency: str) -> Table:
    cur = currency.upper()
    table = Table(title="Global Market", box=box.SIMPLE, show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total Market Cap", f"{format_large(metrics.total_market_cap)} {cur}")
    table.add_row("24h Volume", f"{format_large(metrics.total_volume_24h)} {cur}")
    table.add_row("BTC Dominance", f"{metrics.btc_dominance:.2f}%")
    table.add_row("ETH Dominance", f"{metrics.eth_dominance:.2f}%")
    table.add_row("Others", f"{metrics.others_dominance:.2f}%")
    return table


def task_message(run_count: int, when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    return f"[grey50]\n[{run_count}] Task run at {when.strftime('%H:%M:%S')}[/]"


def print_report(report: TickReport, out: Optional[Console] = None) -> None:
    out = out or console
    out.print(task_message(report.run_count, datetime.fromtimestamp(report.taken_at / 1000)))
    if report.rows:
        out.print(build_table(report))
    for symbol_id in report.missing:
        out.print(f"[yellow]Warning: Could not find price data for: {symbol_id}.[/]")
    if report.global_metrics is not None:
        out.print(build_metrics_table(report.global_metrics, report.currency))


def print_app_start(out: Optional[Console] = None) -> None:
    out = out or console
    out.print(Panel.fit("[bold blue]Z Crypto Watcher[/]", border_style="blue", box=box.DOUBLE))
    out.print(f"[green]Crypto Watcher v{__version__} started.[/]")


def print_scheduler_start(interval: str, out: Optional[Console] = None) -> None:
    (out or console).print(f"[green]Scheduler started: fetching every {interval}.[/]")


def print_config_error(message: str, out: Optional[Console] = None) -> None:
    (out or console).print(f"[red]{escape(message)}[/]")
