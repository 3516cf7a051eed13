"""Console crypto price watcher with short-horizon volatility and signals."""

__version__ = "1.4.0"
