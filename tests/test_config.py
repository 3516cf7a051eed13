import pytest

from crypto_watcher.config import (
    cron_expression,
    interval_seconds,
    load_config,
    parse_config,
    parse_interval,
    read_config,
)
from crypto_watcher.errors import ConfigError

BASE = {
    "currency": "usdt",
    "fetch_interval": "5m",
    "coins": {"BTCUSDT": "BTC", "ETHUSDT": "ETH"},
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("CMC_API_KEY", raising=False)
    monkeypatch.delenv("WATCHER_ENV", raising=False)


def test_parse_interval():
    assert parse_interval("30s") == (30, "s")
    assert interval_seconds("5m") == 300
    assert interval_seconds("2h") == 7200


@pytest.mark.parametrize("bad", ["invalid", "10years", "5", "m5", "1.5m", "0s", ""])
def test_invalid_interval(bad):
    with pytest.raises(ConfigError):
        parse_interval(bad)


def test_cron_expression():
    assert cron_expression("30s") == "*/30 * * * * *"
    assert cron_expression("5m") == "0 */5 * * * *"
    assert cron_expression("1h") == "0 0 */1 * * *"


def test_parse_config_defaults():
    cfg = parse_config(dict(BASE))
    assert cfg.coins == {"BTCUSDT": "BTC", "ETHUSDT": "ETH"}
    assert cfg.signal_mode == "extended"
    assert cfg.volatility_mode == "weighted"
    assert cfg.retention_minutes == 35
    assert cfg.storage_backend == "memory"
    assert cfg.cmc_api_key is None
    assert cfg.interval_seconds == 300


@pytest.mark.parametrize("field", ["currency", "fetch_interval", "coins"])
def test_missing_required_field(field):
    raw = dict(BASE)
    del raw[field]
    with pytest.raises(ConfigError):
        parse_config(raw)


def test_rejects_bad_values():
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, fetch_interval="5 minutes"))
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, coins=["BTCUSDT"]))
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, signal_mode="fancy"))
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, retention_minutes=-1))


def test_sqlite_default_path(monkeypatch):
    cfg = parse_config(dict(BASE, storage={"backend": "sqlite"}))
    assert cfg.storage_path == "data/dev_history.sqlite"
    monkeypatch.setenv("WATCHER_ENV", "production")
    cfg = parse_config(dict(BASE, storage={"backend": "sqlite"}))
    assert cfg.storage_path == "data/prod_history.sqlite"


def test_api_key_from_env(monkeypatch):
    monkeypatch.setenv("CMC_API_KEY", "from-env")
    assert parse_config(dict(BASE, cmc_api_key="from-file")).cmc_api_key == "from-env"


def test_load_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "currency: usdt\n"
        "fetch_interval: 30s\n"
        "coins:\n"
        "  BTCUSDT: BTC\n"
        "signal_mode: simple\n"
    )
    assert load_config(str(path))["fetch_interval"] == "30s"
    cfg = read_config(str(path))
    assert cfg.signal_mode == "simple"


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        load_config(str(path))
