import json
import logging
from decimal import Decimal

from conftest import GROUP
from tally.config import EngineConfig
from tally.engine import BalanceEngine
from tally.ledger import SQLLedgerReader
from tally.logging_config import JSONFormatter, setup_monitoring
from tally.main import engine_for_session


def test_defaults():
    config = EngineConfig()
    assert config.tolerance == Decimal("0.01")
    assert config.cache_enabled
    assert config.cache_ttl_seconds == 300
    assert config.allow_degraded
    assert config.sentry_dsn is None


def test_from_env(monkeypatch):
    monkeypatch.setenv("TALLY_TOLERANCE", "0.05")
    monkeypatch.setenv("TALLY_CACHE_ENABLED", "false")
    monkeypatch.setenv("TALLY_CACHE_TTL_SECONDS", "30")
    monkeypatch.setenv("TALLY_ALLOW_DEGRADED", "0")
    monkeypatch.setenv("SENTRY_DSN", "")

    config = EngineConfig.from_env()
    assert config.tolerance == Decimal("0.05")
    assert not config.cache_enabled
    assert config.cache_ttl_seconds == 30
    assert not config.allow_degraded
    assert config.sentry_dsn is None


def test_json_formatter_includes_extra_data():
    record = logging.LogRecord("tally", logging.INFO, __file__, 1, "Settlement created", None, None)
    record.extra_data = {"group_id": GROUP, "amount": Decimal("12.50")}

    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Settlement created"
    assert entry["level"] == "INFO"
    assert entry["group_id"] == GROUP
    assert entry["amount"] == "12.50"


def test_monitoring_disabled_without_dsn():
    assert setup_monitoring(None) is False
    assert setup_monitoring("") is False


def test_engine_for_session(db_session):
    engine = engine_for_session(db_session, EngineConfig(cache_enabled=False))
    assert isinstance(engine, BalanceEngine)
    assert isinstance(engine.ledger, SQLLedgerReader)
    assert engine.suggestions(GROUP) == []
