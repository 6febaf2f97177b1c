from sqlalchemy.orm import Session

from tally.cache import ResultCache
from tally.config import EngineConfig
from tally.database import Base, create_db_engine, create_session_factory
from tally.engine import BalanceEngine
from tally.ledger import SQLLedgerReader
from tally.logging_config import setup_logging, setup_monitoring


def bootstrap(database_url: str | None = None, config: EngineConfig | None = None):
    """Wire logging, Sentry and the database. Returns (config, session_factory)."""
    config = config or EngineConfig.from_env()
    logger = setup_logging()
    if setup_monitoring(config.sentry_dsn):
        logger.info("Sentry monitoring enabled")

    engine = create_db_engine(database_url)
    # Create tables (use migrations in production)
    Base.metadata.create_all(bind=engine)
    return config, create_session_factory(engine)


def engine_for_session(
    db: Session,
    config: EngineConfig | None = None,
    cache: ResultCache | None = None,
) -> BalanceEngine:
    """One engine per request session; pass a shared cache to reuse results across requests."""
    return BalanceEngine(SQLLedgerReader(db), config, cache)
