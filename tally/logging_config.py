import json
import logging
from datetime import datetime, timezone

import sentry_sdk


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra_data"):
            log_entry.update(record.extra_data)
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        # Decimal amounts and datetimes are rendered as strings
        return json.dumps(log_entry, default=str)


def setup_logging(level: int = logging.INFO):
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger("tally")
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Quiet noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger


def setup_monitoring(dsn: str | None) -> bool:
    """Initialise Sentry when a DSN is configured. Returns True if enabled."""
    if not dsn:
        return False
    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    return True
