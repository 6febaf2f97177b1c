import os
from decimal import Decimal

from dotenv import load_dotenv
from pydantic import BaseModel

from tally.money import CENTS
from tally.schemas import Money


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class EngineConfig(BaseModel):
    """Knobs for one BalanceEngine. Several configs can coexist in one process."""

    tolerance: Money = CENTS
    cache_enabled: bool = True
    cache_ttl_seconds: float = 5 * 60
    # Serve expense-only balances if the settlement overlay blows up
    allow_degraded: bool = True
    sentry_dsn: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls) -> "EngineConfig":
        load_dotenv()
        return cls(
            tolerance=Decimal(os.getenv("TALLY_TOLERANCE", str(CENTS))),
            cache_enabled=_env_bool("TALLY_CACHE_ENABLED", True),
            cache_ttl_seconds=float(os.getenv("TALLY_CACHE_TTL_SECONDS", 5 * 60)),
            allow_degraded=_env_bool("TALLY_ALLOW_DEGRADED", True),
            sentry_dsn=os.getenv("SENTRY_DSN") or None,
        )
