"""Engine settings read from the domain's ``[custom]`` configuration table.

Every key can be overridden with a ``STOCKLEDGER_<KEY>`` environment variable.
"""

import os
from dataclasses import dataclass, fields
from datetime import timedelta

from protean.utils.globals import current_domain

_DEFAULTS = {
    "RESERVATION_TTL_MINUTES": 15.0,
    "SWEEPER_INTERVAL_SECONDS": 30.0,
    "LEDGER_MAX_ATTEMPTS": 5,
    "LEDGER_RETRY_BACKOFF_SECONDS": 0.01,
    "BULK_CHUNK_SIZE": 50,
    "BULK_INTER_CHUNK_DELAY_SECONDS": 0.1,
    "DEFAULT_LOW_STOCK_THRESHOLD": 10,
    "BULK_MAX_ITEMS": 100,
}


def _coerce(key, raw, kind):
    """Parse a configured value as the default's type, accepting numeric strings.

    Whole numbers written as floats (``"20.0"``) are accepted for integer keys.
    """
    try:
        number = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"STOCKLEDGER_{key}={raw!r} is not a number") from None
    if kind is int:
        if not number.is_integer():
            raise ValueError(f"STOCKLEDGER_{key}={raw!r} must be a whole number")
        return int(number)
    return number


@dataclass(frozen=True)
class EngineSettings:
    reservation_ttl_minutes: float = 15.0
    sweeper_interval_seconds: float = 30.0
    ledger_max_attempts: int = 5
    ledger_retry_backoff_seconds: float = 0.01
    bulk_chunk_size: int = 50
    bulk_inter_chunk_delay_seconds: float = 0.1
    default_low_stock_threshold: int = 10
    bulk_max_items: int = 100

    @property
    def reservation_ttl(self) -> timedelta:
        return timedelta(minutes=self.reservation_ttl_minutes)

    @classmethod
    def from_mapping(cls, custom: dict) -> "EngineSettings":
        values = {}
        for field in fields(cls):
            key = field.name.upper()
            raw = os.getenv(f"STOCKLEDGER_{key}", custom.get(key, _DEFAULTS[key]))
            values[field.name] = _coerce(key, raw, type(_DEFAULTS[key]))
        return cls(**values)


def load_settings() -> EngineSettings:
    """Settings for the active domain, or defaults outside a domain context."""
    try:
        custom = current_domain.config.get("custom", {}) or {}
    except (RuntimeError, AttributeError):
        custom = {}
    return EngineSettings.from_mapping(custom)
