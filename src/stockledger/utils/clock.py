"""Time helpers shared by the ledger, reservations and the sweeper."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalise a stored timestamp to an aware UTC datetime.

    Persistence adapters may hand back naive values; those are UTC by
    convention.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
