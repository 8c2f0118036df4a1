"""ExpirationSweeper — closes abandoned checkout holds.

Expiry is data-driven: each tick asks for ACTIVE reservations whose
``expires_at`` has passed, so a restarted process picks up where it left
off. Ticks run in a worker thread so the event loop stays responsive; between
ticks the sweeper waits on a stop event rather than polling.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from protean.exceptions import InvalidOperationError, ValidationError

from stockledger.errors import StockLedgerError
from stockledger.outcomes import TransitionStatus
from stockledger.reservation.manager import ReservationManager
from stockledger.settings import load_settings
from stockledger.utils.clock import utcnow
from stockledger.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SweepReport:
    swept_at: datetime
    examined: int = 0
    expired: list = field(default_factory=list)
    already_terminal: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)


class ExpirationSweeper:
    def __init__(self, manager: ReservationManager | None = None, interval_seconds: float | None = None):
        self.manager = manager or ReservationManager()
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else load_settings().sweeper_interval_seconds
        )

    def tick(self, now=None) -> SweepReport:
        """Expire every overdue reservation once. One failure never blocks the rest."""
        now = now or utcnow()
        report = SweepReport(swept_at=now)

        due = self.manager.find_expired(now)
        report.examined = len(due)

        for reservation in due:
            reservation_id = str(reservation.reservation_id)
            try:
                result = self.manager.expire(reservation_id, now=now)
            except (StockLedgerError, ValidationError, InvalidOperationError) as exc:
                report.failed[reservation_id] = str(exc)
                logger.warning(
                    "Failed to expire reservation",
                    reservation_id=reservation_id,
                    error=str(exc),
                )
                continue

            if result.status is TransitionStatus.APPLIED:
                report.expired.append(reservation_id)
            else:
                report.already_terminal.append(reservation_id)

        if report.examined:
            logger.info(
                "Expiration sweep complete",
                examined=report.examined,
                expired=len(report.expired),
                already_terminal=len(report.already_terminal),
                failed=len(report.failed),
            )
        return report

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop_event`` is set."""
        logger.info("Expiration sweeper started", interval_seconds=self.interval_seconds)
        while not stop_event.is_set():
            try:
                await asyncio.to_thread(self.tick)
            except Exception:
                # A failed sweep is retried on the next tick
                logger.exception("Expiration sweep failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                pass
        logger.info("Expiration sweeper stopped")
