"""Result values for expected, non-exceptional outcomes."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class InsufficientStock:
    """A reservation could not be placed; nothing was changed."""

    product_id: str
    requested: int
    available: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.available

    def __str__(self) -> str:
        return f"Insufficient stock for {self.product_id}: {self.available} available, {self.requested} requested"


class TransitionStatus(Enum):
    APPLIED = "Applied"
    NOT_FOUND = "NotFound"
    ALREADY_TERMINAL = "AlreadyTerminal"
    NOT_DUE = "NotDue"


@dataclass(frozen=True)
class Transition:
    """Outcome of a reservation state change.

    ``ALREADY_TERMINAL`` and ``NOT_FOUND`` are benign: retried webhooks and
    the sweeper can race to close the same reservation.
    """

    reservation_id: str
    status: TransitionStatus
    reservation: Any = None

    @property
    def applied(self) -> bool:
        return self.status is TransitionStatus.APPLIED
