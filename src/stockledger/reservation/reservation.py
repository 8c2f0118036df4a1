"""ReservationRecord aggregate — a time-boxed hold against available stock.

Lifecycle::

    ACTIVE ──confirm──> CONFIRMED
       │──release──> RELEASED
       └──expire───> EXPIRED

All three targets are terminal. The stock side of each transition is applied
by ``StockLedger`` in the same unit of work as the state change.
"""

from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text

from stockledger.domain import stockledger
from stockledger.reservation.events import (
    ReservationConfirmed,
    ReservationExpired,
    ReservationExtended,
    ReservationPlaced,
    ReservationReleased,
)
from stockledger.utils.clock import as_utc


class ReservationState(Enum):
    ACTIVE = "Active"
    CONFIRMED = "Confirmed"
    RELEASED = "Released"
    EXPIRED = "Expired"


TERMINAL_STATES = {
    ReservationState.CONFIRMED.value,
    ReservationState.RELEASED.value,
    ReservationState.EXPIRED.value,
}


@stockledger.aggregate
class ReservationRecord:
    reservation_id = Identifier(identifier=True, required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    state = String(
        max_length=20,
        choices=ReservationState,
        default=ReservationState.ACTIVE.value,
    )
    order_id = Identifier()
    cart_id = Identifier()
    reason = Text()
    created_at = DateTime(required=True)
    expires_at = DateTime(required=True)
    closed_at = DateTime()
    version = Integer(default=0)

    @classmethod
    def place(cls, reservation_id, product_id, quantity, created_at, expires_at, order_id=None, cart_id=None, reason=None):
        if expires_at <= created_at:
            raise ValidationError({"expires_at": ["Reservation must expire after it is created"]})

        reservation = cls(
            reservation_id=reservation_id,
            product_id=str(product_id),
            quantity=quantity,
            order_id=order_id,
            cart_id=cart_id,
            reason=reason,
            created_at=created_at,
            expires_at=expires_at,
        )
        reservation.raise_(
            ReservationPlaced(
                reservation_id=reservation_id,
                product_id=str(product_id),
                quantity=quantity,
                order_id=order_id,
                cart_id=cart_id,
                expires_at=expires_at,
            )
        )
        return reservation

    @property
    def is_active(self) -> bool:
        return self.state == ReservationState.ACTIVE.value

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_due(self, now) -> bool:
        return as_utc(self.expires_at) < as_utc(now)

    def confirm(self, now):
        self._close(ReservationState.CONFIRMED, now)
        self.raise_(
            ReservationConfirmed(
                reservation_id=str(self.reservation_id),
                product_id=str(self.product_id),
                quantity=self.quantity,
                order_id=self.order_id,
                confirmed_at=now,
            )
        )

    def release(self, reason, now):
        self._close(ReservationState.RELEASED, now)
        self.reason = reason or self.reason
        self.raise_(
            ReservationReleased(
                reservation_id=str(self.reservation_id),
                product_id=str(self.product_id),
                quantity=self.quantity,
                reason=reason,
                released_at=now,
            )
        )

    def expire(self, now):
        if not self.is_due(now):
            raise ValidationError({"expires_at": ["Reservation has not expired yet"]})
        self._close(ReservationState.EXPIRED, now)
        self.raise_(
            ReservationExpired(
                reservation_id=str(self.reservation_id),
                product_id=str(self.product_id),
                quantity=self.quantity,
                expired_at=now,
            )
        )

    def extend(self, expires_at):
        if not self.is_active:
            raise ValidationError({"state": [f"Cannot extend a {self.state} reservation"]})
        if as_utc(expires_at) <= as_utc(self.expires_at):
            raise ValidationError({"expires_at": ["New expiry must be later than the current one"]})
        self.expires_at = expires_at
        self.raise_(
            ReservationExtended(
                reservation_id=str(self.reservation_id),
                product_id=str(self.product_id),
                expires_at=expires_at,
            )
        )

    def _close(self, target: ReservationState, now):
        if not self.is_active:
            raise ValidationError({"state": [f"Reservation is already {self.state}"]})
        self.state = target.value
        self.closed_at = now
