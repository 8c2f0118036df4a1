"""ReservationManager — checkout holds on top of the stock ledger.

Every transition runs the reservation's state change and the ledger change
as one unit, swapping the reservation's version first. When a cancellation
webhook and the sweeper race on the same hold, the loser retries, sees the
terminal state and reports ``ALREADY_TERMINAL`` without touching stock.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import uuid4

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from stockledger.errors import InvariantViolation, StockLedgerError, describe_error
from stockledger.ledger.ledger import StockLedger
from stockledger.ledger.transaction import atomic, compare_and_swap
from stockledger.outcomes import InsufficientStock, Transition, TransitionStatus
from stockledger.reservation.reservation import ReservationRecord, ReservationState
from stockledger.settings import load_settings
from stockledger.utils.clock import as_utc, utcnow
from stockledger.utils.logging import get_logger
from stockledger.utils.query import fetch_all

logger = get_logger(__name__)

EXPIRING_SOON_WINDOW = timedelta(minutes=5)


@dataclass(frozen=True)
class ReservationStatistics:
    active_count: int
    total_reserved: int
    expiring_soon: int
    by_product: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ReservationAttempt:
    """What happened to one line of a multi-item reservation."""

    position: int
    product_id: str
    quantity: int
    reservation: ReservationRecord | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.reservation is not None


@dataclass(frozen=True)
class BulkReservation:
    attempts: list

    @property
    def succeeded(self) -> bool:
        return all(attempt.succeeded for attempt in self.attempts)

    @property
    def reservations(self) -> list[ReservationRecord]:
        return [attempt.reservation for attempt in self.attempts if attempt.succeeded]

    @property
    def failures(self) -> list[ReservationAttempt]:
        return [attempt for attempt in self.attempts if not attempt.succeeded]

    @property
    def total_reserved(self) -> int:
        return sum(reservation.quantity for reservation in self.reservations)


class ReservationManager:
    def __init__(self, ledger: StockLedger | None = None, settings=None):
        self.ledger = ledger or StockLedger()
        self._settings = settings

    @property
    def settings(self):
        return self._settings or load_settings()

    def _repository(self):
        return current_domain.repository_for(ReservationRecord)

    def get(self, reservation_id) -> ReservationRecord:
        return self._repository().get(str(reservation_id))

    # -------------------------------------------------------------------
    # Placing holds
    # -------------------------------------------------------------------
    def reserve(
        self,
        product_id,
        quantity: int,
        ttl: timedelta | None = None,
        order_id=None,
        cart_id=None,
        reason=None,
    ):
        """Hold stock for a checkout.

        Returns the ACTIVE ``ReservationRecord``, or ``InsufficientStock``
        with no reservation created and no stock touched.
        """
        ttl = ttl if ttl is not None else self.settings.reservation_ttl
        if ttl <= timedelta(0):
            raise ValidationError({"ttl": ["Reservation TTL must be positive"]})

        reservation_id = str(uuid4())

        def unit():
            outcome = self.ledger.try_reserve(product_id, quantity, reference=reservation_id)
            if isinstance(outcome, InsufficientStock):
                return outcome

            now = utcnow()
            reservation = ReservationRecord.place(
                reservation_id=reservation_id,
                product_id=product_id,
                quantity=quantity,
                created_at=now,
                expires_at=now + ttl,
                order_id=order_id,
                cart_id=cart_id,
                reason=reason,
            )
            compare_and_swap(self._repository(), reservation, reservation_id, 0)
            return reservation

        result = atomic(unit, aggregate="ReservationRecord", identifier=reservation_id)
        if isinstance(result, ReservationRecord):
            logger.info(
                "Reservation placed",
                reservation_id=reservation_id,
                product_id=str(product_id),
                quantity=quantity,
                expires_at=str(result.expires_at),
            )
        return result

    def reserve_many(self, items, ttl: timedelta | None = None, order_id=None, cart_id=None, reason=None):
        """Hold stock for every ``(product_id, quantity)`` line of a cart or order.

        Each line is reserved on its own; a line that cannot be held is
        reported with its position and does not undo the others. Callers that
        need all-or-nothing release the returned reservations on failure.
        """
        attempts = []
        for position, (product_id, quantity) in enumerate(items, start=1):
            try:
                outcome = self.reserve(
                    product_id, quantity, ttl=ttl, order_id=order_id, cart_id=cart_id, reason=reason
                )
            except (ValidationError, ObjectNotFoundError, StockLedgerError) as exc:
                error = describe_error(exc)
            else:
                if isinstance(outcome, ReservationRecord):
                    attempts.append(ReservationAttempt(position, str(product_id), quantity, reservation=outcome))
                    continue
                error = str(outcome)

            logger.info(
                "Reservation line refused",
                position=position,
                product_id=str(product_id),
                quantity=quantity,
                error=error,
            )
            attempts.append(ReservationAttempt(position, str(product_id), quantity, error=error))

        result = BulkReservation(attempts)
        logger.info(
            "Multi-item reservation",
            order_id=order_id,
            cart_id=cart_id,
            lines=len(attempts),
            failed=len(result.failures),
            total_reserved=result.total_reserved,
        )
        return result

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def _transition(self, reservation_id, change, stock=None, now=None, due_only=False) -> Transition:
        """Apply ``change`` to an ACTIVE reservation, then ``stock`` to the ledger.

        The reservation is version-swapped before stock moves, so of two
        racing transitions only one ever reaches the ledger.
        """
        reservation_id = str(reservation_id)

        def unit():
            repo = self._repository()
            try:
                reservation = repo.get(reservation_id)
            except ObjectNotFoundError:
                return Transition(reservation_id, TransitionStatus.NOT_FOUND)

            if reservation.is_terminal:
                return Transition(reservation_id, TransitionStatus.ALREADY_TERMINAL, reservation)

            at = now or utcnow()
            if due_only and not reservation.is_due(at):
                return Transition(reservation_id, TransitionStatus.NOT_DUE, reservation)

            expected_version = reservation.version
            change(reservation, at)
            compare_and_swap(repo, reservation, reservation_id, expected_version)
            if stock is not None:
                stock(reservation)
            return Transition(reservation_id, TransitionStatus.APPLIED, reservation)

        result = atomic(unit, aggregate="ReservationRecord", identifier=reservation_id)
        logger.info(
            "Reservation transition",
            reservation_id=reservation_id,
            status=result.status.value,
            state=result.reservation.state if result.reservation else None,
        )
        return result

    def confirm(self, reservation_id) -> Transition:
        """Turn the hold into a sale."""

        def stock(reservation):
            self.ledger.commit_reservation(
                reservation.product_id, reservation.quantity, reference=str(reservation.reservation_id)
            )

        return self._transition(reservation_id, lambda reservation, at: reservation.confirm(at), stock)

    def release(self, reservation_id, reason) -> Transition:
        """Cancel the hold and return its units to available."""

        def stock(reservation):
            self.ledger.release_reservation(
                reservation.product_id,
                reservation.quantity,
                reference=str(reservation.reservation_id),
                reason=reason,
            )

        return self._transition(reservation_id, lambda reservation, at: reservation.release(reason, at), stock)

    def expire(self, reservation_id, now=None) -> Transition:
        """Close an overdue hold. Holds that are not yet due report ``NOT_DUE``."""

        def stock(reservation):
            self.ledger.release_reservation(
                reservation.product_id,
                reservation.quantity,
                expired=True,
                reference=str(reservation.reservation_id),
                reason="Reservation expired",
            )

        return self._transition(
            reservation_id, lambda reservation, at: reservation.expire(at), stock, now=now, due_only=True
        )

    def extend(self, reservation_id, additional: timedelta | None = None) -> Transition:
        """Push an ACTIVE hold's expiry forward; stock is untouched."""
        additional = additional if additional is not None else self.settings.reservation_ttl
        if additional <= timedelta(0):
            raise ValidationError({"additional": ["Extension must be positive"]})

        def change(reservation, at):
            start = max(as_utc(reservation.expires_at), as_utc(at))
            reservation.extend(start + additional)

        return self._transition(reservation_id, change)

    def release_for_order(self, order_id, reason) -> list[Transition]:
        """Release every ACTIVE hold placed for an order."""
        return self._release_matching(reason, order_id=str(order_id))

    def release_for_cart(self, cart_id, reason) -> list[Transition]:
        return self._release_matching(reason, cart_id=str(cart_id))

    def _release_matching(self, reason, **correlation) -> list[Transition]:
        reservations = fetch_all(ReservationRecord, state=ReservationState.ACTIVE.value, **correlation)
        return [self.release(reservation.reservation_id, reason) for reservation in reservations]

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def active(self, product_id=None) -> list[ReservationRecord]:
        filters = {"state": ReservationState.ACTIVE.value}
        if product_id is not None:
            filters["product_id"] = str(product_id)
        return fetch_all(ReservationRecord, **filters)

    def find_expired(self, now=None) -> list[ReservationRecord]:
        """ACTIVE holds whose ``expires_at`` is before ``now``, oldest first."""
        now = as_utc(now or utcnow())
        due = fetch_all(ReservationRecord, state=ReservationState.ACTIVE.value, expires_at__lt=now)
        return sorted(due, key=lambda reservation: as_utc(reservation.expires_at))

    def statistics(self, now=None, expiring_within: timedelta | None = None) -> ReservationStatistics:
        now = as_utc(now or utcnow())
        horizon = now + (expiring_within or EXPIRING_SOON_WINDOW)

        by_product = defaultdict(int)
        expiring_soon = 0
        active = self.active()
        for reservation in active:
            by_product[str(reservation.product_id)] += reservation.quantity
            if as_utc(reservation.expires_at) <= horizon:
                expiring_soon += 1

        return ReservationStatistics(
            active_count=len(active),
            total_reserved=sum(by_product.values()),
            expiring_soon=expiring_soon,
            by_product=dict(by_product),
        )

    def reconcile(self, product_id) -> int:
        """Check ACTIVE holds against the ledger's reserved count.

        Raises:
            InvariantViolation: the two disagree.
        """
        held = sum(reservation.quantity for reservation in self.active(product_id))
        reserved = self.ledger.get_available(product_id).reserved
        if held != reserved:
            logger.critical(
                "Active reservations do not match reserved stock",
                product_id=str(product_id),
                held=held,
                reserved=reserved,
            )
            raise InvariantViolation(
                f"Active reservations for {product_id} hold {held} units but the ledger has {reserved} reserved",
                product_id=str(product_id),
                held=held,
                reserved=reserved,
            )
        return held
