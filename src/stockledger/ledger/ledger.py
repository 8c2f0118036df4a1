"""StockLedger — the only writer of InventoryRecords.

Each mutation is one unit: re-read the record, validate, apply, swap the
version, append the movement. Units run through ``atomic`` so a lost
compare-and-swap re-runs the whole sequence from a fresh read.
"""

import threading
from dataclasses import dataclass

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from stockledger.errors import InvariantViolation, NegativeStock
from stockledger.ledger.record import InventoryRecord, StockLevels
from stockledger.ledger.transaction import atomic, compare_and_swap
from stockledger.movement.movement import ON_HAND_TYPES, MovementType
from stockledger.movement.recorder import MovementRecorder
from stockledger.outcomes import InsufficientStock
from stockledger.settings import load_settings
from stockledger.utils.logging import get_logger
from stockledger.utils.query import fetch_all

logger = get_logger(__name__)

_creation_lock = threading.Lock()


@dataclass(frozen=True)
class AvailabilityCheck:
    product_id: str
    requested: int
    available: int
    found: bool = True

    @property
    def sufficient(self) -> bool:
        return self.found and self.available >= self.requested

    @property
    def shortfall(self) -> int:
        return max(self.requested - self.available, 0)


@dataclass(frozen=True)
class InventorySummary:
    """Totals across every stocked product."""

    product_count: int = 0
    total_on_hand: int = 0
    total_reserved: int = 0
    total_available: int = 0
    low_stock_count: int = 0  # 0 < available <= threshold
    out_of_stock_count: int = 0  # available == 0
    stock_value: float = 0.0  # on_hand at average unit cost


class StockLedger:
    def __init__(self, recorder: MovementRecorder | None = None):
        self.recorder = recorder or MovementRecorder()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def _repository(self):
        return current_domain.repository_for(InventoryRecord)

    def _load(self, product_id) -> InventoryRecord:
        return self._repository().get(str(product_id))

    def get_record(self, product_id) -> InventoryRecord:
        return self._load(product_id)

    def get_available(self, product_id) -> StockLevels:
        """Current (on_hand, reserved, available) of a product.

        Raises:
            ObjectNotFoundError: the product has never been stocked.
        """
        return self._load(product_id).levels

    def check_availability(self, requests) -> list[AvailabilityCheck]:
        """Check several ``(product_id, quantity)`` pairs without reserving."""
        results = []
        for product_id, quantity in requests:
            try:
                available = self._load(product_id).available
                results.append(AvailabilityCheck(str(product_id), quantity, available))
            except ObjectNotFoundError:
                results.append(AvailabilityCheck(str(product_id), quantity, 0, found=False))
        return results

    def summary(self) -> InventorySummary:
        """Stock totals and valuation over all inventory records."""
        records = fetch_all(InventoryRecord)
        low_stock = out_of_stock = 0
        value = 0.0
        for record in records:
            if record.available == 0:
                out_of_stock += 1
            elif record.available <= (record.low_stock_threshold or 0):
                low_stock += 1
            value += record.on_hand * float(record.average_unit_cost or 0)

        return InventorySummary(
            product_count=len(records),
            total_on_hand=sum(record.on_hand for record in records),
            total_reserved=sum(record.reserved for record in records),
            total_available=sum(record.available for record in records),
            low_stock_count=low_stock,
            out_of_stock_count=out_of_stock,
            stock_value=round(value, 2),
        )

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def _mutate(self, product_id, apply, movement_type, **movement):
        """Run ``apply`` against a fresh read of the record as one unit.

        ``apply`` returns the movement's quantity delta, ``None`` when there
        is nothing to change, or an ``InsufficientStock`` outcome.
        """
        product_id = str(product_id)

        def unit():
            record = self._load(product_id)
            expected_version = record.version
            try:
                outcome = apply(record)
            except InvariantViolation as exc:
                logger.critical(
                    "Ledger invariant violated",
                    product_id=product_id,
                    movement_type=movement_type.value,
                    error=exc.message,
                    details=exc.details,
                )
                raise

            if outcome is None or isinstance(outcome, InsufficientStock):
                return outcome if outcome is not None else record

            compare_and_swap(self._repository(), record, product_id, expected_version)
            self.recorder.record(record, movement_type, outcome, **movement)
            return record

        return atomic(unit, aggregate="InventoryRecord", identifier=product_id)

    def create_record(
        self,
        product_id,
        initial_quantity: int = 0,
        low_stock_threshold: int | None = None,
        unit_cost=None,
        actor_id=None,
    ) -> InventoryRecord:
        """Stock a product for the first time. Repeated calls return the existing record."""
        product_id = str(product_id)
        if low_stock_threshold is None:
            low_stock_threshold = load_settings().default_low_stock_threshold

        def unit():
            repo = self._repository()
            try:
                return repo.get(product_id)
            except ObjectNotFoundError:
                pass

            record = InventoryRecord.create(
                product_id=product_id,
                initial_quantity=initial_quantity,
                low_stock_threshold=low_stock_threshold,
                unit_cost=unit_cost,
            )
            compare_and_swap(repo, record, product_id, 0)
            self.recorder.record(
                record,
                MovementType.RESTOCK,
                initial_quantity,
                unit_cost=unit_cost,
                actor_id=actor_id,
                reason="Initial stock",
            )
            logger.info(
                "Inventory record created",
                product_id=product_id,
                initial_quantity=initial_quantity,
                low_stock_threshold=low_stock_threshold,
            )
            return record

        # New rows skip Protean's commit-time version check, so concurrent
        # creators are serialized here and later callers find the record.
        with _creation_lock:
            return atomic(unit, aggregate="InventoryRecord", identifier=product_id)

    def try_reserve(self, product_id, quantity: int, reference=None, actor_id=None):
        """Hold ``quantity`` units if that many are available.

        Returns the new ``StockLevels``, or ``InsufficientStock`` with nothing
        changed. This is the one place oversell is prevented.
        """

        def apply(record):
            if quantity is None or quantity <= 0:
                raise ValidationError({"quantity": ["Quantity must be positive"]})
            if record.available < quantity:
                return InsufficientStock(str(record.product_id), quantity, record.available)
            record.reserve(quantity)
            return -quantity

        outcome = self._mutate(
            product_id, apply, MovementType.RESERVE, reference=reference, actor_id=actor_id
        )
        if isinstance(outcome, InsufficientStock):
            logger.info(
                "Reservation refused",
                product_id=str(product_id),
                requested=quantity,
                available=outcome.available,
            )
            return outcome
        return outcome.levels

    def commit_reservation(self, product_id, quantity: int, reference=None, actor_id=None) -> InventoryRecord:
        """Consume reserved units as a sale."""

        def apply(record):
            record.commit(quantity)
            return -quantity

        return self._mutate(product_id, apply, MovementType.SALE, reference=reference, actor_id=actor_id)

    def release_reservation(
        self, product_id, quantity: int, expired: bool = False, reference=None, reason=None, actor_id=None
    ) -> InventoryRecord:
        """Return reserved units to available; ``expired`` marks a sweeper release."""
        movement_type = MovementType.EXPIRED_RESERVE if expired else MovementType.RELEASE

        def apply(record):
            record.release(quantity)
            return quantity

        return self._mutate(
            product_id, apply, movement_type, reference=reference, reason=reason, actor_id=actor_id
        )

    def apply_adjustment(
        self,
        product_id,
        delta: int,
        movement_type: MovementType = MovementType.ADJUSTMENT,
        unit_cost=None,
        reference=None,
        reason=None,
        actor_id=None,
    ) -> InventoryRecord:
        """Add a signed ``delta`` to on-hand.

        Raises:
            NegativeStock: on-hand would fall below what is reserved.
        """
        if movement_type not in ON_HAND_TYPES:
            raise ValidationError({"movement_type": [f"{movement_type.value} does not change on-hand stock"]})

        def apply(record):
            try:
                record.change_on_hand(delta, unit_cost=unit_cost)
            except NegativeStock:
                logger.warning(
                    "Adjustment rejected",
                    product_id=str(product_id),
                    delta=delta,
                    on_hand=record.on_hand,
                    reserved=record.reserved,
                )
                raise
            return delta

        return self._mutate(
            product_id,
            apply,
            movement_type,
            unit_cost=unit_cost,
            reference=reference,
            reason=reason,
            actor_id=actor_id,
        )

    def restock(self, product_id, quantity: int, unit_cost=None, reference=None, reason=None, actor_id=None):
        _require_positive(quantity)
        return self.apply_adjustment(
            product_id,
            quantity,
            MovementType.RESTOCK,
            unit_cost=unit_cost,
            reference=reference,
            reason=reason,
            actor_id=actor_id,
        )

    def transfer_in(self, product_id, quantity: int, reference=None, reason=None, actor_id=None):
        _require_positive(quantity)
        return self.apply_adjustment(
            product_id, quantity, MovementType.TRANSFER_IN, reference=reference, reason=reason, actor_id=actor_id
        )

    def transfer_out(self, product_id, quantity: int, reference=None, reason=None, actor_id=None):
        _require_positive(quantity)
        return self.apply_adjustment(
            product_id, -quantity, MovementType.TRANSFER_OUT, reference=reference, reason=reason, actor_id=actor_id
        )

    def zero_out(self, product_id, actor_id, reason) -> InventoryRecord:
        """Bring on-hand to zero. Records are never deleted."""
        if not reason or not actor_id:
            raise ValidationError({"reason": ["Zeroing stock requires a reason and an actor"]})

        def apply(record):
            if record.on_hand == 0:
                return None
            delta = -record.on_hand
            record.change_on_hand(delta)
            return delta

        record = self._mutate(product_id, apply, MovementType.ADJUSTMENT, reason=reason, actor_id=actor_id)
        logger.info("Inventory zeroed", product_id=str(product_id), actor_id=str(actor_id), reason=reason)
        return record


def _require_positive(quantity):
    if quantity is None or quantity <= 0:
        raise ValidationError({"quantity": ["Quantity must be positive"]})
