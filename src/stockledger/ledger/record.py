"""InventoryRecord aggregate — the authoritative stock position of one product.

Stock Level Model:
    on_hand:   Physical units in stock
    reserved:  Held by ACTIVE reservations, not yet sold
    available: on_hand - reserved (what can be newly reserved)

The aggregate validates and applies quantity changes; it is never persisted
directly by callers. ``StockLedger`` loads it, applies one change, swaps the
version and writes the matching movement in the same unit of work.
"""

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, ValueObject

from stockledger.domain import stockledger
from stockledger.errors import InvariantViolation, NegativeStock
from stockledger.ledger.events import (
    InventoryRecordCreated,
    LowStockDetected,
    OutOfStockDetected,
    StockReplenished,
)
from stockledger.utils.clock import utcnow


def weighted_average_cost(on_hand, average_cost, quantity, unit_cost):
    """Moving average unit cost after receiving ``quantity`` at ``unit_cost``."""
    total = on_hand + quantity
    if total <= 0 or not on_hand:
        return round(float(unit_cost), 4)
    return round((on_hand * float(average_cost or 0) + quantity * float(unit_cost)) / total, 4)


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@stockledger.value_object(part_of="InventoryRecord")
class StockLevels:
    """Quantities of one product. Replaced wholesale on every change."""

    on_hand = Integer(default=0, min_value=0)
    reserved = Integer(default=0, min_value=0)
    available = Integer(default=0, min_value=0)

    @invariant.post
    def available_is_on_hand_less_reserved(self):
        if self.available != self.on_hand - self.reserved:
            raise ValidationError(
                {"available": [f"Available {self.available} does not equal {self.on_hand} on hand - {self.reserved} reserved"]}
            )

    @classmethod
    def of(cls, on_hand, reserved):
        return cls(on_hand=on_hand, reserved=reserved, available=on_hand - reserved)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@stockledger.aggregate
class InventoryRecord:
    """Stock position of one product, guarded by an optimistic ``version``."""

    product_id = Identifier(identifier=True, required=True)
    levels = ValueObject(StockLevels)
    low_stock_threshold = Integer(default=10, min_value=0)
    average_unit_cost = Float(default=0.0)
    last_cost = Float()
    version = Integer(default=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, product_id, initial_quantity=0, low_stock_threshold=10, unit_cost=None):
        if initial_quantity < 0:
            raise ValidationError({"initial_quantity": ["Initial quantity cannot be negative"]})

        now = utcnow()
        record = cls(
            product_id=product_id,
            levels=StockLevels.of(initial_quantity, 0),
            low_stock_threshold=low_stock_threshold,
            average_unit_cost=round(float(unit_cost), 4) if unit_cost is not None else 0.0,
            last_cost=round(float(unit_cost), 4) if unit_cost is not None else None,
            created_at=now,
            updated_at=now,
        )
        record.raise_(
            InventoryRecordCreated(
                product_id=str(product_id),
                initial_quantity=initial_quantity,
                low_stock_threshold=low_stock_threshold,
                created_at=now,
            )
        )
        record._signal_stock_level(previous_available=None)
        return record

    # -------------------------------------------------------------------
    # Read helpers
    # -------------------------------------------------------------------
    @property
    def on_hand(self):
        return self.levels.on_hand if self.levels else 0

    @property
    def reserved(self):
        return self.levels.reserved if self.levels else 0

    @property
    def available(self):
        return self.levels.available if self.levels else 0

    # -------------------------------------------------------------------
    # Quantity changes
    # -------------------------------------------------------------------
    def reserve(self, quantity):
        """Hold ``quantity`` units. Callers check availability first."""
        _require_positive(quantity)
        if self.available < quantity:
            raise ValidationError(
                {"quantity": [f"Insufficient stock: {self.available} available, {quantity} requested"]}
            )
        self._set_levels(self.on_hand, self.reserved + quantity)

    def commit(self, quantity):
        """Consume reserved units as a sale: both on-hand and reserved drop."""
        _require_positive(quantity)
        if self.reserved < quantity:
            raise InvariantViolation(
                f"Cannot commit {quantity} units of {self.product_id}: only {self.reserved} reserved",
                product_id=str(self.product_id),
                reserved=self.reserved,
                quantity=quantity,
            )
        self._set_levels(self.on_hand - quantity, self.reserved - quantity)

    def release(self, quantity):
        """Return reserved units to available."""
        _require_positive(quantity)
        if self.reserved < quantity:
            raise InvariantViolation(
                f"Cannot release {quantity} units of {self.product_id}: only {self.reserved} reserved",
                product_id=str(self.product_id),
                reserved=self.reserved,
                quantity=quantity,
            )
        self._set_levels(self.on_hand, self.reserved - quantity)

    def change_on_hand(self, delta, unit_cost=None):
        """Add a signed ``delta`` to on-hand; reserved units can never be removed."""
        if delta == 0:
            raise ValidationError({"quantity": ["Quantity change cannot be zero"]})
        if self.on_hand + delta < self.reserved:
            raise NegativeStock(str(self.product_id), self.on_hand, self.reserved, delta)

        if unit_cost is not None:
            if unit_cost < 0:
                raise ValidationError({"unit_cost": ["Unit cost cannot be negative"]})
            if delta > 0:
                self.average_unit_cost = weighted_average_cost(
                    self.on_hand, self.average_unit_cost, delta, unit_cost
                )
                self.last_cost = round(float(unit_cost), 4)

        self._set_levels(self.on_hand + delta, self.reserved)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _set_levels(self, on_hand, reserved):
        previous_available = self.available
        self.levels = StockLevels.of(on_hand, reserved)
        self.updated_at = utcnow()
        self._signal_stock_level(previous_available)

    def _signal_stock_level(self, previous_available):
        """Raise the low / out-of-stock signal for the new position."""
        available = self.available
        threshold = self.low_stock_threshold or 0
        now = utcnow()

        if available == 0:
            self.raise_(
                OutOfStockDetected(
                    product_id=str(self.product_id),
                    on_hand=self.on_hand,
                    reserved=self.reserved,
                    low_stock_threshold=threshold,
                    detected_at=now,
                )
            )
        elif available <= threshold:
            self.raise_(
                LowStockDetected(
                    product_id=str(self.product_id),
                    on_hand=self.on_hand,
                    reserved=self.reserved,
                    available=available,
                    low_stock_threshold=threshold,
                    detected_at=now,
                )
            )
        elif previous_available is not None and previous_available <= threshold:
            self.raise_(
                StockReplenished(
                    product_id=str(self.product_id),
                    available=available,
                    low_stock_threshold=threshold,
                    replenished_at=now,
                )
            )


def _require_positive(quantity):
    if quantity is None or quantity <= 0:
        raise ValidationError({"quantity": ["Quantity must be positive"]})
