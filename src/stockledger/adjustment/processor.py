"""AdjustmentProcessor — manual corrections with mandatory reason and actor.

Each adjustment writes the InventoryRecord change, its movement and the
AdjustmentRecord in one unit of work. DAMAGE adjustments are logged as
DAMAGE movements; every other type as ADJUSTMENT.
"""

from uuid import uuid4

from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from stockledger.adjustment.adjustment import REDUCING_TYPES, AdjustmentRecord, AdjustmentType
from stockledger.ledger.ledger import StockLedger
from stockledger.ledger.transaction import atomic
from stockledger.movement.movement import MovementType
from stockledger.utils.clock import as_utc, utcnow
from stockledger.utils.logging import get_logger
from stockledger.utils.query import fetch_all

logger = get_logger(__name__)


def _validate(adjustment_type, quantity, reason, actor_id) -> AdjustmentType:
    errors = {}
    try:
        kind = AdjustmentType.parse(adjustment_type)
    except ValueError:
        kind = None
        errors["adjustment_type"] = [f"Unknown adjustment type: {adjustment_type}"]

    if not reason or not str(reason).strip():
        errors["reason"] = ["A reason is required for every adjustment"]
    if not actor_id or not str(actor_id).strip():
        errors["actor_id"] = ["An actor is required for every adjustment"]

    if quantity is None or quantity == 0:
        errors["quantity"] = ["Adjustment quantity cannot be zero"]
    elif kind in REDUCING_TYPES and quantity > 0:
        errors["quantity"] = [f"{kind.value} adjustments must be negative"]

    if errors:
        raise ValidationError(errors)
    return kind


class AdjustmentProcessor:
    def __init__(self, ledger: StockLedger | None = None):
        self.ledger = ledger or StockLedger()

    def adjust(self, product_id, adjustment_type, quantity: int, reason: str, actor_id) -> AdjustmentRecord:
        """Apply a signed correction to on-hand stock.

        Raises:
            ValidationError: missing reason or actor, zero quantity, or a
                positive quantity for a shrinkage type.
            NegativeStock: on-hand would fall below reserved.
        """
        kind = _validate(adjustment_type, quantity, reason, actor_id)
        product_id = str(product_id)
        adjustment_id = str(uuid4())

        def unit():
            return self._apply(adjustment_id, product_id, kind, quantity, reason, actor_id)

        adjustment = atomic(unit, aggregate="InventoryRecord", identifier=product_id)
        logger.info(
            "Stock adjusted",
            adjustment_id=adjustment_id,
            product_id=product_id,
            adjustment_type=kind.value,
            quantity=quantity,
            resulting_on_hand=adjustment.resulting_on_hand,
            actor_id=str(actor_id),
        )
        return adjustment

    def recount(self, product_id, counted_quantity: int, reason: str, actor_id) -> AdjustmentRecord | None:
        """Reconcile on-hand with a physical count.

        Returns ``None`` when the count already matches.
        """
        if counted_quantity is None or counted_quantity < 0:
            raise ValidationError({"counted_quantity": ["Counted quantity cannot be negative"]})
        _validate(AdjustmentType.RECOUNT, 1, reason, actor_id)
        product_id = str(product_id)
        adjustment_id = str(uuid4())

        def unit():
            delta = counted_quantity - self.ledger.get_record(product_id).on_hand
            if delta == 0:
                return None
            return self._apply(adjustment_id, product_id, AdjustmentType.RECOUNT, delta, reason, actor_id)

        adjustment = atomic(unit, aggregate="InventoryRecord", identifier=product_id)
        logger.info(
            "Stock count recorded",
            product_id=product_id,
            counted_quantity=counted_quantity,
            adjusted=adjustment is not None,
        )
        return adjustment

    def history(self, product_id) -> list[AdjustmentRecord]:
        """Adjustments of a product, oldest first."""
        adjustments = fetch_all(AdjustmentRecord, product_id=str(product_id))
        return sorted(adjustments, key=lambda adjustment: (as_utc(adjustment.created_at), adjustment.movement_sequence))

    def _apply(self, adjustment_id, product_id, kind, quantity, reason, actor_id) -> AdjustmentRecord:
        movement_type = MovementType.DAMAGE if kind is AdjustmentType.DAMAGE else MovementType.ADJUSTMENT
        record = self.ledger.apply_adjustment(
            product_id,
            quantity,
            movement_type=movement_type,
            reference=adjustment_id,
            reason=reason,
            actor_id=actor_id,
        )
        adjustment = AdjustmentRecord(
            adjustment_id=adjustment_id,
            product_id=product_id,
            adjustment_type=kind.value,
            quantity=quantity,
            reason=reason,
            actor_id=actor_id,
            movement_sequence=record.version,
            resulting_on_hand=record.on_hand,
            created_at=utcnow(),
        )
        current_domain.repository_for(AdjustmentRecord).add(adjustment)
        return adjustment
