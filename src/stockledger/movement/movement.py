"""MovementRecord aggregate — the append-only audit trail of stock changes.

One movement is written for every InventoryRecord mutation, in the same unit
of work. ``sequence`` is the record version the movement produced, so the
movements of a product form a gapless, totally ordered log.
"""

from enum import Enum

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from stockledger.domain import stockledger


class MovementType(Enum):
    RESERVE = "Reserve"
    RELEASE = "Release"
    SALE = "Sale"
    RESTOCK = "Restock"
    ADJUSTMENT = "Adjustment"
    TRANSFER_IN = "Transfer_In"
    TRANSFER_OUT = "Transfer_Out"
    DAMAGE = "Damage"
    EXPIRED_RESERVE = "Expired_Reserve"


# Movement types that move physical stock rather than holds
ON_HAND_TYPES = {
    MovementType.RESTOCK,
    MovementType.ADJUSTMENT,
    MovementType.TRANSFER_IN,
    MovementType.TRANSFER_OUT,
    MovementType.DAMAGE,
}
INBOUND_TYPES = {MovementType.RESTOCK, MovementType.TRANSFER_IN}
OUTBOUND_TYPES = {MovementType.SALE, MovementType.TRANSFER_OUT, MovementType.DAMAGE}


@stockledger.aggregate
class MovementRecord:
    movement_id = Identifier(identifier=True)
    product_id = Identifier(required=True)
    movement_type = String(required=True, choices=MovementType, max_length=20)
    quantity_delta = Integer(required=True)
    unit_cost = Float()
    resulting_on_hand = Integer(required=True, min_value=0)
    resulting_reserved = Integer(required=True, min_value=0)
    sequence = Integer(required=True, min_value=1)
    actor_id = Identifier()
    reason = Text()
    reference = Identifier()
    created_at = DateTime(required=True)

    @property
    def kind(self) -> MovementType:
        return MovementType(self.movement_type)
