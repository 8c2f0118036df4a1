"""Admin adjustment commands and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String

from stockledger.adjustment.adjustment import AdjustmentRecord
from stockledger.adjustment.processor import AdjustmentProcessor
from stockledger.domain import stockledger


@stockledger.command(part_of="AdjustmentRecord")
class AdjustStock:
    """Manually correct on-hand stock."""

    product_id = Identifier(required=True)
    adjustment_type = String(required=True)  # Recount, Damage, Theft, Expiry, Correction
    quantity = Integer(required=True)  # Signed
    reason = String(required=True)
    actor_id = Identifier(required=True)


@stockledger.command(part_of="AdjustmentRecord")
class RecordStockCount:
    """Record a physical count; the difference becomes a recount adjustment."""

    product_id = Identifier(required=True)
    counted_quantity = Integer(required=True)
    reason = String(required=True)
    actor_id = Identifier(required=True)


@stockledger.command_handler(part_of=AdjustmentRecord)
class AdjustmentCommandHandler:
    @handle(AdjustStock)
    def adjust_stock(self, command):
        return AdjustmentProcessor().adjust(
            product_id=command.product_id,
            adjustment_type=command.adjustment_type,
            quantity=command.quantity,
            reason=command.reason,
            actor_id=command.actor_id,
        )

    @handle(RecordStockCount)
    def record_stock_count(self, command):
        return AdjustmentProcessor().recount(
            product_id=command.product_id,
            counted_quantity=command.counted_quantity,
            reason=command.reason,
            actor_id=command.actor_id,
        )
