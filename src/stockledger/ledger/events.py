"""Domain events raised by the InventoryRecord aggregate.

These are the notification signals the engine produces after a mutation;
delivery is the notification service's concern.
"""

from protean.fields import DateTime, Identifier, Integer

from stockledger.domain import stockledger


@stockledger.event(part_of="InventoryRecord")
class InventoryRecordCreated:
    """A product was stocked for the first time."""

    __version__ = 1

    product_id = Identifier(required=True)
    initial_quantity = Integer(required=True)
    low_stock_threshold = Integer(required=True)
    created_at = DateTime(required=True)


@stockledger.event(part_of="InventoryRecord")
class LowStockDetected:
    """Available stock fell to or below the product's threshold."""

    __version__ = 1

    product_id = Identifier(required=True)
    on_hand = Integer(required=True)
    reserved = Integer(required=True)
    available = Integer(required=True)
    low_stock_threshold = Integer(required=True)
    detected_at = DateTime(required=True)


@stockledger.event(part_of="InventoryRecord")
class OutOfStockDetected:
    """Nothing is left to reserve."""

    __version__ = 1

    product_id = Identifier(required=True)
    on_hand = Integer(required=True)
    reserved = Integer(required=True)
    low_stock_threshold = Integer(required=True)
    detected_at = DateTime(required=True)


@stockledger.event(part_of="InventoryRecord")
class StockReplenished:
    """Available stock recovered above the threshold after being low."""

    __version__ = 1

    product_id = Identifier(required=True)
    available = Integer(required=True)
    low_stock_threshold = Integer(required=True)
    replenished_at = DateTime(required=True)
