"""Inbound catalogue events — a new product gets an empty inventory record.

``create_record`` is idempotent, so a redelivered ``ProductCreated`` is
harmless.
"""

import structlog
from protean.utils.mixins import handle
from shared.events.catalogue import ProductCreated

from stockledger.domain import stockledger
from stockledger.ledger.ledger import StockLedger
from stockledger.ledger.record import InventoryRecord

logger = structlog.get_logger(__name__)

stockledger.register_external_event(ProductCreated, "Catalogue.ProductCreated.v1")


@stockledger.event_handler(part_of=InventoryRecord, stream_category="catalogue::product")
class CatalogueEventHandler:
    @handle(ProductCreated)
    def on_product_created(self, event: ProductCreated) -> None:
        record = StockLedger().create_record(product_id=event.product_id)
        logger.info(
            "Inventory record ready for new product",
            product_id=str(event.product_id),
            sku=event.sku,
            version=record.version,
        )
