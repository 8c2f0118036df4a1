"""Low stock report — products at or below their threshold, for replenishment."""

from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, Integer
from protean.utils.globals import current_domain

from stockledger.domain import stockledger
from stockledger.ledger.events import LowStockDetected, OutOfStockDetected, StockReplenished
from stockledger.ledger.record import InventoryRecord


@stockledger.projection
class LowStockReport:
    product_id = Identifier(identifier=True, required=True)
    on_hand = Integer(default=0)
    reserved = Integer(default=0)
    available = Integer(default=0)
    low_stock_threshold = Integer(default=10)
    is_out_of_stock = Boolean(default=False)  # available == 0
    detected_at = DateTime()


@stockledger.projector(projector_for=LowStockReport, aggregates=[InventoryRecord])
class LowStockReportProjector:
    def _upsert(self, event, available):
        repo = current_domain.repository_for(LowStockReport)
        try:
            report = repo.get(event.product_id)
            report.on_hand = event.on_hand
            report.reserved = event.reserved
            report.available = available
            report.low_stock_threshold = event.low_stock_threshold
            report.is_out_of_stock = available == 0
            report.detected_at = event.detected_at
        except ObjectNotFoundError:
            report = LowStockReport(
                product_id=event.product_id,
                on_hand=event.on_hand,
                reserved=event.reserved,
                available=available,
                low_stock_threshold=event.low_stock_threshold,
                is_out_of_stock=available == 0,
                detected_at=event.detected_at,
            )
        repo.add(report)

    @on(LowStockDetected)
    def on_low_stock_detected(self, event):
        self._upsert(event, event.available)

    @on(OutOfStockDetected)
    def on_out_of_stock_detected(self, event):
        self._upsert(event, 0)

    @on(StockReplenished)
    def on_stock_replenished(self, event):
        """Drop the product from the report once it is back above threshold."""
        repo = current_domain.repository_for(LowStockReport)
        try:
            report = repo.get(event.product_id)
        except ObjectNotFoundError:
            return
        repo._dao.delete(report)
