"""CatalogueEventHandler — a new catalogue product gets an inventory record."""

from datetime import UTC, datetime

from stockledger.ledger.catalogue_events import CatalogueEventHandler
from shared.events.catalogue import ProductCreated


def _product_created(product_id="prod-cat-001"):
    return ProductCreated(
        product_id=product_id,
        sku="NEW-PROD",
        title="New Product",
        status="Draft",
        created_at=datetime.now(UTC),
    )


class TestProductCreatedHandler:
    def test_creates_an_empty_record(self, ledger, recorder):
        CatalogueEventHandler().on_product_created(_product_created())

        record = ledger.get_record("prod-cat-001")
        assert (record.on_hand, record.reserved, record.available) == (0, 0, 0)
        assert record.low_stock_threshold == 10
        assert [m.reason for m in recorder.history("prod-cat-001")] == ["Initial stock"]

    def test_redelivery_is_harmless(self, ledger, recorder):
        handler = CatalogueEventHandler()
        handler.on_product_created(_product_created())
        ledger.restock("prod-cat-001", 5)

        handler.on_product_created(_product_created())

        record = ledger.get_record("prod-cat-001")
        assert record.on_hand == 5
        assert record.version == 2
        assert len(recorder.history("prod-cat-001")) == 2
