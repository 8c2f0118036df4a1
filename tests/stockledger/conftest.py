import threading
from uuid import uuid4

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def stockledger_bed():
    from stockledger.domain import stockledger

    bed = DomainFixture(stockledger)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(stockledger_bed):
    with stockledger_bed.domain_context():
        yield

        # Clear all databases and drain the event store
        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


@pytest.fixture
def ledger():
    from stockledger.ledger.ledger import StockLedger

    return StockLedger()


@pytest.fixture
def recorder(ledger):
    return ledger.recorder


@pytest.fixture
def reservations(ledger):
    from stockledger.reservation.manager import ReservationManager

    return ReservationManager(ledger=ledger)


@pytest.fixture
def processor(ledger):
    from stockledger.adjustment.processor import AdjustmentProcessor

    return AdjustmentProcessor(ledger=ledger)


@pytest.fixture
def coordinator(processor, reservations):
    from stockledger.bulk.coordinator import BulkUpdateCoordinator

    return BulkUpdateCoordinator(processor=processor, reservations=reservations, sleep=lambda seconds: None)


@pytest.fixture
def stocked(ledger):
    """Factory: create an inventory record and return its product id."""

    def _stocked(on_hand=10, low_stock_threshold=2, unit_cost=None, product_id=None):
        product_id = product_id or f"prod-{uuid4().hex[:8]}"
        ledger.create_record(
            product_id,
            initial_quantity=on_hand,
            low_stock_threshold=low_stock_threshold,
            unit_cost=unit_cost,
        )
        return product_id

    return _stocked


@pytest.fixture
def race():
    """Run ``work`` on ``count`` threads released together by a barrier.

    Each thread gets its own domain context. Returns the results in thread
    order; any exception raised on a thread fails the test.
    """
    from stockledger.domain import stockledger

    def _race(count, work):
        barrier = threading.Barrier(count)
        results = [None] * count
        errors = []

        def contender(index):
            with stockledger.domain_context():
                barrier.wait(timeout=10)
                try:
                    results[index] = work()
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=contender, args=(index,)) for index in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert not errors, errors
        return results

    return _race
