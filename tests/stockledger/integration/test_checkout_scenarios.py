"""End-to-end checkout flows across ledger, reservations, sweeper and adjustments.

After every flow the movement log must replay to the stored record and the
ACTIVE reservations must add up to the ledger's reserved count.
"""

from datetime import timedelta

import pytest

from stockledger.adjustment.adjustment import AdjustmentType
from stockledger.bulk.job import BulkJobStatus
from stockledger.errors import NegativeStock
from stockledger.outcomes import InsufficientStock, TransitionStatus
from stockledger.reservation.sweeper import ExpirationSweeper
from stockledger.utils.clock import utcnow


@pytest.fixture
def consistent(ledger, recorder, reservations):
    """Assert the ledger agrees with its movements and its reservations."""

    def _consistent(*product_ids):
        for product_id in product_ids:
            recorder.verify(ledger.get_record(product_id))
            reservations.reconcile(product_id)

    return _consistent


def _levels(ledger, product_id):
    levels = ledger.get_available(product_id)
    return levels.on_hand, levels.reserved, levels.available


class TestCheckout:
    def test_reserve_then_confirm(self, reservations, ledger, stocked, consistent):
        product_id = stocked(on_hand=10)

        reservation = reservations.reserve(product_id, 4, ttl=timedelta(minutes=15))
        assert _levels(ledger, product_id) == (10, 4, 6)

        reservations.confirm(reservation.reservation_id)
        assert _levels(ledger, product_id) == (6, 0, 6)
        consistent(product_id)

    def test_last_unit_goes_to_one_cart(self, reservations, ledger, stocked, consistent):
        product_id = stocked(on_hand=1)

        winner = reservations.reserve(product_id, 1, cart_id="cart-a")
        loser = reservations.reserve(product_id, 1, cart_id="cart-b")

        assert isinstance(loser, InsufficientStock)
        assert loser.shortfall == 1
        assert _levels(ledger, product_id) == (1, 1, 0)

        # The first cart gives up and the second one tries again
        reservations.release_for_cart("cart-a", "Cart abandoned")
        retry = reservations.reserve(product_id, 1, cart_id="cart-b")
        reservations.confirm(retry.reservation_id)

        assert reservations.get(winner.reservation_id).state == "Released"
        assert _levels(ledger, product_id) == (0, 0, 0)
        consistent(product_id)

    def test_multi_item_order_cancelled(self, reservations, ledger, stocked, consistent):
        shirt = stocked(on_hand=5)
        mug = stocked(on_hand=3)
        reservations.reserve(shirt, 2, order_id="ord-100")
        reservations.reserve(mug, 3, order_id="ord-100")
        assert [c.sufficient for c in ledger.check_availability([(shirt, 3), (mug, 1)])] == [True, False]

        results = reservations.release_for_order("ord-100", "Payment declined")

        assert all(r.status is TransitionStatus.APPLIED for r in results)
        assert _levels(ledger, shirt) == (5, 0, 5)
        assert _levels(ledger, mug) == (3, 0, 3)
        consistent(shirt, mug)


class TestAbandonedCart:
    def test_sweeper_frees_units_for_the_next_customer(self, reservations, ledger, stocked, consistent):
        product_id = stocked(on_hand=2)
        abandoned = reservations.reserve(product_id, 2, ttl=timedelta(minutes=1))
        assert isinstance(reservations.reserve(product_id, 1), InsufficientStock)

        report = ExpirationSweeper(reservations, interval_seconds=1).tick(now=utcnow() + timedelta(minutes=2))
        assert report.expired == [abandoned.reservation_id]

        reservation = reservations.reserve(product_id, 1)
        reservations.confirm(reservation.reservation_id)

        # A late payment webhook for the expired hold changes nothing
        assert reservations.confirm(abandoned.reservation_id).status is TransitionStatus.ALREADY_TERMINAL
        assert _levels(ledger, product_id) == (1, 0, 1)
        consistent(product_id)


class TestAdministration:
    def test_damage_cannot_take_held_units(self, processor, reservations, ledger, stocked, consistent):
        product_id = stocked(on_hand=5)
        processor.adjust(product_id, AdjustmentType.DAMAGE, -2, "crushed in transit", "admin-001")
        reservations.reserve(product_id, 3)

        with pytest.raises(NegativeStock):
            processor.adjust(product_id, AdjustmentType.DAMAGE, -1, "crushed in transit", "admin-001")

        assert _levels(ledger, product_id) == (3, 3, 0)
        consistent(product_id)

    def test_busy_day(self, ledger, recorder, reservations, processor, coordinator, stocked, consistent):
        product_id = stocked(on_hand=20, unit_cost=2.0)
        other = stocked(on_hand=8)

        held = reservations.reserve(product_id, 5, order_id="ord-1")
        reservations.reserve(product_id, 2, cart_id="cart-9", ttl=timedelta(minutes=1))
        reservations.confirm(held.reservation_id)
        ledger.restock(product_id, 10, unit_cost=4.0)
        ledger.transfer_out(other, 3, reference="wh-2")
        processor.recount(other, 4, "cycle count", "admin-001")
        ExpirationSweeper(reservations, interval_seconds=1).tick(now=utcnow() + timedelta(minutes=5))
        job = coordinator.submit_batch(
            [
                {"product_id": product_id, "adjustment_type": "Theft", "quantity": -1},
                {"product_id": other, "adjustment_type": "Theft", "quantity": -9},
            ],
            "Quarterly shrinkage",
            "admin-001",
        )

        assert job.status == BulkJobStatus.PARTIALLY_COMPLETED.value
        assert _levels(ledger, product_id) == (24, 0, 24)
        assert _levels(ledger, other) == (4, 0, 4)

        replayed = recorder.replay(product_id)
        assert replayed.average_unit_cost == ledger.get_record(product_id).average_unit_cost
        consistent(product_id, other)
