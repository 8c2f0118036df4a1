"""The sweeper runner script."""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock, patch

import worker

from stockledger.domain import stockledger
from stockledger.reservation.reservation import ReservationState


class TestWorker:
    def test_once_runs_a_single_sweep(self, reservations, stocked):
        product_id = stocked(on_hand=5)
        reservation = reservations.reserve(product_id, 2, ttl=timedelta(minutes=15))
        later = reservation.expires_at + timedelta(minutes=1)

        with (
            patch.object(worker, "_get_domain", return_value=stockledger),
            patch("stockledger.reservation.sweeper.utcnow", return_value=later),
        ):
            asyncio.run(worker.run(once=True))

        assert reservations.get(reservation.reservation_id).state == ReservationState.EXPIRED.value

    def test_arguments_are_passed_through(self):
        with (
            patch("sys.argv", ["worker.py", "--interval", "5", "--once"]),
            patch.object(worker, "run", new=MagicMock()) as run,
            patch.object(worker.asyncio, "run") as run_loop,
        ):
            worker.main()

        run.assert_called_once_with(interval=5.0, once=True)
        run_loop.assert_called_once_with(run.return_value)
