"""Expiration sweeper runner for the stock ledger.

Closes abandoned checkout holds on a fixed interval until interrupted.

Usage:
    python src/worker.py                 # Sweep every SWEEPER_INTERVAL_SECONDS
    python src/worker.py --interval 10   # Override the interval
    python src/worker.py --once          # Run a single sweep and exit
"""

import argparse
import asyncio
import signal

import structlog

logger = structlog.get_logger(__name__)


def _get_domain():
    from stockledger.domain import stockledger

    stockledger.init()
    return stockledger


async def run(interval=None, once=False):
    from stockledger.reservation.sweeper import ExpirationSweeper

    domain = _get_domain()
    with domain.domain_context():
        sweeper = ExpirationSweeper(interval_seconds=interval)
        if once:
            report = sweeper.tick()
            logger.info("Single sweep finished", examined=report.examined, expired=len(report.expired))
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_event.set)

        await sweeper.run(stop_event)


def main():
    parser = argparse.ArgumentParser(description="Stock ledger expiration sweeper")
    parser.add_argument("--interval", type=float, help="Seconds between sweeps")
    parser.add_argument("--once", action="store_true", help="Run one sweep and exit")
    args = parser.parse_args()

    asyncio.run(run(interval=args.interval, once=args.once))


if __name__ == "__main__":
    main()
