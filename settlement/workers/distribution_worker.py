"""
Commission distribution background worker.

Periodically re-runs the distributor for every transaction that still has
pending commissions, which is how payouts skipped after a gateway failure
eventually go out.
"""
import asyncio
import signal
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Set, Tuple

import structlog

from settlement.config import Settings, get_settings
from settlement.core.distributor import CommissionDistributor
from settlement.database.connection import close_db, create_engine, create_session_factory
from settlement.database.ledger_store import LedgerStore
from settlement.integrations.payout_gateway import PayoutGatewayClient
from settlement.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_distribution_sweep(
    store: LedgerStore,
    distributor: CommissionDistributor,
    batch_size: int = 100,
    reopen_failed: bool = False,
) -> Dict[str, int]:
    """
    Run the distributor over every transaction with pending commissions.

    Transactions are read in keyset pages of ``batch_size`` until none are
    left, so rows that stay pending for good never hide newer ones.

    Args:
        store: Ledger store
        distributor: Commission distributor
        batch_size: Transactions read per page
        reopen_failed: Also retry commissions marked failed

    Returns:
        Dict[str, int]: Totals across the sweep
    """
    logger.info("distribution_sweep_started", batch_size=batch_size)

    totals = {"transactions": 0, "paid": 0, "submitted": 0, "skipped": 0, "errors": 0}
    seen: Set[uuid.UUID] = set()
    after: Optional[Tuple[datetime, uuid.UUID]] = None
    while True:
        page = await store.transactions_with_pending_commissions(
            limit=batch_size, include_failed=reopen_failed, after=after
        )
        if not page:
            break
        after = (page[-1][1], page[-1][0])

        for transaction_id, _ in page:
            # A partly paid transaction can move later in the order
            if transaction_id in seen:
                continue
            seen.add(transaction_id)
            try:
                report = await distributor.distribute(transaction_id, reopen_failed=reopen_failed)
            except Exception as e:
                logger.error(
                    "distribution_sweep_transaction_failed",
                    transaction_id=str(transaction_id),
                    error=str(e),
                )
                totals["errors"] += 1
                continue
            totals["transactions"] += 1
            totals["paid"] += len(report.paid)
            totals["submitted"] += len(report.submitted)
            totals["skipped"] += len(report.skipped)

    logger.info("distribution_sweep_completed", **totals)
    return totals


async def start_distribution_worker(
    settings: Optional[Settings] = None,
    interval_seconds: Optional[float] = None,
    once: bool = False,
    reopen_failed: bool = False,
) -> None:
    """
    Start the distribution worker.

    Args:
        settings: Application settings
        interval_seconds: Seconds between sweeps (defaults to settings)
        once: Run a single sweep and exit
        reopen_failed: Retry commissions marked failed on every sweep
    """
    settings = settings or get_settings()
    setup_logging(settings)
    interval = interval_seconds or settings.distribution_sweep_interval_seconds

    logger.info("distribution_worker_starting", interval_seconds=interval, once=once)

    engine = create_engine(settings)
    store = LedgerStore(create_session_factory(engine))
    gateway = PayoutGatewayClient(settings)
    distributor = CommissionDistributor(
        store, gateway, settle_on_initiation=settings.settle_on_transfer_initiation
    )

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("distribution_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            try:
                await run_distribution_sweep(
                    store,
                    distributor,
                    batch_size=settings.distribution_sweep_batch_size,
                    reopen_failed=reopen_failed,
                )
            except Exception as e:
                logger.error("distribution_sweep_error", error=str(e))
                # Continue running even if one sweep fails

            if once:
                break

            # Sleep in short steps so a shutdown signal is noticed promptly
            remaining = interval
            while remaining > 0 and running:
                step = min(remaining, 5)
                await asyncio.sleep(step)
                remaining -= step
    finally:
        await gateway.close()
        await close_db(engine)
        logger.info("distribution_worker_stopped")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Commission distribution worker")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between sweeps")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument(
        "--reopen-failed", action="store_true", help="Retry commissions marked failed"
    )
    args = parser.parse_args()
    asyncio.run(
        start_distribution_worker(
            interval_seconds=args.interval,
            once=args.once,
            reopen_failed=args.reopen_failed,
        )
    )


if __name__ == "__main__":
    main()
