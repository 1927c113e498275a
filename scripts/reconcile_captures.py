#!/usr/bin/env python3
"""Replay or list PayPal captures that never made it into the ledger."""

import argparse
import asyncio
import logging
import sys

import asyncpg
from dotenv import load_dotenv
load_dotenv()

from shopsphere.config import get_app_settings
from shopsphere.error_handling import ErrorHandler
from shopsphere.services.payments import ReconciliationService
from shopsphere.store import PostgresStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def reconcile(list_only: bool, limit: int) -> int:
    settings = get_app_settings()
    pool = await asyncpg.create_pool(settings.database.url, min_size=1, max_size=2)
    try:
        service = ReconciliationService(
            PostgresStore(pool),
            ErrorHandler(max_retries=settings.reconciliation.max_retries)
        )

        if list_only:
            orphans = await service.pending(limit)
            for orphan in orphans:
                print(
                    f'{orphan.created_at.isoformat()}  {orphan.order_id}  '
                    f'{orphan.reason.value}  negotiation={orphan.negotiation_id}  amount={orphan.amount}'
                )
            print(f'{len(orphans)} unresolved captures')
            return 0

        summary = await service.reconcile_all(limit)
        print(f'Replayed: {len(summary["replayed"])}')
        print(f'Needs manual handling: {len(summary["manual"])}')
        for suggestion in summary["suggestions"]:
            print(f'  {suggestion["order_id"]} ({suggestion["reason"]})')
            for line in suggestion["recovery_suggestions"]:
                print(f'    - {line}')
        print(f'Failed: {len(summary["failed"])}')
        return 1 if summary["failed"] else 0

    finally:
        await pool.close()


def main() -> int:
    settings = get_app_settings()
    parser = argparse.ArgumentParser(
        prog="reconcile-captures",
        description="Reconcile orphaned PayPal captures with the ledger"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Only list unresolved captures"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.reconciliation.batch_size,
        help="Maximum number of captures to process"
    )
    args = parser.parse_args()

    try:
        return asyncio.run(reconcile(args.list, args.limit))
    except Exception as e:
        logger.error(f"Reconciliation failed: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
