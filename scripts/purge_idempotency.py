"""Delete expired idempotency records.

Best-effort housekeeping: lookups already ignore expired records, so skipping
a run only costs table size.
"""

import argparse
from datetime import datetime, timedelta, timezone

from payrail.common.db import SessionLocal
from payrail.common.logging import configure_logging, logger
from payrail.services.payments.repository import SqlIdempotencyStore


def main() -> None:
    """CLI entrypoint for the purge job."""

    parser = argparse.ArgumentParser(description="Purge expired idempotency records.")
    parser.add_argument(
        "--grace-seconds",
        type=int,
        default=0,
        help="Keep records that expired less than this many seconds ago.",
    )
    args = parser.parse_args()

    configure_logging()
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=args.grace_seconds)
    removed = SqlIdempotencyStore(SessionLocal).purge_expired(cutoff)
    logger.info("idempotency_purge removed=%s cutoff=%s", removed, cutoff.isoformat())
    print(f"removed={removed}")


if __name__ == "__main__":
    main()
