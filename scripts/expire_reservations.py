"""Cancel Pending bookings whose hold window has passed.

Run from cron or a scheduler; reservations are also swept per event on
every new booking, so this only tidies events nobody is booking.
"""

import argparse
import logging

from booking_engine.application.audit import SqlAuditWriter
from booking_engine.application.inventory_ledger import InventoryLedger
from booking_engine.core.config import settings
from booking_engine.infrastructure.db.session import get_db_session

logger = logging.getLogger("expire_reservations")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--event-id", default=None, help="Limit the sweep to one event.")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL)
    with get_db_session() as db:
        expired = InventoryLedger(db, audit=SqlAuditWriter()).expire_stale(event_id=args.event_id)
    logger.info("Expired %s pending bookings", expired)


if __name__ == "__main__":
    main()
