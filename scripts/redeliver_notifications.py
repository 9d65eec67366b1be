import argparse

from loguru import logger

from gigledger.core.config import get_settings
from gigledger.db import init_db
from gigledger.services.notification_service import NotificationDispatcher
from gigledger.services.unit_of_work import UnitOfWork


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deliver notification outbox rows left pending")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override NOTIFICATION_DELIVERY_BATCH_SIZE for each sweep",
    )
    parser.add_argument(
        "--max-batches",
        type=int,
        default=1,
        help="Sweep up to N batches, stopping early once a batch delivers nothing",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    init_db()

    dispatcher = NotificationDispatcher(UnitOfWork(settings=settings))
    batch_size = args.batch_size or settings.notification_delivery_batch_size

    delivered = 0
    for batch in range(1, max(args.max_batches, 1) + 1):
        count = dispatcher.deliver_pending(limit=batch_size)
        delivered += count
        if count == 0:
            break
        logger.info("Batch {} delivered {} notification(s)", batch, count)

    logger.info("Redelivered {} notification(s)", delivered)


if __name__ == "__main__":
    main()
