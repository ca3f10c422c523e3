"""
Cancels gateway orders that were never paid and gives their stock and coupon usage back.

    python -m storefront.scripts.expire_unpaid_orders --hours 24

Safe to run from cron on several hosts; each order is re-checked under a row lock.
"""
import argparse
import asyncio
from dotenv import load_dotenv

load_dotenv()

from storefront.cache._cache import InMemoryStore
from storefront.common.logging_setup import get_logger, setup_logging, stop_logging
from storefront.db.connection import async_engine, async_session
from storefront.delivery.services import DeliveryFeeCalculator
from storefront.notifications.dispatcher import LoggingNotificationDispatcher
from storefront.orders.constants import UNPAID_ORDER_TTL_HOURS
from storefront.orders.services import ExpiryReport, OrderAssembler

logger = get_logger("storefront.scripts.expire")


async def run(hours: int) -> ExpiryReport:
    async with async_session() as session:
        assembler = OrderAssembler(
            session,
            DeliveryFeeCalculator(session, InMemoryStore()),
            LoggingNotificationDispatcher(),
        )
        return await assembler.expire_unpaid_orders(older_than_hours=hours)


async def main(hours: int) -> int:
    setup_logging()
    try:
        report = await run(hours)
    finally:
        await async_engine.dispose()
        stop_logging()
    print(f"expired={report.expired} failed={report.failed}")
    return 1 if report.failed else 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Expire unpaid gateway orders")
    parser.add_argument("--hours", type=int, default=UNPAID_ORDER_TTL_HOURS,
                        help="age in hours after which an unpaid order is expired")
    args = parser.parse_args(argv)
    if args.hours < 0:
        parser.error("--hours must be zero or positive")
    return args


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main(parse_args().hours)))
