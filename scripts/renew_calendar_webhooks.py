# scripts/renew_calendar_webhooks.py
"""
Renew Google Calendar push channels that are about to expire.

Meant to be run by an external scheduler, e.g. hourly from cron:

    0 * * * * cd /srv/calendar-sync && python scripts/renew_calendar_webhooks.py
"""
import argparse
import logging
import os
import sys
from datetime import timedelta

# Add the project root directory to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.config import settings
from app.core.logging import log_context, setup_logging
from app.db.session import session_scope
from app.services.webhook_subscription_service import WebhookSubscriptionService


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--horizon-hours",
        type=int,
        default=settings.WEBHOOK_RENEWAL_HORIZON_HOURS,
        help="Renew channels expiring within this many hours",
    )
    args = parser.parse_args(argv)

    setup_logging()
    logger = logging.getLogger("app.scripts.renew_calendar_webhooks")

    with log_context(job="renew_calendar_webhooks"):
        with session_scope() as db:
            report = WebhookSubscriptionService(db).renew_expiring(
                timedelta(hours=args.horizon_hours)
            )
        logger.info(
            f"Renewed {len(report.renewed)}, failed {len(report.failed)}, "
            f"purged {len(report.purged)} channel(s)"
        )
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
