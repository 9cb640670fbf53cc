"""Scheduling entry points."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict

from crystalfootball.betslips.guards import get_days_until_expiry
from crystalfootball.config import get_settings
from crystalfootball.db.database import get_session
from crystalfootball.notifications.service import NotificationService
from crystalfootball.subscriptions.service import expire_ended, get_expiring, get_profile

logger = logging.getLogger(__name__)

settings = get_settings()


def reminder_due(days_remaining: int, days_ahead: int) -> bool:
    """Reminders go out five days before expiry and again on the last day."""

    return days_remaining in {days_ahead, 1}


def run_daily_job(
    now: datetime | None = None,
    notifier: NotificationService | None = None,
) -> Dict[str, int]:
    """Run the daily housekeeping: expire ended subscriptions -> send reminders."""

    now = now or datetime.now(timezone.utc)
    days_ahead = settings.reminder_days_ahead
    reminders = []
    with get_session() as session:
        expired = expire_ended(session, now=now)
        for subscription in get_expiring(session, days_ahead=days_ahead, now=now):
            days_remaining = get_days_until_expiry(subscription.end_at, now)
            if not reminder_due(days_remaining, days_ahead):
                continue
            profile = get_profile(session, subscription.user_id)
            phone = profile.phone_e164 if profile and profile.whatsapp_opt_in else None
            reminders.append((subscription, days_remaining, phone))
        expired_count = len(expired)

    notifier = notifier or NotificationService()
    sent = 0
    for subscription, days_remaining, phone in reminders:
        if notifier.send_expiry_reminder(
            subscription.user_email,
            subscription.package_name,
            subscription.end_at,
            days_remaining,
            phone=phone,
        ):
            sent += 1

    logger.info("Daily job: expired=%d reminders=%d/%d", expired_count, sent, len(reminders))
    return {"expired": expired_count, "reminders": len(reminders), "reminders_sent": sent}


def main() -> None:  # pragma: no cover - CLI convenience
    run_daily_job()


if __name__ == "__main__":  # pragma: no cover
    main()
