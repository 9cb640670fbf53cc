"""Notification orchestration for subscribers and admins."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from crystalfootball.betslips.pnl import format_units, outcome_pnl
from crystalfootball.betslips.types import Betslip
from crystalfootball.config import get_settings
from crystalfootball.notifications.email_backend import EmailBackend
from crystalfootball.notifications.whatsapp_backend import WhatsAppBackend
from crystalfootball.subscriptions.rules import format_currency

logger = logging.getLogger(__name__)

BRAND = "Crystal Football"


class NotificationService:
    """Send subscription lifecycle messages and settlement digests.

    Every public method swallows delivery failures after logging them so a
    broken mail relay never fails the admin action that triggered it.
    """

    def __init__(
        self,
        email_backend: EmailBackend | None = None,
        whatsapp_backend: WhatsAppBackend | None = None,
    ) -> None:
        self.settings = get_settings()
        self.email_backend = email_backend or EmailBackend()
        self.whatsapp_backend = whatsapp_backend or WhatsAppBackend()

    def _email(self, subject: str, body: str, recipients: Sequence[str]) -> bool:
        try:
            self.email_backend.send(subject=subject, body=body, recipients=recipients)
        except Exception as exc:  # noqa: BLE001 - delivery must not fail the caller
            logger.error("Failed to send email %r to %s: %s", subject, ", ".join(recipients), exc)
            return False
        return True

    def _whatsapp(self, template_name: str, phones: Sequence[str], parameters: dict[str, str]) -> int:
        try:
            return self.whatsapp_backend.send(template_name, phones, parameters)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to send WhatsApp %s: %s", template_name, exc)
            return 0

    @staticmethod
    def _format_settlement(betslip: Betslip) -> str:
        profit = outcome_pnl(betslip).profit_units
        return (
            f"{betslip.home_team} vs {betslip.away_team}: {betslip.selection} @ {betslip.odds_decimal:.2f} "
            f"-> {betslip.outcome.value.upper()} ({format_units(profit)}u)"
        )

    def send_settlement_digest(self, betslips: Sequence[Betslip], emails: Sequence[str]) -> bool:
        if not betslips or not emails:
            return False
        total = sum(outcome_pnl(betslip).profit_units for betslip in betslips)
        lines = [f"{BRAND} results", ""]
        lines.extend(self._format_settlement(betslip) for betslip in betslips)
        lines.extend(["", f"Net: {format_units(total)} units", f"Full stats: {self.settings.dashboard_url}/stats"])
        return self._email(f"{BRAND} | {len(betslips)} betslip(s) settled", "\n".join(lines), emails)

    def send_payment_received(self, email: str, package_name: str, subscription_id: int) -> bool:
        body = (
            f"Thanks for your payment for {package_name}.\n\n"
            "Our team reviews receipts within 24-48 hours and will email you once your "
            f"subscription is active.\n\nReference: subscription #{subscription_id}"
        )
        return self._email("Payment Received - Under Review", body, [email])

    def send_subscription_approved(self, email: str, package_name: str, end_at: datetime) -> bool:
        body = (
            f"Your {package_name} subscription is active until {end_at:%b %d, %Y}.\n\n"
            f"Open your dashboard: {self.settings.dashboard_url}"
        )
        return self._email(f"Subscription Approved - Welcome to {BRAND}!", body, [email])

    def send_subscription_rejected(self, email: str, package_name: str, reason: str) -> bool:
        body = (
            f"We could not approve your {package_name} subscription.\n\nReason: {reason}\n\n"
            f"You can resubmit your payment details at {self.settings.renew_url}"
        )
        return self._email("Subscription Request Update", body, [email])

    def send_expiry_reminder(
        self,
        email: str,
        package_name: str,
        end_at: datetime,
        days_remaining: int,
        phone: str | None = None,
    ) -> bool:
        plural = "" if days_remaining == 1 else "s"
        body = (
            f"Your {package_name} subscription expires on {end_at:%b %d, %Y}.\n\n"
            f"Renew now to keep receiving VIP betslips: {self.settings.renew_url}"
        )
        sent = self._email(f"{BRAND} Subscription Expires in {days_remaining} day{plural}", body, [email])
        if phone:
            self._whatsapp(
                "subscription_expiring",
                [phone],
                {"expiration_date": end_at.date().isoformat()},
            )
        return sent

    def notify_admins_payment_pending(self, subscription_id: int, amount_cents: int, user_id: str) -> int:
        """WhatsApp alert to every configured admin number; returns how many were sent."""

        phones = self.settings.admin_whatsapp_numbers
        if not phones:
            logger.warning("No admin phones configured in ADMIN_WHATSAPP_E164_LIST")
            return 0
        sent = self._whatsapp(
            "payment_pending",
            phones,
            {
                "order_id": str(subscription_id),
                "amount": format_currency(amount_cents),
                "user_id": user_id,
            },
        )
        logger.info("Admin payment notifications sent: %d/%d", sent, len(phones))
        return sent
