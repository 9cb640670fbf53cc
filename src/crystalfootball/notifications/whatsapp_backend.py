"""WhatsApp Cloud API backend with rate limiting."""

from __future__ import annotations

import logging
import re
import time
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

import httpx
from tenacity import RetryCallState, retry, stop_after_attempt, wait_fixed

from crystalfootball.config import get_settings

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_valid_e164(phone: str | None) -> bool:
    return bool(phone) and bool(E164_PATTERN.match(phone.strip()))


def _retry_log(retry_state: RetryCallState) -> None:  # pragma: no cover - logging helper
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("WhatsApp retry attempt %s due to %s", retry_state.attempt_number, exception)


class RateLimiter:
    """Sliding-window limiter to cap outbound message throughput."""

    def __init__(
        self,
        max_events: int,
        window_seconds: float = 60.0,
        *,
        time_fn: Callable[[], float] | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._timestamps: deque[float] = deque()
        self._time = time_fn or time.time
        self._sleep = sleep_fn or time.sleep

    def wait_for_slot(self) -> None:
        if self.max_events <= 0:
            return
        now = self._time()
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()
        if len(self._timestamps) >= self.max_events:
            sleep_time = self.window_seconds - (now - self._timestamps[0])
            if sleep_time > 0:
                self._sleep(sleep_time)
            self._timestamps.popleft()
        self._timestamps.append(self._time())


class WhatsAppBackend:
    """Sends template messages through the WhatsApp Cloud API."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.settings = get_settings()
        self.enabled = bool(self.settings.whatsapp_token and self.settings.whatsapp_phone_number_id)
        self.client = client if client else self._build_client()
        self.rate_limiter = rate_limiter or RateLimiter(self.settings.whatsapp_rate_limit_per_minute)

    def _build_client(self) -> httpx.Client | None:
        if not self.enabled:
            return None
        return httpx.Client(
            timeout=15.0,
            headers={"Authorization": f"Bearer {self.settings.whatsapp_token}"},
        )

    @property
    def messages_url(self) -> str:
        base = self.settings.whatsapp_api_base.rstrip("/")
        return f"{base}/{self.settings.whatsapp_phone_number_id}/messages"

    @retry(stop=stop_after_attempt(3), wait=wait_fixed(1), after=_retry_log, reraise=True)
    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self.client.post(self.messages_url, json=payload)
        response.raise_for_status()
        return response.json()

    def send_template(
        self,
        phone: str,
        template_name: str,
        parameters: dict[str, str] | None = None,
    ) -> bool:
        """Send one template message; returns whether it was accepted."""

        parameters = parameters or {}
        if not is_valid_e164(phone):
            logger.warning("Skipping WhatsApp message to invalid number %r", phone)
            return False
        if not self.client:
            logger.info("[WhatsApp disabled] %s -> %s %s", template_name, phone, parameters)
            return True

        payload = {
            "messaging_product": "whatsapp",
            "to": phone.strip(),
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": "en"},
                "components": [
                    {
                        "type": "body",
                        "parameters": [{"type": "text", "text": value} for value in parameters.values()],
                    }
                ],
            },
        }
        self.rate_limiter.wait_for_slot()
        try:
            self._post(payload)
        except httpx.HTTPError as exc:
            logger.error("Failed to send WhatsApp %s to %s: %s", template_name, phone, exc)
            return False
        return True

    def send(self, template_name: str, recipients: Iterable[str], parameters: dict[str, str] | None = None) -> int:
        return sum(self.send_template(phone, template_name, parameters) for phone in recipients)
