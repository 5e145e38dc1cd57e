"""
Waitlist notification dispatcher.

Fire-and-forget: delivery failures are logged and never reach the matcher.
With no webhook configured the notification is only logged.
"""

import logging
from typing import Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 10,
        http_client: Optional[httpx.Client] = None
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout
        self._http = http_client

    def _payload(self, entry, slot) -> dict:
        return {
            "type": "waitlist_slot_available",
            "entry_id": entry.id,
            "customer_name": entry.customer_name,
            "customer_id": entry.customer_id,
            "contact": entry.contact,
            "slot": slot.to_dict(),
            "terminal_id": settings.terminal_id,
        }

    def notify(self, entry, slot) -> bool:
        """Returns True when delivered (or logged), False when delivery failed."""
        if not self.webhook_url:
            logger.info(
                f"Waitlist notification for {entry.customer_name}: "
                f"bay {slot.resource_id} on {slot.date} at {slot.start_time}"
            )
            return True

        try:
            if self._http is not None:
                response = self._http.post(self.webhook_url, json=self._payload(entry, slot))
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.webhook_url, json=self._payload(entry, slot))
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Waitlist notification for entry {entry.id} failed: {e}")
            return False

        logger.info(f"Waitlist notification sent for entry {entry.id}")
        return True
