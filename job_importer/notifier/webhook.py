from __future__ import annotations

import os
from datetime import datetime, timezone

import requests

from .base import ImportEvent, NotificationChannel

DEFAULT_TIMEOUT_SECONDS = 10


class WebhookChannel(NotificationChannel):
    """
    HTTP webhook channel.

    Each event is POSTed as JSON:
        {"event": "import:complete", "sent_at": "...", "data": {...}}

    Configuration via environment variables:
      - NOTIFY_WEBHOOK_URL (required unless `url` is passed)
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url or os.getenv("NOTIFY_WEBHOOK_URL")
        self.timeout = timeout
        self._session = session or requests.Session()

        if not self.url:
            raise ValueError("NOTIFY_WEBHOOK_URL must be configured")

    def send(self, event: ImportEvent) -> None:
        """
        Post one event.

        Raises:
            requests.HTTPError: If the endpoint answers with an error status
            requests.RequestException: On connection failures or timeouts
        """
        body = {
            "event": event.name,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "data": event.to_payload(),
        }
        response = self._session.post(self.url, json=body, timeout=self.timeout)
        response.raise_for_status()
