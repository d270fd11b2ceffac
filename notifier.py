"""Best-effort outbound notifications (question shown, class started, class ended)."""
import asyncio
from typing import Optional

import requests

from errors import NetworkFailure
from logger import agent_logger

REQUEST_TIMEOUT = 10


class Notifier:
    def __init__(self, host: str, http: Optional[requests.Session] = None):
        self.host = host.rstrip("/")
        self.http = http or requests.Session()
        self.busy = False

    async def notify(self, event_type: str, email: Optional[str], img: Optional[str] = None) -> bool:
        """
        POST {email, type[, img]} to <host>/notify.
        Never raises: a failed notification is logged and the caller carries on.
        Returns False when skipped (already sending) or failed.
        """
        if self.busy:
            return False
        payload = {"email": email, "type": event_type}
        if img:
            payload["img"] = img
        self.busy = True
        try:
            await self._post("/notify", payload)
            agent_logger.info(f"📨 Notification sent: {event_type}")
            return True
        except NetworkFailure as e:
            agent_logger.warning(f"Notification '{event_type}' failed: {e}")
            return False
        finally:
            self.busy = False


    async def _post(self, path: str, payload: dict) -> None:
        try:
            response = await asyncio.to_thread(
                self.http.post, f"{self.host}{path}", json=payload, timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkFailure(f"POST {path} failed: {e}") from e
