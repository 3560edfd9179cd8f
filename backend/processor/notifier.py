"""
Completion notification trigger.
Best effort: every failure is logged and swallowed; the job's one-shot flag is the idempotence guard.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import NOTIFICATIONS

from processor.store import JobStore

logger = get_logger(__name__)


class Notifier(ABC):
    @abstractmethod
    async def notify_job_complete(self, job_id: str) -> None:
        """Fire-and-forget; must never raise."""
        pass


class NullNotifier(Notifier):
    """Used when no completion endpoint is configured."""

    async def notify_job_complete(self, job_id: str) -> None:
        NOTIFICATIONS.labels(result="disabled").inc()
        logger.info("notification_disabled", job_id=job_id)


class WebhookNotifier(Notifier):
    """
    Claims the job's completion_email_sent flag, then POSTs {"jobId": ...} to the
    completion-email endpoint. The claim happens first, so delivery is at most once.
    """

    def __init__(
        self,
        store: JobStore,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._transport = transport

    async def notify_job_complete(self, job_id: str) -> None:
        url = self._settings.notify_url
        if not url:
            NOTIFICATIONS.labels(result="disabled").inc()
            logger.info("notification_disabled", job_id=job_id)
            return

        try:
            claimed = await self._store.claim_notification(job_id)
        except Exception as exc:
            NOTIFICATIONS.labels(result="error").inc()
            logger.error("notification_claim_failed", job_id=job_id, error=str(exc))
            return
        if not claimed:
            NOTIFICATIONS.labels(result="already_sent").inc()
            logger.info("notification_already_sent", job_id=job_id)
            return

        headers = {"Content-Type": "application/json"}
        if self._settings.notify_token:
            headers["Authorization"] = f"Bearer {self._settings.notify_token}"

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.notify_timeout_s, transport=self._transport
            ) as client:
                resp = await client.post(url, json={"jobId": job_id}, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            NOTIFICATIONS.labels(result="failed").inc()
            logger.warning("notification_rejected", job_id=job_id, status=exc.response.status_code)
            return
        except httpx.HTTPError as exc:
            NOTIFICATIONS.labels(result="failed").inc()
            logger.warning("notification_request_failed", job_id=job_id, error=str(exc))
            return

        NOTIFICATIONS.labels(result="sent").inc()
        logger.info("notification_sent", job_id=job_id)


def build_notifier(store: JobStore, settings: Optional[Settings] = None) -> Notifier:
    settings = settings or get_settings()
    if settings.notify_url:
        return WebhookNotifier(store, settings)
    return NullNotifier()
