"""Notification dispatch.

Delivery notices (at issuance) are awaited per channel, each bounded by
``timeout_seconds``, and report ``sent`` / ``failed`` / ``skipped`` so the
issuer can audit them. Access notices (on manifest reads) run as background
tasks owned by the dispatcher: the request never waits for them, at most
``max_pending`` are in flight (excess notices are dropped with a warning),
and ``drain`` settles them at shutdown.

No failure here ever propagates to a caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable

from ...observability import get_logger, redact_id
from ...observability.metrics import NOTIFICATIONS_PENDING, NOTIFICATIONS_TOTAL
from . import messages
from .messages import AccessNotice, DeliveryNotice
from .senders import EmailSender, SmsSender

logger = get_logger(__name__)

SENT = 'sent'
FAILED = 'failed'
SKIPPED = 'skipped'


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    sms: str = SKIPPED
    email: str = SKIPPED

    def to_dict(self) -> dict[str, str]:
        return {'sms': self.sms, 'email': self.email}


class NotificationDispatcher:
    def __init__(
        self,
        sms: SmsSender,
        email: EmailSender,
        *,
        timeout_seconds: float = 10.0,
        max_pending: int = 100,
    ) -> None:
        self._sms = sms
        self._email = email
        self._timeout = timeout_seconds
        self._max_pending = max_pending
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _attempt(self, channel: str, link_id: str, send: Awaitable[None]) -> str:
        try:
            await asyncio.wait_for(send, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning('notification_timeout', channel=channel, link=redact_id(link_id))
            status = FAILED
        except Exception as exc:
            logger.warning(
                'notification_failed',
                channel=channel,
                link=redact_id(link_id),
                error=type(exc).__name__,
            )
            status = FAILED
        else:
            status = SENT
        NOTIFICATIONS_TOTAL.labels(channel=channel, status=status).inc()
        return status

    async def deliver(self, notice: DeliveryNotice) -> DeliveryResult:
        """Send the new-link notice on every channel the patient has."""
        sms_status = email_status = SKIPPED
        if notice.phone:
            sms_status = await self._attempt(
                'sms', notice.link_id,
                self._sms.send_sms(notice.phone, messages.delivery_sms(notice)),
            )
        if notice.email:
            subject, body = messages.delivery_email(notice)
            email_status = await self._attempt(
                'email', notice.link_id,
                self._email.send_email(notice.email, subject, body),
            )
        return DeliveryResult(sms=sms_status, email=email_status)

    async def _send_access(self, notice: AccessNotice) -> None:
        if notice.phone:
            await self._attempt(
                'sms', notice.link_id,
                self._sms.send_sms(notice.phone, messages.access_sms(notice)),
            )
        if notice.email:
            subject, body = messages.access_email(notice)
            await self._attempt(
                'email', notice.link_id,
                self._email.send_email(notice.email, subject, body),
            )

    def notify_access(self, notice: AccessNotice) -> bool:
        """Schedule an access notice. Returns False if it was dropped."""
        if not notice.phone and not notice.email:
            return False
        if len(self._pending) >= self._max_pending:
            logger.warning(
                'notification_dropped',
                link=redact_id(notice.link_id),
                pending=len(self._pending),
            )
            NOTIFICATIONS_TOTAL.labels(channel='any', status='dropped').inc()
            return False

        task = asyncio.create_task(self._send_access(notice))
        self._pending.add(task)
        NOTIFICATIONS_PENDING.set(len(self._pending))
        task.add_done_callback(self._on_done)
        return True

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        NOTIFICATIONS_PENDING.set(len(self._pending))

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight notices; cancel whatever is left after ``timeout``."""
        if not self._pending:
            return
        tasks = list(self._pending)
        _, not_done = await asyncio.wait(tasks, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning('notifications_cancelled', count=len(not_done))
            await asyncio.gather(*not_done, return_exceptions=True)
