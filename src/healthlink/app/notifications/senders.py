"""SMS and email senders.

``LoggingSmsSender`` / ``LoggingEmailSender`` stand in when no provider is
configured. They log the destination and message size only: delivery texts
contain the viewer URL, which embeds the link key.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import boto3
import httpx

from ...observability import get_logger

logger = get_logger(__name__)

TWILIO_API_BASE = 'https://api.twilio.com/2010-04-01'


class SendError(Exception):
    """Provider rejected or failed to accept a message."""


class SmsSender(Protocol):
    async def send_sms(self, to: str, message: str) -> None: ...


class EmailSender(Protocol):
    async def send_email(self, to: str, subject: str, body: str) -> None: ...


def _mask_destination(value: str) -> str:
    if '@' in value:
        local, _, domain = value.partition('@')
        return f'{local[:1]}***@{domain}'
    return f'***{value[-4:]}' if len(value) > 4 else '***'


class LoggingSmsSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_sms(self, to: str, message: str) -> None:
        self.sent.append((to, message))
        logger.info('sms_stub', to=_mask_destination(to), length=len(message))


class LoggingEmailSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send_email(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))
        logger.info('email_stub', to=_mask_destination(to), subject=subject)


class TwilioSmsSender:
    """Twilio Messages API over httpx."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        api_base: str = TWILIO_API_BASE,
    ) -> None:
        self._account_sid = account_sid
        self._auth = (account_sid, auth_token)
        self._from_number = from_number
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._api_base = api_base.rstrip('/')

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_sms(self, to: str, message: str) -> None:
        resp = await self._client.post(
            f'{self._api_base}/Accounts/{self._account_sid}/Messages.json',
            data={'To': to, 'From': self._from_number, 'Body': message},
            auth=self._auth,
        )
        if resp.status_code >= 400:
            raise SendError(f'twilio returned {resp.status_code}')


class SesEmailSender:
    """AWS SES ``send_email``; boto3 runs in a worker thread."""

    def __init__(
        self,
        from_email: str,
        *,
        region: str | None = None,
        client: Any | None = None,
    ) -> None:
        self._from_email = from_email
        self._client = client or boto3.client('ses', region_name=region)

    async def send_email(self, to: str, subject: str, body: str) -> None:
        await asyncio.to_thread(
            self._client.send_email,
            Source=self._from_email,
            Destination={'ToAddresses': [to]},
            Message={
                'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                'Body': {'Text': {'Data': body, 'Charset': 'UTF-8'}},
            },
        )
