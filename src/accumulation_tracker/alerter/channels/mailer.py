"""Email channel backed by SendGrid or Mailgun."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

import httpx

from accumulation_tracker.alerter.channels.base import AlertChannel, ChannelError

if TYPE_CHECKING:
    from accumulation_tracker.alerter.models import FormattedAlert
    from accumulation_tracker.storage.repos import UserDTO

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
MAILGUN_MESSAGES_URL = "https://api.mailgun.net/v3/{domain}/messages"


class EmailChannel(AlertChannel):
    """Sends alerts as HTML email with a plain text part.

    SendGrid is used when its key is set, otherwise Mailgun when both its
    key and domain are set.
    """

    name = "email"

    def __init__(
        self,
        *,
        sendgrid_api_key: str | None = None,
        mailgun_api_key: str | None = None,
        mailgun_domain: str | None = None,
        from_address: str = "noreply@accumulation-tracker.local",
        from_name: str = "Accumulation Tracker",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._sendgrid_api_key = sendgrid_api_key
        self._mailgun_api_key = mailgun_api_key
        self._mailgun_domain = mailgun_domain
        self.from_address = from_address
        self.from_name = from_name
        if self.provider is None:
            logger.warning(
                "No email provider configured (SENDGRID_API_KEY or MAILGUN_API_KEY); "
                "email alerts disabled"
            )

    @property
    def provider(self) -> Literal["sendgrid", "mailgun"] | None:
        if self._sendgrid_api_key:
            return "sendgrid"
        if self._mailgun_api_key and self._mailgun_domain:
            return "mailgun"
        return None

    def is_configured(self) -> bool:
        return self.provider is not None

    def recipient_for(self, user: UserDTO) -> str | None:
        return user.email or None

    async def send(self, recipient: str, alert: FormattedAlert) -> bool:
        try:
            if self.provider == "sendgrid":
                return await self._send_sendgrid(recipient, alert)
            if self.provider == "mailgun":
                return await self._send_mailgun(recipient, alert)
        except httpx.HTTPError as e:
            raise ChannelError(f"Email request failed: {e}") from e
        return False

    async def _send_sendgrid(self, recipient: str, alert: FormattedAlert) -> bool:
        payload = {
            "personalizations": [{"to": [{"email": recipient}], "subject": alert.subject}],
            "from": {"email": self.from_address, "name": self.from_name},
            "content": [
                {"type": "text/plain", "value": alert.plain_text},
                {"type": "text/html", "value": alert.email_html},
            ],
        }
        response = await self._get_client().post(
            SENDGRID_SEND_URL,
            json=payload,
            headers={"Authorization": f"Bearer {self._sendgrid_api_key}"},
        )
        if response.is_success:
            logger.debug("Email sent via SendGrid to %s", recipient)
            return True
        logger.warning("SendGrid rejected email to %s: HTTP %d", recipient, response.status_code)
        return False

    async def _send_mailgun(self, recipient: str, alert: FormattedAlert) -> bool:
        response = await self._get_client().post(
            MAILGUN_MESSAGES_URL.format(domain=self._mailgun_domain),
            data={
                "from": f"{self.from_name} <{self.from_address}>",
                "to": recipient,
                "subject": alert.subject,
                "html": alert.email_html,
                "text": alert.plain_text,
            },
            auth=("api", self._mailgun_api_key or ""),
        )
        if response.status_code == 200:
            logger.debug("Email sent via Mailgun to %s", recipient)
            return True
        logger.warning("Mailgun rejected email to %s: HTTP %d", recipient, response.status_code)
        return False
