"""Telegram Bot API channel."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from accumulation_tracker.alerter.channels.base import AlertChannel, ChannelError

if TYPE_CHECKING:
    from accumulation_tracker.alerter.models import FormattedAlert
    from accumulation_tracker.storage.repos import UserDTO

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"


class TelegramChannel(AlertChannel):
    """Sends alerts with `sendMessage` in HTML parse mode."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._bot_token = bot_token
        if not bot_token:
            logger.warning("TELEGRAM_BOT_TOKEN not configured; Telegram alerts disabled")

    def is_configured(self) -> bool:
        return bool(self._bot_token)

    def recipient_for(self, user: UserDTO) -> str | None:
        return user.telegram_chat_id or None

    async def send(self, recipient: str, alert: FormattedAlert) -> bool:
        if not self.is_configured():
            return False

        payload = {
            "chat_id": recipient,
            "text": alert.telegram_html,
            "parse_mode": "HTML",
            "disable_web_page_preview": False,
        }
        try:
            response = await self._get_client().post(
                TELEGRAM_API_URL.format(token=self._bot_token), json=payload
            )
        except httpx.HTTPError as e:
            raise ChannelError(f"Telegram request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 200 and data.get("ok") is True:
            logger.debug("Telegram message sent to chat %s", recipient)
            return True

        logger.warning(
            "Telegram API error for chat %s: HTTP %d %s",
            recipient,
            response.status_code,
            data.get("description", ""),
        )
        return False
