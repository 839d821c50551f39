"""Telegram Bot API notification transport.

Uses the Bot API for delivery so each recipient is a bot chat id.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Sequence

from adapters.notification_formatting import format_notification
from core.models import DeliveryReport, NotificationPayload

LOGGER = logging.getLogger(__name__)


class TelegramBotTransport:
    """Transport adapter that sends messages via the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        category_aliases: dict[str, str],
        request_timeout: float = 10,
    ) -> None:
        self._bot_token = bot_token
        self._category_aliases = category_aliases
        self._request_timeout = request_timeout

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _post(self, chat_id: str, message: str) -> None:
        payload = {
            "chat_id": chat_id,
            "text": message,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._request_timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Bot API error {e.code}: {body}") from e

    async def send(self, recipients: Sequence[str], payload: NotificationPayload) -> DeliveryReport:
        """Send the formatted notification to every recipient chat.

        Delivery counts as failed if any recipient fails; the whole record is
        then retried on the next pass.
        """

        message = format_notification(payload, self._category_aliases, mode="html")
        errors: list[str] = []
        for chat_id in recipients:
            try:
                # Blocking urllib call off the event loop.
                await asyncio.to_thread(self._post, chat_id, message)
            except (OSError, RuntimeError) as exc:
                LOGGER.warning("Bot API delivery to %s failed: %s", chat_id, exc)
                errors.append(f"{chat_id}: {exc}")
        if errors:
            return DeliveryReport(delivered=False, error="; ".join(errors))
        return DeliveryReport(delivered=True)
