"""Telegram user-account notification transport.

Formats a human-readable Markdown message and sends it through a Telethon
client. Recipients are usernames, chat ids, or "me" for Saved Messages.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from telethon import TelegramClient, errors

from adapters.notification_formatting import format_notification
from core.models import DeliveryReport, NotificationPayload

LOGGER = logging.getLogger(__name__)


def build_user_client(session_path: str, api_id: Optional[str], api_hash: Optional[str]) -> TelegramClient:
    """Create the Telethon client whose session file sends reminders."""

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("API_ID and API_HASH are required when notification_method=user")
    return TelegramClient(session_path, int(api_id), api_hash)


def _entity_for(recipient: str) -> Union[str, int]:
    # Numeric strings are chat ids; everything else is resolved by Telethon.
    try:
        return int(recipient)
    except ValueError:
        return recipient


class TelegramUserTransport:
    """Transport adapter that sends messages from the logged-in account."""

    def __init__(self, client, category_aliases: dict[str, str]) -> None:
        self._client = client
        self._category_aliases = category_aliases

    async def send(self, recipients: Sequence[str], payload: NotificationPayload) -> DeliveryReport:
        """Send the formatted notification to every recipient."""

        message = format_notification(payload, self._category_aliases, mode="markdown")
        failures: list[str] = []
        for recipient in recipients:
            try:
                await self._client.send_message(_entity_for(recipient), message, parse_mode="Markdown")
            except (errors.RPCError, ValueError, ConnectionError) as exc:
                LOGGER.warning("Telegram delivery to %s failed: %s", recipient, exc)
                failures.append(f"{recipient}: {exc}")
        if failures:
            return DeliveryReport(delivered=False, error="; ".join(failures))
        return DeliveryReport(delivered=True)
