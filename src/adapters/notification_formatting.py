"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html

from core.models import NotificationPayload


def format_mapping_label(payload: NotificationPayload, category_aliases: dict[str, str]) -> str:
    """Return a human-friendly category label, using configured aliases."""

    mapping = f"{payload.category}/{payload.subcategory}"
    alias = category_aliases.get(payload.category)
    if not alias:
        return mapping
    return f"{alias} ({mapping})"


def _remaining_text(days_remaining: int) -> str:
    if days_remaining <= 0:
        return "expires today"
    if days_remaining == 1:
        return "1 day left"
    return f"{days_remaining} days left"


def _format_markdown(payload: NotificationPayload, category_aliases: dict[str, str]) -> str:
    """Create the Markdown notification body used by the Telethon adapter."""

    def escape_md(value: str) -> str:
        for ch in r"*[`":
            value = value.replace(ch, f"\\{ch}")
        return value

    expiry = payload.expiry_at.strftime("%d-%m-%Y %H:%M UTC")
    divider = "──────────────"

    lines = [
        f"**Expiry reminder:** {escape_md(payload.title)}",
        f"**Mapping:** {escape_md(format_mapping_label(payload, category_aliases))}",
        divider,
        f"**Expires:** {expiry}",
        f"**Remaining:** {_remaining_text(payload.days_remaining)}",
    ]
    if payload.record_id is not None:
        lines.append(f"**Record:** #{payload.record_id}")
    lines.append(divider)
    return "\n".join(lines)


def _format_html(payload: NotificationPayload, category_aliases: dict[str, str]) -> str:
    """Create the HTML notification body used by the Bot API adapter."""

    expiry = html.escape(payload.expiry_at.strftime("%d-%m-%Y %H:%M UTC"))
    parts = [
        f"<b>Expiry reminder:</b> {html.escape(payload.title)}",
        f"<b>Mapping:</b> {html.escape(format_mapping_label(payload, category_aliases))}",
        "──────────────",
        f"<b>Expires:</b> {expiry}",
        f"<b>Remaining:</b> {html.escape(_remaining_text(payload.days_remaining))}",
    ]
    if payload.record_id is not None:
        parts.append(f"<b>Record:</b> #{payload.record_id}")
    parts.append("──────────────")
    return "\n".join(parts)


def format_notification(
    payload: NotificationPayload,
    category_aliases: dict[str, str],
    mode: str,
) -> str:
    """Return the notification formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(payload, category_aliases)
    if mode == "html":
        return _format_html(payload, category_aliases)
    raise ValueError(f"Unsupported notification format: {mode}")
