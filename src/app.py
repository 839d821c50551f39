"""Application entry point for the expirywatch reminder engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.sqlite_storage import SQLiteMappingLookup, SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotTransport
from adapters.telegram_notifier import TelegramUserTransport, build_user_client
from core.config import CacheConfig, DispatchConfig, SchedulerConfig
from core.dispatcher import NotificationDispatcher
from core.driver import SchedulingDriver
from core.errors import DuplicateMapping, LookupUnavailable
from core.intake import RecordIntake
from core.mapping_cache import ReferenceMappingCache
from core.mappings import MappingAdministration
from core.models import MappingEntry, ReminderCandidate
from core.ports import SystemClock
from core.validator import RecordValidator

NAME = "EXPIRYWATCH"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/expirywatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _build_cache(storage: SQLiteStorage) -> ReferenceMappingCache:
    return ReferenceMappingCache(
        SQLiteMappingLookup(storage),
        CacheConfig(lookup_timeout_seconds=settings.LOOKUP_TIMEOUT_SECONDS),
    )


async def _build_transport():
    """Select the transport from configuration; returns (transport, client)."""

    # The core dispatcher never sees which channel is in use.
    if settings.NOTIFICATION_METHOD == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when notification_method=bot")
        transport = TelegramBotTransport(
            bot_token=bot_token,
            category_aliases=settings.CATEGORY_ALIASES,
            request_timeout=settings.BOT_REQUEST_TIMEOUT_SECONDS,
        )
        return transport, None
    if settings.NOTIFICATION_METHOD == "user":
        client = _user_client()
        await client.connect()
        if not await client.is_user_authorized():
            await client.disconnect()
            raise RuntimeError("Telegram session is not authorized; run `expirywatch login` first")
        return TelegramUserTransport(client, settings.CATEGORY_ALIASES), client
    raise RuntimeError("notification_method must be 'bot' or 'user'")


async def _with_driver(run_loop: bool) -> None:
    storage = _open_storage()
    transport, client = await _build_transport()
    logger = logging.getLogger(__name__)
    logger.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)

    dispatcher = NotificationDispatcher(
        store=storage,
        transport=transport,
        config=DispatchConfig(
            max_concurrency=settings.DISPATCH_MAX_CONCURRENCY,
            send_timeout_seconds=settings.DISPATCH_SEND_TIMEOUT_SECONDS,
        ),
    )
    driver = SchedulingDriver(
        store=storage,
        dispatcher=dispatcher,
        clock=SystemClock(),
        config=SchedulerConfig(interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS),
    )
    try:
        if not run_loop:
            report = await driver.tick()
            if report is not None:
                print(
                    f"due={len(report.due)} delivered={report.batch.delivered} "
                    f"failed={report.batch.failed} skipped={report.batch.skipped}"
                )
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops do not support signal handlers.
                pass
        await driver.run_forever(stop_event)
    finally:
        if client is not None:
            await client.disconnect()


def _run(once: bool = False) -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)
    logger.info("Starting expirywatch")
    asyncio.run(_with_driver(run_loop=not once))


def _mapping(args: argparse.Namespace) -> None:
    _configure_logging()
    storage = _open_storage()
    admin = MappingAdministration(storage, _build_cache(storage))
    if args.mapping_command == "add":
        try:
            admin.add(MappingEntry(args.category, args.subcategory, args.description))
        except DuplicateMapping as exc:
            raise SystemExit(str(exc)) from exc
        print(f"Added {args.category}/{args.subcategory}")
    elif args.mapping_command == "remove":
        if not admin.remove(args.category, args.subcategory):
            raise SystemExit(f"No such mapping: {args.category}/{args.subcategory}")
        print(f"Removed {args.category}/{args.subcategory}")
    else:
        for entry in admin.list():
            suffix = f" | {entry.description}" if entry.description else ""
            print(f"{entry.category} | {entry.subcategory}{suffix}")


def _submit(args: argparse.Namespace) -> None:
    _configure_logging()
    storage = _open_storage()
    intake = RecordIntake(RecordValidator(_build_cache(storage)), storage, SystemClock())
    candidate = ReminderCandidate(
        category=args.category,
        subcategory=args.subcategory,
        expiry_at=datetime.fromisoformat(args.expiry),
        lead_days=args.lead_days,
        recipients=args.recipient or [],
        title=args.title or "",
    )
    try:
        result = asyncio.run(intake.submit(candidate))
    except LookupUnavailable as exc:
        raise SystemExit(f"Could not validate right now: {exc}") from exc
    if not result.accepted:
        for reason in result.validation.reasons:
            print(f"rejected: {reason.code.value}: {reason.message}")
        raise SystemExit(1)
    record = result.record
    print(f"Record {record.id} stored; reminder at {record.reminder_at.isoformat()}")


def _user_client():
    return build_user_client(
        settings.TELEGRAM_SESSION_PATH,
        settings.TELEGRAM_API_ID,
        settings.TELEGRAM_API_HASH,
    )


async def _authorize_sender() -> None:
    client = _user_client()
    # Telethon prompts for phone, login code and 2FA password as needed.
    await client.start()
    try:
        me = await client.get_me()
        print(f"Reminders will be sent as {me.first_name} (session {settings.TELEGRAM_SESSION_PATH})")
    finally:
        await client.disconnect()


def _login() -> None:
    _print_banner()
    asyncio.run(_authorize_sender())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="expirywatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the reminder scheduler")
    subparsers.add_parser("once", help="Run a single scheduling pass and exit")
    subparsers.add_parser("login", help="Authorize the Telegram session for notification_method=user")

    mapping = subparsers.add_parser("mapping", help="Manage category/subcategory mappings")
    mapping_sub = mapping.add_subparsers(dest="mapping_command", required=True)
    add = mapping_sub.add_parser("add", help="Add a mapping")
    add.add_argument("category")
    add.add_argument("subcategory")
    add.add_argument("--description")
    remove = mapping_sub.add_parser("remove", help="Remove a mapping")
    remove.add_argument("category")
    remove.add_argument("subcategory")
    mapping_sub.add_parser("list", help="List mappings")

    submit = subparsers.add_parser("submit", help="Register an expiring artifact")
    submit.add_argument("--category", required=True)
    submit.add_argument("--subcategory", required=True)
    submit.add_argument("--expiry", required=True, help="ISO timestamp, UTC if no offset")
    submit.add_argument("--lead-days", type=int, required=True)
    submit.add_argument("--recipient", action="append", help="Repeat for several recipients")
    submit.add_argument("--title")

    args = parser.parse_args(argv)
    if args.command == "mapping":
        _mapping(args)
        return
    if args.command == "submit":
        _submit(args)
        return
    if args.command == "login":
        _login()
        return
    _run(once=args.command == "once")


if __name__ == "__main__":
    main()
