"""Adapters implementing the core ports (SQLite persistence, Telegram transports)."""
