"""Core domain package for expirywatch.

Core contains validation, reminder arithmetic, due-set selection, dispatch and
scheduling logic without any Telegram or storage-specific code, keeping the
business logic portable.
"""
