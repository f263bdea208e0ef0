"""
LedgerBot - persistence and delayed-delivery substrate for a Discord bot.

This package provides entity storage across a document backend and a legacy
key-value backend, and a cron-driven reminder queue built on a Redis sorted set.
"""

__version__ = "0.1.0"
