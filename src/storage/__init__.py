"""Persistent storage for subscriptions, ledgers and replica records."""
from .db import Database, SCHEMA

__all__ = ["Database", "SCHEMA"]
