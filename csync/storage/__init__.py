"""Persistent run state for csync."""

from csync.storage.db import DEFAULT_WATERMARK, SyncDatabase

__all__ = ["DEFAULT_WATERMARK", "SyncDatabase"]
