"""
Backup and restore functionality for contact data.

This module provides tag-keyed snapshots of every account, taken before
each sync run, with restore capabilities for recovery.
"""

from csync.backup.manager import BackupInfo, BackupManager

__all__ = ["BackupInfo", "BackupManager"]
