"""
Backup manager for snapshot persistence and recovery.

Provides functionality to:
- Rotate numbered snapshot files (1.bak is the newest)
- Write a snapshot document as JSON
- List available backups with their version and creation time
- Load a backup for restore operations
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

SNAPSHOT_VERSION = 2

BACKUP_SUFFIX = ".bak"
BACKUP_NAME_PATTERN = re.compile(r"^(\d+)\.bak$")

logger = logging.getLogger(__name__)


@dataclass
class BackupInfo:
    """
    A snapshot file found in the backup directory.

    Attributes:
        slot: Position in the rotation, 1 for the newest
        path: Location of the file
        version: Document version, None if unreadable
        created_at: ISO timestamp stored in the document
    """

    slot: int
    path: Path
    version: int | None = None
    created_at: str | None = None


class BackupManager:
    """
    Manager for creating and managing snapshot files.

    Keeps up to ``retention_count`` snapshots named ``1.bak`` (newest)
    to ``<retention_count>.bak`` (oldest). A retention count of 0
    disables snapshots.

    Attributes:
        backup_dir: Directory path where backups are stored
        retention_count: Number of snapshot slots

    Usage:
        bm = BackupManager(Path("~/.csync/backups"), retention_count=7)

        # Rotate and write
        backup_file = bm.create_backup(build_snapshot(replicas))

        # List available backups
        for info in bm.list_backups():
            print(info.slot, info.created_at)

        # Load specific backup
        data = bm.load_backup(bm.resolve("2"))
    """

    def __init__(self, backup_dir: Path | str, retention_count: int = 10):
        """
        Initialize the backup manager.

        Args:
            backup_dir: Directory path where backups will be stored
            retention_count: Number of snapshots to keep (0 = no snapshots)
        """
        self.backup_dir = Path(backup_dir).expanduser()
        self.retention_count = retention_count

    @property
    def enabled(self) -> bool:
        return self.retention_count > 0

    def slot_path(self, slot: int) -> Path:
        return self.backup_dir / f"{slot}{BACKUP_SUFFIX}"

    def rotate(self) -> None:
        """
        Age every snapshot by one slot.

        The snapshot in the last slot is dropped; slot 1 is left free for
        the next write. Nothing happens when snapshots are disabled.
        """
        if not self.enabled:
            return

        oldest = self.slot_path(self.retention_count)
        if oldest.exists():
            oldest.unlink()

        for slot in range(self.retention_count - 1, 0, -1):
            path = self.slot_path(slot)
            if path.exists():
                path.replace(self.slot_path(slot + 1))

    def write(self, snapshot: dict[str, Any]) -> Path:
        """
        Write a snapshot to slot 1.

        Returns:
            Path of the written file
        """
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        path = self.slot_path(1)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, ensure_ascii=False)
        return path

    def create_backup(self, snapshot: dict[str, Any]) -> Path | None:
        """
        Rotate the existing snapshots and write a new one.

        Args:
            snapshot: Document produced by build_snapshot()

        Returns:
            Path to created backup file, or None when snapshots are disabled
        """
        if not self.enabled:
            logger.debug("Snapshots disabled (backup_days = 0)")
            return None

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.rotate()
        return self.write(snapshot)

    def list_backups(self) -> list[BackupInfo]:
        """
        List all snapshot files, newest first.

        Returns:
            One BackupInfo per file named ``<n>.bak``
        """
        if not self.backup_dir.is_dir():
            return []

        backups = []
        for path in self.backup_dir.iterdir():
            match = BACKUP_NAME_PATTERN.match(path.name)
            if not match:
                continue
            info = BackupInfo(slot=int(match.group(1)), path=path)
            data = self.load_backup(path)
            if data is not None:
                info.version = data.get("version")
                info.created_at = data.get("createdAt")
            backups.append(info)

        backups.sort(key=lambda b: b.slot)
        return backups

    def load_backup(self, backup_file: Path | str) -> dict[str, Any] | None:
        """
        Load and parse a backup file.

        Args:
            backup_file: Path to the backup file to load

        Returns:
            The snapshot document, or None if the file cannot be read,
            cannot be parsed or has another version
        """
        try:
            with open(backup_file, encoding="utf-8") as f:
                backup_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cannot read backup {backup_file}: {e}")
            return None

        if not isinstance(backup_data, dict):
            return None

        if backup_data.get("version") != SNAPSHOT_VERSION:
            logger.warning(
                f"Backup {backup_file} has version {backup_data.get('version')}, "
                f"expected {SNAPSHOT_VERSION}"
            )
            return None

        if not isinstance(backup_data.get("accounts"), dict):
            return None

        return backup_data

    def resolve(self, reference: str | int) -> Path:
        """
        Turn a slot number or a file path into a backup path.

        Args:
            reference: ``2``, ``"2"`` or a path to a snapshot file
        """
        text = str(reference)
        if text.isdigit():
            return self.slot_path(int(text))
        return Path(text).expanduser()
