"""
Sync engine orchestrating a complete N-way synchronization run.

A run loads every account, takes a snapshot, then either bootstraps the
tags by name (``--init``) or reconciles groups and contacts across the
accounts that are already synchronized and seeds the ones that are not.
The watermark is only moved forward when the whole run succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from csync.backup.snapshot import build_snapshot
from csync.storage.db import RUN_STATUS_COMPLETED, RUN_STATUS_FAILED, SyncDatabase
from csync.sync.bootstrap import BootstrapMatcher
from csync.sync.identity import EntityKind
from csync.sync.reconcile import Reconciler
from csync.sync.replica import Replica
from csync.sync.seeding import seed_new_replicas
from csync.sync.tags import TagFactory

if TYPE_CHECKING:
    from csync.backup.manager import BackupManager

# Set slightly in the future so that server timestamps of our own writes
# fall before the watermark
WATERMARK_MARGIN = timedelta(seconds=5)

MODE_SYNC = "sync"
MODE_INIT = "init"

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PreconditionError(Exception):
    """Raised when a run cannot start with the configured accounts."""

    pass


@dataclass
class SyncStats:
    """
    Statistics from a sync operation.

    Tracks counts of all operations performed during sync, summed over
    every account.
    """

    # Contact statistics
    contacts_created: int = 0
    contacts_updated: int = 0
    contacts_deleted: int = 0

    # Group statistics
    groups_created: int = 0
    groups_updated: int = 0
    groups_deleted: int = 0

    tags_assigned: int = 0
    conflicts_resolved: int = 0
    replicas_seeded: int = 0

    def record(self, kind: EntityKind, action: str, count: int = 1) -> None:
        """Add to the counter of an action ("created", "updated", "deleted")."""
        name = f"{kind.value}s_{action}"
        setattr(self, name, getattr(self, name) + count)

    @property
    def total_contact_changes(self) -> int:
        """Contacts created, updated or deleted in any account."""
        return self.contacts_created + self.contacts_updated + self.contacts_deleted

    @property
    def total_group_changes(self) -> int:
        """Groups created, updated or deleted in any account."""
        return self.groups_created + self.groups_updated + self.groups_deleted

    @property
    def total_changes(self) -> int:
        return self.total_contact_changes + self.total_group_changes

    @property
    def has_group_changes(self) -> bool:
        """Check if any group changes occurred."""
        return bool(self.total_group_changes)


@dataclass
class SyncResult:
    """
    Result of a sync operation.

    Attributes:
        stats: Counters of everything written
        active_accounts: Accounts that were reconciled
        new_accounts: Accounts that were seeded
        bootstrap: True for a ``--init`` run
        watermark: Watermark persisted at the end of the run
    """

    stats: SyncStats = field(default_factory=SyncStats)
    active_accounts: list[str] = field(default_factory=list)
    new_accounts: list[str] = field(default_factory=list)
    bootstrap: bool = False
    watermark: Optional[datetime] = None

    def has_changes(self) -> bool:
        """Check if any account was written."""
        return bool(
            self.stats.total_changes
            or self.stats.tags_assigned
            or self.stats.replicas_seeded
        )

    def summary(self) -> str:
        """
        Generate a human-readable summary of the sync result.

        Returns:
            Formatted string summary of sync operations
        """
        title = "Bootstrap Summary:" if self.bootstrap else "Sync Summary:"
        lines = [title]

        if self.active_accounts:
            lines.append(f"  Synchronized accounts: {', '.join(self.active_accounts)}")
        if self.new_accounts:
            lines.append(f"  Seeded accounts: {', '.join(self.new_accounts)}")
        lines.append("")

        if not self.has_changes():
            lines.append("No changes - accounts are already in sync")
            return "\n".join(lines)

        stats = self.stats
        if stats.has_group_changes:
            lines.extend(
                [
                    "Group changes:",
                    f"  Created: {stats.groups_created}",
                    f"  Updated: {stats.groups_updated}",
                    f"  Deleted: {stats.groups_deleted}",
                    "",
                ]
            )

        lines.extend(
            [
                "Contact changes:",
                f"  Created: {stats.contacts_created}",
                f"  Updated: {stats.contacts_updated}",
                f"  Deleted: {stats.contacts_deleted}",
            ]
        )

        if stats.tags_assigned:
            lines.append(f"  Tags assigned: {stats.tags_assigned}")
        if stats.conflicts_resolved:
            lines.append(f"  Conflicts resolved: {stats.conflicts_resolved}")

        return "\n".join(lines)


class SyncEngine:
    """
    Main synchronization engine.

    Usage:
        engine = SyncEngine(replicas, SyncDatabase(path), backup_manager=backups)
        result = engine.run()
        print(result.summary())

    Attributes:
        replicas: Every configured account, in configuration order
        database: Run history and watermark storage
        backup_manager: Snapshot store, None to skip the pre-sync snapshot
        rate_limit: Seconds to wait between entities during bootstrap
        clock: Source of the current UTC time
    """

    def __init__(
        self,
        replicas: list[Replica],
        database: SyncDatabase,
        tag_factory: TagFactory | None = None,
        backup_manager: BackupManager | None = None,
        rate_limit: float = 0.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.replicas = replicas
        self.database = database
        self.tag_factory = tag_factory or TagFactory()
        self.backup_manager = backup_manager
        self.rate_limit = rate_limit
        self.clock = clock

    def _load(self) -> None:
        for replica in self.replicas:
            replica.refresh()
            replica.check_consistency()
            self.tag_factory.register(replica.contacts.tags())
            self.tag_factory.register(replica.groups.tags())
            logger.info(
                f"{replica.account}: {len(replica.contacts)} contacts, "
                f"{len(replica.groups)} groups"
            )

    def _snapshot(self) -> None:
        if self.backup_manager is None or not self.backup_manager.enabled:
            return
        try:
            backup_file = self.backup_manager.create_backup(
                build_snapshot(self.replicas)
            )
            logger.info(f"Pre-sync backup created: {backup_file}")
        except Exception as e:
            # Log error but don't fail sync - backup is optional
            logger.warning(f"Pre-sync backup failed: {e}")

    def run(self, init: bool = False) -> SyncResult:
        """
        Perform a complete sync operation.

        Args:
            init: Match entities by name and assign the first tags instead
                  of reconciling

        Returns:
            SyncResult with the changes made

        Raises:
            PreconditionError: If no account is configured, or no account
                               is synchronized yet and init is False
            ConsistencyError: If tags or names cannot identify entities
        """
        if not self.replicas:
            raise PreconditionError("No accounts configured")

        self.database.initialize()
        run_id = self.database.start_run(MODE_INIT if init else MODE_SYNC)
        result = SyncResult(bootstrap=init)

        try:
            logger.info(f"Starting {'bootstrap' if init else 'sync'} run")
            self._load()
            self._snapshot()

            if init:
                BootstrapMatcher(
                    self.replicas, self.tag_factory, result.stats, self.rate_limit
                ).run()
                result.active_accounts = [r.account for r in self.replicas]
            else:
                self._reconcile(result)

            result.watermark = self.clock() + WATERMARK_MARGIN
            self.database.set_watermark(result.watermark)
        except Exception as e:
            logger.error(f"Sync run failed: {e}")
            self.database.finish_run(
                run_id,
                RUN_STATUS_FAILED,
                changes=result.stats.total_changes,
                error=str(e),
            )
            raise

        self.database.finish_run(
            run_id,
            RUN_STATUS_COMPLETED,
            changes=result.stats.total_changes,
            summary=result.summary(),
        )
        stats = result.stats
        logger.info(
            f"Sync complete: "
            f"groups (created={stats.groups_created}, "
            f"updated={stats.groups_updated}, deleted={stats.groups_deleted}), "
            f"contacts (created={stats.contacts_created}, "
            f"updated={stats.contacts_updated}, deleted={stats.contacts_deleted})"
        )
        return result

    def _reconcile(self, result: SyncResult) -> None:
        active = [r for r in self.replicas if not r.is_new]
        new = [r for r in self.replicas if r.is_new]
        result.active_accounts = [r.account for r in active]
        result.new_accounts = [r.account for r in new]

        if not active:
            raise PreconditionError(
                "None of the configured accounts has been synchronized yet; "
                "run 'csync sync --init' first"
            )

        watermark = self.database.get_watermark()
        logger.info(f"Reconciling changes since {watermark.isoformat()}")

        groups_changed = Reconciler(
            EntityKind.GROUP, active, watermark, self.tag_factory, result.stats
        ).run()
        if groups_changed:
            for replica in active:
                replica.refresh()

        Reconciler(
            EntityKind.CONTACT, active, watermark, self.tag_factory, result.stats
        ).run()

        if new:
            seed_new_replicas(active[0], new, result.stats)
