"""
Restore of one account from a snapshot.

Groups are restored before contacts so that the memberships stored as
group tags resolve to the groups of the account. With pruning, tagged
entities that are not part of the snapshot are deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from csync.sync.identity import EntityKind
from csync.sync.membership import apply_group_tags
from csync.sync.replica import Replica
from csync.sync.tags import SyncTag, with_tag

logger = logging.getLogger(__name__)


@dataclass
class RestoreStats:
    """Statistics from a restore operation."""

    groups_created: int = 0
    groups_updated: int = 0
    groups_deleted: int = 0
    contacts_created: int = 0
    contacts_updated: int = 0
    contacts_deleted: int = 0

    @property
    def total(self) -> int:
        return (
            self.groups_created
            + self.groups_updated
            + self.groups_deleted
            + self.contacts_created
            + self.contacts_updated
            + self.contacts_deleted
        )


class SnapshotRestorer:
    """
    Writes the content of an account snapshot back into a replica.

    Usage:
        data = BackupManager(backup_dir).load_backup(path)
        restorer = SnapshotRestorer(replica)
        stats = restorer.restore(data["accounts"][replica.account], prune=True)
    """

    def __init__(self, replica: Replica):
        self.replica = replica

    def restore(
        self, account_snapshot: dict[str, Any], prune: bool = False
    ) -> RestoreStats:
        """
        Upsert the groups and contacts of a snapshot by tag.

        Args:
            account_snapshot: One entry of the snapshot "accounts" mapping
            prune: Delete tagged entities that are not in the snapshot

        Returns:
            RestoreStats with the counts of entities written
        """
        stats = RestoreStats()
        groups = account_snapshot.get("groupsByTag") or {}
        contacts = account_snapshot.get("contactsByTag") or {}
        account = self.replica.account

        logger.info(
            f"Restoring {len(groups)} groups and {len(contacts)} contacts "
            f"into {account}"
        )
        self.replica.refresh()

        for tag, record in groups.items():
            self._restore_group(SyncTag(tag), record, stats)
        self.replica.refresh()

        if prune:
            stats.groups_deleted = self._prune(EntityKind.GROUP, set(groups))
            if stats.groups_deleted:
                self.replica.refresh()

        for tag, record in contacts.items():
            self._restore_contact(SyncTag(tag), record, stats)

        if prune:
            self.replica.refresh()
            stats.contacts_deleted = self._prune(EntityKind.CONTACT, set(contacts))

        logger.info(
            f"Restored {account}: groups (created={stats.groups_created}, "
            f"updated={stats.groups_updated}, deleted={stats.groups_deleted}), "
            f"contacts (created={stats.contacts_created}, "
            f"updated={stats.contacts_updated}, deleted={stats.contacts_deleted})"
        )
        return stats

    def _restore_group(
        self, tag: SyncTag, record: dict[str, Any], stats: RestoreStats
    ) -> None:
        name = record.get("name", "")
        remote_id = self.replica.groups.tag_to_id(tag)
        if remote_id is None:
            remote_id = self.replica.create(
                EntityKind.GROUP, {"name": name, "clientData": with_tag(None, tag)}
            )
            self.replica.fetch_body(EntityKind.GROUP, remote_id, expect_tag=tag)
            stats.groups_created += 1
            return

        info = self.replica.groups.get(remote_id)
        if info is not None and info.display_name != name:
            self.replica.update_entity(EntityKind.GROUP, remote_id, {"name": name})
            stats.groups_updated += 1

    def _restore_contact(
        self, tag: SyncTag, record: dict[str, Any], stats: RestoreStats
    ) -> None:
        body = apply_group_tags(
            record.get("body") or {},
            record.get("groupTags") or [],
            self.replica.groups,
        )
        body["clientData"] = with_tag(body.get("clientData"), tag)

        remote_id = self.replica.contacts.tag_to_id(tag)
        if remote_id is None:
            self.replica.create(EntityKind.CONTACT, body)
            stats.contacts_created += 1
        else:
            self.replica.update_entity(EntityKind.CONTACT, remote_id, body)
            stats.contacts_updated += 1

    def _prune(self, kind: EntityKind, keep: set[str]) -> int:
        deleted = 0
        for tag in sorted(self.replica.index(kind).tags() - keep):
            if self.replica.delete(kind, tag):
                deleted += 1
                logger.debug(f"Pruned {kind.value} {tag} from {self.replica.account}")
        return deleted
