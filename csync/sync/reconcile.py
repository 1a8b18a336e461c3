"""
Tag-driven reconciliation of one entity kind across active replicas.

A pass runs three phases in order:

1. Deletions: a tag missing from any active replica was deleted there,
   so it is deleted from every replica still holding it.
2. Additions: every untagged entity is new. It gets a fresh tag and is
   created in every other replica.
3. Updates: tagged entities edited after the watermark are copied over
   the other replicas, last modification wins.

Contacts and groups are reconciled by two separate passes; the group
pass has to finish first so that contact memberships can be translated.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from csync.sync.conflict import ConflictResolver, UpdateCandidate
from csync.sync.identity import EntityKind
from csync.sync.membership import translate
from csync.sync.replica import Replica
from csync.sync.tags import SyncTag, TagFactory, with_tag

if TYPE_CHECKING:
    from csync.sync.engine import SyncStats

logger = logging.getLogger(__name__)


class Reconciler:
    """
    One reconciliation pass over contacts or groups.

    Usage:
        stats = SyncStats()
        Reconciler(EntityKind.GROUP, active, watermark, factory, stats).run()
        Reconciler(EntityKind.CONTACT, active, watermark, factory, stats).run()

    Attributes:
        kind: Entity kind handled by this pass
        replicas: Active replicas, all refreshed before the pass starts
        watermark: Edits after this time are new since the last run
    """

    def __init__(
        self,
        kind: EntityKind,
        replicas: list[Replica],
        watermark: datetime,
        tag_factory: TagFactory,
        stats: SyncStats,
        resolver: ConflictResolver | None = None,
    ):
        self.kind = kind
        self.replicas = replicas
        self.watermark = watermark
        self.tag_factory = tag_factory
        self.stats = stats
        self.resolver = resolver or ConflictResolver()

    def _refresh_all(self) -> None:
        for replica in self.replicas:
            replica.refresh()

    def _body_for(
        self, body: dict[str, Any], source: Replica, destination: Replica
    ) -> dict[str, Any]:
        if self.kind is EntityKind.CONTACT:
            return translate(body, source.groups, destination.groups)
        return body

    # =========================================================================
    # Deletions
    # =========================================================================

    def plan_deletions(self) -> set[SyncTag]:
        """
        Tags to purge from every replica.

        A tag is purged when at least one active replica does not hold it.
        Tags absent from every replica never show up in the union, so a
        fully deleted entity needs no further work.
        """
        tag_sets = {r.account: r.index(self.kind).tags() for r in self.replicas}
        union: set[SyncTag] = set().union(*tag_sets.values())

        purge: set[SyncTag] = set()
        for account, tags in tag_sets.items():
            missing = union - tags
            if missing:
                logger.debug(
                    f"{len(missing)} {self.kind.value}(s) deleted in {account}"
                )
            purge |= missing
        return purge

    def propagate_deletions(self) -> int:
        """
        Delete purged tags everywhere, then refresh every replica.

        Returns:
            Number of entities deleted
        """
        purge = self.plan_deletions()
        if not purge:
            return 0

        logger.info(f"Propagating {len(purge)} {self.kind.value} deletion(s)")
        deleted = 0
        for tag in sorted(purge):
            for replica in self.replicas:
                if replica.delete(self.kind, tag):
                    deleted += 1
                    self.stats.record(self.kind, "deleted")
                    logger.debug(
                        f"Deleted {self.kind.value} {tag} from {replica.account}"
                    )

        self._refresh_all()
        return deleted

    # =========================================================================
    # Additions
    # =========================================================================

    def propagate_additions(self) -> set[tuple[str, str]]:
        """
        Tag every new entity and create it in the other replicas.

        Returns:
            (account, remote id) of every entity tagged or created here,
            which the update phase must leave alone
        """
        added: set[tuple[str, str]] = set()

        for source in self.replicas:
            new_entities = source.index(self.kind).untagged()
            if not new_entities:
                continue
            logger.info(
                f"Adding {len(new_entities)} new {self.kind.value}(s) "
                f"from {source.account}"
            )

            for info in new_entities:
                tag = self.tag_factory.new_tag()
                source.assign_tag(self.kind, info.remote_id, tag)
                self.stats.tags_assigned += 1
                added.add((source.account, info.remote_id))

                if self.kind is EntityKind.GROUP:
                    body = source.fetch_body(self.kind, info.remote_id, expect_tag=tag)
                else:
                    body = source.fetch_body(self.kind, info.remote_id)
                    body["clientData"] = with_tag(body.get("clientData"), tag)

                for destination in self.replicas:
                    if destination is source:
                        continue
                    remote_id = destination.create(
                        self.kind, self._body_for(body, source, destination)
                    )
                    added.add((destination.account, remote_id))
                    self.stats.record(self.kind, "created")
                    logger.debug(
                        f"Created {self.kind.value} '{info.display_name}' "
                        f"in {destination.account}"
                    )

        return added

    # =========================================================================
    # Updates
    # =========================================================================

    def collect_updates(
        self, added: set[tuple[str, str]] | None = None
    ) -> dict[SyncTag, list[UpdateCandidate]]:
        """Tagged entities edited after the watermark, grouped by tag."""
        added = added or set()
        candidates: dict[SyncTag, list[UpdateCandidate]] = {}
        for replica in self.replicas:
            for info in replica.index(self.kind):
                if not info.tag or (replica.account, info.remote_id) in added:
                    continue
                if info.last_updated <= self.watermark:
                    continue
                candidates.setdefault(info.tag, []).append(
                    UpdateCandidate(
                        account=replica.account,
                        remote_id=info.remote_id,
                        tag=info.tag,
                        last_updated=info.last_updated,
                    )
                )
        return candidates

    def propagate_updates(self, added: set[tuple[str, str]] | None = None) -> int:
        """
        Copy the newest edit of every changed tag over the other replicas.

        Returns:
            Number of entities overwritten
        """
        added = added or set()
        candidates = self.collect_updates(added)
        if not candidates:
            return 0

        logger.info(f"Propagating {len(candidates)} {self.kind.value} update(s)")
        by_account = {r.account: r for r in self.replicas}
        updated = 0

        for tag, edits in candidates.items():
            result = self.resolver.resolve(edits)
            if result.is_conflict:
                self.stats.conflicts_resolved += 1
                logger.info(f"Conflict on {self.kind.value} {tag}: {result.reason}")

            source = by_account[result.winner.account]
            body = source.fetch_body(self.kind, result.winner.remote_id)
            for destination in self.replicas:
                if destination is source:
                    continue
                if destination.update(
                    self.kind, tag, self._body_for(body, source, destination)
                ):
                    updated += 1
                    self.stats.record(self.kind, "updated")

        return updated

    def run(self) -> bool:
        """
        Run deletions, additions and updates.

        Returns:
            True if any replica was written
        """
        deleted = self.propagate_deletions()
        added = self.propagate_additions()
        if added:
            self._refresh_all()
        updated = self.propagate_updates(added)
        return bool(deleted or added or updated)
