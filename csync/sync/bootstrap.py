"""
First-run identity assignment by name.

When a set of accounts is linked for the first time nothing carries a
tag yet, so entities are matched by display name instead. The first
account holding a name wins: its copy gets a tag and its content is
written over the same-named entity of every other account, or created
where no such entity exists.

Re-running the matcher keeps existing tags. An entity already carrying
the tag is its counterpart even when it was renamed, so a second copy is
never created for the same tag.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from csync.sync.identity import DuplicateNameError, EntityInfo, EntityKind
from csync.sync.membership import translate
from csync.sync.replica import Replica
from csync.sync.tags import SyncTag, TagFactory, with_tag

if TYPE_CHECKING:
    from csync.sync.engine import SyncStats

logger = logging.getLogger(__name__)


class BootstrapMatcher:
    """
    Name-based matcher used by ``csync sync --init``.

    Names must be unique within each account (case-insensitively); the
    check runs over every account and both kinds before anything is
    written.

    Usage:
        matcher = BootstrapMatcher(replicas, TagFactory(), SyncStats())
        matcher.run()
    """

    def __init__(
        self,
        replicas: list[Replica],
        tag_factory: TagFactory,
        stats: SyncStats,
        rate_limit: float = 0.0,
    ):
        """
        Initialize the matcher.

        Args:
            replicas: Every configured replica, already refreshed
            tag_factory: Source of fresh tags
            stats: Counters updated as entities are written
            rate_limit: Seconds to sleep after each processed entity
        """
        self.replicas = replicas
        self.tag_factory = tag_factory
        self.stats = stats
        self.rate_limit = rate_limit

    def check_duplicate_names(self) -> None:
        """
        Raises:
            DuplicateNameError: If an account holds two groups or two
                contacts with the same name
        """
        for replica in self.replicas:
            for kind in (EntityKind.GROUP, EntityKind.CONTACT):
                duplicates = replica.index(kind).duplicate_names()
                if duplicates:
                    raise DuplicateNameError(replica.account, kind, duplicates)

    def run(self) -> None:
        """Match groups, then contacts, across all replicas."""
        self.check_duplicate_names()

        self.match(EntityKind.GROUP)
        for replica in self.replicas:
            replica.refresh()

        self.match(EntityKind.CONTACT)

    def match(self, kind: EntityKind) -> int:
        """
        Give every entity of one kind a tag shared by its namesakes.

        Returns:
            Number of distinct names processed
        """
        total = sum(len(r.index(kind)) for r in self.replicas)
        processed: set[str] = set()
        propagated_tags: set[SyncTag] = set()
        position = 0

        logger.info(f"Matching {total} {kind.value}(s) by name")
        for source in self.replicas:
            for info in source.index(kind):
                position += 1
                key = info.display_name.casefold()
                if key in processed or info.tag in propagated_tags:
                    continue
                processed.add(key)

                logger.info(
                    f"[{position}/{total}] {kind.value} '{info.display_name}' "
                    f"from {source.account}"
                )
                propagated_tags.add(self._propagate(kind, source, info))

                if self.rate_limit > 0:
                    time.sleep(self.rate_limit)

        return len(processed)

    def _propagate(
        self, kind: EntityKind, source: Replica, info: EntityInfo
    ) -> SyncTag:
        """
        Tag one entity and write it over its counterparts.

        A counterpart is the entity carrying the same tag, else the one
        with the same name. Returns the tag.
        """
        tag = info.tag
        if tag is None:
            tag = self.tag_factory.new_tag()
            source.assign_tag(kind, info.remote_id, tag)
            self.stats.tags_assigned += 1

        if kind is EntityKind.GROUP:
            body = source.fetch_body(kind, info.remote_id, expect_tag=tag)
        else:
            body = source.fetch_body(kind, info.remote_id)
            body["clientData"] = with_tag(body.get("clientData"), tag)

        for destination in self.replicas:
            if destination is source:
                continue

            payload = body
            if kind is EntityKind.CONTACT:
                payload = translate(body, source.groups, destination.groups)

            index = destination.index(kind)
            target = index.tag_to_id(tag) or index.name_to_id(info.display_name)
            if target is None:
                destination.create(kind, payload)
                self.stats.record(kind, "created")
                continue

            self._retag(destination, kind, target, tag)
            destination.update_entity(kind, target, payload)
            self.stats.record(kind, "updated")

        return tag

    def _retag(
        self, replica: Replica, kind: EntityKind, remote_id: str, tag: SyncTag
    ) -> None:
        current = replica.index(kind).id_to_tag(remote_id)
        if current == tag:
            return
        if current is not None:
            logger.warning(
                f"{kind.value} {remote_id} in {replica.account} is re-tagged "
                f"from {current} to {tag}"
            )
        replica.assign_tag(kind, remote_id, tag)
        self.stats.tags_assigned += 1
