"""
Seeding of newly joined accounts.

An account in which nothing carries a tag has never been synchronized.
Instead of reconciling it, csync copies every tagged group and contact
of one already synchronized account into it, groups first so that the
contact memberships can be translated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from csync.sync.contact import contact_info_from_person, strip_person_for_update
from csync.sync.group import group_body
from csync.sync.identity import EntityKind
from csync.sync.membership import translate
from csync.sync.replica import Replica
from csync.sync.tags import read_tag

if TYPE_CHECKING:
    from csync.sync.engine import SyncStats

logger = logging.getLogger(__name__)


def seed_new_replicas(
    source: Replica, targets: list[Replica], stats: SyncStats
) -> None:
    """
    Copy the synchronized content of one account into new accounts.

    The source is only read. Untagged entities of the source are not
    copied; after a reconciliation pass there are none.

    Args:
        source: An active replica
        targets: Replicas without any tagged entity
        stats: Counters updated as entities are created
    """
    if not targets:
        return

    source.refresh()
    accounts = ", ".join(t.account for t in targets)
    logger.info(f"Seeding {accounts} from {source.account}")

    groups = [g for g in source.list_user_groups() if read_tag(g.get("clientData"))]
    for target in targets:
        for group in groups:
            target.create(EntityKind.GROUP, group_body(group))
            stats.record(EntityKind.GROUP, "created")
        target.refresh()
        logger.debug(f"Seeded {len(groups)} group(s) into {target.account}")

    people = source.list_full_contacts()
    bodies = []
    for person in people:
        info = contact_info_from_person(person)
        if info is None or info.tag is None:
            continue
        bodies.append(strip_person_for_update(person))

    for target in targets:
        for body in bodies:
            target.create(
                EntityKind.CONTACT, translate(body, source.groups, target.groups)
            )
            stats.record(EntityKind.CONTACT, "created")
        logger.info(
            f"Seeded {target.account}: {len(groups)} group(s), "
            f"{len(bodies)} contact(s)"
        )

    stats.replicas_seeded += len(targets)
