"""
Tag-keyed snapshot documents.

A snapshot holds every tagged group and contact of each account. Group
memberships are stored as group tags, so a snapshot taken from one
account can be restored into any other.

Snapshot format::

    {
        "version": 2,
        "createdAt": "2024-01-20T10:30:00+00:00",
        "accounts": {
            "user1@gmail.com": {
                "email": "user1@gmail.com",
                "groupsByTag": {"<tag>": {"tag": "<tag>", "name": "Family"}},
                "contactsByTag": {
                    "<tag>": {
                        "tag": "<tag>",
                        "name": "John Doe",
                        "groupTags": ["<group tag>"],
                        "body": {...}
                    }
                }
            }
        }
    }
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from csync.backup.manager import SNAPSHOT_VERSION
from csync.sync.contact import contact_info_from_person, strip_person_for_update
from csync.sync.membership import split_memberships
from csync.sync.replica import Replica
from csync.sync.tags import read_tag, with_tag

logger = logging.getLogger(__name__)


def account_snapshot(replica: Replica) -> dict[str, Any]:
    """
    Export the tagged groups and contacts of one account.

    The group index of the replica must be current, it is used to turn
    memberships into group tags.
    """
    groups_by_tag: dict[str, dict[str, Any]] = {}
    for group in replica.list_user_groups():
        tag = read_tag(group.get("clientData"))
        if tag is None:
            continue
        groups_by_tag[tag] = {"tag": tag, "name": group.get("name", "")}

    contacts_by_tag: dict[str, dict[str, Any]] = {}
    for person in replica.list_full_contacts():
        info = contact_info_from_person(person)
        if info is None or info.tag is None:
            continue
        body, group_tags = split_memberships(
            strip_person_for_update(person), replica.groups
        )
        body["clientData"] = with_tag(body.get("clientData"), info.tag)
        contacts_by_tag[info.tag] = {
            "tag": info.tag,
            "name": info.display_name,
            "groupTags": list(group_tags),
            "body": body,
        }

    logger.debug(
        f"Snapshot of {replica.account}: {len(contacts_by_tag)} contacts, "
        f"{len(groups_by_tag)} groups"
    )
    return {
        "email": replica.account,
        "contactsByTag": contacts_by_tag,
        "groupsByTag": groups_by_tag,
    }


def build_snapshot(replicas: list[Replica]) -> dict[str, Any]:
    """Build a versioned snapshot document of every account."""
    return {
        "version": SNAPSHOT_VERSION,
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "accounts": {r.account: account_snapshot(r) for r in replicas},
    }
