"""
Contact group records as exchanged with the Google People API.

Only user-created groups take part in synchronization; system groups
(myContacts, starred, ...) exist in every account under the same
resource name.
"""

from __future__ import annotations

import logging
from typing import Any

from csync.sync.identity import EntityInfo, parse_update_time
from csync.sync.tags import read_tag

# Group types as defined by Google People API
GROUP_TYPE_USER_CONTACT_GROUP = "USER_CONTACT_GROUP"
GROUP_TYPE_SYSTEM_CONTACT_GROUP = "SYSTEM_CONTACT_GROUP"

GROUP_RESOURCE_PREFIX = "contactGroups/"

logger = logging.getLogger(__name__)


def is_user_group(group: dict[str, Any]) -> bool:
    return group.get("groupType") == GROUP_TYPE_USER_CONTACT_GROUP


def group_info_from_api(group: dict[str, Any]) -> EntityInfo | None:
    """
    Build the identity record of a listed contact group.

    Returns None for system groups and for entries without a name or ids.
    """
    if not is_user_group(group):
        return None

    resource_name = group.get("resourceName")
    etag = group.get("etag")
    if not resource_name or not etag:
        logger.debug(f"Skipping malformed contact group: {resource_name or '?'}")
        return None

    name = group.get("name")
    if not name:
        logger.debug(f"Skipping unnamed contact group: {resource_name}")
        return None

    metadata = group.get("metadata") or {}

    return EntityInfo(
        remote_id=resource_name,
        revision_token=etag,
        tag=read_tag(group.get("clientData")),
        last_updated=parse_update_time(metadata.get("updateTime")),
        display_name=name,
    )


def group_body(group: dict[str, Any]) -> dict[str, Any]:
    """The part of a group that is copied between accounts."""
    return {
        "name": group.get("name", ""),
        "clientData": [dict(e) for e in group.get("clientData") or []],
    }
