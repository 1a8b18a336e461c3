"""
Group membership translation between accounts.

A contact's memberships point at groups by resource name, and the same
logical group has a different resource name in every account. Before a
contact is written to another account, each membership is mapped through
the group's tag: source resource name -> tag -> destination resource name.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from csync.sync.group import GROUP_RESOURCE_PREFIX
from csync.sync.identity import IdentityIndex
from csync.sync.tags import SyncTag

# System groups that share their resource name across accounts
BASE_GROUPS = frozenset({"contactGroups/myContacts", "contactGroups/starred"})

logger = logging.getLogger(__name__)


def membership_group(membership: dict[str, Any]) -> str | None:
    """Resource name of the group a membership entry points at."""
    group = membership.get("contactGroupMembership") or {}
    resource_name = group.get("contactGroupResourceName")
    if resource_name:
        return str(resource_name)
    group_id = group.get("contactGroupId")
    return f"{GROUP_RESOURCE_PREFIX}{group_id}" if group_id else None


def is_base_membership(membership: dict[str, Any]) -> bool:
    return membership_group(membership) in BASE_GROUPS


def membership_for(resource_name: str) -> dict[str, Any]:
    """Membership entry placing a contact in the given group."""
    return {
        "contactGroupMembership": {
            "contactGroupId": resource_name.removeprefix(GROUP_RESOURCE_PREFIX),
            "contactGroupResourceName": resource_name,
        }
    }


def split_memberships(
    body: dict[str, Any], source_groups: IdentityIndex
) -> tuple[dict[str, Any], list[SyncTag]]:
    """
    Separate a contact body from its replica-local group memberships.

    Returns:
        A copy of the body keeping only base memberships, and the tags of
        the other groups the contact belongs to. Memberships of untagged
        or unknown groups are dropped.
    """
    stripped = copy.deepcopy(body)
    memberships = stripped.get("memberships") or []

    kept: list[dict[str, Any]] = []
    group_tags: list[SyncTag] = []
    for membership in memberships:
        if is_base_membership(membership):
            kept.append(membership)
            continue
        resource_name = membership_group(membership)
        tag = source_groups.id_to_tag(resource_name) if resource_name else None
        if tag is None:
            logger.debug(
                f"Dropping membership of untagged group {resource_name} "
                f"({source_groups.account})"
            )
            continue
        if tag not in group_tags:
            group_tags.append(tag)

    if "memberships" in stripped:
        stripped["memberships"] = kept

    return stripped, group_tags


def apply_group_tags(
    body: dict[str, Any],
    group_tags: list[SyncTag] | list[str],
    destination_groups: IdentityIndex,
) -> dict[str, Any]:
    """
    Add memberships for the given group tags, as known in the destination.

    Tags without a group in the destination are skipped so that the
    contact can still be written.
    """
    result = copy.deepcopy(body)
    memberships = list(result.get("memberships") or [])

    for tag in group_tags:
        resource_name = destination_groups.tag_to_id(tag)
        if resource_name is None:
            logger.debug(
                f"Group {tag} has no counterpart in {destination_groups.account}, "
                "membership dropped"
            )
            continue
        memberships.append(membership_for(resource_name))

    if memberships or "memberships" in result:
        result["memberships"] = memberships
    return result


def translate(
    body: dict[str, Any],
    source_groups: IdentityIndex,
    destination_groups: IdentityIndex,
) -> dict[str, Any]:
    """Rewrite the memberships of a contact body for another account."""
    stripped, group_tags = split_memberships(body, source_groups)
    return apply_group_tags(stripped, group_tags, destination_groups)
