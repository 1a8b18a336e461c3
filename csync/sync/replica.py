"""
Replica handle: one account and what csync knows about it.

A Replica owns the PeopleAPI client of an account and its identity
indexes. Other code reads another replica only through the index
accessors and changes it only through the write methods here, which keep
the cached etags usable for the rest of the run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from csync.api.people_api import (
    ALL_PERSON_FIELDS,
    GROUP_FIELDS,
    LIST_PERSON_FIELDS,
    PeopleAPI,
    RevisionConflictError,
)
from csync.api.retry import DEFAULT_POLICY, BackoffPolicy, call_with_backoff
from csync.sync.contact import contact_info_from_person, strip_person_for_update
from csync.sync.group import group_body, group_info_from_api
from csync.sync.identity import EntityKind, IdentityIndex, ReplicaState
from csync.sync.tags import SyncTag, read_tag, with_tag

logger = logging.getLogger(__name__)


class TagNotVisibleError(Exception):
    """Raised while a freshly written group tag is not readable yet."""

    pass


def _is_conflict(error: BaseException) -> bool:
    return isinstance(error, RevisionConflictError)


def _is_tag_not_visible(error: BaseException) -> bool:
    return isinstance(error, TagNotVisibleError)


class Replica:
    """
    One synchronized Google account.

    Usage:
        replica = Replica(email, PeopleAPI(creds, account=email))
        replica.refresh()

        rn = replica.contacts.tag_to_id(tag)
        body = replica.fetch_body(EntityKind.CONTACT, rn)
        other.update(EntityKind.CONTACT, tag, body)
    """

    def __init__(
        self,
        account: str,
        api: PeopleAPI,
        retry_policy: BackoffPolicy = DEFAULT_POLICY,
    ):
        self.account = account
        self.api = api
        self.retry_policy = retry_policy
        self.state = ReplicaState.empty(account)

    def __repr__(self) -> str:
        return (
            f"Replica({self.account!r}, contacts={len(self.contacts)}, "
            f"groups={len(self.groups)})"
        )

    @property
    def contacts(self) -> IdentityIndex:
        return self.state.contacts

    @property
    def groups(self) -> IdentityIndex:
        return self.state.groups

    def index(self, kind: EntityKind) -> IdentityIndex:
        return self.state.index(kind)

    @property
    def is_new(self) -> bool:
        """True when no contact and no group of the account carries a tag."""
        return not self.contacts.has_tags() and not self.groups.has_tags()

    def refresh(self) -> None:
        """Rebuild the identity indexes from a full listing of the account."""
        people = self.api.list_people(LIST_PERSON_FIELDS)
        contacts = [
            info for info in map(contact_info_from_person, people) if info is not None
        ]

        groups = [
            info
            for info in map(group_info_from_api, self.api.list_contact_groups())
            if info is not None
        ]

        self.state = ReplicaState(
            IdentityIndex(EntityKind.CONTACT, self.account, contacts),
            IdentityIndex(EntityKind.GROUP, self.account, groups),
        )
        logger.debug(
            f"Loaded {self.account}: {len(contacts)} contacts, {len(groups)} groups"
        )

    def check_consistency(self) -> None:
        """
        Raises:
            ConsistencyError: If a tag is carried by two entities of one kind
        """
        self.contacts.check_unique_tags()
        self.groups.check_unique_tags()

    # =========================================================================
    # Reads
    # =========================================================================

    def fetch_body(
        self, kind: EntityKind, remote_id: str, expect_tag: SyncTag | None = None
    ) -> dict[str, Any]:
        """
        Fetch the part of an entity that is copied to other accounts.

        Args:
            kind: Contact or group
            remote_id: Resource name in this account
            expect_tag: For groups, wait until this tag is readable

        Returns:
            Writable person body, or {name, clientData} for a group
        """
        if kind is EntityKind.CONTACT:
            return strip_person_for_update(
                self.api.get_person(remote_id, ALL_PERSON_FIELDS)
            )

        def read_group() -> dict[str, Any]:
            group = self.api.get_contact_group(remote_id, GROUP_FIELDS)
            if expect_tag and read_tag(group.get("clientData")) != expect_tag:
                raise TagNotVisibleError(
                    f"Tag {expect_tag} not visible yet on {remote_id}"
                )
            return group

        group = call_with_backoff(
            read_group,
            f"wait_for_group_tag({remote_id}) [{self.account}]",
            self.retry_policy,
            should_retry=_is_tag_not_visible,
        )
        return group_body(group)

    def list_full_contacts(self) -> list[dict[str, Any]]:
        """Every contact with all readable fields."""
        return self.api.list_people(ALL_PERSON_FIELDS)

    def list_user_groups(self) -> list[dict[str, Any]]:
        """Every named user-created contact group."""
        return [
            g
            for g in self.api.list_contact_groups()
            if group_info_from_api(g) is not None
        ]

    # =========================================================================
    # Writes
    # =========================================================================

    def _fetch_revision(self, kind: EntityKind, remote_id: str) -> str | None:
        if kind is EntityKind.CONTACT:
            current = self.api.get_person(remote_id, "metadata")
        else:
            current = self.api.get_contact_group(remote_id, GROUP_FIELDS)
        return current.get("etag")

    def _write(
        self,
        kind: EntityKind,
        remote_id: str,
        operation_name: str,
        write: Callable[[str], dict[str, Any]],
    ) -> dict[str, Any]:
        """
        Run a conditional write with the cached etag.

        A stale etag is replaced by the current one and the write retried.
        """
        index = self.index(kind)

        def attempt() -> dict[str, Any]:
            return write(index.revision_of(remote_id))

        def refetch(error: BaseException) -> None:
            logger.info(
                f"{kind.value} {remote_id} in {self.account} changed underneath, "
                "re-reading its etag"
            )
            index.note_revision(remote_id, self._fetch_revision(kind, remote_id))

        response = call_with_backoff(
            attempt,
            f"{operation_name}({remote_id}) [{self.account}]",
            self.retry_policy,
            should_retry=_is_conflict,
            on_retry=refetch,
        )
        index.note_revision(remote_id, response.get("etag"))
        return response

    def assign_tag(self, kind: EntityKind, remote_id: str, tag: SyncTag) -> None:
        """Store a tag in the clientData of an entity, keeping other keys."""
        if kind is EntityKind.CONTACT:
            current = self.api.get_person(remote_id, "clientData,metadata")
            client_data = with_tag(current.get("clientData"), tag)
            self._write(
                kind,
                remote_id,
                "assign_tag",
                lambda etag: self.api.update_person(
                    remote_id,
                    {"clientData": client_data},
                    etag,
                    update_fields="clientData",
                ),
            )
        else:
            current = self.api.get_contact_group(remote_id, GROUP_FIELDS)
            client_data = with_tag(current.get("clientData"), tag)
            self._write(
                kind,
                remote_id,
                "assign_tag",
                lambda etag: self.api.update_contact_group(
                    remote_id, etag, client_data=client_data
                ),
            )
        logger.debug(f"Tagged {kind.value} {remote_id} in {self.account} as {tag}")

    def create(self, kind: EntityKind, body: dict[str, Any]) -> str:
        """
        Create an entity from a body produced by fetch_body().

        Returns:
            Resource name of the new entity
        """
        if kind is EntityKind.CONTACT:
            created = self.api.create_person(body)
        else:
            created = self.api.create_contact_group(
                body["name"], client_data=body.get("clientData")
            )
        return str(created["resourceName"])

    def update_entity(
        self, kind: EntityKind, remote_id: str, body: dict[str, Any]
    ) -> None:
        """Overwrite an entity with a body produced by fetch_body()."""
        if kind is EntityKind.CONTACT:
            self._write(
                kind,
                remote_id,
                "update_person",
                lambda etag: self.api.update_person(remote_id, body, etag),
            )
        else:
            self._write(
                kind,
                remote_id,
                "update_contact_group",
                lambda etag: self.api.update_contact_group(
                    remote_id, etag, name=body["name"]
                ),
            )

    def update(self, kind: EntityKind, tag: SyncTag, body: dict[str, Any]) -> bool:
        """
        Overwrite the entity carrying a tag.

        Returns:
            False if no entity of this account carries the tag
        """
        remote_id = self.index(kind).tag_to_id(tag)
        if remote_id is None:
            logger.debug(f"No {kind.value} tagged {tag} in {self.account} to update")
            return False
        self.update_entity(kind, remote_id, body)
        return True

    def delete(self, kind: EntityKind, tag: SyncTag) -> bool:
        """
        Delete the entity carrying a tag.

        Returns:
            False if no entity of this account carries the tag
        """
        remote_id = self.index(kind).tag_to_id(tag)
        if remote_id is None:
            return False
        if kind is EntityKind.CONTACT:
            self.api.delete_person(remote_id)
        else:
            self.api.delete_contact_group(remote_id)
        return True
