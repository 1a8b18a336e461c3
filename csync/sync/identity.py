"""
Per-replica identity index.

Every listing of an account is turned into EntityInfo records, one per
contact or group, and indexed both ways: remote id to tag and tag to
remote id. The index is rebuilt from a full listing rather than patched,
so it never drifts from what the account actually holds.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from csync.sync.tags import SyncTag

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FRACTION = re.compile(r"\.(\d+)")


class EntityKind(Enum):
    """The two kinds of entity csync keeps in step."""

    CONTACT = "contact"
    GROUP = "group"


class ConsistencyError(Exception):
    """
    Raised when account data breaks an identity invariant.

    Duplicate tags, duplicate names during bootstrap and missing etags all
    mean the accounts are in a state csync must not guess its way out of.
    """

    pass


class DuplicateNameError(ConsistencyError):
    """Raised when names cannot identify entities uniquely."""

    def __init__(self, account: str, kind: EntityKind, names: Iterable[str]):
        self.account = account
        self.kind = kind
        self.names = sorted(names)
        super().__init__(
            f"These {kind.value}s ({', '.join(self.names)}) are duplicated in "
            f"account {account}"
        )


def parse_update_time(value: str | None) -> datetime:
    """
    Parse an API timestamp such as 2024-05-01T10:20:30.123456789Z.

    Fractions are cut to microseconds. Missing or malformed values give
    the epoch, which sorts before any real edit.
    """
    if not value:
        return EPOCH
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, 1)
    text = text.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class EntityInfo:
    """
    What csync knows about one contact or group of one account.

    Attributes:
        remote_id: Resource name in the account
        revision_token: Etag required to modify the entity
        tag: Synchronization tag, None when not synchronized yet
        last_updated: Time of the last edit reported by the API
        display_name: Name used for bootstrap matching and messages
    """

    remote_id: str
    revision_token: str
    tag: SyncTag | None
    last_updated: datetime
    display_name: str


class IdentityIndex:
    """
    Bidirectional tag index over the entities of one kind in one account.

    Lookups that would be ambiguous raise ConsistencyError instead of
    picking one of the candidates.
    """

    def __init__(
        self, kind: EntityKind, account: str, entries: Iterable[EntityInfo] = ()
    ):
        self.kind = kind
        self.account = account
        self._by_id: dict[str, EntityInfo] = {}
        self._by_tag: dict[str, list[str]] = {}

        for info in entries:
            self._by_id[info.remote_id] = info
            if info.tag:
                self._by_tag.setdefault(info.tag, []).append(info.remote_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[EntityInfo]:
        return iter(list(self._by_id.values()))

    def __contains__(self, remote_id: object) -> bool:
        return remote_id in self._by_id

    def get(self, remote_id: str) -> EntityInfo | None:
        return self._by_id.get(remote_id)

    def tag_to_id(self, tag: str) -> str | None:
        """
        Resolve a tag to the remote id holding it.

        Raises:
            ConsistencyError: If more than one entity carries the tag
        """
        ids = self._by_tag.get(tag)
        if not ids:
            return None
        if len(ids) > 1:
            names = ", ".join(self._by_id[i].display_name for i in ids)
            raise ConsistencyError(
                f"Tag {tag} is carried by {len(ids)} {self.kind.value}s in "
                f"{self.account}: {names}"
            )
        return ids[0]

    def id_to_tag(self, remote_id: str) -> SyncTag | None:
        info = self._by_id.get(remote_id)
        return info.tag if info else None

    def name_to_id(self, name: str) -> str | None:
        """
        Resolve a display name, case-insensitively.

        Raises:
            DuplicateNameError: If more than one entity has the name
        """
        wanted = name.casefold()
        matches = [
            i for i in self._by_id.values() if i.display_name.casefold() == wanted
        ]
        if len(matches) > 1:
            raise DuplicateNameError(self.account, self.kind, [name])
        return matches[0].remote_id if matches else None

    def tags(self) -> set[SyncTag]:
        return {SyncTag(t) for t in self._by_tag}

    def has_tags(self) -> bool:
        return bool(self._by_tag)

    def untagged(self) -> list[EntityInfo]:
        return [i for i in self._by_id.values() if not i.tag]

    def duplicate_names(self) -> list[str]:
        """Names shared by more than one entity, case-insensitively."""
        seen: dict[str, str] = {}
        duplicates: set[str] = set()
        for info in self._by_id.values():
            key = info.display_name.casefold()
            if key in seen:
                duplicates.add(seen[key])
            else:
                seen[key] = info.display_name
        return sorted(duplicates)

    def duplicate_tags(self) -> list[str]:
        return sorted(t for t, ids in self._by_tag.items() if len(ids) > 1)

    def check_unique_tags(self) -> None:
        """
        Raises:
            ConsistencyError: If any tag is carried by more than one entity
        """
        for tag in self.duplicate_tags():
            self.tag_to_id(tag)

    def revision_of(self, remote_id: str) -> str:
        """
        Etag to use when writing an entity.

        Raises:
            ConsistencyError: If the entity is unknown or has no etag
        """
        info = self._by_id.get(remote_id)
        if info is None or not info.revision_token:
            raise ConsistencyError(
                f"No etag known for {self.kind.value} {remote_id} in {self.account}"
            )
        return info.revision_token

    def note_revision(self, remote_id: str, revision_token: str | None) -> None:
        """Record the etag returned by a write made through this replica."""
        info = self._by_id.get(remote_id)
        if info is not None and revision_token:
            info.revision_token = revision_token


@dataclass
class ReplicaState:
    """Identity indexes of one account, replaced as a whole on refresh."""

    contacts: IdentityIndex
    groups: IdentityIndex

    @classmethod
    def empty(cls, account: str) -> ReplicaState:
        return cls(
            IdentityIndex(EntityKind.CONTACT, account),
            IdentityIndex(EntityKind.GROUP, account),
        )

    def index(self, kind: EntityKind) -> IdentityIndex:
        return self.contacts if kind is EntityKind.CONTACT else self.groups
