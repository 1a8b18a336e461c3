"""
Synchronization tags.

A tag is a random identifier stored in the clientData of a contact or
group. Entities carrying the same tag in different accounts are copies of
each other, which is how csync matches entities without a shared key
space.
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Iterable
from typing import Any, NewType

SyncTag = NewType("SyncTag", str)

# clientData key the tag is stored under
TAG_KEY = "csync-uid"

TAG_LENGTH = 20
TAG_ALPHABET = string.ascii_lowercase


def is_valid_tag(value: object) -> bool:
    """Check whether a value looks like a tag minted by TagFactory."""
    return (
        isinstance(value, str)
        and len(value) == TAG_LENGTH
        and all(c in TAG_ALPHABET for c in value)
    )


def read_tag(client_data: Iterable[dict[str, Any]] | None) -> SyncTag | None:
    """
    Return the tag stored in a clientData list, if any.

    A value under the tag key that TagFactory could not have minted is
    ignored, so the entity counts as untagged.
    """
    for entry in client_data or ():
        if entry.get("key") == TAG_KEY and is_valid_tag(entry.get("value")):
            return SyncTag(entry["value"])
    return None


def with_tag(
    client_data: Iterable[dict[str, Any]] | None, tag: SyncTag
) -> list[dict[str, Any]]:
    """
    Return a copy of clientData carrying the given tag.

    Any previous tag entry is replaced; other keys are kept in order.
    """
    entries = [dict(e) for e in client_data or () if e.get("key") != TAG_KEY]
    entries.append({"key": TAG_KEY, "value": tag})
    return entries


class TagFactory:
    """
    Mints fresh tags.

    Tags are 20 lowercase letters from a cryptographic random source. The
    factory remembers every tag it issued or was told about so it never
    hands out the same tag twice.
    """

    def __init__(self, used: Iterable[str] = ()):
        self._used: set[str] = set(used)

    def register(self, tags: Iterable[str]) -> None:
        """Mark existing tags as taken."""
        self._used.update(tags)

    def new_tag(self) -> SyncTag:
        while True:
            tag = "".join(secrets.choice(TAG_ALPHABET) for _ in range(TAG_LENGTH))
            if tag not in self._used:
                self._used.add(tag)
                return SyncTag(tag)
