"""
Contact records as exchanged with the Google People API.

Provides helpers for:
- Building the identity record of a person from a listing
- Turning a full person into a body that can be written to another account
"""

import copy
import logging
from typing import Any, Optional

from csync.api.people_api import UPDATE_PERSON_FIELDS
from csync.sync.identity import EntityInfo, parse_update_time
from csync.sync.tags import read_tag

# Fields the API accepts only one entry of on write
SINGLE_VALUED_FIELDS = ("names", "genders", "birthdays")

WRITABLE_FIELDS = frozenset(UPDATE_PERSON_FIELDS.split(","))

logger = logging.getLogger(__name__)


def contact_display_name(person: dict[str, Any]) -> str:
    """
    Name a person is matched and reported by.

    Uses the display name, then given and family name, then the first
    organization.
    """
    names = person.get("names") or [{}]
    primary_name = names[0]

    display_name = primary_name.get("displayName", "")
    if not display_name:
        parts = [primary_name.get("givenName"), primary_name.get("familyName")]
        display_name = " ".join(p for p in parts if p)

    if not display_name:
        organizations = person.get("organizations") or [{}]
        display_name = organizations[0].get("name", "")

    return display_name.strip()


def contact_info_from_person(person: dict[str, Any]) -> Optional[EntityInfo]:
    """
    Build the identity record of a listed person.

    Returns None for entries csync cannot synchronize: no resource name or
    etag, or nothing to call the contact by.

    Example API response structure::

        {
            'resourceName': 'people/c12345',
            'etag': 'abc123',
            'names': [{'displayName': 'John Doe'}],
            'clientData': [{'key': 'csync-uid', 'value': 'abcdefghijklmnopqrst'}],
            'metadata': {'sources': [{'updateTime': '2024-01-01T00:00:00Z'}]}
        }
    """
    resource_name = person.get("resourceName")
    etag = person.get("etag")
    if not resource_name or not etag:
        logger.debug(f"Skipping malformed person entry: {resource_name or '?'}")
        return None

    display_name = contact_display_name(person)
    if not display_name:
        logger.debug(f"Skipping contact without a name: {resource_name}")
        return None

    sources = (person.get("metadata") or {}).get("sources") or [{}]

    return EntityInfo(
        remote_id=resource_name,
        revision_token=etag,
        tag=read_tag(person.get("clientData")),
        last_updated=parse_update_time(sources[0].get("updateTime")),
        display_name=display_name,
    )


def _drop_metadata(value: Any) -> Any:
    if isinstance(value, list):
        return [_drop_metadata(v) for v in value]
    if isinstance(value, dict):
        return {k: _drop_metadata(v) for k, v in value.items() if k != "metadata"}
    return value


def strip_person_for_update(person: dict[str, Any]) -> dict[str, Any]:
    """
    Reduce a full person to a body accepted by createContact/updateContact.

    Keeps the writable fields only, removes per-field metadata and keeps
    the first entry of fields that are single-valued on write.
    """
    body = {
        key: _drop_metadata(copy.deepcopy(value))
        for key, value in person.items()
        if key in WRITABLE_FIELDS
    }

    for key in SINGLE_VALUED_FIELDS:
        if body.get(key):
            body[key] = body[key][:1]

    return body
