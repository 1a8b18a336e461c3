"""
Shared fixtures: an in-memory People API and replicas built on it.

FakePeopleAPI mirrors the method signatures of csync.api.PeopleAPI. Every
write gets a fresh etag and an updateTime from a shared FakeClock, and a
write with a stale etag is rejected with RevisionConflictError, like the
real service does.
"""

import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from csync.api.people_api import (
    UPDATE_PERSON_FIELDS,
    PeopleAPIError,
    RevisionConflictError,
)
from csync.api.retry import BackoffPolicy
from csync.storage.db import SyncDatabase
from csync.sync.engine import SyncEngine
from csync.sync.replica import Replica
from csync.sync.tags import TAG_KEY, read_tag

# Our own writes must stay well inside the 5 s watermark margin
TICK = timedelta(milliseconds=1)

NO_WAIT = BackoffPolicy(initial_delay=0, max_delay=0)

SYSTEM_GROUPS = ("myContacts", "starred")


def _stamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class FakeClock:
    """Time source of the fake API, starting at the real current time."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def tick(self) -> datetime:
        self.now += TICK
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakePeopleAPI:
    """In-memory stand-in for one account of the People API."""

    def __init__(self, account: str, clock: FakeClock):
        self.account = account
        self.clock = clock
        self.people: dict[str, dict[str, Any]] = {}
        self.groups: dict[str, dict[str, Any]] = {}
        self.writes: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

        for name in SYSTEM_GROUPS:
            self.groups[f"contactGroups/{name}"] = {
                "resourceName": f"contactGroups/{name}",
                "etag": f"system-{name}",
                "groupType": "SYSTEM_CONTACT_GROUP",
                "name": name,
                "metadata": {},
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_etag(self) -> str:
        return f"{self.account}-etag-{next(self._ids)}"

    def _touch_person(self, person: dict[str, Any]) -> None:
        person["etag"] = self._next_etag()
        person["metadata"] = {
            "sources": [{"type": "CONTACT", "updateTime": _stamp(self.clock.tick())}]
        }

    def _touch_group(self, group: dict[str, Any]) -> None:
        group["etag"] = self._next_etag()
        group["metadata"] = {"updateTime": _stamp(self.clock.tick())}

    def _person(self, resource_name: str) -> dict[str, Any]:
        if resource_name not in self.people:
            raise PeopleAPIError(f"{resource_name} not found", status=404)
        return self.people[resource_name]

    def _group(self, resource_name: str) -> dict[str, Any]:
        if resource_name not in self.groups:
            raise PeopleAPIError(f"{resource_name} not found", status=404)
        return self.groups[resource_name]

    # ------------------------------------------------------------------
    # People API surface
    # ------------------------------------------------------------------

    def list_people(self, person_fields: str = "") -> list[dict[str, Any]]:
        return [copy.deepcopy(p) for p in self.people.values()]

    def get_person(self, resource_name: str, person_fields: str = "") -> dict[str, Any]:
        return copy.deepcopy(self._person(resource_name))

    def create_person(self, body: dict[str, Any]) -> dict[str, Any]:
        resource_name = f"people/c{next(self._ids)}"
        person = copy.deepcopy(body)
        person["resourceName"] = resource_name
        if not person.get("memberships"):
            person["memberships"] = [
                {
                    "contactGroupMembership": {
                        "contactGroupId": "myContacts",
                        "contactGroupResourceName": "contactGroups/myContacts",
                    }
                }
            ]
        self._touch_person(person)
        self.people[resource_name] = person
        self.writes.append(("create_person", resource_name))
        return copy.deepcopy(person)

    def update_person(
        self,
        resource_name: str,
        body: dict[str, Any],
        etag: str,
        update_fields: str = UPDATE_PERSON_FIELDS,
    ) -> dict[str, Any]:
        person = self._person(resource_name)
        if etag != person["etag"]:
            raise RevisionConflictError("stale etag", status=400)
        for field_name in update_fields.split(","):
            if field_name in body:
                person[field_name] = copy.deepcopy(body[field_name])
            else:
                person.pop(field_name, None)
        self._touch_person(person)
        self.writes.append(("update_person", resource_name))
        return copy.deepcopy(person)

    def delete_person(self, resource_name: str) -> bool:
        self.people.pop(resource_name, None)
        self.writes.append(("delete_person", resource_name))
        return True

    def list_contact_groups(self, group_fields: str = "") -> list[dict[str, Any]]:
        return [copy.deepcopy(g) for g in self.groups.values()]

    def get_contact_group(
        self, resource_name: str, group_fields: str = ""
    ) -> dict[str, Any]:
        return copy.deepcopy(self._group(resource_name))

    def create_contact_group(
        self, name: str, client_data: list[dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        resource_name = f"contactGroups/g{next(self._ids)}"
        group = {
            "resourceName": resource_name,
            "groupType": "USER_CONTACT_GROUP",
            "name": name,
        }
        if client_data:
            group["clientData"] = copy.deepcopy(client_data)
        self._touch_group(group)
        self.groups[resource_name] = group
        self.writes.append(("create_contact_group", resource_name))
        return copy.deepcopy(group)

    def update_contact_group(
        self,
        resource_name: str,
        etag: str,
        name: str | None = None,
        client_data: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        group = self._group(resource_name)
        if etag != group["etag"]:
            raise RevisionConflictError("stale etag", status=409)
        if name is not None:
            group["name"] = name
        if client_data is not None:
            group["clientData"] = copy.deepcopy(client_data)
        self._touch_group(group)
        self.writes.append(("update_contact_group", resource_name))
        return copy.deepcopy(group)

    def delete_contact_group(self, resource_name: str) -> bool:
        self.groups.pop(resource_name, None)
        for person in self.people.values():
            person["memberships"] = [
                m
                for m in person.get("memberships") or []
                if m["contactGroupMembership"]["contactGroupResourceName"]
                != resource_name
            ]
        self.writes.append(("delete_contact_group", resource_name))
        return True

    # ------------------------------------------------------------------
    # Test helpers: edits made "by the user" outside csync
    # ------------------------------------------------------------------

    def add_group(self, name: str, tag: str | None = None) -> str:
        client_data = [{"key": TAG_KEY, "value": tag}] if tag else None
        resource_name = self.create_contact_group(name, client_data)["resourceName"]
        self.writes.pop()
        return str(resource_name)

    def add_contact(
        self,
        name: str,
        tag: str | None = None,
        groups: tuple[str, ...] = (),
        **fields: Any,
    ) -> str:
        body: dict[str, Any] = {"names": [{"displayName": name}], **fields}
        if tag:
            body["clientData"] = [{"key": TAG_KEY, "value": tag}]
        memberships = [
            {
                "contactGroupMembership": {
                    "contactGroupId": "myContacts",
                    "contactGroupResourceName": "contactGroups/myContacts",
                }
            }
        ]
        for group_name in groups:
            resource_name = self.group_id(group_name)
            memberships.append(
                {
                    "contactGroupMembership": {
                        "contactGroupId": resource_name.split("/", 1)[1],
                        "contactGroupResourceName": resource_name,
                    }
                }
            )
        body["memberships"] = memberships
        resource_name = self.create_person(body)["resourceName"]
        self.writes.pop()
        return str(resource_name)

    def edit_contact(self, resource_name: str, **fields: Any) -> None:
        person = self._person(resource_name)
        person.update(copy.deepcopy(fields))
        self._touch_person(person)

    def rename_group(self, resource_name: str, name: str) -> None:
        group = self._group(resource_name)
        group["name"] = name
        self._touch_group(group)

    def remove(self, resource_name: str) -> None:
        if resource_name.startswith("people/"):
            self.people.pop(resource_name)
        else:
            self.delete_contact_group(resource_name)
            self.writes.pop()

    def contact_id(self, name: str) -> str:
        for resource_name, person in self.people.items():
            if person["names"][0]["displayName"] == name:
                return resource_name
        raise KeyError(name)

    def group_id(self, name: str) -> str:
        for resource_name, group in self.groups.items():
            if group["name"] == name:
                return resource_name
        raise KeyError(name)

    def contact(self, name: str) -> dict[str, Any]:
        return self.people[self.contact_id(name)]

    def contact_names(self) -> set[str]:
        return {p["names"][0]["displayName"] for p in self.people.values()}

    def group_names(self) -> set[str]:
        return {
            g["name"]
            for g in self.groups.values()
            if g["groupType"] == "USER_CONTACT_GROUP"
        }

    def contact_tags(self) -> set[str]:
        return {read_tag(p.get("clientData")) for p in self.people.values()} - {None}

    def group_tags(self) -> set[str]:
        return {read_tag(g.get("clientData")) for g in self.groups.values()} - {None}

    def groups_of(self, name: str) -> set[str]:
        """Names of the user groups a contact belongs to."""
        result = set()
        for membership in self.contact(name).get("memberships") or []:
            resource_name = membership["contactGroupMembership"][
                "contactGroupResourceName"
            ]
            group = self.groups.get(resource_name)
            if group and group["groupType"] == "USER_CONTACT_GROUP":
                result.add(group["name"])
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_replica(clock):
    """Factory building a Replica backed by a fresh FakePeopleAPI."""

    def _make(account: str) -> Replica:
        return Replica(account, FakePeopleAPI(account, clock), retry_policy=NO_WAIT)

    return _make


@pytest.fixture
def pair(make_replica):
    """Two empty replicas."""
    return make_replica("alice@example.com"), make_replica("bob@example.com")


@pytest.fixture
def make_engine(clock):
    """Factory building a SyncEngine on an in-memory database and the fake clock."""

    def _make(replicas: list[Replica], **kwargs: Any) -> SyncEngine:
        return SyncEngine(
            replicas, SyncDatabase(":memory:"), clock=lambda: clock.now, **kwargs
        )

    return _make


@pytest.fixture
def synced_pair(pair, make_engine, clock):
    """
    Two bootstrapped replicas and their engine.

    alice holds Family with John in it, bob holds Jane. After the init run
    both accounts hold all three, and the clock is moved past the
    watermark so that later edits count as new.
    """
    alice, bob = pair
    alice.api.add_group("Family")
    alice.api.add_contact(
        "John", groups=("Family",), phoneNumbers=[{"value": "+1 555 0100"}]
    )
    bob.api.add_contact("Jane", emailAddresses=[{"value": "jane@example.com"}])

    engine = make_engine([alice, bob])
    engine.run(init=True)
    clock.advance(seconds=10)
    return alice, bob, engine
