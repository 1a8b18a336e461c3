"""
Unit tests for the identity index.
"""

from datetime import datetime, timezone

import pytest

from csync.sync.identity import (
    EPOCH,
    ConsistencyError,
    DuplicateNameError,
    EntityInfo,
    EntityKind,
    IdentityIndex,
    ReplicaState,
    parse_update_time,
)

TAG_A = "a" * 20
TAG_B = "b" * 20


def info(remote_id, tag=None, name=None, etag="e1"):
    return EntityInfo(
        remote_id=remote_id,
        revision_token=etag,
        tag=tag,
        last_updated=EPOCH,
        display_name=name or remote_id,
    )


@pytest.fixture
def index():
    return IdentityIndex(
        EntityKind.CONTACT,
        "alice@example.com",
        [
            info("people/1", TAG_A, "John Doe"),
            info("people/2", TAG_B, "Jane Roe"),
            info("people/3", None, "New Person"),
        ],
    )


class TestParseUpdateTime:
    """Tests for API timestamp parsing."""

    def test_nanoseconds_are_truncated(self):
        parsed = parse_update_time("2024-05-01T10:20:30.123456789Z")
        assert parsed == datetime(2024, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc)

    def test_short_fraction(self):
        parsed = parse_update_time("2024-05-01T10:20:30.5Z")
        assert parsed.microsecond == 500000

    def test_no_fraction(self):
        assert parse_update_time("2024-05-01T10:20:30Z") == datetime(
            2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_missing_or_malformed(self, value):
        assert parse_update_time(value) == EPOCH


class TestIdentityIndex:
    """Tests for lookups in both directions."""

    def test_lookups(self, index):
        assert len(index) == 3
        assert "people/1" in index
        assert index.tag_to_id(TAG_A) == "people/1"
        assert index.id_to_tag("people/2") == TAG_B
        assert index.id_to_tag("people/3") is None
        assert index.id_to_tag("people/404") is None
        assert index.tag_to_id("z" * 20) is None

    def test_tags_and_untagged(self, index):
        assert index.tags() == {TAG_A, TAG_B}
        assert index.has_tags()
        assert [i.remote_id for i in index.untagged()] == ["people/3"]

    def test_name_lookup_is_case_insensitive(self, index):
        assert index.name_to_id("JOHN DOE") == "people/1"
        assert index.name_to_id("Nobody") is None

    def test_empty_index(self):
        empty = IdentityIndex(EntityKind.GROUP, "bob@example.com")
        assert len(empty) == 0
        assert not empty.has_tags()


class TestConsistency:
    """Tests for ambiguity detection."""

    def test_duplicate_tag(self):
        """Test a tag carried twice cannot be resolved."""
        index = IdentityIndex(
            EntityKind.CONTACT,
            "alice@example.com",
            [info("people/1", TAG_A), info("people/2", TAG_A)],
        )

        assert index.duplicate_tags() == [TAG_A]
        with pytest.raises(ConsistencyError, match=TAG_A):
            index.tag_to_id(TAG_A)
        with pytest.raises(ConsistencyError):
            index.check_unique_tags()

    def test_unique_tags_pass(self, index):
        index.check_unique_tags()

    def test_duplicate_names(self):
        index = IdentityIndex(
            EntityKind.GROUP,
            "alice@example.com",
            [info("g/1", name="Work"), info("g/2", name="work"), info("g/3")],
        )

        assert index.duplicate_names() == ["Work"]
        with pytest.raises(DuplicateNameError) as excinfo:
            index.name_to_id("WORK")
        assert excinfo.value.kind is EntityKind.GROUP


class TestRevisions:
    """Tests for cached etags."""

    def test_revision_of(self, index):
        assert index.revision_of("people/1") == "e1"

    def test_unknown_or_missing_etag(self):
        index = IdentityIndex(
            EntityKind.CONTACT, "alice@example.com", [info("people/1", etag="")]
        )
        with pytest.raises(ConsistencyError):
            index.revision_of("people/1")
        with pytest.raises(ConsistencyError):
            index.revision_of("people/2")

    def test_note_revision(self, index):
        index.note_revision("people/1", "e2")
        index.note_revision("people/1", None)
        index.note_revision("people/404", "e9")

        assert index.revision_of("people/1") == "e2"
        assert "people/404" not in index


def test_replica_state_index():
    state = ReplicaState.empty("alice@example.com")
    assert state.index(EntityKind.CONTACT) is state.contacts
    assert state.index(EntityKind.GROUP) is state.groups
    assert state.groups.kind is EntityKind.GROUP
