"""
Tests for tag-driven reconciliation.

Most tests drive full sync runs over the in-memory People API of
conftest.py: a pair of accounts is bootstrapped, edited "by the user"
and synchronized again.
"""

from datetime import datetime, timezone

import pytest

from csync.sync.engine import SyncStats
from csync.sync.identity import EntityKind
from csync.sync.reconcile import Reconciler
from csync.sync.tags import TagFactory

TAG_X = "x" * 20
TAG_Y = "y" * 20
TAG_Z = "z" * 20

EARLY = datetime(2000, 1, 1, tzinfo=timezone.utc)


def writes(*replicas):
    return sum(len(r.api.writes) for r in replicas)


class TestPlanDeletions:
    """Tests for choosing the tags to purge."""

    def test_tags_missing_anywhere_are_purged(self, make_replica):
        """Test a tag absent from one replica is purged from all."""
        a, b, c = (make_replica(f"{n}@example.com") for n in ("a", "b", "c"))
        a.api.add_contact("X", tag=TAG_X)
        a.api.add_contact("Y", tag=TAG_Y)
        b.api.add_contact("X", tag=TAG_X)
        c.api.add_contact("X", tag=TAG_X)
        c.api.add_contact("Y", tag=TAG_Y)
        c.api.add_contact("Z", tag=TAG_Z)
        for replica in (a, b, c):
            replica.refresh()

        reconciler = Reconciler(
            EntityKind.CONTACT, [a, b, c], EARLY, TagFactory(), SyncStats()
        )

        assert reconciler.plan_deletions() == {TAG_Y, TAG_Z}

    def test_nothing_to_purge_when_tag_sets_match(self, pair):
        """Test identical tag sets give an empty plan."""
        alice, bob = pair
        for replica in pair:
            replica.api.add_contact("X", tag=TAG_X)
            replica.refresh()

        reconciler = Reconciler(
            EntityKind.CONTACT, [alice, bob], EARLY, TagFactory(), SyncStats()
        )

        assert reconciler.plan_deletions() == set()

    def test_untagged_entities_are_not_deletions(self, pair):
        """Test a new contact on one side does not count as a deletion."""
        alice, bob = pair
        alice.api.add_contact("X", tag=TAG_X)
        alice.api.add_contact("New")
        bob.api.add_contact("X", tag=TAG_X)
        for replica in pair:
            replica.refresh()

        reconciler = Reconciler(
            EntityKind.CONTACT, [alice, bob], EARLY, TagFactory(), SyncStats()
        )

        assert reconciler.plan_deletions() == set()


class TestCollectUpdates:
    """Tests for gathering edits made after the watermark."""

    def test_only_entities_newer_than_watermark(self, pair, clock):
        """Test entities edited before the watermark are ignored."""
        alice, bob = pair
        alice.api.add_contact("Old", tag=TAG_X)
        watermark = clock.now
        clock.advance(seconds=1)
        alice.api.add_contact("New", tag=TAG_Y)
        alice.refresh()
        bob.refresh()

        reconciler = Reconciler(
            EntityKind.CONTACT, [alice, bob], watermark, TagFactory(), SyncStats()
        )
        candidates = reconciler.collect_updates()

        assert set(candidates) == {TAG_Y}
        assert candidates[TAG_Y][0].account == "alice@example.com"

    def test_added_entities_are_skipped(self, pair):
        """Test entities created by the addition phase are not updates."""
        alice, bob = pair
        rn = alice.api.add_contact("X", tag=TAG_X)
        alice.refresh()
        bob.refresh()

        reconciler = Reconciler(
            EntityKind.CONTACT, [alice, bob], EARLY, TagFactory(), SyncStats()
        )

        assert reconciler.collect_updates({("alice@example.com", rn)}) == {}


class TestIdempotence:
    """Tests that a second run without edits writes nothing."""

    def test_second_run_is_a_no_op(self, synced_pair):
        """Test no write happens when nothing changed."""
        alice, bob, engine = synced_pair
        before = writes(alice, bob)

        result = engine.run()

        assert writes(alice, bob) == before
        assert not result.has_changes()
        assert "No changes" in result.summary()

    def test_run_after_propagation_is_a_no_op(self, synced_pair, clock):
        """Test our own writes are not picked up as edits next time."""
        alice, bob, engine = synced_pair
        alice.api.edit_contact(
            alice.api.contact_id("Jane"), emailAddresses=[{"value": "j@work.example"}]
        )
        engine.run()
        before = writes(alice, bob)

        clock.advance(seconds=10)
        result = engine.run()

        assert writes(alice, bob) == before
        assert not result.has_changes()


class TestConvergence:
    """Tests that both accounts end up holding the same entities."""

    def test_bootstrap_converges(self, synced_pair):
        """Test every entity exists once in every account with one tag."""
        alice, bob, _ = synced_pair

        assert alice.api.contact_names() == bob.api.contact_names() == {
            "John",
            "Jane",
        }
        assert alice.api.group_names() == bob.api.group_names() == {"Family"}
        assert alice.api.contact_tags() == bob.api.contact_tags()
        assert len(alice.api.contact_tags()) == 2
        assert alice.api.group_tags() == bob.api.group_tags()
        assert bob.api.groups_of("John") == {"Family"}

    def test_new_contact_is_added_everywhere(self, synced_pair):
        """Test a contact created in one account is created in the other."""
        alice, bob, engine = synced_pair
        bob.api.add_contact("Mary", groups=("Family",))

        result = engine.run()

        assert "Mary" in alice.api.contact_names()
        assert alice.api.groups_of("Mary") == {"Family"}
        assert alice.api.contact_tags() == bob.api.contact_tags()
        assert result.stats.contacts_created == 1
        assert result.stats.tags_assigned == 1

    def test_new_group_and_member_in_one_run(self, synced_pair):
        """Test a contact in a brand new group keeps its membership."""
        alice, bob, engine = synced_pair
        bob.api.add_group("Work")
        bob.api.add_contact("Ann", groups=("Work",))

        result = engine.run()

        assert alice.api.group_names() == {"Family", "Work"}
        assert alice.api.groups_of("Ann") == {"Work"}
        assert result.stats.groups_created == 1
        assert result.stats.contacts_created == 1

    def test_untagged_contacts_on_both_sides(self, synced_pair):
        """Test additions from several accounts in one run."""
        alice, bob, engine = synced_pair
        alice.api.add_contact("Alpha")
        bob.api.add_contact("Beta")

        engine.run()

        assert alice.api.contact_names() == bob.api.contact_names()
        assert {"Alpha", "Beta"} <= alice.api.contact_names()
        assert alice.api.contact_tags() == bob.api.contact_tags()


class TestUpdates:
    """Tests for propagating edits."""

    def test_edit_is_copied(self, synced_pair):
        """Test an edited contact overwrites its copy in the other account."""
        alice, bob, engine = synced_pair
        alice.api.edit_contact(
            alice.api.contact_id("Jane"),
            emailAddresses=[{"value": "jane@work.example.com"}],
        )

        result = engine.run()

        assert bob.api.contact("Jane")["emailAddresses"] == [
            {"value": "jane@work.example.com"}
        ]
        assert result.stats.contacts_updated == 1
        assert result.stats.conflicts_resolved == 0

    def test_last_modification_wins(self, synced_pair):
        """Test the later of two concurrent edits wins in both accounts."""
        alice, bob, engine = synced_pair
        alice.api.edit_contact(
            alice.api.contact_id("John"), phoneNumbers=[{"value": "alice's edit"}]
        )
        bob.api.edit_contact(
            bob.api.contact_id("John"), phoneNumbers=[{"value": "bob's edit"}]
        )

        result = engine.run()

        expected = [{"value": "bob's edit"}]
        assert alice.api.contact("John")["phoneNumbers"] == expected
        assert bob.api.contact("John")["phoneNumbers"] == expected
        assert result.stats.conflicts_resolved == 1

    def test_update_keeps_tags(self, synced_pair):
        """Test tags are stable across updates."""
        alice, bob, engine = synced_pair
        tags = alice.api.contact_tags()
        alice.api.edit_contact(alice.api.contact_id("John"), biographies=[])

        engine.run()

        assert alice.api.contact_tags() == bob.api.contact_tags() == tags

    def test_membership_is_translated(self, synced_pair):
        """Test a membership change maps to the other account's group."""
        alice, bob, engine = synced_pair
        alice.api.edit_contact(
            alice.api.contact_id("Jane"),
            memberships=alice.api.contact("John")["memberships"],
        )

        engine.run()

        assert bob.api.groups_of("Jane") == {"Family"}

    def test_group_rename(self, synced_pair):
        """Test renaming a group renames its copy."""
        alice, bob, engine = synced_pair
        alice.api.rename_group(alice.api.group_id("Family"), "Relatives")

        result = engine.run()

        assert bob.api.group_names() == {"Relatives"}
        assert bob.api.groups_of("John") == {"Relatives"}
        assert result.stats.groups_updated == 1


class TestDeletions:
    """Tests for propagating deletions."""

    def test_deleted_contact_is_deleted_everywhere(self, synced_pair):
        """Test a contact removed in one account is removed in the other."""
        alice, bob, engine = synced_pair
        alice.api.remove(alice.api.contact_id("Jane"))

        result = engine.run()

        assert "Jane" not in bob.api.contact_names()
        assert result.stats.contacts_deleted == 1

    def test_deletion_beats_concurrent_edit(self, synced_pair):
        """Test deletions are applied before updates."""
        alice, bob, engine = synced_pair
        alice.api.remove(alice.api.contact_id("Jane"))
        bob.api.edit_contact(bob.api.contact_id("Jane"), nicknames=[{"value": "J"}])

        engine.run()

        assert "Jane" not in alice.api.contact_names()
        assert "Jane" not in bob.api.contact_names()

    def test_deleted_group_is_deleted_everywhere(self, synced_pair):
        """Test a removed group disappears but its members stay."""
        alice, bob, engine = synced_pair
        alice.api.remove(alice.api.group_id("Family"))

        result = engine.run()

        assert bob.api.group_names() == set()
        assert "John" in bob.api.contact_names()
        assert bob.api.groups_of("John") == set()
        assert result.stats.groups_deleted == 1

    def test_deleted_everywhere_is_a_no_op(self, synced_pair):
        """Test a contact deleted in every account needs no write."""
        alice, bob, engine = synced_pair
        alice.api.remove(alice.api.contact_id("Jane"))
        bob.api.remove(bob.api.contact_id("Jane"))
        before = writes(alice, bob)

        result = engine.run()

        assert writes(alice, bob) == before
        assert result.stats.contacts_deleted == 0


class TestReconcilerRun:
    """Tests for a single pass driven directly."""

    @pytest.mark.parametrize("kind", [EntityKind.CONTACT, EntityKind.GROUP])
    def test_run_reports_whether_anything_changed(self, pair, kind):
        """Test run() returns False for already reconciled replicas."""
        alice, bob = pair
        for replica in pair:
            replica.refresh()

        reconciler = Reconciler(kind, [alice, bob], EARLY, TagFactory(), SyncStats())

        assert reconciler.run() is False

    def test_group_pass_creates_tagged_copy(self, pair):
        """Test the group pass tags the source and copies the tag."""
        alice, bob = pair
        alice.api.add_group("Friends")
        for replica in pair:
            replica.refresh()
        stats = SyncStats()

        changed = Reconciler(
            EntityKind.GROUP, [alice, bob], EARLY, TagFactory(), stats
        ).run()

        assert changed is True
        assert bob.api.group_names() == {"Friends"}
        assert alice.api.group_tags() == bob.api.group_tags()
        assert stats.groups_created == 1
        assert stats.tags_assigned == 1
