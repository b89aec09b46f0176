"""
Tests for the person merging engine.
"""

import pytest

from facemerge.merge import PersonMerger, FieldChoice
from facemerge.store.database import PeopleDatabase
from facemerge.store.audit_trail import MergeAuditTrail
from facemerge.utils.config import EngineConfig
from facemerge.utils.errors import (
    NotFoundError,
    InvalidOperationError,
    ValidationError,
    StoreConflictError,
)
from factories import make_person, make_appearance, make_connection


class RecordingStorage:
    """Image storage that records deletes and can be told to fail."""

    def __init__(self, fail_on=()):
        self.deleted = []
        self.fail_on = set(fail_on)

    def delete(self, path):
        if path in self.fail_on:
            raise OSError(f"cannot delete {path}")
        self.deleted.append(path)

    def url_for(self, path):
        return f"mem://{path}"


def seed(db, persons=(), connections=()):
    for person in persons:
        db.save_person(person)
    for conn in connections:
        db.save_connection(conn)


def assert_no_duplicate_pairs(connections):
    keys = [c.endpoint_key() for c in connections]
    assert len(keys) == len(set(keys))


class TestMergeScenarios:
    """End-to-end merge scenarios."""

    def test_self_loop_removed_and_connection_rewritten(self, db):
        """Test A-B, B-C merged B into A: A-B dropped, B-C becomes A-C."""
        seed(db, [
            make_person('a', 'Ada'),
            make_person('b', 'Ada'),
            make_person('c', 'Carl'),
        ], [
            make_connection('ab', 'a', 'b', types=['friend']),
            make_connection('bc', 'b', 'c', types=['colleague']),
        ])

        result = PersonMerger(db).merge('a', 'b')

        assert result.deleted_person_id == 'b'
        assert result.rewritten_connection_ids == ['bc']
        assert result.deleted_connection_ids == ['ab']

        remaining = db.get_connections_by_owner('u1')
        assert [c.id for c in remaining] == ['bc']
        assert remaining[0].from_person_id == 'a'
        assert remaining[0].to_person_id == 'c'
        assert remaining[0].types == ['colleague']
        assert db.get_person('b') is None

    def test_duplicate_connection_deleted(self, db):
        """Test A-B, A-C and B-C: B-C is deleted, not rewritten."""
        seed(db, [
            make_person('a', 'Ada'),
            make_person('b', 'Ada'),
            make_person('c', 'Carl'),
        ], [
            make_connection('ab', 'a', 'b'),
            make_connection('ac', 'a', 'c', types=['friend'], strength=5),
            make_connection('bc', 'b', 'c', types=['colleague']),
        ])

        result = PersonMerger(db).merge('a', 'b')

        assert result.rewritten_connection_ids == []
        assert set(result.deleted_connection_ids) == {'ab', 'bc'}

        remaining = db.get_connections_by_owner('u1')
        assert [c.id for c in remaining] == ['ac']
        assert remaining[0].types == ['friend']
        assert remaining[0].strength == 5
        assert remaining[0].version == 0

    def test_no_connection_references_source(self, db):
        """Test the post-merge connection set over a busier graph."""
        seed(db, [make_person(pid, pid) for pid in 'abcdef'], [
            make_connection('1', 'a', 'c'),
            make_connection('2', 'b', 'c'),
            make_connection('3', 'd', 'b'),
            make_connection('4', 'b', 'd'),
            make_connection('5', 'e', 'f'),
            make_connection('6', 'b', 'a'),
            make_connection('7', 'e', 'b'),
        ])

        PersonMerger(db).merge('a', 'b')

        remaining = db.get_connections_by_owner('u1')
        assert not any(c.involves('b') for c in remaining)
        assert not any(c.is_self_loop() for c in remaining)
        assert_no_duplicate_pairs(remaining)
        assert {c.id for c in remaining} == {'1', '3', '5', '7'}


class TestMergeFields:
    """Tests for field, appearance and roster handling."""

    def test_required_choice_missing(self, db):
        """Test that conflicting fields are never guessed."""
        seed(db, [make_person('a', 'John Smith'), make_person('b', 'Jon Smith')])

        with pytest.raises(ValidationError) as exc_info:
            PersonMerger(db).merge('a', 'b')

        assert exc_info.value.fields == ['name']
        assert db.get_person('b') is not None

    def test_field_choices_applied(self, db):
        seed(db, [
            make_person('a', 'John Smith', company='Acme', hobbies='golf'),
            make_person('b', 'Jon Smith', company='Initech', birthday='04-01'),
        ])

        result = PersonMerger(db).merge('a', 'b', field_choices={
            'name': FieldChoice.KEEP_TARGET,
            'company': FieldChoice.TAKE_SOURCE,
        })

        merged = db.get_person('a')
        assert merged.name == 'John Smith'
        assert merged.company == 'Initech'
        assert merged.hobbies == 'golf'
        assert merged.birthday == '04-01'
        assert result.merged_person.company == 'Initech'

    def test_notes_appended(self, db):
        seed(db, [
            make_person('a', 'Ada', notes='Likes tea'),
            make_person('b', 'Ada', notes='Allergic to cats'),
        ])

        PersonMerger(db).merge('a', 'b')

        assert db.get_person('a').notes == 'Likes tea\n\n--- Merged from Ada ---\nAllergic to cats'

    def test_rosters_unioned_without_duplicates(self, db):
        seed(db, [
            make_person('a', 'Ada', roster_ids=['r1', 'r2']),
            make_person('b', 'Ada', roster_ids=['r2', 'r3', 'r1']),
        ])

        PersonMerger(db).merge('a', 'b')

        roster_ids = db.get_person('a').roster_ids
        assert sorted(roster_ids) == ['r1', 'r2', 'r3']
        assert len(roster_ids) == len(set(roster_ids))

    def test_appearances_concatenated_target_primary_kept(self, db):
        seed(db, [
            make_person('a', 'Ada', face_appearances=[make_appearance('a1', is_primary=True)]),
            make_person('b', 'Ada', face_appearances=[
                make_appearance('b1', is_primary=True),
                make_appearance('b2'),
            ]),
        ])

        PersonMerger(db).merge('a', 'b')

        merged = db.get_person('a')
        assert [a.id for a in merged.face_appearances] == ['a1', 'b1', 'b2']
        assert [a.is_primary for a in merged.face_appearances] == [True, False, False]
        assert merged.primary_appearance_path == 'faces/a1.jpg'

    def test_primary_choice(self, db):
        seed(db, [
            make_person('a', 'Ada', face_appearances=[make_appearance('a1', is_primary=True)]),
            make_person('b', 'Ada', face_appearances=[make_appearance('b1', is_primary=True)]),
        ])

        PersonMerger(db).merge('a', 'b', primary_photo='b1')

        merged = db.get_person('a')
        assert [a.is_primary for a in merged.face_appearances] == [False, True]
        assert merged.primary_appearance_path == 'faces/b1.jpg'

    def test_source_primary_used_when_target_has_none(self, db):
        seed(db, [
            make_person('a', 'Ada'),
            make_person('b', 'Ada', face_appearances=[make_appearance('b1', is_primary=True)]),
        ])

        PersonMerger(db).merge('a', 'b')

        assert db.get_person('a').get_primary_appearance().id == 'b1'

    def test_unknown_primary_choice(self, db):
        seed(db, [make_person('a', 'Ada'), make_person('b', 'Ada')])

        with pytest.raises(ValidationError):
            PersonMerger(db).merge('a', 'b', primary_photo='nope')

        assert db.get_person('b') is not None

    def test_colliding_appearance_ids_skipped(self, db):
        seed(db, [
            make_person('a', 'Ada', face_appearances=[make_appearance('x', image_path='t.jpg')]),
            make_person('b', 'Ada', face_appearances=[make_appearance('x', image_path='s.jpg')]),
        ])
        storage = RecordingStorage()

        result = PersonMerger(db, storage=storage).merge('a', 'b')

        assert [a.image_path for a in db.get_person('a').face_appearances] == ['t.jpg']
        assert storage.deleted == ['s.jpg']
        assert result.failed_image_cleanups == []


class TestMergeErrors:
    """Tests for refused merges."""

    def test_missing_person(self, db):
        seed(db, [make_person('a', 'Ada')])

        with pytest.raises(NotFoundError):
            PersonMerger(db).merge('a', 'ghost')
        with pytest.raises(NotFoundError):
            PersonMerger(db).merge('ghost', 'a')

    def test_self_merge(self, db):
        seed(db, [make_person('a', 'Ada')])

        with pytest.raises(InvalidOperationError):
            PersonMerger(db).merge('a', 'a')

    def test_cross_owner_merge(self, db):
        seed(db, [make_person('a', 'Ada'), make_person('b', 'Ada', owner_id='u2')])

        with pytest.raises(InvalidOperationError):
            PersonMerger(db).merge('a', 'b')

        assert db.get_person('b') is not None


class TestMergeAtomicity:
    """Tests for all-or-nothing behaviour."""

    def test_failure_before_commit_leaves_records_unchanged(self, db, db_path, monkeypatch):
        """Test that a failure after rewiring rolls everything back."""
        seed(db, [
            make_person('a', 'Ada', company='Acme'),
            make_person('b', 'Ada', hobbies='chess', roster_ids=['r1']),
            make_person('c', 'Carl'),
        ], [
            make_connection('ab', 'a', 'b'),
            make_connection('bc', 'b', 'c'),
        ])

        def fail_delete(person_id, expected_version=None):
            raise RuntimeError('simulated crash')

        monkeypatch.setattr(db, 'delete_person', fail_delete)

        with pytest.raises(RuntimeError):
            PersonMerger(db).merge('a', 'b')

        reader = PeopleDatabase(db_path)
        try:
            target = reader.get_person('a')
            source = reader.get_person('b')
            assert target.hobbies is None
            assert target.roster_ids == []
            assert target.version == 0
            assert source is not None
            assert source.hobbies == 'chess'
            assert reader.get_connection('ab') is not None
            bc = reader.get_connection('bc')
            assert bc.from_person_id == 'b'
            assert bc.version == 0
        finally:
            reader.close()

    def test_audit_entries_rolled_back_with_merge(self, db, monkeypatch):
        seed(db, [make_person('a', 'Ada'), make_person('b', 'Ada', company='Acme')])
        audit = MergeAuditTrail(db)

        def fail_delete(person_id, expected_version=None):
            raise RuntimeError('simulated crash')

        monkeypatch.setattr(db, 'delete_person', fail_delete)

        with pytest.raises(RuntimeError):
            PersonMerger(db, audit=audit).merge('a', 'b')

        assert audit.get_recent_changes() == []


class TestMergeRetry:
    """Tests for optimistic-concurrency retries."""

    def test_conflict_retried(self, db, monkeypatch):
        """Test that one store conflict is retried from scratch."""
        seed(db, [make_person('a', 'Ada'), make_person('b', 'Ada')])
        original = db.update_person
        calls = []

        def flaky_update(person):
            calls.append(person.id)
            if len(calls) == 1:
                raise StoreConflictError('concurrent write')
            return original(person)

        monkeypatch.setattr(db, 'update_person', flaky_update)

        result = PersonMerger(db).merge('a', 'b')

        assert result.attempts == 2
        assert db.get_person('b') is None

    def test_conflict_exhausts_attempts(self, db, monkeypatch):
        seed(db, [make_person('a', 'Ada'), make_person('b', 'Ada')])
        calls = []

        def always_conflict(person):
            calls.append(person.id)
            raise StoreConflictError('concurrent write')

        monkeypatch.setattr(db, 'update_person', always_conflict)

        with pytest.raises(StoreConflictError):
            PersonMerger(db, config=EngineConfig(merge_max_attempts=2)).merge('a', 'b')

        assert len(calls) == 2
        assert db.get_person('b') is not None


class TestImageCleanup:
    """Tests for best-effort image cleanup."""

    def test_cleanup_failure_does_not_fail_merge(self, db):
        seed(db, [
            make_person('a', 'Ada', face_appearances=[make_appearance('a1', image_path='a.jpg')]),
            make_person('b', 'Ada', face_appearances=[
                make_appearance('x', image_path='x.jpg'),
                make_appearance('a1', image_path='dup1.jpg'),
                make_appearance('a1b', image_path='dup2.jpg'),
            ]),
        ])
        # both sides share appearance id a1, so dup1.jpg is orphaned
        storage = RecordingStorage(fail_on={'dup1.jpg'})

        result = PersonMerger(db, storage=storage).merge('a', 'b')

        assert db.get_person('b') is None
        assert result.failed_image_cleanups == ['dup1.jpg']

    def test_cleanup_each_image_attempted(self):
        storage = RecordingStorage(fail_on={'1.jpg'})
        merger = PersonMerger(db=None, storage=storage)

        failed = merger.cleanup_images(['1.jpg', '2.jpg', '3.jpg'])

        assert failed == ['1.jpg']
        assert storage.deleted == ['2.jpg', '3.jpg']


class TestMergeAudit:

    def test_changes_recorded(self, db):
        seed(db, [
            make_person('a', 'Ada'),
            make_person('b', 'Ada', company='Acme'),
            make_person('c', 'Carl'),
        ], [make_connection('bc', 'b', 'c')])
        audit = MergeAuditTrail(db)

        result = PersonMerger(db, audit=audit).merge('a', 'b')

        entries = audit.get_merge_changes(result.merge_id)
        operations = [e.operation_type for e in entries]
        assert operations == ['field_change', 'connection_rewrite', 'person_delete']
        assert entries[0].field_name == 'company'
        assert entries[0].new_value == 'Acme'
