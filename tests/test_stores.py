"""
Tests for the record store backends in ipset_manager.storage.
"""

import json

import pytest

from ipset_manager.core.allocator import IdentityAllocator
from ipset_manager.core.errors import (
    BackendUnavailableError,
    DuplicateConstraintError,
    IdSpaceExhaustedError,
    InvalidInputError,
    NotFoundError,
)
from ipset_manager.core.records import MAX_RECORD_ID, MIN_RECORD_ID, Record, RecordPatch
from ipset_manager.storage import (
    SnapshotRecordStore,
    SqlRecordStore,
    VersionedRecordStore,
    resolve_current,
)
from ipset_manager.storage.base import match_rank, rank_search_results
from ipset_manager.storage.versioned import latest_versions


class FixedAllocator(IdentityAllocator):
    """Always hands out the same id, as two racing writers would."""

    def allocate(self, active_ids):
        return MIN_RECORD_ID


def open_store(kind, tmp_path, allocator=None):
    if kind == "snapshot":
        return SnapshotRecordStore(tmp_path / "records.json", allocator=allocator)
    if kind == "sql":
        return SqlRecordStore(f"sqlite:///{tmp_path / 'records.db'}", allocator=allocator)
    return VersionedRecordStore(f"sqlite:///{tmp_path / 'versions.db'}", allocator=allocator)


@pytest.fixture(params=["snapshot", "sql", "versioned"])
def store(request, tmp_path):
    """Each backend, opened on a fresh location."""
    store = open_store(request.param, tmp_path)
    yield store
    store.close()


class TestRecordStoreContract:
    """Behaviour every backend must share."""

    def test_create_assigns_id(self, store):
        """Test creating a minimal record."""
        created = store.create(Record(ip="10.0.0.1", context="c1"))

        assert MIN_RECORD_ID <= created.id <= MAX_RECORD_ID
        assert len(store.get_all()) == 1

    def test_create_then_get_returns_equal_record(self, store):
        """Test that a stored record reads back unchanged."""
        created = store.create(
            Record(
                set_name="web",
                ip="10.0.0.5",
                cidr="32",
                port=443,
                protocol="tcp",
                description="frontend",
                context="web:10.0.0.5",
                set_type="hash:ip,port",
                set_options="family inet",
            )
        )
        fetched = store.get_by_id(created.id)

        assert fetched == created
        assert fetched.created_at == fetched.updated_at
        assert fetched.created_at is not None

    def test_ids_are_sequential_from_lower_bound(self, store):
        """Test that ids start at 100000 and increase."""
        ids = [store.create(Record(ip=f"10.0.0.{i}", context="c")).id for i in range(3)]
        assert ids == [100000, 100001, 100002]

    def test_deleted_id_is_reused(self, store):
        """Test lowest-free-id reuse after deletion."""
        first = store.create(Record(ip="10.0.0.1", context="c"))
        store.create(Record(ip="10.0.0.2", context="c"))
        store.delete(first.id)

        again = store.create(Record(ip="10.0.0.3", context="c"))

        assert again.id == first.id
        assert store.get_by_id(again.id).ip == "10.0.0.3"

    def test_get_missing_raises_not_found(self, store):
        """Test reading an id that was never issued."""
        with pytest.raises(NotFoundError):
            store.get_by_id(123456)

    def test_get_invalid_id_raises_invalid_input(self, store):
        """Test reading an id outside the 6-digit range."""
        with pytest.raises(InvalidInputError):
            store.get_by_id(42)

    def test_create_requires_ip_and_context(self, store):
        """Test required fields at creation."""
        with pytest.raises(InvalidInputError):
            store.create(Record(ip="10.0.0.1"))
        with pytest.raises(InvalidInputError):
            store.create(Record(context="c1"))
        assert store.get_all() == []

    def test_create_rejects_unvalidated_set_fields(self, store):
        """Test that a record built without validation is still checked."""
        unsafe = Record.model_construct(
            **{**Record(ip="10.0.0.1", context="c1").model_dump(), "set_name": "web servers"}
        )

        with pytest.raises(InvalidInputError):
            store.create(unsafe)
        assert store.get_all() == []

    def test_update_rejects_unsafe_set_fields(self, store):
        """Test that a rename into an unusable set name never reaches the store."""
        created = store.create(Record(set_name="web", ip="10.0.0.1", context="c1"))

        with pytest.raises(InvalidInputError):
            store.update(created.id, RecordPatch(set_name="web\nflush"))
        assert store.get_by_id(created.id).set_name == "web"

    def test_partial_update(self, store):
        """Test that only non-empty patch fields overwrite."""
        created = store.create(
            Record(set_name="web", ip="10.0.0.1", context="c1", description="old", port=80)
        )

        updated = store.update(created.id, RecordPatch(description="new"))

        assert updated.description == "new"
        assert updated.port == 80
        assert updated.set_name == "web"
        assert updated.created_at == created.created_at
        assert updated.updated_at >= created.updated_at
        assert store.get_by_id(created.id) == updated

    def test_update_missing_raises_not_found(self, store):
        """Test updating an inactive id."""
        with pytest.raises(NotFoundError):
            store.update(100000, RecordPatch(description="x"))

    def test_delete_twice_raises_not_found(self, store):
        """Test that a second delete of the same id fails."""
        created = store.create(Record(ip="10.0.0.1", context="c1"))
        store.delete(created.id)

        with pytest.raises(NotFoundError):
            store.get_by_id(created.id)
        with pytest.raises(NotFoundError):
            store.delete(created.id)

    def test_get_by_set_name(self, store):
        """Test filtering by set name."""
        store.create(Record(set_name="web", ip="10.0.0.1", context="c"))
        store.create(Record(set_name="db", ip="10.0.0.2", context="c"))
        store.create(Record(set_name="web", ip="10.0.0.3", context="c"))

        web = store.get_by_set_name("web")

        assert [r.ip for r in web] == ["10.0.0.1", "10.0.0.3"]

    def test_get_by_unknown_set_raises_not_found(self, store):
        """Test that a set with no records does not exist."""
        with pytest.raises(NotFoundError):
            store.get_by_set_name("nothing")

    def test_delete_set(self, store):
        """Test deleting every record of a set."""
        store.create(Record(set_name="web", ip="10.0.0.1", context="c"))
        store.create(Record(set_name="web", ip="10.0.0.2", context="c"))
        store.create(Record(set_name="db", ip="10.0.0.3", context="c"))

        assert store.delete_set("web") == 2
        assert [r.set_name for r in store.get_all()] == ["db"]
        with pytest.raises(NotFoundError):
            store.delete_set("web")

    def test_get_all_sets(self, store):
        """Test set aggregation through the store."""
        store.create(Record(set_name="web", ip="10.0.0.1", context="c", set_type="hash:ip"))
        store.create(Record(set_name="db", ip="10.0.0.2", context="c"))
        store.create(Record(set_name="web", ip="10.0.0.3", context="c"))

        sets = store.get_all_sets()

        assert [s.name for s in sets] == ["db", "web"]
        assert sets[1].record_count == 2
        assert sets[1].type == "hash:ip"
        assert store.get_set("web").record_count == 2

    def test_search_ranking(self, store):
        """Test exact before prefix before substring, ties by id."""
        prefix = store.create(Record(ip="10.0.0.2", context="webapp"))
        substring = store.create(Record(ip="10.0.0.3", context="internal-web"))
        exact = store.create(Record(ip="10.0.0.1", context="web"))
        store.create(Record(ip="10.0.0.4", context="db"))

        results = store.search("web")

        assert [r.id for r in results] == [exact.id, prefix.id, substring.id]

    def test_search_is_case_insensitive(self, store):
        """Test that query case does not change results."""
        store.create(Record(ip="10.0.0.1", context="Web-Frontend"))
        store.create(Record(ip="10.0.0.2", context="c", description="WEB cache"))
        store.create(Record(ip="10.0.0.3", context="mail"))

        upper = [r.id for r in store.search("WEB")]
        lower = [r.id for r in store.search("web")]

        assert upper == lower
        assert len(upper) == 2

    def test_search_matches_ip_and_set_name(self, store):
        """Test the searched fields beyond context."""
        store.create(Record(set_name="blocklist", ip="192.168.7.7", context="c"))

        assert len(store.search("192.168.7")) == 1
        assert len(store.search("BLOCK")) == 1

    def test_search_excludes_deleted(self, store):
        """Test that deleted records are not found."""
        created = store.create(Record(ip="10.0.0.1", context="web"))
        store.delete(created.id)
        assert store.search("web") == []

    def test_empty_search_rejected(self, store):
        """Test that a blank query is invalid input."""
        with pytest.raises(InvalidInputError):
            store.search("   ")

    def test_colliding_id_raises_duplicate(self, tmp_path, store):
        """Test the allocate-then-insert race surfaces as a duplicate."""
        racing = open_store(store.backend_name, tmp_path, allocator=FixedAllocator())
        racing.create(Record(ip="10.0.0.1", context="c"))

        with pytest.raises(DuplicateConstraintError):
            racing.create(Record(ip="10.0.0.2", context="c"))

        assert len(racing.get_all()) == 1
        racing.close()

    def test_exhaustion(self, tmp_path, store):
        """Test that a full id range refuses new records until one is freed."""
        narrow = open_store(
            store.backend_name, tmp_path, allocator=IdentityAllocator(100000, 100001)
        )
        first = narrow.create(Record(ip="10.0.0.1", context="c"))
        narrow.create(Record(ip="10.0.0.2", context="c"))

        with pytest.raises(IdSpaceExhaustedError):
            narrow.create(Record(ip="10.0.0.3", context="c"))

        narrow.delete(first.id)
        assert narrow.create(Record(ip="10.0.0.3", context="c")).id == first.id
        narrow.close()

    def test_context_manager_closes(self, tmp_path, store):
        """Test using a store as a context manager."""
        with open_store(store.backend_name, tmp_path) as other:
            assert other.get_all() == []


class TestSnapshotRecordStore:
    """Snapshot-specific behaviour."""

    def test_file_created_empty(self, tmp_path):
        """Test that a missing snapshot is created."""
        path = tmp_path / "nested" / "records.json"
        SnapshotRecordStore(path)

        document = json.loads(path.read_text())
        assert document == {"records": {}, "next_id": MIN_RECORD_ID}

    def test_document_layout(self, tmp_path):
        """Test the persisted id map and next-id hint."""
        path = tmp_path / "records.json"
        store = SnapshotRecordStore(path)
        created = store.create(Record(ip="10.0.0.1", context="c1"))

        document = json.loads(path.read_text())

        assert list(document["records"]) == [str(created.id)]
        assert document["records"][str(created.id)]["ip"] == "10.0.0.1"
        assert document["next_id"] == created.id + 1

    def test_reopen_keeps_records(self, tmp_path):
        """Test persistence across store instances."""
        path = tmp_path / "records.json"
        created = SnapshotRecordStore(path).create(Record(ip="10.0.0.1", context="c1"))

        assert SnapshotRecordStore(path).get_by_id(created.id) == created

    def test_corrupt_snapshot_raises_backend_unavailable(self, tmp_path):
        """Test that an undecodable snapshot is reported, not swallowed."""
        path = tmp_path / "records.json"
        path.write_text("{not json")
        store = SnapshotRecordStore(path)

        with pytest.raises(BackendUnavailableError):
            store.get_all()


class TestVersionedRecordStore:
    """Append-only behaviour."""

    def test_create_update_delete_keeps_three_versions(self, tmp_path):
        """Test that history survives a tombstone."""
        store = VersionedRecordStore(f"sqlite:///{tmp_path / 'v.db'}")
        created = store.create(Record(ip="10.0.0.1", context="c1", description="v1"))
        store.update(created.id, RecordPatch(description="v2"))
        store.delete(created.id)

        with pytest.raises(NotFoundError):
            store.get_by_id(created.id)

        history = store.history(created.id)
        assert [h.version for h in history] == [1, 2, 3]
        assert [h.tombstone for h in history] == [False, False, True]
        assert history[1].record.description == "v2"
        assert history[2].record.description == "v2"
        assert history[2].record.created_at == created.created_at
        store.close()

    def test_reused_id_continues_history(self, tmp_path):
        """Test that re-creating a freed id appends after its tombstone."""
        store = VersionedRecordStore(f"sqlite:///{tmp_path / 'v.db'}")
        created = store.create(Record(ip="10.0.0.1", context="c1"))
        store.delete(created.id)

        again = store.create(Record(ip="10.0.0.9", context="c9"))

        assert again.id == created.id
        assert [h.version for h in store.history(again.id)] == [1, 2, 3]
        assert store.get_by_id(again.id).ip == "10.0.0.9"
        store.close()

    def test_duplicate_version_rejected(self, tmp_path):
        """Test the composite key on (id, version)."""
        store = VersionedRecordStore(f"sqlite:///{tmp_path / 'v.db'}")
        created = store.create(Record(ip="10.0.0.1", context="c1"))

        with pytest.raises(DuplicateConstraintError):
            with store._session() as session:
                store._append(session, created, 1)
        store.close()

    def test_history_of_unknown_id(self, tmp_path):
        """Test history for an id with no rows."""
        store = VersionedRecordStore(f"sqlite:///{tmp_path / 'v.db'}")
        with pytest.raises(NotFoundError):
            store.history(100000)
        store.close()


class Row:
    def __init__(self, id, version, tombstone=False):
        self.id = id
        self.version = version
        self.tombstone = tombstone


class TestResolveCurrent:
    """Test the version resolution rule on plain rows."""

    def test_highest_version_wins(self):
        """Test that the max version is current regardless of order."""
        rows = [Row(1, 2), Row(1, 1), Row(2, 1)]
        current = resolve_current(rows)

        assert current[1].version == 2
        assert current[2].version == 1

    def test_tombstone_hides_record(self):
        """Test that a tombstoned head removes the id."""
        rows = [Row(1, 1), Row(1, 2, tombstone=True), Row(2, 1)]
        assert set(resolve_current(rows)) == {2}
        assert latest_versions(rows)[1].tombstone is True

    def test_recreated_after_tombstone(self):
        """Test that a version after a tombstone is live again."""
        rows = [Row(1, 1), Row(1, 2, tombstone=True), Row(1, 3)]
        assert resolve_current(rows)[1].version == 3


class TestSearchRanking:
    """Test the shared ranking helpers."""

    def test_match_rank(self):
        """Test rank values per match kind."""
        record = Record(ip="10.0.0.1", context="webapp", set_name="web")
        assert match_rank(record, "web") == 0
        assert match_rank(record, "webap") == 1
        assert match_rank(record, "0.0") == 2
        assert match_rank(record, "mail") is None

    def test_rank_search_results_orders_ties_by_id(self):
        """Test id ordering among equal ranks."""
        records = [
            Record(id=100002, ip="1.1.1.1", context="web"),
            Record(id=100001, ip="1.1.1.2", context="web"),
        ]
        assert [r.id for r in rank_search_results(records, "WEB")] == [100001, 100002]
