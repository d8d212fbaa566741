"""
Tests for ipset_manager.importer.engine module.
"""

from unittest.mock import Mock

import pytest

from ipset_manager.codec.parser import parse
from ipset_manager.core.errors import BackendUnavailableError, DuplicateConstraintError
from ipset_manager.core.records import Record
from ipset_manager.importer import ImportEngine, ImportReport, SetImportResult
from ipset_manager.importer.engine import (
    apply_context_prefix,
    collect_from_locations,
    group_by_set,
)
from ipset_manager.storage import SnapshotRecordStore

RULES = """\
create web hash:ip,port
add web 10.0.0.5,tcp:443
add web 10.0.0.6,tcp:80
add blocklist 192.168.1.1
"""


@pytest.fixture
def store(tmp_path):
    """A fresh snapshot store."""
    return SnapshotRecordStore(tmp_path / "records.json")


class TestImportEngine:
    """Test cases for ImportEngine class."""

    def test_import_creates_records(self, store):
        """Test importing parsed records into a store."""
        report = ImportEngine(store).import_records(parse(RULES, "rules"))

        assert report.is_successful
        assert report.total_succeeded == 3
        assert [s.set_name for s in report.sets] == ["web", "blocklist"]
        assert report.sets[0].set_type == "hash:ip,port"
        assert all(r.id is not None for s in report.sets for r in s.records)
        assert len(store.get_all()) == 3

    def test_dry_run_writes_nothing(self, store):
        """Test that a dry run only previews."""
        report = ImportEngine(store).import_records(parse(RULES, "rules"), dry_run=True)

        assert report.dry_run
        assert report.total_succeeded == 3
        assert report.sets[0].records[0].id is None
        assert store.get_all() == []
        assert report.summary().startswith("would import 3 records")

    def test_context_prefix(self, store):
        """Test that the prefix is prepended to every context."""
        ImportEngine(store).import_records(parse(RULES, "rules"), context_prefix="etc")

        contexts = sorted(r.context for r in store.get_all())
        assert contexts[0] == "etc:blocklist:192.168.1.1"
        assert all(c.startswith("etc:") for c in contexts)

    def test_failures_do_not_abort(self):
        """Test that a rejected record is counted and the batch continues."""
        store = Mock()
        store.create.side_effect = [
            Record(id=100000, ip="10.0.0.5", context="c"),
            DuplicateConstraintError("record", "id", 100001),
            Record(id=100002, ip="192.168.1.1", context="c"),
        ]

        report = ImportEngine(store).import_records(parse(RULES, "rules"))

        assert store.create.call_count == 3
        assert report.total_succeeded == 2
        assert report.total_failed == 1
        assert not report.is_successful
        assert report.sets[0].failures[0].entry == "10.0.0.6,tcp:80"
        assert "already exists" in report.sets[0].failures[0].error
        assert report.summary() == "imported 2 records, 1 failed across 2 sets"

    def test_backend_failure_is_counted(self):
        """Test that an unavailable backend fails records without raising."""
        store = Mock()
        store.create.side_effect = BackendUnavailableError("sql", "connection refused")

        report = ImportEngine(store).import_records(parse(RULES, "rules"))

        assert report.total_failed == 3
        assert report.total_records == 3

    def test_unexpected_errors_propagate(self):
        """Test that non-domain errors are not swallowed."""
        store = Mock()
        store.create.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            ImportEngine(store).import_records(parse(RULES, "rules"))

    def test_empty_input(self, store):
        """Test importing nothing."""
        report = ImportEngine(store).import_records([])

        assert report.sets == []
        assert report.is_successful


class TestHelpers:
    """Test import helpers."""

    def test_apply_context_prefix(self):
        """Test prefixing and the no-prefix case."""
        record = Record(ip="1.1.1.1", context="web:1.1.1.1")

        assert apply_context_prefix(record, "stdin").context == "stdin:web:1.1.1.1"
        assert apply_context_prefix(record, None) is record
        assert apply_context_prefix(record, "") is record

    def test_group_by_set(self):
        """Test grouping keeps first-seen order."""
        groups = group_by_set(
            [
                Record(set_name="b", ip="1.1.1.1"),
                Record(set_name="a", ip="2.2.2.2"),
                Record(set_name="b", ip="3.3.3.3"),
            ]
        )
        assert list(groups) == ["b", "a"]
        assert len(groups["b"]) == 2

    def test_set_result_total(self):
        """Test per-set totals."""
        assert SetImportResult(set_name="web", succeeded=2, failed=1).total == 3

    def test_report_totals(self):
        """Test report totals over several sets."""
        report = ImportReport(
            sets=[
                SetImportResult(set_name="a", succeeded=2),
                SetImportResult(set_name="b", succeeded=1, failed=2),
            ]
        )
        assert report.total_succeeded == 3
        assert report.total_failed == 2
        assert report.total_records == 5


class TestCollectFromLocations:
    """Test gathering rules from well-known paths."""

    def test_files_and_directories(self, tmp_path):
        """Test that files and directory contents are read in order."""
        rules_dir = tmp_path / "ipset"
        rules_dir.mkdir()
        (rules_dir / "b.rules").write_text("add second 10.0.0.2\n")
        (rules_dir / "a.rules").write_text("add first 10.0.0.1\n")
        single = tmp_path / "ipset.conf"
        single.write_text("add third 10.0.0.3\n")

        records, sources = collect_from_locations(
            [rules_dir, single, tmp_path / "missing"]
        )

        assert [r.set_name for r in records] == ["first", "second", "third"]
        assert sources == [
            str(rules_dir / "a.rules"),
            str(rules_dir / "b.rules"),
            str(single),
        ]

    def test_unreadable_file_is_skipped(self, tmp_path):
        """Test that an undecodable file does not stop collection."""
        bad = tmp_path / "bad.rules"
        bad.write_bytes(b"\xff\xfe")
        good = tmp_path / "good.rules"
        good.write_text("add web 10.0.0.1\n")

        records, sources = collect_from_locations([bad, good])

        assert len(records) == 1
        assert sources == [str(good)]

    def test_files_without_records_are_not_sources(self, tmp_path):
        """Test that comment-only files are not reported as sources."""
        empty = tmp_path / "empty.rules"
        empty.write_text("# nothing here\n")

        assert collect_from_locations([empty]) == ([], [])
