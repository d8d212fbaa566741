"""
Tests for ipset_manager.core.sets module.
"""

import datetime

from ipset_manager.core.records import Record
from ipset_manager.core.sets import aggregate, aggregate_sorted


def at(day):
    return datetime.datetime(2024, 1, day, tzinfo=datetime.timezone.utc)


class TestAggregate:
    """Test cases for set aggregation."""

    def test_groups_by_set_name(self):
        """Test that members are grouped under their set name."""
        sets = aggregate(
            [
                Record(id=100000, set_name="web", ip="1.1.1.1"),
                Record(id=100001, set_name="db", ip="2.2.2.2"),
                Record(id=100002, set_name="web", ip="3.3.3.3"),
            ]
        )

        assert [s.name for s in sets] == ["web", "db"]
        assert [r.id for r in sets[0].records] == [100000, 100002]

    def test_type_from_first_member(self):
        """Test that type and options come from the first member seen."""
        sets = aggregate(
            [
                Record(set_name="web", ip="1.1.1.1", set_type="hash:ip", set_options="timeout 0"),
                Record(set_name="web", ip="2.2.2.2", set_type="hash:net"),
            ]
        )

        assert sets[0].type == "hash:ip"
        assert sets[0].options == "timeout 0"

    def test_timestamps_span_members(self):
        """Test earliest created_at and latest updated_at."""
        sets = aggregate(
            [
                Record(set_name="web", ip="1.1.1.1", created_at=at(5), updated_at=at(6)),
                Record(set_name="web", ip="2.2.2.2", created_at=at(2), updated_at=at(9)),
                Record(set_name="web", ip="3.3.3.3", created_at=at(7), updated_at=at(7)),
            ]
        )

        assert sets[0].created_at == at(2)
        assert sets[0].updated_at == at(9)

    def test_empty(self):
        """Test aggregating nothing."""
        assert aggregate([]) == []

    def test_sorted(self):
        """Test name ordering."""
        sets = aggregate_sorted(
            [Record(set_name="zeta", ip="1.1.1.1"), Record(set_name="alpha", ip="2.2.2.2")]
        )
        assert [s.name for s in sets] == ["alpha", "zeta"]
