"""
Tests for ipset_manager.core.allocator module.
"""

import pytest

from ipset_manager.core.allocator import IdentityAllocator
from ipset_manager.core.errors import IdSpaceExhaustedError
from ipset_manager.core.records import MAX_RECORD_ID, MIN_RECORD_ID


class TestIdentityAllocator:
    """Test cases for IdentityAllocator class."""

    def test_first_id_is_lower_bound(self):
        """Test allocation with no active records."""
        allocator = IdentityAllocator()
        assert allocator.allocate([]) == MIN_RECORD_ID

    def test_lowest_gap_is_reused(self):
        """Test that the smallest free id wins over the next sequential one."""
        allocator = IdentityAllocator()
        assert allocator.allocate([100000, 100002, 100003]) == 100001

    def test_next_after_contiguous_block(self):
        """Test allocation after a contiguous block of ids."""
        allocator = IdentityAllocator()
        assert allocator.allocate(range(100000, 100010)) == 100010

    def test_out_of_range_ids_are_ignored(self):
        """Test that foreign ids do not affect allocation."""
        allocator = IdentityAllocator()
        assert allocator.allocate([5, 1000000, 100000]) == 100001

    def test_capacity(self):
        """Test the size of the default id space."""
        assert IdentityAllocator().capacity == 900000

    def test_contains(self):
        """Test range membership."""
        allocator = IdentityAllocator()
        assert allocator.contains(MIN_RECORD_ID)
        assert allocator.contains(MAX_RECORD_ID)
        assert not allocator.contains(MAX_RECORD_ID + 1)

    def test_empty_range_rejected(self):
        """Test that an inverted range is a programming error."""
        with pytest.raises(ValueError):
            IdentityAllocator(low=10, high=5)

    def test_small_range_exhaustion_and_recovery(self):
        """Test exhaustion and reuse on a narrow range."""
        allocator = IdentityAllocator(low=1, high=3)

        with pytest.raises(IdSpaceExhaustedError) as exc_info:
            allocator.allocate([1, 2, 3])
        assert exc_info.value.low == 1
        assert exc_info.value.high == 3

        assert allocator.allocate([1, 3]) == 2

    def test_full_range_exhaustion(self):
        """Test that all 900,000 ids in use exhausts the allocator."""
        allocator = IdentityAllocator()

        with pytest.raises(IdSpaceExhaustedError):
            allocator.allocate(range(MIN_RECORD_ID, MAX_RECORD_ID + 1))

    def test_freed_id_is_allocated_next_after_exhaustion(self):
        """Test that freeing one id makes exactly that id allocatable."""
        allocator = IdentityAllocator()
        freed = 543210
        active = (i for i in range(MIN_RECORD_ID, MAX_RECORD_ID + 1) if i != freed)

        assert allocator.allocate(active) == freed
