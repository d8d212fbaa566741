"""
Identity allocation for records.

Ids are 6-digit "ticket numbers". The allocator always hands out the lowest
id that no active record holds, so ids freed by deletion are reused first.
"""

from typing import Iterable

from .errors import IdSpaceExhaustedError
from .logging_config import get_logger
from .records import MAX_RECORD_ID, MIN_RECORD_ID

logger = get_logger(__name__)


class IdentityAllocator:
    """Lowest-free-id allocator over a fixed inclusive range.

    The allocator keeps no state between calls. Callers pass the ids that are
    active right now; nothing is cached across calls or restarts.
    """

    def __init__(self, low: int = MIN_RECORD_ID, high: int = MAX_RECORD_ID):
        if low > high:
            raise ValueError(f"empty id range {low}-{high}")
        self.low = low
        self.high = high

    @property
    def capacity(self) -> int:
        return self.high - self.low + 1

    def allocate(self, active_ids: Iterable[int]) -> int:
        """Return the smallest id in range not present in ``active_ids``."""
        used = {i for i in active_ids if self.low <= i <= self.high}
        if len(used) >= self.capacity:
            raise IdSpaceExhaustedError(self.low, self.high)

        # The first gap is at most len(used) steps past the low bound
        for candidate in range(self.low, self.low + len(used) + 1):
            if candidate not in used:
                logger.debug("Allocated record id %s (%s active)", candidate, len(used))
                return candidate

        raise IdSpaceExhaustedError(self.low, self.high)

    def contains(self, record_id: int) -> bool:
        return self.low <= record_id <= self.high
