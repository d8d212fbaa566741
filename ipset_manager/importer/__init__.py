"""
Batch import of ipset rules.
"""

from .engine import (
    DEFAULT_LOCATIONS,
    ImportEngine,
    ImportReport,
    RecordFailure,
    SetImportResult,
    collect_from_locations,
)

__all__ = [
    "ImportEngine",
    "ImportReport",
    "SetImportResult",
    "RecordFailure",
    "DEFAULT_LOCATIONS",
    "collect_from_locations",
]
