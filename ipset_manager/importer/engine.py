"""
Batch import of parsed records into a record store.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from ..codec.parser import parse_file
from ..core.errors import IpsetManagerError, SourceUnavailableError
from ..core.logging_config import get_logger
from ..core.records import Record
from ..storage.base import RecordStore

logger = get_logger(__name__)

ETC_IPSET = "/etc/ipset"

DEFAULT_LOCATIONS = (
    ETC_IPSET,
    "/etc/ipset.conf",
    "/etc/ipset/rules",
    "/var/lib/ipset/rules",
    "/etc/network/ipset",
)


class RecordFailure(BaseModel):
    """A record the store refused, with the reason."""

    entry: str
    error: str


class SetImportResult(BaseModel):
    """Outcome for the records of one set."""

    set_name: str
    set_type: str = ""
    set_options: str = ""
    succeeded: int = 0
    failed: int = 0
    records: List[Record] = []
    failures: List[RecordFailure] = []

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


class ImportReport(BaseModel):
    """Per-set and overall tally of an import run."""

    dry_run: bool = False
    sets: List[SetImportResult] = []

    @property
    def total_succeeded(self) -> int:
        return sum(s.succeeded for s in self.sets)

    @property
    def total_failed(self) -> int:
        return sum(s.failed for s in self.sets)

    @property
    def total_records(self) -> int:
        return self.total_succeeded + self.total_failed

    @property
    def is_successful(self) -> bool:
        return self.total_failed == 0

    def summary(self) -> str:
        verb = "would import" if self.dry_run else "imported"
        return (
            f"{verb} {self.total_succeeded} records, {self.total_failed} failed "
            f"across {len(self.sets)} sets"
        )


def apply_context_prefix(record: Record, context_prefix: Optional[str]) -> Record:
    if not context_prefix:
        return record
    return record.model_copy(update={"context": f"{context_prefix}:{record.context}"})


def group_by_set(records: Iterable[Record]) -> Dict[str, List[Record]]:
    """Group records by set name, keeping first-seen order."""
    groups: Dict[str, List[Record]] = {}
    for record in records:
        groups.setdefault(record.set_name, []).append(record)
    return groups


def collect_from_locations(
    paths: Sequence[Union[str, Path]] = DEFAULT_LOCATIONS,
) -> Tuple[List[Record], List[str]]:
    """Parse every readable file among ``paths``.

    Directories contribute their regular files in name order. Missing paths
    are skipped and unreadable ones are logged and skipped. Returns the
    records and the sources that yielded at least one record.
    """
    records: List[Record] = []
    sources: List[str] = []

    for location in paths:
        path = Path(location)
        if path.is_dir():
            candidates = sorted(p for p in path.iterdir() if p.is_file())
        elif path.is_file():
            candidates = [path]
        else:
            logger.debug("Skipping missing location %s", path)
            continue

        for candidate in candidates:
            try:
                found = list(parse_file(candidate))
            except SourceUnavailableError as e:
                logger.warning("Skipping %s: %s", candidate, e.reason)
                continue
            if found:
                records.extend(found)
                sources.append(str(candidate))

    return records, sources


class ImportEngine:
    """Creates parsed records through a store, continuing past failures."""

    def __init__(self, store: RecordStore):
        self.store = store

    def import_records(
        self,
        records: Iterable[Record],
        context_prefix: Optional[str] = None,
        dry_run: bool = False,
    ) -> ImportReport:
        """Import records set by set.

        A record the store rejects is counted as failed and the run goes on.
        Store errors that are not IpsetManagerError propagate.
        """
        report = ImportReport(dry_run=dry_run)

        for set_name, members in group_by_set(records).items():
            result = SetImportResult(
                set_name=set_name,
                set_type=members[0].set_type,
                set_options=members[0].set_options,
            )
            logger.info("Importing set %s (%s records)", set_name or "-", len(members))

            for record in members:
                candidate = apply_context_prefix(record, context_prefix)
                if dry_run:
                    result.records.append(candidate)
                    result.succeeded += 1
                    continue

                try:
                    created = self.store.create(candidate)
                except IpsetManagerError as e:
                    logger.warning("Failed to import %s into %s: %s", candidate.entry, set_name, e)
                    result.failures.append(RecordFailure(entry=candidate.entry, error=str(e)))
                    result.failed += 1
                    continue

                result.records.append(created)
                result.succeeded += 1

            logger.debug(
                "Set %s: %s successful, %s failed", set_name, result.succeeded, result.failed
            )
            report.sets.append(result)

        logger.info("Import finished: %s", report.summary())
        return report
