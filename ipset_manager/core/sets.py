"""
Set aggregation: group flat records into named set views.
"""

from typing import Dict, Iterable, List

from .records import IPSet, Record


def aggregate(records: Iterable[Record]) -> List[IPSet]:
    """Group records by set name in a single pass.

    Sets come out in first-seen order. Type and options are taken from the
    first member seen; timestamps span the members.
    """
    sets: Dict[str, IPSet] = {}

    for record in records:
        ipset = sets.get(record.set_name)
        if ipset is None:
            ipset = IPSet(
                name=record.set_name,
                type=record.set_type,
                options=record.set_options,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            sets[record.set_name] = ipset
        else:
            if record.created_at is not None and (
                ipset.created_at is None or record.created_at < ipset.created_at
            ):
                ipset.created_at = record.created_at
            if record.updated_at is not None and (
                ipset.updated_at is None or record.updated_at > ipset.updated_at
            ):
                ipset.updated_at = record.updated_at
        ipset.records.append(record)

    return list(sets.values())


def aggregate_sorted(records: Iterable[Record]) -> List[IPSet]:
    """Aggregate and order the sets by name."""
    return sorted(aggregate(records), key=lambda s: s.name)
