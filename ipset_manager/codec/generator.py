"""
Render records back into ipset restore text or a shell script.
"""

import shlex
from typing import Dict, Iterable, List, Tuple

from ..core.errors import InvalidInputError
from ..core.logging_config import get_logger
from ..core.records import Record

logger = get_logger(__name__)

GROUP_BY_SET = "set"
GROUP_BY_PROTOCOL = "protocol"
GROUP_BY_CHOICES = (GROUP_BY_SET, GROUP_BY_PROTOCOL)

TCP_BUCKET = "tcp_set"
UDP_BUCKET = "udp_set"
IP_BUCKET = "ip_set"


def protocol_bucket(record: Record) -> str:
    """Bucket name used when a record is grouped by protocol."""
    if record.protocol == "tcp":
        return TCP_BUCKET
    if record.protocol == "udp":
        return UDP_BUCKET
    return IP_BUCKET


def format_entry(record: Record) -> str:
    """The record as an ``add`` entry."""
    return record.entry


def _comment(record: Record) -> str:
    description = " ".join(record.description.split())
    return f"# id={record.id} {description}".rstrip()


def _inferred_type(members: List[Record]) -> str:
    has_net = any(r.cidr for r in members)
    has_port = any(r.port or r.protocol for r in members)
    if has_port:
        return "hash:net,port" if has_net else "hash:ip,port"
    return "hash:net" if has_net else "hash:ip"


def group_records(
    records: Iterable[Record], group_by: str = GROUP_BY_SET
) -> Dict[str, List[Record]]:
    """Group records in first-seen order.

    With ``group_by="set"`` records keep their set name, and those without
    one fall back to their protocol bucket.
    """
    if group_by not in GROUP_BY_CHOICES:
        raise InvalidInputError(
            f"group_by must be one of {', '.join(GROUP_BY_CHOICES)}", field="group_by"
        )

    groups: Dict[str, List[Record]] = {}
    for record in records:
        if group_by == GROUP_BY_SET and record.set_name:
            key = record.set_name
        else:
            key = protocol_bucket(record)
        groups.setdefault(key, []).append(record)
    return groups


def _header(name: str, members: List[Record], group_by: str) -> Tuple[str, str]:
    first = members[0]
    if group_by == GROUP_BY_SET and first.set_name == name and first.set_type:
        return first.set_type, first.set_options
    return _inferred_type(members), ""


def generate(records: Iterable[Record], group_by: str = GROUP_BY_SET) -> str:
    """Render records as ``ipset restore`` input.

    Each set gets one ``create`` line; each record gets a comment carrying its
    id and description followed by its ``add`` line.
    """
    lines: List[str] = []
    groups = group_records(records, group_by)

    for name, members in groups.items():
        set_type, options = _header(name, members, group_by)
        lines.append(" ".join(part for part in ("create", name, set_type, options) if part))
        for record in members:
            lines.append(_comment(record))
            lines.append(f"add {name} {format_entry(record)}")

    logger.debug("Generated %s sets", len(groups))
    return "\n".join(lines) + "\n" if lines else ""


def generate_script(records: Iterable[Record], group_by: str = GROUP_BY_SET) -> str:
    """Render records as a bash script that builds the sets with ``ipset``."""
    lines = ["#!/bin/bash", "# Generated by ipset-manager", "set -e", ""]
    groups = group_records(records, group_by)

    for name, members in groups.items():
        set_type, options = _header(name, members, group_by)
        create = ["ipset", "create", "-exist", shlex.quote(name)]
        create.extend(shlex.quote(part) for part in f"{set_type} {options}".split())
        lines.append(f"# Set {name} ({len(members)} entries)")
        lines.append(" ".join(create))
        for record in members:
            lines.append(_comment(record))
            lines.append(
                f"ipset add -exist {shlex.quote(name)} {shlex.quote(format_entry(record))}"
            )
        lines.append("")

    if groups:
        lines.append("# Example iptables rules:")
        for name, members in groups.items():
            set_type, _ = _header(name, members, group_by)
            direction = "src,dst" if set_type.endswith(",port") else "src"
            lines.append(
                f"# iptables -A INPUT -m set --match-set {name} {direction} -j ACCEPT"
            )

    return "\n".join(lines) + "\n"
