"""
Rule codec: ipset restore text to records and back.
"""

from .generator import (
    GROUP_BY_PROTOCOL,
    GROUP_BY_SET,
    format_entry,
    generate,
    generate_script,
    group_records,
    protocol_bucket,
)
from .parser import Entry, infer_set_type, parse, parse_entry, parse_file, parse_line, parse_stream

__all__ = [
    "parse",
    "parse_line",
    "parse_entry",
    "parse_file",
    "parse_stream",
    "infer_set_type",
    "Entry",
    "generate",
    "generate_script",
    "group_records",
    "format_entry",
    "protocol_bucket",
    "GROUP_BY_SET",
    "GROUP_BY_PROTOCOL",
]
