"""
Parser for ipset save/restore text.

Only two directives are understood::

    create <set> <type> [options...]
    add <set> <entry>[,<protocol>:<port>]

Blank lines, ``#`` comments and any other directive are skipped, as are
``add`` lines whose entry cannot be decomposed. Nothing here raises for a
bad line; only an unreadable source raises SourceUnavailableError.
"""

from pathlib import Path
from typing import Dict, Iterator, NamedTuple, Optional, TextIO, Tuple, Union

from ..core.errors import InvalidInputError, SourceUnavailableError
from ..core.logging_config import get_logger
from ..core.records import Record

logger = get_logger(__name__)

# set name -> (set type, options) from the most recent create line
SetContext = Dict[str, Tuple[str, str]]


class Entry(NamedTuple):
    """Decomposed ipset entry."""

    ip: str
    cidr: str = ""
    port: int = 0
    protocol: str = ""


def infer_set_type(set_name: str) -> str:
    """Guess a set type from its name when no create line was seen."""
    lowered = set_name.lower()
    if "tcp" in lowered or "udp" in lowered:
        return "hash:ip,port"
    return "hash:ip"


def _is_number(text: str) -> bool:
    # str.isdigit() also accepts superscripts and other non-ASCII digits
    return text.isascii() and text.isdigit()


def _parse_port(text: str) -> Optional[int]:
    if not _is_number(text):
        return None
    port = int(text)
    if port > 65535:
        return None
    return port


def _split_address(address: str) -> Optional[Tuple[str, str, int]]:
    """Split ``IP[/CIDR][:PORT]`` or ``[IP[/CIDR]]:PORT`` into its parts."""
    port = 0
    if address.startswith("["):
        inner, bracket, rest = address[1:].partition("]")
        if not bracket:
            return None
        if rest:
            if not rest.startswith(":"):
                return None
            port = _parse_port(rest[1:])
            if port is None:
                return None
        address = inner
    elif address.count(":") == 1 and "/" not in address:
        address, _, port_text = address.partition(":")
        port = _parse_port(port_text)
        if port is None:
            return None

    ip, cidr = address, ""
    if "/" in address:
        ip, _, cidr = address.partition("/")
        if ":" in cidr:
            cidr, _, port_text = cidr.partition(":")
            parsed = _parse_port(port_text)
            if parsed is None or port:
                return None
            port = parsed
        if not _is_number(cidr):
            return None
    return ip, cidr, port


def parse_entry(entry: str) -> Optional[Entry]:
    """Split an entry into ip, cidr, port and protocol.

    Accepted shapes: ``IP``, ``IP/CIDR``, ``IP:PORT``, ``IP/CIDR:PORT``, each
    optionally followed by ``,PROTO:PORT`` (or ``,PORT``, which ipset reads as
    tcp). A bare IPv6 address is never split on ``:``; an IPv6 entry with a
    port and no protocol is written ``[IP]:PORT``. Returns None when the entry
    has no address or carries an unusable port or prefix.
    """
    segments = entry.split(",")
    parts = _split_address(segments[0].strip())
    if parts is None:
        return None
    ip, cidr, port = parts

    if not ip:
        return None

    protocol = ""
    if len(segments) > 1:
        proto_port = segments[1].strip()
        if ":" in proto_port:
            protocol, _, port_text = proto_port.partition(":")
            parsed = _parse_port(port_text)
            if parsed is None:
                return None
            port = parsed
        elif _is_number(proto_port):
            parsed = _parse_port(proto_port)
            if parsed is None:
                return None
            protocol, port = "tcp", parsed

    return Entry(ip=ip, cidr=cidr, port=port, protocol=protocol.lower())


def build_context(set_name: str, entry: Entry) -> str:
    parts = [set_name, entry.ip]
    if entry.port:
        parts.append(str(entry.port))
    if entry.protocol:
        parts.append(entry.protocol)
    return ":".join(parts)


def parse_line(
    line: str,
    source: str,
    line_number: int,
    set_context: Optional[SetContext] = None,
) -> Optional[Record]:
    """Parse one line into a Record, or return None.

    ``create`` lines update ``set_context`` in place and yield no record.
    """
    if set_context is None:
        set_context = {}

    line = line.strip()
    if not line or line.startswith("#"):
        return None

    fields = line.split()
    if len(fields) < 3:
        return None

    directive, set_name = fields[0], fields[1]

    if directive == "create":
        set_context[set_name] = (fields[2], " ".join(fields[3:]))
        return None

    if directive != "add":
        return None

    entry = parse_entry(fields[2])
    if entry is None:
        logger.debug("Skipping %s line %s: unusable entry %r", source, line_number, fields[2])
        return None

    # An explicit create for this set wins over name-based inference
    if set_name in set_context:
        set_type, set_options = set_context[set_name]
    else:
        set_type, set_options = infer_set_type(set_name), ""

    try:
        return Record(
            set_name=set_name,
            ip=entry.ip,
            cidr=entry.cidr,
            port=entry.port,
            protocol=entry.protocol,
            description=f"Imported from {source} line {line_number}",
            context=build_context(set_name, entry),
            set_type=set_type,
            set_options=set_options,
        )
    except InvalidInputError as e:
        logger.debug("Skipping %s line %s: %s", source, line_number, e)
        return None


def parse(text: str, source: str) -> Iterator[Record]:
    """Lazily parse restore-format text into records.

    Each call starts from a fresh set context, so re-invoking with the same
    text yields the same records.
    """
    set_context: SetContext = {}
    for line_number, line in enumerate(text.splitlines(), 1):
        record = parse_line(line, source, line_number, set_context)
        if record is not None:
            yield record


def parse_stream(stream: TextIO, source: str = "stdin") -> Iterator[Record]:
    """Read a whole stream, then parse it."""
    try:
        text = stream.read()
    except (OSError, UnicodeDecodeError) as e:
        raise SourceUnavailableError(source, str(e)) from e
    return parse(text, source)


def parse_file(path: Union[str, Path], source: Optional[str] = None) -> Iterator[Record]:
    """Read a file, then parse it. The file is read before this returns."""
    path = Path(path)
    label = source or str(path)
    try:
        text = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceUnavailableError(label, str(e)) from e
    logger.debug("Read %s bytes from %s", len(text), path)
    return parse(text, label)
