"""
=============================================================================
RESPONSE PARSING
=============================================================================

bloomd replies come in three shapes. Each shape has one parser here:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  STATUS (create, drop, close, clear, flush)                          │
    │      Done\r\n                                                        │
    │                                                                      │
    │  BOOLEAN VECTOR (c, s, m, b)                                         │
    │      Yes No Yes\r\n             one token per key, request order     │
    │                                                                      │
    │  BLOCK (list, info)                                                  │
    │      START\r\n                                                       │
    │      foo 0.001000 300046 100000 12\r\n                               │
    │      bar 0.000100 1797211 1000000 0\r\n                              │
    │      END\r\n                                                         │
    └─────────────────────────────────────────────────────────────────────┘

The parsers know nothing about sockets. They pull lines from any iterator
of strings: the connection feeds them lines read off the wire, tests feed
them plain lists.

Rules shared by every parser:
- Trailing whitespace (including the CRLF) is stripped before tokenizing.
- "Filter does not exist" raises FilterNotFoundError.
- "Client Error: ..." / "Internal Error: ..." raise CommandError, even in
  the middle of a block.
- Anything that fits none of the expected forms raises ProtocolError.

=============================================================================
"""

from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..errors import ProtocolError
from .status import Reply, error_for_line


LineSource = Iterator[str]

LIST_FIELDS = 5  # name, probability, storage bytes, capacity, size


def next_line(lines: LineSource) -> str:
    """
    Pull one line and strip its trailing whitespace.

    Raises:
        ProtocolError: If the source ends before a line arrives.
    """
    try:
        line = next(lines)
    except StopIteration:
        raise ProtocolError("Reply ended unexpectedly") from None
    return line.rstrip()


def _raise_if_error(line: str, filter_name: Optional[str]) -> None:
    error = error_for_line(line, filter_name)
    if error is not None:
        raise error


# =============================================================================
# STATUS
# =============================================================================


def parse_status(lines: LineSource, filter_name: Optional[str] = None) -> Reply:
    """
    Parse a single status line.

    Returns:
        Reply.DONE or Reply.EXISTS. Both mean success; callers that only
        care about success can ignore the value.
    """
    line = next_line(lines)

    if line == Reply.DONE:
        return Reply.DONE
    if line == Reply.EXISTS:
        return Reply.EXISTS

    _raise_if_error(line, filter_name)
    raise ProtocolError(f"Unexpected status reply: {line!r}", line=line)


# =============================================================================
# BOOLEAN VECTOR
# =============================================================================


def parse_bools(
    lines: LineSource,
    expected: int,
    filter_name: Optional[str] = None,
) -> List[bool]:
    """
    Parse a line of Yes/No tokens.

    Args:
        lines: Line source.
        expected: Number of keys in the request; the reply must carry
            exactly this many tokens.
        filter_name: Target filter, for error messages.

    Returns:
        One bool per key, in request order.
    """
    line = next_line(lines)
    _raise_if_error(line, filter_name)

    tokens = line.split()
    if len(tokens) != expected:
        raise ProtocolError(
            f"Expected {expected} results, got {len(tokens)}: {line!r}", line=line
        )

    results = []
    for token in tokens:
        if token == Reply.YES:
            results.append(True)
        elif token == Reply.NO:
            results.append(False)
        else:
            raise ProtocolError(f"Unexpected token {token!r} in {line!r}", line=line)
    return results


# =============================================================================
# BLOCKS
# =============================================================================


def parse_block(
    lines: LineSource,
    parse_entry: Callable[[List[str], str], Tuple[str, str]],
    filter_name: Optional[str] = None,
) -> Dict[str, str]:
    """
    Parse an optional START, entry lines, and a closing END.

    Args:
        lines: Line source.
        parse_entry: Turns the tokens of one line into a (key, value) pair.
            Receives the token list and the raw line.
        filter_name: Target filter, for error messages.

    Returns:
        Entries in the order the server sent them. An immediate END gives
        an empty dict.
    """
    entries: Dict[str, str] = {}

    line = next_line(lines)
    if line == Reply.START:
        line = next_line(lines)

    while line != Reply.END:
        _raise_if_error(line, filter_name)

        tokens = line.split()
        if not tokens:
            raise ProtocolError("Empty line inside block reply", line=line)

        key, value = parse_entry(tokens, line)
        entries[key] = value
        line = next_line(lines)

    return entries


def _list_entry(tokens: List[str], line: str) -> Tuple[str, str]:
    if len(tokens) != LIST_FIELDS:
        raise ProtocolError(f"Malformed list entry: {line!r}", line=line)
    return tokens[0], " ".join(tokens[1:])


def _info_entry(tokens: List[str], line: str) -> Tuple[str, str]:
    if len(tokens) < 2:
        raise ProtocolError(f"Malformed info entry: {line!r}", line=line)
    return tokens[0], " ".join(tokens[1:])


def parse_list(lines: LineSource) -> Dict[str, str]:
    """
    Parse a `list` reply.

    Each line "<name> <prob> <bytes> <capacity> <size>" becomes
    name -> "<prob> <bytes> <capacity> <size>".
    """
    return parse_block(lines, _list_entry)


def parse_info(lines: LineSource, filter_name: Optional[str] = None) -> Dict[str, str]:
    """Parse an `info` reply into key -> value."""
    return parse_block(lines, _info_entry, filter_name)
