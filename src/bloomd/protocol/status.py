"""
=============================================================================
BLOOMD REPLY LINES
=============================================================================

bloomd answers every command with plain text lines. The fixed ones are
enumerated here; everything the server can say falls into one of these
groups:

    STATUS       Done | Exists
    BOOLEAN      Yes | No                (one token per key)
    BLOCK        START ... END           (list, info)
    MISSING      Filter does not exist
    NOT PROXIED  Filter is not proxied. Close it first.
    ERROR        Client Error: <why>  |  Internal Error: <why>

=============================================================================
"""

from enum import Enum
from typing import Optional

from ..errors import (
    BloomdError,
    CommandError,
    FilterNotFoundError,
    FilterNotProxiedError,
)


class Reply(str, Enum):
    """Fixed reply lines sent by bloomd."""

    DONE = "Done"                   # Command applied
    EXISTS = "Exists"               # create on an existing filter
    YES = "Yes"                     # Key present / newly added
    NO = "No"                       # Key absent / already present
    START = "START"                 # Opens a block reply
    END = "END"                     # Closes a block reply
    NOT_FOUND = "Filter does not exist"
    NOT_PROXIED = "Filter is not proxied. Close it first."

    def __str__(self) -> str:
        return self.value


CLIENT_ERROR = "Client Error"
INTERNAL_ERROR = "Internal Error"

ERROR_PREFIXES = (CLIENT_ERROR, INTERNAL_ERROR)


def error_for_line(line: str, filter_name: Optional[str] = None) -> Optional[BloomdError]:
    """
    Map a server-side failure line to the matching exception.

    Args:
        line: Reply line with trailing whitespace already stripped.
        filter_name: Filter the command targeted, for error messages.

    Returns:
        The exception to raise, or None if the line is not an error.
    """
    if line == Reply.NOT_FOUND:
        return FilterNotFoundError(filter_name)

    if line == Reply.NOT_PROXIED:
        return FilterNotProxiedError()

    for prefix in ERROR_PREFIXES:
        if line.startswith(prefix):
            message = line[len(prefix):].lstrip(":").strip()
            return CommandError(message, kind=prefix)

    return None
