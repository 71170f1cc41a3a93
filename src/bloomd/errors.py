"""
=============================================================================
ERRORS
=============================================================================

Every failure the client can report is a subclass of BloomdError, so
callers can catch the whole family with one except clause and still tell
the kinds apart when they care.

=============================================================================
WHICH ERRORS POISON A CONNECTION?
=============================================================================

    ┌──────────────────────────┬──────────────┬─────────────────────────────┐
    │ Error                    │ Poisons conn │ Cause                       │
    ├──────────────────────────┼──────────────┼─────────────────────────────┤
    │ UnavailableError         │ n/a          │ dial failed after retries   │
    │ OperationTimeoutError    │ yes          │ deadline hit during I/O     │
    │ OperationCancelledError  │ yes          │ caller cancelled context    │
    │ ConnectionClosedError    │ yes          │ socket lost / reused poison │
    │ ProtocolError            │ yes          │ reply did not match shape   │
    │ CommandError             │ no           │ "Client Error: ..." reply   │
    │ FilterNotFoundError      │ no           │ "Filter does not exist"     │
    │ PoolClosedError          │ n/a          │ get() after pool.close()    │
    │ PoolExhaustedError       │ n/a          │ no connection before limit  │
    └──────────────────────────┴──────────────┴─────────────────────────────┘

A poisoned connection is in an unknown position in the byte stream, so it
is never handed to another caller. Server-reported errors arrive as a
complete line, which leaves the stream aligned and the connection reusable.

=============================================================================
"""

from typing import Optional


class BloomdError(Exception):
    """Base class for all bloomd client errors."""


class UnavailableError(BloomdError, ConnectionError):
    """
    Raised when no connection could be established.

    The direct client raises this after max_attempts failed dials; the
    original OSError is chained as __cause__.
    """


class OperationTimeoutError(BloomdError, TimeoutError):
    """Raised when the call deadline passes before the reply is read."""


class OperationCancelledError(BloomdError):
    """Raised when the caller's context is cancelled mid-call."""


class ConnectionClosedError(BloomdError, ConnectionError):
    """Raised on use of a closed or poisoned connection, or on socket loss."""


class ProtocolError(BloomdError):
    """
    Raised when a reply does not have the expected shape.

    Examples: an unknown status line, a boolean vector with the wrong
    number of tokens, a block that ends without END.
    """

    def __init__(self, message: str, line: Optional[str] = None):
        super().__init__(message)
        self.line = line  # Offending reply line, if any


class CommandError(BloomdError):
    """
    Raised when the server rejects a command.

    bloomd reports these as "Client Error: <message>" or
    "Internal Error: <message>". The prefix is kept in `kind`.
    """

    def __init__(self, message: str, kind: str = "Client Error"):
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message


class FilterNotProxiedError(CommandError):
    """Raised when an operation requires the filter to be closed first."""

    def __init__(self, message: str = "Filter is not proxied. Close it first."):
        super().__init__(message, kind="Client Error")


class FilterNotFoundError(BloomdError):
    """Raised when the named filter does not exist on the server."""

    def __init__(self, filter_name: Optional[str] = None):
        if filter_name:
            super().__init__(f"Filter does not exist: {filter_name}")
        else:
            super().__init__("Filter does not exist")
        self.filter_name = filter_name


class PoolClosedError(BloomdError):
    """Raised when a connection is requested from a closed pool."""


class PoolExhaustedError(BloomdError):
    """Raised when every pooled connection stays busy past the deadline."""


# Errors after which the connection's stream position is unknown.
POISONING_ERRORS = (
    OperationTimeoutError,
    OperationCancelledError,
    ConnectionClosedError,
    ProtocolError,
)
