"""
=============================================================================
BLOOMD - Python client for the bloomd bloom filter server
=============================================================================

bloomd keeps named bloom filters on a server and speaks a line-oriented
text protocol over TCP (default port 8673). This package translates method
calls into protocol lines and replies back into Python values, and manages
the TCP connections underneath.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    bloomd/
    ├── __init__.py          # This file - package exports
    ├── client.py            # Client (direct) and PooledClient
    ├── config.py            # ClientConfig dataclass, address parsing
    ├── context.py           # Deadlines and cancellation
    ├── errors.py            # Exception hierarchy
    ├── log.py               # Per-command structured logging
    ├── core/                # Socket-facing components
    │   ├── connection.py    # One TCP session, buffered reader
    │   └── pool.py          # Bounded connection pool
    └── protocol/            # Wire protocol, no I/O
        ├── commands.py      # Command encoding
        ├── responses.py     # Reply parsing
        ├── status.py        # Fixed reply lines, error mapping
        └── hashing.py       # Key pre-hash

=============================================================================
QUICK START
=============================================================================

    from bloomd import Context, PooledClient

    client = PooledClient("localhost:8673", initial_conns=2, max_conns=10)

    client.create("test_filter")
    client.multi_set("test_filter", ["test-1", "test-3", "test-5"])

    ctx = Context.background().with_timeout(0.5)
    client.multi_check("test_filter", ["test-1", "test-2"], ctx=ctx)
    # [True, False]

    client.drop("test_filter")
    client.shutdown()

=============================================================================
"""

__version__ = "1.0.0"

from .client import BaseClient, Client, PooledClient
from .config import ClientConfig
from .context import Context
from .errors import (
    BloomdError,
    CommandError,
    ConnectionClosedError,
    FilterNotFoundError,
    FilterNotProxiedError,
    OperationCancelledError,
    OperationTimeoutError,
    PoolClosedError,
    PoolExhaustedError,
    ProtocolError,
    UnavailableError,
)

__all__ = [
    "BaseClient",
    "BloomdError",
    "Client",
    "ClientConfig",
    "CommandError",
    "ConnectionClosedError",
    "Context",
    "FilterNotFoundError",
    "FilterNotProxiedError",
    "OperationCancelledError",
    "OperationTimeoutError",
    "PoolClosedError",
    "PoolExhaustedError",
    "PooledClient",
    "ProtocolError",
    "UnavailableError",
    "__version__",
]
