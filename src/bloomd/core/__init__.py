"""
=============================================================================
CORE CONNECTION COMPONENTS
=============================================================================

The socket-facing half of the client:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • Owns one TCP socket and a buffered line reader                   │
    │  • One method per bloomd operation, one exchange per call           │
    │  • Maps deadlines/cancellation onto socket timeouts                 │
    │  • Poisons itself on any failure that desyncs the stream            │
    └─────────────────────────────────────────────────────────────────────┘
                                    ▲
                                    │ checked out / returned
                                    │
    ┌─────────────────────────────────────────────────────────────────────┐
    │                        CONNECTION POOL                               │
    │  • Dials `initial` connections up front, grows lazily to `max`      │
    │  • Blocks callers when every connection is busy                     │
    │  • Discards poisoned or dirty connections on return                 │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState
from .pool import ConnectionPool, PooledConnection

__all__ = [
    "Connection",         # One TCP session with bloomd
    "ConnectionState",    # Connection lifecycle states
    "ConnectionPool",     # Bounded pool of connections
    "PooledConnection",   # Checked-out connection, close() returns it
]
