"""
=============================================================================
CONNECTION POOL
=============================================================================

Opening a TCP connection costs a round trip (plus a SYN backlog slot on
the server). For high-rate callers that cost dominates a bloomd command,
so the pooled client keeps connections open and hands them out one caller
at a time.

=============================================================================
WATERMARKS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   initial   dialed eagerly when the pool is built                    │
    │   max       hard limit on LIVE connections (idle + checked out)      │
    │                                                                      │
    │   live = 3, max = 4                                                  │
    │                                                                      │
    │      idle: [conn-a]            checked out: conn-b, conn-c           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
get() FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────┐
    │                                                                  │
    │   pool closed? ──yes──► PoolClosedError                          │
    │        │                                                         │
    │   idle connection? ──yes──► hand it out                          │
    │        │                                                         │
    │   live < max? ──yes──► reserve a slot, dial outside the lock     │
    │        │                                                         │
    │   wait on the condition until:                                   │
    │        ├── a connection is returned or discarded → loop          │
    │        ├── the context is cancelled → OperationCancelledError    │
    │        └── the deadline passes → PoolExhaustedError              │
    │                                                                  │
    └─────────────────────────────────────────────────────────────────┘

=============================================================================
RETURNING CONNECTIONS
=============================================================================

A connection goes back to the idle set only if it is healthy AND has no
unread bytes buffered. Anything else is closed and its slot freed:

    poisoned (I/O, timeout, cancel, protocol error)   → closed, live - 1
    unread bytes in its buffer                        → closed, live - 1
    idle set already full                             → closed, live - 1
    pool closed                                       → closed, live - 1

Callers normally never call put() directly: get() returns a
PooledConnection whose close() does the right thing.

=============================================================================
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Iterator, Optional

from ..context import Context, effective_deadline
from ..errors import (
    BloomdError,
    OperationCancelledError,
    PoolClosedError,
    PoolExhaustedError,
    UnavailableError,
)
from .connection import Connection


logger = logging.getLogger(__name__)


class PooledConnection:
    """
    A Connection checked out of a ConnectionPool.

    Operations are forwarded to the wrapped connection. close() returns
    the connection to the pool, or destroys it if it was poisoned.
    """

    def __init__(self, pool: "ConnectionPool", connection: Connection):
        self._pool = pool
        self.connection = connection
        self._released = False

    @property
    def poisoned(self) -> bool:
        return self.connection.poisoned

    def mark_unusable(self) -> None:
        """Force the connection to be destroyed on release."""
        self.connection.poison("marked unusable")

    def close(self) -> None:
        """Release to the pool. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._pool.put(self.connection)

    def __getattr__(self, name):
        return getattr(self.connection, name)

    def __enter__(self) -> "PooledConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"PooledConnection({self.connection!r})"


class ConnectionPool:
    """
    Bounded pool of bloomd connections.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   pool = ConnectionPool(lambda ctx: Connection.dial(addr), 2, 10)   │
    │                                                                      │
    │   with pool.connection(ctx) as conn:                                │
    │       conn.multi_check("filter", ["a", "b"], ctx=ctx)               │
    │                                                                      │
    │   pool.stats   # {"live": 2, "idle": 2, "in_use": 0, ...}           │
    │   pool.close()                                                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Thread-safe. One threading.Condition guards the idle set and the
    live count; dialing happens outside it.
    """

    def __init__(
        self,
        factory: Callable[[Optional[Context]], Connection],
        initial: int = 1,
        max_size: int = 8,
        wait_timeout: Optional[float] = None,
    ):
        """
        Initialize the pool and dial `initial` connections.

        Args:
            factory: Dials one new connection within the given context
                (None for the eager dials); may raise OSError.
            initial: Connections dialed now.
            max_size: Maximum live connections.
            wait_timeout: Longest a get() waits for a free connection when
                the context carries no earlier deadline. None waits until
                the context deadline (or forever without one).

        Raises:
            ValueError: If the watermarks are inconsistent.
            UnavailableError: If an eager dial fails.
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if not 0 <= initial <= max_size:
            raise ValueError("initial must be between 0 and max_size")

        self.initial = initial
        self.max_size = max_size
        self.wait_timeout = wait_timeout

        self._factory = factory
        # LIFO: the most recently used connection is handed out first
        self._idle: Deque[Connection] = deque()
        self._cond = threading.Condition()
        self._live = 0
        self._peak_live = 0
        self._closed = False

        for _ in range(initial):
            try:
                conn = factory(None)
            except OSError as e:
                self.close()
                raise UnavailableError(f"Unable to create bloomd connection pool: {e}") from e
            self._idle.append(conn)
            self._live += 1
        self._peak_live = self._live

        logger.debug(f"Connection pool ready: {initial} initial, {max_size} max")

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def get(self, ctx: Optional[Context] = None) -> PooledConnection:
        """
        Check out a connection.

        Raises:
            PoolClosedError: The pool was closed.
            PoolExhaustedError: No connection became free before the deadline.
            OperationCancelledError: The context was cancelled while waiting.
            UnavailableError: A new connection had to be dialed and failed.
            OperationTimeoutError: The context deadline passed before the
                new connection was made; the dial is capped at what is left.
        """
        deadline = effective_deadline(ctx, self.wait_timeout)
        unregister = ctx.on_cancel(self._wake) if ctx is not None else None

        try:
            with self._cond:
                while True:
                    if self._closed:
                        raise PoolClosedError("Connection pool is closed")
                    if ctx is not None and ctx.cancelled:
                        raise OperationCancelledError("Context cancelled while waiting for a connection")

                    if self._idle:
                        return PooledConnection(self, self._idle.pop())

                    if self._live < self.max_size:
                        # Reserve the slot now, dial without holding the lock
                        self._live += 1
                        self._peak_live = max(self._peak_live, self._live)
                        break

                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        raise PoolExhaustedError(
                            f"All {self.max_size} connections busy until deadline"
                        )
                    self._cond.wait(remaining)
        finally:
            if unregister is not None:
                unregister()

        return PooledConnection(self, self._dial(ctx))

    def _dial(self, ctx: Optional[Context]) -> Connection:
        try:
            conn = self._factory(ctx)
        except BloomdError:
            # Context ran out before or during the dial
            self._release_slot()
            raise
        except OSError as e:
            self._release_slot()
            raise UnavailableError(f"Unable to connect to bloomd: {e}") from e

        with self._cond:
            if not self._closed:
                logger.debug(f"Pool grew to {self._live} connections")
                return conn

        conn.close()
        self._release_slot()
        raise PoolClosedError("Connection pool is closed")

    @contextmanager
    def connection(self, ctx: Optional[Context] = None) -> Iterator[PooledConnection]:
        """Check out a connection for the duration of a with block."""
        pooled = self.get(ctx)
        try:
            yield pooled
        finally:
            pooled.close()

    # =========================================================================
    # RETURN
    # =========================================================================

    def put(self, conn: Connection) -> None:
        """Return a checked-out connection (see module docs for the rules)."""
        with self._cond:
            if conn.closed:
                reason = "poisoned" if conn.poisoned else "closed"
            elif conn.has_buffered_data:
                reason = "unread bytes in buffer"
            elif self._closed:
                reason = "pool closed"
            elif len(self._idle) >= self.max_size:
                reason = "idle set full"
            else:
                self._idle.append(conn)
                self._cond.notify()
                return

            self._live -= 1
            self._cond.notify()

        logger.debug(f"[{conn.id}] Discarding pooled connection: {reason}")
        conn.close()

    def _release_slot(self) -> None:
        with self._cond:
            self._live -= 1
            self._cond.notify()

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def close(self) -> None:
        """
        Close every idle connection and reject further get() calls.

        Connections still checked out are closed when they are returned.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._live -= len(idle)
            self._cond.notify_all()

        for conn in idle:
            conn.close()
        logger.debug(f"Connection pool closed ({len(idle)} idle connections)")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live_count(self) -> int:
        """Connections currently open: idle plus checked out."""
        with self._cond:
            return self._live

    @property
    def idle_count(self) -> int:
        with self._cond:
            return len(self._idle)

    @property
    def stats(self) -> dict:
        """Pool counters for monitoring and health checks."""
        with self._cond:
            return {
                "live": self._live,
                "idle": len(self._idle),
                "in_use": self._live - len(self._idle),
                "peak": self._peak_live,
                "max": self.max_size,
                "closed": self._closed,
            }
