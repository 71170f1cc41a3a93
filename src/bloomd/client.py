"""
=============================================================================
BLOOMD CLIENTS
=============================================================================

Two clients with the same operation surface. They differ only in how a
Connection is obtained for each call:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Client (direct)                PooledClient                       │
    │   ───────────────                ────────────                       │
    │   dial (retry up to N times)     borrow from ConnectionPool         │
    │        │                               │                            │
    │        ▼                               ▼                            │
    │   Connection.<operation>()       Connection.<operation>()           │
    │        │                               │                            │
    │        ▼                               ▼                            │
    │   close                          return to pool (or discard        │
    │                                  if the connection was poisoned)    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The direct client suits low-rate callers and bootstrap checks. The pooled
client amortizes TCP setup for everything else.

=============================================================================
USAGE
=============================================================================

    from bloomd import Client, Context, PooledClient

    client = Client("localhost:8673")
    client.ping()

    with PooledClient("localhost:8673", initial_conns=2, max_conns=10) as pool:
        pool.create("visitors")
        pool.multi_set("visitors", ["alice", "bob"])

        ctx = Context.background().with_timeout(0.25)
        pool.multi_check("visitors", ["alice", "carol"], ctx=ctx)
        # [True, False]

=============================================================================
RETRIES
=============================================================================

Only dialing is retried. A command that failed after being written may
already have been applied by the server, and `s`/`b` report different
results the second time, so commands are never resent.

=============================================================================
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import ContextManager, Dict, Iterable, Iterator, List, Optional

from .config import ClientConfig, parse_address
from .context import Context
from .core.connection import Connection
from .core.pool import ConnectionPool
from .errors import (
    BloomdError,
    OperationCancelledError,
    OperationTimeoutError,
    UnavailableError,
)
from .log import CommandLogger
from .protocol import commands
from .protocol.hashing import hash_key


logger = logging.getLogger(__name__)


class BaseClient(ABC):
    """
    Operation surface shared by Client and PooledClient.

    Subclasses provide _connection(); every operation acquires a
    connection through it, delegates, and releases on every exit path.
    Arguments are validated before a connection is acquired.

    All operations take an optional keyword-only `ctx` carrying a deadline
    and cancellation signal.
    """

    def __init__(self, config: ClientConfig):
        config.validate()
        self.config = config
        self.address = (config.host, config.port)
        self.pre_hash_keys = config.pre_hash_keys
        self.timeout = config.timeout
        self.command_logger = (
            CommandLogger(log_format=config.log_format) if config.log_commands else None
        )

    @abstractmethod
    def _connection(self, ctx: Optional[Context]) -> ContextManager[Connection]:
        """Acquire a connection for one operation."""

    def _dial(self, ctx: Optional[Context] = None) -> Connection:
        """
        Dial one connection, connect time capped by the context deadline.

        Raises:
            OperationCancelledError / OperationTimeoutError: The context is
                already done, so nothing is dialed.
            OSError: The connect failed.
        """
        connect_timeout = self.config.dial_timeout
        if ctx is not None:
            ctx.check()
            remaining = ctx.remaining()
            if remaining is not None:
                if remaining <= 0:
                    raise OperationTimeoutError("Context deadline exceeded before dialing")
                connect_timeout = min(connect_timeout, remaining)

        return Connection.dial(
            self.address,
            timeout=self.timeout,
            connect_timeout=connect_timeout,
            command_logger=self.command_logger,
        )

    def _key(self, key: str) -> str:
        return commands.validate_key(hash_key(key) if self.pre_hash_keys else key)

    def _keys(self, keys: Iterable[str]) -> List[str]:
        return commands.validate_keys(
            hash_key(k) if self.pre_hash_keys else k for k in keys
        )

    # =========================================================================
    # FILTER MANAGEMENT
    # =========================================================================

    def create(self, name: str, *, ctx: Optional[Context] = None) -> None:
        """Create a filter with server defaults. Succeeds if it already exists."""
        commands.validate_filter_name(name)
        with self._connection(ctx) as conn:
            conn.create(name, ctx=ctx)

    def create_with_params(
        self,
        name: str,
        capacity: int = 0,
        probability: float = 0.0,
        in_memory: bool = False,
        *,
        ctx: Optional[Context] = None,
    ) -> None:
        """
        Create a filter with explicit parameters.

        Args:
            name: Filter name.
            capacity: Initial capacity; 0 uses the server default.
            probability: Target false positive rate; 0 uses the server default.
            in_memory: Keep the filter in memory only (no backing file).
        """
        commands.validate_filter_name(name)
        commands.validate_create_params(capacity, probability)
        with self._connection(ctx) as conn:
            conn.create_with_params(name, capacity, probability, in_memory, ctx=ctx)

    def drop(self, name: str, *, ctx: Optional[Context] = None) -> None:
        """Permanently delete a filter."""
        commands.validate_filter_name(name)
        with self._connection(ctx) as conn:
            conn.drop(name, ctx=ctx)

    def close(self, name: str, *, ctx: Optional[Context] = None) -> None:
        """Unmap a filter from server memory; it stays on disk."""
        commands.validate_filter_name(name)
        with self._connection(ctx) as conn:
            conn.close_filter(name, ctx=ctx)

    def clear(self, name: str, *, ctx: Optional[Context] = None) -> None:
        """Remove a closed filter from the server's list without deleting it."""
        commands.validate_filter_name(name)
        with self._connection(ctx) as conn:
            conn.clear(name, ctx=ctx)

    def flush(self, name: Optional[str] = None, *, ctx: Optional[Context] = None) -> None:
        """Flush one filter, or every filter when name is None, to disk."""
        if name is not None:
            commands.validate_filter_name(name)
        with self._connection(ctx) as conn:
            conn.flush(name, ctx=ctx)

    def list(self, *, ctx: Optional[Context] = None) -> Dict[str, str]:
        """Map each filter name to "<prob> <bytes> <capacity> <size>"."""
        with self._connection(ctx) as conn:
            return conn.list(ctx=ctx)

    def info(self, name: str, *, ctx: Optional[Context] = None) -> Dict[str, str]:
        """Server-side statistics for one filter."""
        commands.validate_filter_name(name)
        with self._connection(ctx) as conn:
            return conn.info(name, ctx=ctx)

    # =========================================================================
    # KEYS
    # =========================================================================

    def check(self, name: str, key: str, *, ctx: Optional[Context] = None) -> bool:
        """True if `key` may be in the filter."""
        commands.validate_filter_name(name)
        key = self._key(key)
        with self._connection(ctx) as conn:
            return conn.check(name, key, ctx=ctx)

    def set(self, name: str, key: str, *, ctx: Optional[Context] = None) -> bool:
        """Add `key`; True if it was not already present."""
        commands.validate_filter_name(name)
        key = self._key(key)
        with self._connection(ctx) as conn:
            return conn.set(name, key, ctx=ctx)

    def multi_check(
        self, name: str, keys: Iterable[str], *, ctx: Optional[Context] = None
    ) -> List[bool]:
        """check() for many keys in one round trip, results in key order."""
        commands.validate_filter_name(name)
        keys = self._keys(keys)
        with self._connection(ctx) as conn:
            return conn.multi_check(name, keys, ctx=ctx)

    def multi_set(
        self, name: str, keys: Iterable[str], *, ctx: Optional[Context] = None
    ) -> List[bool]:
        """set() for many keys in one round trip, results in key order."""
        commands.validate_filter_name(name)
        keys = self._keys(keys)
        with self._connection(ctx) as conn:
            return conn.multi_set(name, keys, ctx=ctx)

    def ping(self, *, ctx: Optional[Context] = None) -> None:
        """Round trip to the server; raises if it is unreachable."""
        self.list(ctx=ctx)


class Client(BaseClient):
    """
    Direct client: one fresh connection per operation.

    Args:
        host: "host[:port]", port defaults to 8673.
        pre_hash_keys: Send SHA-1 digests instead of raw keys.
        dial_timeout: Seconds allowed for each connect attempt.
        max_attempts: Connect attempts before UnavailableError.
        retry_interval: Fixed pause between connect attempts.
        timeout: Per-call I/O budget; an earlier context deadline wins.
    """

    def __init__(
        self,
        host: str = "localhost:8673",
        pre_hash_keys: bool = False,
        dial_timeout: float = 1.0,
        max_attempts: int = 3,
        retry_interval: float = 0.05,
        timeout: Optional[float] = 1.0,
        log_commands: bool = False,
        log_format: str = "text",
    ):
        hostname, port = parse_address(host)
        super().__init__(ClientConfig(
            host=hostname,
            port=port,
            timeout=timeout,
            dial_timeout=dial_timeout,
            max_attempts=max_attempts,
            retry_interval=retry_interval,
            pre_hash_keys=pre_hash_keys,
            log_commands=log_commands,
            log_format=log_format,
        ))

    @classmethod
    def from_config(cls, config: ClientConfig) -> "Client":
        return cls(
            host=config.address,
            pre_hash_keys=config.pre_hash_keys,
            dial_timeout=config.dial_timeout,
            max_attempts=config.max_attempts,
            retry_interval=config.retry_interval,
            timeout=config.timeout,
            log_commands=config.log_commands,
            log_format=config.log_format,
        )

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    @contextmanager
    def _connection(self, ctx: Optional[Context]) -> Iterator[Connection]:
        conn = self._connect(ctx)
        try:
            yield conn
        finally:
            conn.close()

    def _connect(self, ctx: Optional[Context]) -> Connection:
        """
        Dial with up to max_attempts tries and a fixed pause between them.

        Raises:
            UnavailableError: Every attempt failed; the last OSError is
                chained as __cause__.
            OperationCancelledError / OperationTimeoutError: The context
                ran out before a connection was made.
        """
        host, port = self.address
        last_error: Optional[OSError] = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                return self._dial(ctx)
            except BloomdError:
                # Context done; OperationTimeoutError is also an OSError
                raise
            except OSError as e:
                last_error = e
                logger.warning(
                    f"Dial attempt {attempt}/{self.config.max_attempts} "
                    f"to {host}:{port} failed: {e}"
                )

            if attempt < self.config.max_attempts:
                if ctx is None:
                    time.sleep(self.config.retry_interval)
                elif ctx.wait(self.config.retry_interval):
                    raise OperationCancelledError("Context cancelled while dialing")

        raise UnavailableError(
            f"bloomd: unable to establish a connection to {host}:{port} "
            f"after {self.config.max_attempts} attempts"
        ) from last_error


class PooledClient(BaseClient):
    """
    Pooled client: operations borrow a connection from a ConnectionPool.

    Args:
        host: "host[:port]", port defaults to 8673.
        pre_hash_keys: Send SHA-1 digests instead of raw keys.
        timeout: Per-call I/O budget, also the longest wait for a free
            connection; an earlier context deadline wins.
        initial_conns: Connections dialed at construction.
        max_conns: Maximum live connections.
        dial_timeout: Seconds allowed for each connect.

    Raises:
        UnavailableError: If the initial connections cannot be dialed.
    """

    def __init__(
        self,
        host: str = "localhost:8673",
        pre_hash_keys: bool = False,
        timeout: Optional[float] = 1.0,
        initial_conns: int = 1,
        max_conns: int = 8,
        dial_timeout: float = 1.0,
        log_commands: bool = False,
        log_format: str = "text",
    ):
        hostname, port = parse_address(host)
        super().__init__(ClientConfig(
            host=hostname,
            port=port,
            timeout=timeout,
            dial_timeout=dial_timeout,
            pre_hash_keys=pre_hash_keys,
            initial_conns=initial_conns,
            max_conns=max_conns,
            log_commands=log_commands,
            log_format=log_format,
        ))
        self.pool = ConnectionPool(
            self._dial,
            initial=self.config.initial_conns,
            max_size=self.config.max_conns,
            wait_timeout=self.timeout,
        )
        host, port = self.address
        logger.info(
            f"Pooled bloomd client for {host}:{port} "
            f"({self.config.initial_conns} initial, {self.config.max_conns} max connections)"
        )

    @classmethod
    def from_config(cls, config: ClientConfig) -> "PooledClient":
        return cls(
            host=config.address,
            pre_hash_keys=config.pre_hash_keys,
            timeout=config.timeout,
            initial_conns=config.initial_conns,
            max_conns=config.max_conns,
            dial_timeout=config.dial_timeout,
            log_commands=config.log_commands,
            log_format=config.log_format,
        )

    def _connection(self, ctx: Optional[Context]) -> ContextManager[Connection]:
        return self.pool.connection(ctx)

    @property
    def stats(self) -> dict:
        return self.pool.stats

    def shutdown(self) -> None:
        """Close the pool. Later operations raise PoolClosedError."""
        self.pool.close()

    def __enter__(self) -> "PooledClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
