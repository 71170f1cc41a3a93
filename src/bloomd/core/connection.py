"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

A Connection wraps one TCP socket to bloomd and exposes every protocol
operation as a method. Each method is one request/reply exchange.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

A reply can arrive split across any number of recv() calls, and one
recv() can return the end of one line plus the start of the next:

    recv() → b"STA"
    recv() → b"RT\\nfoo 0.001 300046 100000 12\\nEN"
    recv() → b"D\\n"

The connection keeps a byte buffer and hands the protocol parsers one
complete line at a time. bloomd terminates lines with "\\n"; a preceding
"\\r" is removed with the rest of the trailing whitespace.

=============================================================================
ONE EXCHANGE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   1. deadline = min(ctx.deadline, now + timeout)                    │
    │   2. ctx.on_cancel(abort)         cancel → shutdown the socket      │
    │   3. sendall(command line)        socket timeout = time left        │
    │   4. parse(lines)                 each recv: timeout = time left    │
    │   5. unregister cancel callback                                     │
    │                                                                      │
    │   Failure in 3/4:                                                   │
    │     reply not fully read, for any reason         →  POISONED        │
    │     "Filter does not exist" / "Client Error: .." →  still usable    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    IDLE ──────► BUSY ──────► IDLE ───► ...
                  │
                  │ reply not fully read (I/O error, timeout, cancel, bad reply)
                  ▼
               POISONED   (socket closed, never reused)

    IDLE ──── close() ────► CLOSED

Using a POISONED or CLOSED connection raises ConnectionClosedError.

=============================================================================
"""

import logging
import socket
import threading
import time
import uuid
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple, TypeVar

from ..context import Context, effective_deadline
from ..errors import (
    CommandError,
    ConnectionClosedError,
    FilterNotFoundError,
    OperationCancelledError,
    OperationTimeoutError,
    POISONING_ERRORS,
    ProtocolError,
)
from ..log import CommandLogger
from ..protocol import commands, responses
from ..protocol.commands import Command
from ..protocol.status import Reply


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BUFFER_SIZE = 8192
DEFAULT_MAX_LINE_SIZE = 16 * 1024 * 1024  # 16 MB, room for very large multi replies


class ConnectionState(Enum):
    """Connection lifecycle states."""
    IDLE = "idle"            # Ready for the next command
    BUSY = "busy"            # Exchange in progress
    POISONED = "poisoned"    # Failed mid-exchange, socket closed
    CLOSED = "closed"        # Closed on purpose


class Connection:
    """
    One TCP session with a bloomd server.

    A connection is single-owner: it must not be used by two threads at
    once. The pool guarantees this for pooled use; the direct client owns
    each connection for exactly one call.

    Attributes:
        socket: The connected socket.
        address: Server (host, port).
        id: Short identifier for logs.
        state: Current ConnectionState.
        timeout: Default per-call budget in seconds (None = context only).
        commands_handled: Exchanges completed on this connection.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Tuple[str, int],
        timeout: Optional[float] = 1.0,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        max_line_size: int = DEFAULT_MAX_LINE_SIZE,
        command_logger: Optional[CommandLogger] = None,
    ):
        self.socket = sock
        self.address = address
        self.timeout = timeout
        self.buffer_size = buffer_size
        self.max_line_size = max_line_size
        self.command_logger = command_logger

        self.id = str(uuid.uuid4())[:8]
        self.state = ConnectionState.IDLE
        self.created_at = time.time()
        self.last_activity = self.created_at
        self.commands_handled = 0

        self._buffer = b""
        self._aborted = threading.Event()
        # Guards state transitions against abort() from cancelling threads
        self._state_lock = threading.Lock()
        self._exchange = 0

    @classmethod
    def dial(
        cls,
        address: Tuple[str, int],
        timeout: Optional[float] = 1.0,
        connect_timeout: Optional[float] = 1.0,
        command_logger: Optional[CommandLogger] = None,
    ) -> "Connection":
        """
        Open a TCP connection to bloomd.

        Raises:
            OSError: If the connect fails or times out. Callers decide
                whether to retry and how to report it.
        """
        sock = socket.create_connection(address, timeout=connect_timeout)
        # Commands are small and latency bound
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        conn = cls(sock, address, timeout=timeout, command_logger=command_logger)
        logger.debug(f"[{conn.id}] Connected to {address[0]}:{address[1]}")
        return conn

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def poisoned(self) -> bool:
        return self.state == ConnectionState.POISONED

    @property
    def closed(self) -> bool:
        return self.state in (ConnectionState.CLOSED, ConnectionState.POISONED)

    @property
    def has_buffered_data(self) -> bool:
        """True if bytes were received that no reply has consumed."""
        return bool(self._buffer)

    @property
    def age(self) -> float:
        return time.time() - self.created_at

    @property
    def idle_time(self) -> float:
        return time.time() - self.last_activity

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def create(self, name: str, ctx: Optional[Context] = None) -> None:
        """Create a filter with server defaults. An existing filter is fine."""
        self.create_with_params(name, ctx=ctx)

    def create_with_params(
        self,
        name: str,
        capacity: int = commands.DEFAULT_CAPACITY,
        probability: float = commands.DEFAULT_PROBABILITY,
        in_memory: bool = commands.DEFAULT_IN_MEMORY,
        ctx: Optional[Context] = None,
    ) -> None:
        command = commands.encode_create(name, capacity, probability, in_memory)
        reply = self._status(command, ctx)
        if reply == Reply.EXISTS:
            logger.debug(f"[{self.id}] Filter {name} already exists")

    def drop(self, name: str, ctx: Optional[Context] = None) -> None:
        self._status(commands.encode_drop(name), ctx)

    def close_filter(self, name: str, ctx: Optional[Context] = None) -> None:
        """Unmap a filter from server memory (the `close` command)."""
        self._status(commands.encode_close(name), ctx)

    def clear(self, name: str, ctx: Optional[Context] = None) -> None:
        self._status(commands.encode_clear(name), ctx)

    def flush(self, name: Optional[str] = None, ctx: Optional[Context] = None) -> None:
        self._status(commands.encode_flush(name), ctx)

    def list(self, ctx: Optional[Context] = None) -> Dict[str, str]:
        return self._execute(commands.encode_list(), responses.parse_list, ctx)

    def info(self, name: str, ctx: Optional[Context] = None) -> Dict[str, str]:
        return self._execute(
            commands.encode_info(name),
            lambda lines: responses.parse_info(lines, name),
            ctx,
        )

    def check(self, name: str, key: str, ctx: Optional[Context] = None) -> bool:
        return self._bools(commands.encode_check(name, key), ctx)[0]

    def set(self, name: str, key: str, ctx: Optional[Context] = None) -> bool:
        return self._bools(commands.encode_set(name, key), ctx)[0]

    def multi_check(
        self, name: str, keys: Iterable[str], ctx: Optional[Context] = None
    ) -> List[bool]:
        return self._bools(commands.encode_multi_check(name, keys), ctx)

    def multi_set(
        self, name: str, keys: Iterable[str], ctx: Optional[Context] = None
    ) -> List[bool]:
        return self._bools(commands.encode_multi_set(name, keys), ctx)

    def _status(self, command: Command, ctx: Optional[Context]) -> Reply:
        return self._execute(
            command,
            lambda lines: responses.parse_status(lines, command.filter_name),
            ctx,
        )

    def _bools(self, command: Command, ctx: Optional[Context]) -> List[bool]:
        return self._execute(
            command,
            lambda lines: responses.parse_bools(lines, command.key_count, command.filter_name),
            ctx,
        )

    # =========================================================================
    # EXCHANGE
    # =========================================================================

    def _execute(
        self,
        command: Command,
        parse: Callable[[Iterator[str]], T],
        ctx: Optional[Context] = None,
    ) -> T:
        """
        Write one command and parse its reply.

        Raises:
            ConnectionClosedError: Connection already closed/poisoned, or
                the socket failed.
            OperationTimeoutError: Deadline passed.
            OperationCancelledError: Context cancelled.
            ProtocolError: Reply did not match the expected shape.
            CommandError, FilterNotFoundError: Server rejected the command
                (connection stays usable).
        """
        if self.closed:
            raise ConnectionClosedError(f"Connection {self.id} is {self.state.value}")

        # Nothing has been written yet, so these leave the connection clean
        if ctx is not None:
            ctx.check()

        with self._state_lock:
            if self.state == ConnectionState.BUSY:
                raise RuntimeError(f"Connection {self.id} is already in use")
            self.state = ConnectionState.BUSY
            self._exchange += 1
            exchange = self._exchange

        deadline = effective_deadline(ctx, self.timeout)
        unregister = (
            ctx.on_cancel(lambda: self.abort(exchange)) if ctx is not None else None
        )

        self.last_activity = time.time()
        start = time.monotonic()
        error: Optional[BaseException] = None
        # Set once the whole reply has been read off the socket
        completed = False

        try:
            self._send(command.to_bytes(), deadline, ctx)
            result = parse(self._lines(deadline, ctx))
            completed = True
            self.commands_handled += 1
            return result

        except POISONING_ERRORS as e:
            error = e
            raise

        except OSError as e:
            # socket.timeout is an OSError subclass, so it is checked first
            if isinstance(e, socket.timeout):
                error = OperationTimeoutError(f"Timed out waiting for reply to {command.verb}")
            elif self._interrupted(ctx):
                error = OperationCancelledError("Context cancelled during I/O")
            else:
                error = ConnectionClosedError(f"Connection {self.id} lost: {e}")
            raise error from e

        except (CommandError, FilterNotFoundError) as e:
            # Server-reported errors: the reply line was consumed in full
            error = e
            completed = True
            raise

        except BaseException as e:
            # Includes KeyboardInterrupt and friends: the reply may still be
            # in flight
            error = e
            raise

        finally:
            if unregister is not None:
                unregister()
            with self._state_lock:
                aborted = self._aborted.is_set()
                self._aborted.clear()
                if completed and not aborted:
                    self.state = ConnectionState.IDLE
            if not completed:
                reason = f"{type(error).__name__}: {error}" if error is not None else "interrupted"
                self.poison(reason)
            elif aborted:
                # Cancelled after the reply arrived: the socket is shut down
                self.poison("aborted")
            self.last_activity = time.time()
            if self.command_logger is not None:
                self.command_logger.record(self.id, command, time.monotonic() - start, error)

    def _interrupted(self, ctx: Optional[Context]) -> bool:
        return self._aborted.is_set() or (ctx is not None and ctx.cancelled)

    def _remaining(self, deadline: Optional[float], ctx: Optional[Context]) -> Optional[float]:
        """Time left for the next socket call, raising if none is left."""
        if self._interrupted(ctx):
            raise OperationCancelledError("Context cancelled during I/O")
        if deadline is None:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise OperationTimeoutError("Deadline exceeded")
        return remaining

    def _send(self, data: bytes, deadline: Optional[float], ctx: Optional[Context]) -> None:
        # sendall() applies the timeout to the whole write
        self.socket.settimeout(self._remaining(deadline, ctx))
        self.socket.sendall(data)

    def _recv(self, deadline: Optional[float], ctx: Optional[Context]) -> bytes:
        self.socket.settimeout(self._remaining(deadline, ctx))
        data = self.socket.recv(self.buffer_size)
        if not data:
            if self._interrupted(ctx):
                raise OperationCancelledError("Context cancelled during I/O")
            raise ConnectionClosedError(f"Connection {self.id} closed by server")
        return data

    def _read_line(self, deadline: Optional[float], ctx: Optional[Context]) -> str:
        """Return the next complete line, without its terminator."""
        while b"\n" not in self._buffer:
            if len(self._buffer) > self.max_line_size:
                raise ProtocolError(
                    f"Reply line exceeds {self.max_line_size} bytes"
                )
            self._buffer += self._recv(deadline, ctx)

        line, _, self._buffer = self._buffer.partition(b"\n")
        return line.decode("utf-8", errors="replace")

    def _lines(self, deadline: Optional[float], ctx: Optional[Context]) -> Iterator[str]:
        while True:
            yield self._read_line(deadline, ctx)

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def abort(self, exchange: Optional[int] = None) -> None:
        """
        Interrupt a blocked exchange from another thread.

        Only shuts the socket down; the thread that owns the exchange sees
        recv() return and poisons the connection itself. The descriptor is
        not closed here so it cannot be reused under the blocked thread.

        A no-op unless an exchange is in progress. With `exchange` given,
        only that exchange is interrupted, so a cancel callback that fires
        late cannot hit a later caller.
        """
        with self._state_lock:
            if self.state != ConnectionState.BUSY:
                return
            if exchange is not None and exchange != self._exchange:
                return
            self._aborted.set()
            try:
                self.socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Already disconnected

    def poison(self, reason: str = "") -> None:
        """Mark the connection unusable and release the socket."""
        with self._state_lock:
            if self.state == ConnectionState.POISONED:
                return
            self.state = ConnectionState.POISONED
        logger.warning(f"[{self.id}] Connection poisoned: {reason}")
        self._close_socket()

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self.closed:
            return
        self._close_socket()
        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.commands_handled} commands")

    def _close_socket(self) -> None:
        self._buffer = b""
        try:
            self.socket.close()
        except OSError:
            pass

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        host, port = self.address
        return f"Connection(id={self.id}, address={host}:{port}, state={self.state.value})"
