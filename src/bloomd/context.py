"""
=============================================================================
CALL CONTEXT: DEADLINES AND CANCELLATION
=============================================================================

Every client operation accepts an optional Context. It carries two things:

1. A DEADLINE (time.monotonic() based) after which the call must give up.
2. A CANCELLATION SIGNAL that another thread can raise at any moment.

=============================================================================
BRIDGING TO BLOCKING SOCKETS
=============================================================================

Python sockets block in recv(). A timeout can be expressed directly with
socket.settimeout(), but cancellation cannot: nothing wakes a thread that
is parked inside recv(). The bridge therefore works in two halves:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   DEADLINE                                                          │
    │     effective = min(ctx.deadline, now + connection.timeout)         │
    │     socket.settimeout(effective - now)   before every recv/send     │
    │                                                                      │
    │   CANCELLATION                                                      │
    │     ctx.on_cancel(connection.abort)      while the call is active   │
    │     abort() shuts the socket down → recv() returns / raises         │
    │     the I/O error is reported as OperationCancelledError            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
DERIVED CONTEXTS
=============================================================================

    root = Context.background()          # no deadline, never cancelled
    ctx = root.with_timeout(0.5)         # 500 ms budget
    child = ctx.with_cancel()            # cancelled when ctx is

Cancelling a parent cancels every child. A child's deadline is never later
than its parent's. Contexts are context managers: leaving the with block
cancels the context, which releases its registration on the parent. A
child that is simply dropped releases it when garbage collected.

=============================================================================
"""

import logging
import threading
import time
import weakref
from typing import Callable, Dict, Optional

from .errors import OperationCancelledError, OperationTimeoutError


logger = logging.getLogger(__name__)


class Context:
    """
    Deadline and cancellation carrier for one logical call.

    Thread-safe: cancel() may be called from any thread while another
    thread is blocked in an operation using this context.
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        parent: Optional["Context"] = None,
    ):
        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline

        self._deadline = deadline
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._next_callback_id = 0
        self._detach: Optional[Callable[[], None]] = None

        if parent is not None:
            # The parent holds the child weakly; a child dropped without
            # being cancelled unregisters itself when collected
            child = weakref.WeakMethod(self.cancel)

            def cancel_child() -> None:
                cancel = child()
                if cancel is not None:
                    cancel()

            self._detach = parent.on_cancel(cancel_child)
            weakref.finalize(self, self._detach)

    # =========================================================================
    # CONSTRUCTORS
    # =========================================================================

    @classmethod
    def background(cls) -> "Context":
        """Root context: no deadline, only cancelled explicitly."""
        return cls()

    def with_timeout(self, seconds: float) -> "Context":
        """Child context whose deadline is `seconds` from now."""
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def with_deadline(self, deadline: float) -> "Context":
        """Child context with an absolute time.monotonic() deadline."""
        return Context(deadline=deadline, parent=self)

    def with_cancel(self) -> "Context":
        """Child context that can be cancelled independently."""
        return Context(parent=self)

    # =========================================================================
    # DEADLINE
    # =========================================================================

    @property
    def deadline(self) -> Optional[float]:
        """Absolute time.monotonic() deadline, or None."""
        return self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline (may be negative), or None."""
        if self._deadline is None:
            return None
        return self._deadline - time.monotonic()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """
        Cancel this context and all of its children.

        Registered callbacks run once, in the cancelling thread.
        """
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            detach, self._detach = self._detach, None

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.exception(f"Cancel callback failed: {e}")

        if detach is not None:
            detach()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback to run when the context is cancelled.

        If the context is already cancelled, the callback runs immediately.

        Returns:
            A function that unregisters the callback.
        """
        with self._lock:
            if not self._cancelled.is_set():
                callback_id = self._next_callback_id
                self._next_callback_id += 1
                self._callbacks[callback_id] = callback

                def unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(callback_id, None)

                return unregister

        callback()
        return lambda: None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Sleep up to `timeout` seconds, waking early on cancellation.

        Returns:
            True if the context was cancelled.
        """
        return self._cancelled.wait(timeout)

    def check(self) -> None:
        """
        Raise if the context can no longer be used for I/O.

        Raises:
            OperationCancelledError: If cancelled.
            OperationTimeoutError: If the deadline has passed.
        """
        if self.cancelled:
            raise OperationCancelledError("Context cancelled")
        if self.expired:
            raise OperationTimeoutError("Context deadline exceeded")

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel()
        return False

    def __repr__(self) -> str:
        remaining = self.remaining()
        budget = "none" if remaining is None else f"{remaining:.3f}s"
        return f"Context(remaining={budget}, cancelled={self.cancelled})"


def effective_deadline(ctx: Optional[Context], timeout: Optional[float]) -> Optional[float]:
    """
    Combine a context deadline with a per-connection timeout.

    Returns min(ctx.deadline, now + timeout) as a time.monotonic() value,
    or None when neither bound is set.
    """
    deadline = None
    if timeout is not None:
        deadline = time.monotonic() + timeout
    if ctx is not None and ctx.deadline is not None:
        if deadline is None or ctx.deadline < deadline:
            deadline = ctx.deadline
    return deadline
