"""
Unit tests for call contexts.
"""

import gc
import threading
import time

import pytest

from bloomd.context import Context, effective_deadline
from bloomd.errors import OperationCancelledError, OperationTimeoutError


class TestDeadlines:
    """Tests for deadline handling."""

    def test_background_has_no_deadline(self):
        ctx = Context.background()
        assert ctx.deadline is None
        assert ctx.remaining() is None
        assert ctx.expired is False

    def test_with_timeout(self):
        ctx = Context.background().with_timeout(10)
        assert 9 < ctx.remaining() <= 10

    def test_child_never_outlives_parent(self):
        parent = Context.background().with_timeout(0.5)
        child = parent.with_timeout(60)
        assert child.deadline == parent.deadline

    def test_child_can_shorten_deadline(self):
        parent = Context.background().with_timeout(60)
        child = parent.with_timeout(0.5)
        assert child.deadline < parent.deadline

    def test_expired_check_raises_timeout(self):
        ctx = Context.background().with_timeout(0)
        assert ctx.expired
        with pytest.raises(OperationTimeoutError):
            ctx.check()


class TestCancellation:
    """Tests for cancellation and callbacks."""

    def test_cancel_runs_callbacks_once(self):
        ctx = Context.background().with_cancel()
        calls = []
        ctx.on_cancel(lambda: calls.append(1))

        ctx.cancel()
        ctx.cancel()

        assert calls == [1]
        assert ctx.cancelled
        with pytest.raises(OperationCancelledError):
            ctx.check()

    def test_unregister(self):
        ctx = Context.background().with_cancel()
        calls = []
        unregister = ctx.on_cancel(lambda: calls.append(1))
        unregister()
        ctx.cancel()
        assert calls == []

    def test_callback_on_cancelled_context_runs_immediately(self):
        ctx = Context.background().with_cancel()
        ctx.cancel()
        calls = []
        ctx.on_cancel(lambda: calls.append(1))
        assert calls == [1]

    def test_parent_cancels_children(self):
        parent = Context.background().with_cancel()
        child = parent.with_timeout(10)
        grandchild = child.with_cancel()

        parent.cancel()

        assert child.cancelled
        assert grandchild.cancelled

    def test_child_cancel_does_not_touch_parent(self):
        parent = Context.background().with_cancel()
        child = parent.with_cancel()
        child.cancel()
        assert not parent.cancelled

    def test_context_manager_cancels_on_exit(self):
        with Context.background().with_timeout(5) as ctx:
            assert not ctx.cancelled
        assert ctx.cancelled

    def test_wait_wakes_on_cancel(self):
        ctx = Context.background().with_cancel()
        threading.Timer(0.05, ctx.cancel).start()

        start = time.monotonic()
        assert ctx.wait(5.0) is True
        assert time.monotonic() - start < 2.0

    def test_wait_times_out(self):
        assert Context.background().wait(0.01) is False

    def test_failing_callback_does_not_stop_others(self):
        ctx = Context.background().with_cancel()
        calls = []

        def broken():
            raise RuntimeError("boom")

        ctx.on_cancel(broken)
        ctx.on_cancel(lambda: calls.append(1))
        ctx.cancel()

        assert calls == [1]


class TestEffectiveDeadline:
    """Tests for combining context deadlines with connection timeouts."""

    def test_neither(self):
        assert effective_deadline(None, None) is None
        assert effective_deadline(Context.background(), None) is None

    def test_timeout_only(self):
        deadline = effective_deadline(None, 2.0)
        assert 1.5 < deadline - time.monotonic() <= 2.0

    def test_earlier_context_wins(self):
        ctx = Context.background().with_timeout(0.1)
        assert effective_deadline(ctx, 30.0) == ctx.deadline

    def test_earlier_timeout_wins(self):
        ctx = Context.background().with_timeout(30)
        assert effective_deadline(ctx, 0.1) < ctx.deadline


class TestChildRegistration:
    """Tests for how children are tracked by their parent."""

    def test_dropped_children_release_parent(self):
        parent = Context.background().with_cancel()

        for _ in range(100):
            parent.with_timeout(10)
        gc.collect()

        assert parent._callbacks == {}

    def test_live_child_still_cancelled(self):
        parent = Context.background().with_cancel()
        children = [parent.with_timeout(10) for _ in range(3)]
        gc.collect()

        parent.cancel()

        assert all(child.cancelled for child in children)

    def test_cancelled_child_unregisters(self):
        parent = Context.background().with_cancel()
        child = parent.with_cancel()
        child.cancel()
        assert parent._callbacks == {}
