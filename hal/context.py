"""
Run-scoped cancellation for hal.

A RunContext is the single cancellation signal for a whole run. It is
shared by the loop, the in-flight engine process, retry back-off delays and
the display's animation thread:

- cancel() wakes every waiter immediately
- children created with with_timeout() inherit the parent's cancellation
  and add a deadline of their own
- wait() is an interruptible sleep, never a busy loop
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Optional


class CancelReason(Enum):
    """Why a context finished."""
    CANCELLED = "context canceled"
    DEADLINE_EXCEEDED = "context deadline exceeded"


class RunContext:
    """
    Cancellation signal with optional deadline and parent.

    Usage:
        ctx = RunContext()
        with ctx.with_timeout(900) as call_ctx:
            ...
            if call_ctx.reason is CancelReason.DEADLINE_EXCEEDED:
                ...
        ctx.cancel()  # from a signal handler or another thread
    """

    def __init__(
        self,
        parent: Optional[RunContext] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[CancelReason] = None
        self._children: list[RunContext] = []
        self._parent = parent
        self._timer: Optional[threading.Timer] = None
        self.deadline: Optional[float] = None

        if timeout is not None and timeout > 0:
            self.deadline = time.monotonic() + timeout
            self._timer = threading.Timer(timeout, self._cancel, args=(CancelReason.DEADLINE_EXCEEDED,))
            self._timer.daemon = True

        if parent is not None:
            parent._attach(self)

        if self._timer is not None and not self._event.is_set():
            self._timer.start()

    @classmethod
    def background(cls) -> RunContext:
        """Return a fresh root context that is never cancelled on its own."""
        return cls()

    def with_timeout(self, timeout: Optional[float]) -> RunContext:
        """Create a child context that also expires after timeout seconds."""
        return RunContext(parent=self, timeout=timeout)

    @property
    def done(self) -> bool:
        """True once the context has been cancelled or its deadline passed."""
        return self._event.is_set()

    @property
    def reason(self) -> Optional[CancelReason]:
        """Why the context finished, or None while it is still live."""
        with self._lock:
            return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def wait(self, seconds: Optional[float] = None) -> bool:
        """
        Sleep up to seconds, waking early on cancellation.

        Returns:
            True if the context finished before the delay elapsed.
        """
        return self._event.wait(seconds)

    def cancel(self) -> None:
        """Cancel this context and every child."""
        self._cancel(CancelReason.CANCELLED)

    def close(self) -> None:
        """Release the deadline timer and detach from the parent."""
        if self._timer is not None:
            self._timer.cancel()
        self._cancel(CancelReason.CANCELLED)
        if self._parent is not None:
            self._parent._detach(self)

    def __enter__(self) -> RunContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _attach(self, child: RunContext) -> None:
        with self._lock:
            reason = self._reason
            if reason is None:
                self._children.append(child)
        if reason is not None:
            child._cancel(reason)

    def _detach(self, child: RunContext) -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def _cancel(self, reason: CancelReason) -> None:
        with self._lock:
            if self._reason is not None:
                return
            self._reason = reason
            children = list(self._children)
            self._children.clear()
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
        for child in children:
            child._cancel(reason)
