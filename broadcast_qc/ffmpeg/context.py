"""Deadline + cancellation context threaded through every tool invocation."""
from __future__ import annotations

import threading
import time
from typing import Optional

from ..errors import AnalysisCancelled


class RunContext:
    """A monotonic deadline plus a cancel token, linked to an optional parent.

    Cancelling a context cancels every context derived from it. A child's
    deadline never extends past its parent's.
    """

    def __init__(self, deadline: Optional[float] = None, *, parent: Optional[RunContext] = None):
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self.parent = parent
        self._cancelled = threading.Event()

    @classmethod
    def with_budget(cls, seconds: Optional[float], *, parent: Optional[RunContext] = None) -> RunContext:
        if seconds is None:
            return cls(parent=parent)
        return cls(time.monotonic() + seconds, parent=parent)

    def child(self, budget: Optional[float] = None) -> RunContext:
        deadline = None if budget is None else time.monotonic() + budget
        return RunContext(deadline, parent=self)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        ctx: Optional[RunContext] = self
        while ctx is not None:
            if ctx._cancelled.is_set():
                return True
            ctx = ctx.parent
        return False

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    @property
    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0

    def check(self) -> None:
        if self.cancelled:
            raise AnalysisCancelled('analysis cancelled')
