"""Tests for deadline and cancellation propagation."""
from __future__ import annotations

import time

import pytest

from broadcast_qc.errors import AnalysisCancelled
from broadcast_qc.ffmpeg.context import RunContext


def test_child_deadline_never_exceeds_parent() -> None:
    parent = RunContext.with_budget(1.0)

    child = parent.child(60.0)

    assert child.deadline == parent.deadline


def test_child_can_be_tighter_than_parent() -> None:
    parent = RunContext.with_budget(60.0)

    child = parent.child(0.5)

    assert child.deadline < parent.deadline


def test_child_without_budget_inherits_parent_deadline() -> None:
    parent = RunContext.with_budget(5.0)

    assert parent.child().deadline == parent.deadline
    assert RunContext().child().deadline is None


def test_cancel_cascades_to_children_only() -> None:
    parent = RunContext()
    child = parent.child()
    grandchild = child.child()

    child.cancel()

    assert grandchild.cancelled
    assert child.cancelled
    assert not parent.cancelled
    with pytest.raises(AnalysisCancelled):
        grandchild.check()


def test_expired_and_remaining() -> None:
    ctx = RunContext(time.monotonic() - 1.0)

    assert ctx.expired
    assert ctx.remaining() < 0
    assert RunContext().remaining() is None
    assert not RunContext().expired


def test_with_budget_links_to_caller_context() -> None:
    caller = RunContext.with_budget(1.0)

    run = RunContext.with_budget(60.0, parent=caller)
    caller.cancel()

    assert run.parent is caller
    assert run.deadline == caller.deadline
    assert run.cancelled
