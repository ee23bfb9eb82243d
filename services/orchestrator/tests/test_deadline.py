from __future__ import annotations

import pytest

from services.orchestrator.app.deadline import RequestDeadline
from services.orchestrator.app.errors import RequestCancelled


def test_bound_caps_timeouts_by_remaining_budget() -> None:
    now = [100.0]
    deadline = RequestDeadline(5.0, clock=lambda: now[0])
    assert deadline.bound(15.0) == 5.0
    now[0] = 104.5
    assert deadline.bound(4.0) == pytest.approx(0.5)
    now[0] = 200.0
    assert deadline.bound(4.0) == 0.1
    assert deadline.expired is True


def test_check_raises_when_cancelled() -> None:
    deadline = RequestDeadline(30.0)
    deadline.check("research")
    deadline.cancel()
    with pytest.raises(RequestCancelled) as excinfo:
        deadline.check("synthesis")
    assert excinfo.value.status_code == 499
    assert "synthesis" in excinfo.value.message


def test_wait_returns_false_once_cancelled() -> None:
    deadline = RequestDeadline(30.0)
    assert deadline.wait(0.001) is True
    deadline.cancel()
    assert deadline.wait(10.0) is False
