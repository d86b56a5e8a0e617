from __future__ import annotations

import pytest

from e2e_mcp.security.rate_limit import SESSION_CREATE, TOOL_CALL, RateLimiter


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


def test_allows_up_to_max_then_rejects() -> None:
    clock = _FakeClock()
    limiter = RateLimiter(3, 60_000, clock=clock)

    for _ in range(3):
        assert limiter.check_limit(SESSION_CREATE, "agent-a").ok is True

    r = limiter.check_limit(SESSION_CREATE, "agent-a")
    assert r.ok is False
    assert r.error_type == "rate_limit_exceeded"
    assert r.error.details["limit"] == 3
    assert r.error.details["window_ms"] == 60_000
    assert r.error.details["retry_after_ms"] == 60_000


def test_window_slides() -> None:
    clock = _FakeClock()
    limiter = RateLimiter(2, 1000, clock=clock)

    assert limiter.check_limit(TOOL_CALL, "c").ok
    clock.advance_ms(250)
    assert limiter.check_limit(TOOL_CALL, "c").ok
    clock.advance_ms(250)
    r = limiter.check_limit(TOOL_CALL, "c")
    assert r.ok is False
    assert r.error.details["retry_after_ms"] == 500

    # First entry leaves the window exactly at its boundary.
    clock.advance_ms(500)
    assert limiter.check_limit(TOOL_CALL, "c").ok is True
    assert limiter.check_limit(TOOL_CALL, "c").ok is False


def test_rejected_requests_are_not_counted() -> None:
    clock = _FakeClock()
    limiter = RateLimiter(1, 1000, clock=clock)
    assert limiter.check_limit(TOOL_CALL, "c").ok
    for _ in range(5):
        assert limiter.check_limit(TOOL_CALL, "c").ok is False
    clock.advance_ms(1000)
    assert limiter.check_limit(TOOL_CALL, "c").ok is True


def test_callers_and_classes_are_independent() -> None:
    limiter = RateLimiter(1, 60_000, clock=_FakeClock())
    assert limiter.check_limit(SESSION_CREATE, "a").ok
    assert limiter.check_limit(SESSION_CREATE, "b").ok
    assert limiter.check_limit(TOOL_CALL, "a").ok
    assert limiter.check_limit(SESSION_CREATE, "a").ok is False


def test_stale_entries_do_not_count() -> None:
    clock = _FakeClock()
    limiter = RateLimiter(5, 1000, clock=clock)
    for _ in range(5):
        assert limiter.check_limit(TOOL_CALL, "a").ok
    assert limiter.check_limit(TOOL_CALL, "a").ok is False

    clock.advance_ms(2000)
    for _ in range(5):
        assert limiter.check_limit(TOOL_CALL, "a").ok
    assert limiter.tracked_keys() == 1


def test_reset_and_clear() -> None:
    limiter = RateLimiter(1, 60_000, clock=_FakeClock())
    limiter.check_limit(TOOL_CALL, "a")
    assert limiter.check_limit(TOOL_CALL, "a").ok is False
    limiter.reset(TOOL_CALL, "a")
    assert limiter.check_limit(TOOL_CALL, "a").ok is True
    limiter.clear()
    assert limiter.tracked_keys() == 0


@pytest.mark.parametrize(("max_requests", "window_ms"), [(0, 1000), (1, 0), (-1, 1000)])
def test_rejects_non_positive_configuration(max_requests: int, window_ms: int) -> None:
    with pytest.raises(ValueError):
        RateLimiter(max_requests, window_ms)
