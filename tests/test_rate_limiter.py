from __future__ import annotations

from wabot.services.rate_limiter import RateLimiter

OWNER = "15550000001@s.whatsapp.net"
USER = "15551110001@s.whatsapp.net"


def test_accepts_are_separated_by_window() -> None:
    limiter = RateLimiter(5, OWNER)
    accepted: list[float] = []
    for step in range(0, 30):
        now = 1000.0 + step
        if limiter.check_and_record(USER, now):
            accepted.append(now)
    assert accepted
    assert all(b - a >= 5 for a, b in zip(accepted, accepted[1:]))


def test_call_just_inside_window_is_rejected() -> None:
    limiter = RateLimiter(5, OWNER)
    assert limiter.check_and_record(USER, 100.0)
    assert not limiter.check_and_record(USER, 104.0)
    assert limiter.remaining_seconds(USER, 104.0) == 1
    assert limiter.check_and_record(USER, 105.0)


def test_rejected_call_does_not_extend_window() -> None:
    limiter = RateLimiter(5, OWNER)
    assert limiter.check_and_record(USER, 0.0)
    assert not limiter.check_and_record(USER, 3.0)
    assert limiter.last_accepted(USER) == 0.0
    assert limiter.check_and_record(USER, 5.0)


def test_privileged_identity_is_never_limited() -> None:
    limiter = RateLimiter(5, OWNER)
    assert all(limiter.check_and_record(OWNER, 10.0) for _ in range(10))
    assert limiter.last_accepted(OWNER) is None
