import time

import pytest

from castgate.ratelimit import RateLimiter


def test_cap_then_reject():
    limiter = RateLimiter(max_requests=10, window_seconds=60)

    assert all(limiter.allow("1.2.3.4") for _ in range(10))
    assert limiter.allow("1.2.3.4") is False
    # rejected calls are not recorded, the caller stays exactly at the cap
    assert limiter.allow("1.2.3.4") is False


def test_identifiers_are_independent():
    limiter = RateLimiter(max_requests=2, window_seconds=60)

    assert limiter.allow("a") and limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")


def test_admitted_again_after_window():
    limiter = RateLimiter(max_requests=2, window_seconds=1)

    assert limiter.allow("ip") and limiter.allow("ip")
    assert not limiter.allow("ip")

    time.sleep(1.2)
    assert limiter.allow("ip")


def test_reset():
    limiter = RateLimiter(max_requests=1, window_seconds=60)
    assert limiter.allow("ip")
    assert not limiter.allow("ip")

    limiter.reset()
    assert limiter.allow("ip")


@pytest.mark.parametrize("cap,window", [(0, 60), (10, 0)])
def test_invalid_configuration(cap, window):
    with pytest.raises(ValueError):
        RateLimiter(max_requests=cap, window_seconds=window)
