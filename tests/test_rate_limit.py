from starlette.requests import Request

from app.services.rate_limit import RATE_LIMITS, RateLimiter, RateLimitRule, get_client_ip

RULE = RateLimitRule(limit=3, window_seconds=60, prefix="t")


class Clock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _request(headers=None, client=("10.0.0.9", 1234)):
    scope = {
        "type": "http",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_allows_up_to_limit_then_blocks():
    limiter = RateLimiter(clock=Clock())
    results = [limiter.check("1.2.3.4", RULE) for _ in range(4)]
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[-1].retry_after_seconds == 60


def test_window_resets():
    clock = Clock()
    limiter = RateLimiter(clock=clock)
    for _ in range(3):
        limiter.check("1.2.3.4", RULE)
    assert not limiter.check("1.2.3.4", RULE).allowed
    clock.now += 61
    assert limiter.check("1.2.3.4", RULE).allowed


def test_keys_are_separated_by_ip_and_operation():
    limiter = RateLimiter(clock=Clock())
    other_rule = RateLimitRule(limit=3, window_seconds=60, prefix="other")
    for _ in range(3):
        limiter.check("1.2.3.4", RULE)
    assert not limiter.check("1.2.3.4", RULE).allowed
    assert limiter.check("5.6.7.8", RULE).allowed
    assert limiter.check("1.2.3.4", other_rule).allowed


def test_purge_expired():
    clock = Clock()
    limiter = RateLimiter(clock=clock)
    limiter.check("1.2.3.4", RULE)
    clock.now += 120
    assert limiter.purge_expired() == 1


def test_verify_payment_limit():
    rule = RATE_LIMITS["verify_payment"]
    assert (rule.limit, rule.window_seconds) == (10, 3600)


def test_client_ip_header_precedence():
    assert get_client_ip(_request({"X-Forwarded-For": "203.0.113.1, 10.0.0.1", "X-Real-IP": "198.51.100.2"})) == "203.0.113.1"
    assert get_client_ip(_request({"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"
    assert get_client_ip(_request({"CF-Connecting-IP": "192.0.2.3"})) == "192.0.2.3"
    assert get_client_ip(_request()) == "10.0.0.9"
    assert get_client_ip(_request(client=None)) == "127.0.0.1"
