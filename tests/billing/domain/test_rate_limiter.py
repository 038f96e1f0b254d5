"""Tests for the sliding-window rate limiter over the in-memory counter store."""

import threading

import pytest
from billing.ratelimit import InMemoryCounterStore, RateLimiter, build_counter_store, rate_limit_login


class _Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture()
def clock():
    return _Clock()


@pytest.fixture()
def limiter(clock):
    return RateLimiter(InMemoryCounterStore(clock=clock), clock=clock)


class TestSlidingWindow:
    def test_admits_up_to_limit(self, limiter):
        results = [limiter.hit("login:10.0.0.1", 5, 900) for _ in range(6)]

        assert [r.success for r in results] == [True] * 5 + [False]
        assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]

    def test_denied_call_reports_reset(self, limiter, clock):
        for _ in range(5):
            limiter.hit("login:10.0.0.1", 5, 900)
        clock.now += 100
        denied = limiter.hit("login:10.0.0.1", 5, 900)

        assert not denied.success
        assert denied.remaining == 0
        assert denied.reset_in_seconds == 800

    def test_admitted_again_after_window(self, limiter, clock):
        for _ in range(6):
            limiter.hit("login:10.0.0.1", 5, 900)
        clock.now += 901

        assert limiter.hit("login:10.0.0.1", 5, 900).success

    def test_window_slides_one_slot_at_a_time(self, limiter, clock):
        limiter.hit("k", 2, 60)
        clock.now += 30
        limiter.hit("k", 2, 60)
        clock.now += 31

        # first hit has left the window, second has not
        assert limiter.hit("k", 2, 60).success
        assert not limiter.hit("k", 2, 60).success

    def test_denied_calls_are_not_recorded(self, clock):
        store = InMemoryCounterStore(clock=clock)
        limiter = RateLimiter(store, clock=clock)
        for _ in range(10):
            limiter.hit("k", 3, 60)

        assert len(store.window("ratelimit:k")) == 3

    def test_keys_are_independent(self, limiter):
        for _ in range(5):
            limiter.hit("login:10.0.0.1", 5, 900)

        assert limiter.hit("login:10.0.0.2", 5, 900).success

    def test_reset_is_at_least_one_second(self, limiter):
        result = limiter.hit("k", 1, 0)
        assert result.reset_in_seconds >= 1

    def test_concurrent_callers_never_exceed_limit(self, limiter):
        admitted = []
        barrier = threading.Barrier(20)

        def call():
            barrier.wait()
            admitted.append(limiter.hit("burst", 5, 60).success)

        threads = [threading.Thread(target=call) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert admitted.count(True) == 5


class TestLoginRateLimit:
    def test_five_per_fifteen_minutes(self, limiter, clock):
        results = [rate_limit_login(limiter, "203.0.113.7") for _ in range(6)]
        assert [r.success for r in results] == [True] * 5 + [False]
        assert results[-1].reset_in_seconds == 900

        clock.now += 901
        assert rate_limit_login(limiter, "203.0.113.7").success


class TestClaims:
    def test_claim_is_exclusive_until_released(self, clock):
        store = InMemoryCounterStore(clock=clock)
        token = store.claim("webhook:evt-1", 300)
        assert token
        assert store.claim("webhook:evt-1", 300) is None

        store.release("webhook:evt-1", token)
        assert store.claim("webhook:evt-1", 300)

    def test_claim_expires(self, clock):
        store = InMemoryCounterStore(clock=clock)
        store.claim("webhook:evt-1", 300)
        clock.now += 301
        assert store.claim("webhook:evt-1", 300)

    def test_expired_holder_cannot_release_the_next_claim(self, clock):
        store = InMemoryCounterStore(clock=clock)
        stale = store.claim("webhook:evt-1", 300)
        clock.now += 301
        current = store.claim("webhook:evt-1", 300)

        store.release("webhook:evt-1", stale)

        assert store.claim("webhook:evt-1", 300) is None
        store.release("webhook:evt-1", current)
        assert store.claim("webhook:evt-1", 300)


class TestCounterStoreFactory:
    def test_memory_url(self):
        assert isinstance(build_counter_store("memory://"), InMemoryCounterStore)

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            build_counter_store("memcached://localhost")
