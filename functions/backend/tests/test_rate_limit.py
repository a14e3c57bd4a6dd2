import unittest
from unittest.mock import MagicMock

import fakeredis
from redis import exceptions as redis_exceptions

from backend.rate_limit import InMemoryRateLimiter, RedisRateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class InMemoryRateLimiterTests(unittest.TestCase):
    def test_window_slides(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        self.assertTrue(limiter.hit("1.2.3.4"))
        clock.now += 30
        self.assertTrue(limiter.hit("1.2.3.4"))
        self.assertFalse(limiter.hit("1.2.3.4"))
        self.assertTrue(limiter.hit("5.6.7.8"))

        clock.now += 31
        self.assertTrue(limiter.hit("1.2.3.4"))
        self.assertFalse(limiter.hit("1.2.3.4"))

    def test_idle_keys_are_dropped(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        limiter.hit("1.2.3.4")
        limiter.hit("5.6.7.8")
        clock.now += 30
        limiter.hit("5.6.7.8")
        clock.now += 40
        limiter.hit("9.9.9.9")
        self.assertEqual(set(limiter.hits), {"5.6.7.8", "9.9.9.9"})

    def test_reset(self):
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60)
        limiter.hit("k")
        limiter.reset()
        self.assertTrue(limiter.hit("k"))


class RedisRateLimiterTests(unittest.TestCase):
    def _limiter(self, count=None, error=None):
        client = MagicMock()
        pipe = client.pipeline.return_value
        if error is not None:
            pipe.execute.side_effect = error
        else:
            pipe.execute.return_value = [0, 1, count, True]
        fallback = InMemoryRateLimiter(max_requests=1, window_seconds=60)
        limiter = RedisRateLimiter(
            url="redis://localhost:6379/0",
            max_requests=5,
            window_seconds=600,
            key_prefix="test:contact",
            client=client,
            fallback=fallback,
        )
        return limiter, client, pipe

    def test_counts_requests_in_shared_window(self):
        limiter, client, pipe = self._limiter(count=5)
        self.assertTrue(limiter.hit("1.2.3.4"))
        zkey = pipe.zremrangebyscore.call_args.args[0]
        self.assertEqual(zkey, "test:contact:1.2.3.4")
        pipe.expire.assert_called_once_with("test:contact:1.2.3.4", 605)
        client.zrem.assert_not_called()

    def test_rejected_request_is_removed_again(self):
        limiter, client, pipe = self._limiter(count=6)
        self.assertFalse(limiter.hit("1.2.3.4"))
        (member,) = pipe.zadd.call_args.args[1]
        client.zrem.assert_called_once_with("test:contact:1.2.3.4", member)

    def test_falls_back_to_process_window_on_redis_error(self):
        limiter, _, _ = self._limiter(error=redis_exceptions.ConnectionError("down"))
        self.assertTrue(limiter.hit("1.2.3.4"))
        self.assertFalse(limiter.hit("1.2.3.4"))


class SharedWindowTests(unittest.TestCase):
    """Runs the Redis limiter against an in-process Redis server."""

    def setUp(self):
        self.clock = FakeClock()
        self.redis_limiter = RedisRateLimiter(
            url="redis://localhost:6379/0",
            max_requests=5,
            window_seconds=600,
            key_prefix="test:contact",
            client=fakeredis.FakeRedis(decode_responses=True),
            clock=self.clock,
        )
        self.memory_limiter = InMemoryRateLimiter(
            max_requests=5, window_seconds=600, clock=self.clock
        )

    def hit_both(self, key="1.2.3.4"):
        allowed = self.redis_limiter.hit(key)
        self.assertEqual(allowed, self.memory_limiter.hit(key))
        return allowed

    def test_retries_while_limited_do_not_extend_the_lockout(self):
        for _ in range(5):
            self.assertTrue(self.hit_both())
        for _ in range(5):
            self.clock.now += 100
            self.assertFalse(self.hit_both())
        # The first five requests are now out of the window.
        self.clock.now += 100
        for _ in range(5):
            self.assertTrue(self.hit_both())
        self.assertFalse(self.hit_both())

    def test_keys_are_independent(self):
        for _ in range(5):
            self.hit_both("1.2.3.4")
        self.assertFalse(self.hit_both("1.2.3.4"))
        self.assertTrue(self.hit_both("5.6.7.8"))


if __name__ == "__main__":
    unittest.main()
