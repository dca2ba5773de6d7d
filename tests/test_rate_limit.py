"""Tests for services.accounts.rate_limit sliding-window middleware."""
from __future__ import annotations

import asyncio
import json
import os
import time
import unittest
from collections import defaultdict, deque
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import services.accounts.rate_limit as rl_mod


def _make_request(path="/api/users/login", client_host="10.0.0.1", forwarded_for=None):
    headers = {}
    if forwarded_for is not None:
        headers["x-forwarded-for"] = forwarded_for
    return SimpleNamespace(url=SimpleNamespace(path=path), headers=headers, client=SimpleNamespace(host=client_host))


def _ok_response():
    return SimpleNamespace(status_code=200)


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestClientKey(unittest.TestCase):
    def setUp(self):
        self._orig_trust = rl_mod._trust_x_forwarded_for
        self._orig_trusted = set(rl_mod._trusted_proxy_ips)

    def tearDown(self):
        rl_mod._trust_x_forwarded_for = self._orig_trust
        rl_mod._trusted_proxy_ips = set(self._orig_trusted)

    def test_uses_first_forwarded_ip_when_trusted(self):
        rl_mod._trust_x_forwarded_for = True
        rl_mod._trusted_proxy_ips = set()
        req = _make_request(forwarded_for=" 1.2.3.4 , 5.6.7.8")
        self.assertEqual(rl_mod._client_key(req), "1.2.3.4")

    def test_ignores_forwarded_for_by_default(self):
        rl_mod._trust_x_forwarded_for = False
        req = _make_request(client_host="192.168.1.1", forwarded_for="9.8.7.6")
        self.assertEqual(rl_mod._client_key(req), "192.168.1.1")

    def test_trusts_forwarded_for_only_from_listed_proxy(self):
        rl_mod._trust_x_forwarded_for = True
        rl_mod._trusted_proxy_ips = {"127.0.0.1"}
        self.assertEqual(rl_mod._client_key(_make_request(client_host="10.0.0.2", forwarded_for="9.8.7.6")), "10.0.0.2")
        self.assertEqual(rl_mod._client_key(_make_request(client_host="127.0.0.1", forwarded_for="9.8.7.6")), "9.8.7.6")

    def test_unknown_when_no_client(self):
        req = _make_request()
        req.client = None
        self.assertEqual(rl_mod._client_key(req), "unknown")


class TestRateLimitMiddleware(unittest.TestCase):
    def setUp(self):
        self._original = (rl_mod._rpm, rl_mod._buckets, rl_mod._bucket_last_seen, rl_mod._max_buckets)
        rl_mod._buckets = defaultdict(deque)
        rl_mod._bucket_last_seen = {}
        rl_mod._max_buckets = 4096
        # the middleware is a no-op while PYTEST_CURRENT_TEST is set
        self._patcher = patch.object(
            rl_mod.os, "getenv", side_effect=lambda k, *a: None if k == "PYTEST_CURRENT_TEST" else os.getenv(k, *a)
        )
        self._patcher.start()

    def tearDown(self):
        self._patcher.stop()
        rl_mod._rpm, rl_mod._buckets, rl_mod._bucket_last_seen, rl_mod._max_buckets = self._original

    def test_request_within_limit_passes(self):
        rl_mod._rpm = 5
        req = _make_request()
        call_next = AsyncMock(return_value=_ok_response())
        resp = _run(rl_mod.rate_limit_middleware(req, call_next))
        self.assertEqual(resp.status_code, 200)
        call_next.assert_awaited_once_with(req)

    def test_over_limit_returns_429_with_retry_after(self):
        rl_mod._rpm = 2
        req = _make_request(client_host="10.0.0.50")
        call_next = AsyncMock(return_value=_ok_response())
        now = time.monotonic()
        rl_mod._buckets["10.0.0.50"].extend([now - 30, now - 10])

        resp = _run(rl_mod.rate_limit_middleware(req, call_next))
        self.assertEqual(resp.status_code, 429)
        body = json.loads(resp.body.decode())
        self.assertFalse(body["success"])
        self.assertEqual(body["message"], rl_mod.RATE_LIMITED_MESSAGE)
        self.assertGreater(body["retryAfter"], 0)
        self.assertEqual(resp.headers.get("retry-after"), str(body["retryAfter"]))
        call_next.assert_not_awaited()

    def test_paths_outside_account_api_are_not_limited(self):
        rl_mod._rpm = 1
        rl_mod._buckets["10.0.0.1"].append(time.monotonic())
        for path in ("/health", "/health/", "/docs", "/api/usersx"):
            call_next = AsyncMock(return_value=_ok_response())
            resp = _run(rl_mod.rate_limit_middleware(_make_request(path=path), call_next))
            self.assertEqual(resp.status_code, 200, path)

    def test_rpm_zero_disables_rate_limiting(self):
        rl_mod._rpm = 0
        call_next = AsyncMock(return_value=_ok_response())
        resp = _run(rl_mod.rate_limit_middleware(_make_request(), call_next))
        self.assertEqual(resp.status_code, 200)

    @patch("services.accounts.rate_limit.time")
    def test_old_entries_evicted_after_window(self, mock_time):
        rl_mod._rpm = 2
        req = _make_request(client_host="10.0.0.77")
        call_next = AsyncMock(return_value=_ok_response())
        rl_mod._buckets["10.0.0.77"].extend([100.0, 100.5])

        mock_time.monotonic.return_value = 100.8
        self.assertEqual(_run(rl_mod.rate_limit_middleware(req, call_next)).status_code, 429)

        mock_time.monotonic.return_value = 161.0
        self.assertEqual(_run(rl_mod.rate_limit_middleware(req, call_next)).status_code, 200)
        call_next.assert_awaited_once()

    def test_separate_buckets_per_client(self):
        rl_mod._rpm = 1
        call_next = AsyncMock(return_value=_ok_response())
        req_a = _make_request(client_host="10.0.0.1")
        req_b = _make_request(client_host="10.0.0.2")
        self.assertEqual(_run(rl_mod.rate_limit_middleware(req_a, call_next)).status_code, 200)
        self.assertEqual(_run(rl_mod.rate_limit_middleware(req_a, call_next)).status_code, 429)
        self.assertEqual(_run(rl_mod.rate_limit_middleware(req_b, call_next)).status_code, 200)

    def test_enforces_max_bucket_count_by_evicting_oldest(self):
        rl_mod._rpm = 10
        rl_mod._max_buckets = 2
        now = time.monotonic()
        for key, age in (("a", 2.0), ("b", 1.0)):
            rl_mod._buckets[key].append(now - age)
            rl_mod._bucket_last_seen[key] = now - age

        call_next = AsyncMock(return_value=_ok_response())
        resp = _run(rl_mod.rate_limit_middleware(_make_request(client_host="c"), call_next))
        self.assertEqual(resp.status_code, 200)
        self.assertNotIn("a", rl_mod._buckets)
        self.assertIn("b", rl_mod._buckets)
        self.assertIn("c", rl_mod._buckets)


if __name__ == "__main__":
    unittest.main()
