from unittest import mock

from django.core.cache import cache
from django.test import SimpleTestCase, override_settings

from courier import token_blacklist
from courier.jwt_utils import generate_test_token
from courier.token_blacklist import (
    CacheTokenBlacklist,
    InMemoryTokenBlacklist,
    build_token_blacklist,
    get_token_blacklist,
    token_expiry,
)


class FakeClock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


class InMemoryTokenBlacklistTest(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.blacklist = InMemoryTokenBlacklist(sweep_interval=60, clock=self.clock)

    def test_added_token_is_contained(self):
        self.blacklist.add("token-a", expires_at=self.clock.now + 100)

        self.assertIn("token-a", self.blacklist)
        self.assertNotIn("token-b", self.blacklist)

    def test_expired_entry_is_not_reported(self):
        self.blacklist.add("token-a", expires_at=self.clock.now + 10)
        self.clock.now += 11
        self.assertFalse(self.blacklist.contains("token-a"))

    def test_sweep_drops_only_expired_entries(self):
        self.blacklist.add("short", expires_at=self.clock.now + 10)
        self.blacklist.add("long", expires_at=self.clock.now + 1000)
        self.blacklist.add("forever")

        self.clock.now += 30
        removed = self.blacklist.sweep()

        self.assertEqual(removed, 1)
        self.assertEqual(len(self.blacklist), 2)
        self.assertIn("long", self.blacklist)
        self.assertIn("forever", self.blacklist)

    def test_sweep_logs_how_many_were_dropped(self):
        self.blacklist.add("a", expires_at=self.clock.now + 10)
        self.blacklist.add("b", expires_at=self.clock.now + 10)
        self.clock.now += 30

        with self.assertLogs("courier.token_blacklist", level="DEBUG") as logs:
            self.blacklist.sweep()

        self.assertEqual(logs.records[0].getMessage(), "Swept 2 expired tokens from blacklist")

    def test_sweep_runs_on_interval(self):
        self.blacklist.add("short", expires_at=self.clock.now + 10)

        self.clock.now += 30
        self.blacklist.contains("other")
        self.assertEqual(len(self.blacklist), 1)

        self.clock.now += 60
        self.blacklist.contains("other")
        self.assertEqual(len(self.blacklist), 0)

    def test_expiry_read_from_token(self):
        token = generate_test_token("user1", expires_in_hours=1)
        expires_at = token_expiry(token)

        self.assertIsNotNone(expires_at)
        self.clock.now = expires_at - 5
        self.blacklist.add(token)
        self.assertIn(token, self.blacklist)

        self.clock.now = expires_at + 1
        self.assertNotIn(token, self.blacklist)

    def test_token_expiry_of_garbage(self):
        self.assertIsNone(token_expiry("not-a-jwt"))


class CacheTokenBlacklistTest(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.clock = FakeClock()
        self.blacklist = CacheTokenBlacklist(clock=self.clock)

    def test_entry_timeout_matches_remaining_lifetime(self):
        backend = mock.MagicMock()
        blacklist = CacheTokenBlacklist(cache_backend=backend, clock=self.clock)

        blacklist.add("token-a", expires_at=self.clock.now + 120)

        key, value, timeout = backend.set.call_args.args
        self.assertTrue(key.startswith("token_blacklist:"))
        self.assertNotIn("token-a", key)
        self.assertTrue(value)
        self.assertEqual(timeout, 120)

    def test_shared_through_cache(self):
        self.blacklist.add("token-a", expires_at=self.clock.now + 120)

        other_instance = CacheTokenBlacklist(clock=self.clock)
        self.assertIn("token-a", other_instance)
        self.assertNotIn("token-b", other_instance)

    def test_already_expired_token_is_not_stored(self):
        self.blacklist.add("token-a", expires_at=self.clock.now - 1)
        self.assertNotIn("token-a", self.blacklist)

    def test_token_without_expiry_uses_default_timeout(self):
        backend = mock.MagicMock()
        CacheTokenBlacklist(cache_backend=backend).add("not-a-jwt")
        self.assertEqual(backend.set.call_args.args[2], CacheTokenBlacklist.default_timeout)


class BuildTokenBlacklistTest(SimpleTestCase):
    def test_backends(self):
        self.assertIsInstance(build_token_blacklist("memory"), InMemoryTokenBlacklist)
        self.assertIsInstance(build_token_blacklist("cache"), CacheTokenBlacklist)
        with self.assertRaises(ValueError):
            build_token_blacklist("ldap")

    @override_settings(TOKEN_BLACKLIST_BACKEND="cache")
    def test_global_instance_follows_setting(self):
        with mock.patch.object(token_blacklist, "_token_blacklist", None):
            first = get_token_blacklist()
            self.assertIsInstance(first, CacheTokenBlacklist)
            self.assertIs(get_token_blacklist(), first)
