import unittest
from types import SimpleNamespace
from unittest.mock import patch

from fastapi import HTTPException

from chatapi.core import normalize
from chatapi.core.normalize import client_ip_from_request, normalize_email, normalize_username


class TestNormalizeEmail(unittest.TestCase):
    def test_normalize_email_strips_and_lowercases(self):
        self.assertEqual(normalize_email("  Test@Example.COM "), "test@example.com")

    def test_normalize_email_rejects_invalid(self):
        for bad in ("invalid-email", "@example.com", "bob@", ""):
            with self.assertRaises(HTTPException):
                normalize_email(bad)


class TestNormalizeUsername(unittest.TestCase):
    def test_lowercases(self):
        self.assertEqual(normalize_username(" Bob_99 "), "bob_99")

    def test_rejects_bad_characters_and_length(self):
        for bad in ("ab", "bob smith", "x" * 33, "bob!"):
            with self.assertRaises(HTTPException) as ctx:
                normalize_username(bad)
            self.assertEqual(ctx.exception.status_code, 422)


class TestClientIp(unittest.TestCase):
    def test_forwarded_for_used_behind_trusted_proxy(self):
        req = SimpleNamespace(headers={"x-forwarded-for": "203.0.113.5, 10.0.0.1"}, client=None)
        with patch.object(normalize, "S", SimpleNamespace(trust_forwarded_for=True)):
            self.assertEqual(client_ip_from_request(req), "203.0.113.5")

    def test_forwarded_for_ignored_by_default(self):
        req = SimpleNamespace(
            headers={"x-forwarded-for": "203.0.113.5"},
            client=SimpleNamespace(host="192.0.2.1"),
        )
        self.assertEqual(client_ip_from_request(req), "192.0.2.1")

    def test_client_ip_falls_back_to_client_host(self):
        req = SimpleNamespace(headers={}, client=SimpleNamespace(host="192.0.2.1"))
        self.assertEqual(client_ip_from_request(req), "192.0.2.1")

    def test_client_ip_without_client(self):
        req = SimpleNamespace(headers={}, client=None)
        self.assertEqual(client_ip_from_request(req), "0.0.0.0")
