import unittest

from atsocial.core.errors import InvalidReference
from atsocial.core.normalize import email_linked_id, linked_id_kind, normalize_email, search_key, username_from_handle


class TestNormalize(unittest.TestCase):
    def test_normalize_email(self):
        self.assertEqual(normalize_email("  Alice@Example.COM "), "alice@example.com")
        self.assertEqual(email_linked_id("Bob@X.io"), "email:bob@x.io")
        with self.assertRaises(InvalidReference):
            normalize_email("not-an-email")

    def test_username_from_handle(self):
        self.assertEqual(username_from_handle("@alice.example.io"), "alice")
        self.assertEqual(username_from_handle("bob"), "bob")
        self.assertEqual(username_from_handle(None), "")

    def test_linked_id_kind(self):
        self.assertEqual(linked_id_kind("eip155:1:0xabc"), "eip155")
        self.assertEqual(linked_id_kind("did:plc:x"), "did")
        for bad in ("", "email", "sms:123"):
            with self.assertRaises(InvalidReference):
                linked_id_kind(bad)

    def test_search_key(self):
        self.assertEqual(search_key("  Alice   Smith "), "alice smith")
        self.assertEqual(search_key(None), "")
