import unittest

from atsocial.core.errors import AlreadyRegistered, InvalidReference, NotFound
from atsocial.core.memory_store import MemoryStore
from atsocial.services.identity import IdentityLinkStore

DID = "did:plc:alice"


class TestIdentityLinks(unittest.TestCase):
    def setUp(self):
        self.identity = IdentityLinkStore(MemoryStore())

    def test_create_and_list_links(self):
        self.identity.create_link(DID, {"linked_id": "email:a@x.io", "kind": "account", "email": "a@x.io"})
        self.identity.create_link(DID, {"linkedId": "eip155:1:0xabc", "kind": "wallet", "role": "asset"})
        links = {l.linked_id: l for l in self.identity.list_links(DID)}
        self.assertEqual(set(links), {"email:a@x.io", "eip155:1:0xabc"})
        self.assertEqual(links["eip155:1:0xabc"].role, "asset")
        self.assertEqual(links["email:a@x.io"].status, "pending")

    def test_unsupported_linked_id(self):
        with self.assertRaises(InvalidReference):
            self.identity.create_link(DID, {"linked_id": "phone:123"})

    def test_update_link_partial_and_remove(self):
        self.identity.create_link(DID, {"linked_id": "email:a@x.io", "email_verify_token_hash": "h"})
        link = self.identity.update_link(
            DID, "email:a@x.io", {"failed_login_count": 2, "linkedId": "email:evil"}, remove_fields=["emailVerifyTokenHash"]
        )
        self.assertEqual(link.failed_login_count, 2)
        self.assertEqual(link.linked_id, "email:a@x.io")
        self.assertIsNone(link.email_verify_token_hash)

    def test_update_missing_link(self):
        with self.assertRaises(NotFound):
            self.identity.update_link(DID, "email:none@x.io", {"status": "verified"})

    def test_lookup_is_unique(self):
        self.identity.create_lookup("email:a@x.io", {"primary_did": DID, "link_type": "email"})
        with self.assertRaises(AlreadyRegistered) as ctx:
            self.identity.create_lookup("email:a@x.io", {"primary_did": "did:plc:mallory"})
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.detail, "Email already registered")
        self.assertEqual(self.identity.get_lookup("email:a@x.io").primary_did, DID)

    def test_verify_and_revoke(self):
        self.identity.create_link(DID, {"linked_id": "email:a@x.io"})
        self.identity.create_lookup("email:a@x.io", {"primary_did": DID, "link_type": "email"})
        link = self.identity.mark_verified(DID, "email:a@x.io", proof_type="provider-verified")
        self.assertTrue(link.is_verified)
        self.assertTrue(self.identity.get_lookup("email:a@x.io").email_verified)
        self.assertEqual(self.identity.resolve("email:a@x.io"), DID)

        self.identity.revoke(DID, "email:a@x.io")
        self.assertFalse(self.identity.get_link(DID, "email:a@x.io").is_verified)
        self.assertIsNone(self.identity.resolve("email:a@x.io"))

    def test_find_email_link_with_provider_token(self):
        self.identity.create_link(DID, {"linked_id": "email:a@x.io"})
        self.assertIsNone(self.identity.find_email_link(DID, with_provider_token=True))
        self.identity.update_link(DID, "email:a@x.io", {"provider_access_token": "tok"})
        link = self.identity.find_email_link(DID, with_provider_token=True)
        self.assertEqual(link.provider_access_token, "tok")
