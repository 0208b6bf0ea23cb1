from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from atsocial.core import keys
from atsocial.core.errors import AlreadyRegistered, NotFound
from atsocial.core.normalize import linked_id_kind
from atsocial.core.store import ConditionFailed, Store
from atsocial.core.time import now_iso
from atsocial.metrics import record_conflict
from atsocial.models import IdentityLink, IdentityLookup

logger = logging.getLogger(__name__)

# Attributes that identify an item and must never be rewritten in place.
_IMMUTABLE_LINK_FIELDS = {"PK", "SK", "primaryDid", "linkedId", "createdAt"}
_IMMUTABLE_LOOKUP_FIELDS = {"PK", "SK", "linkedId", "createdAt"}


def _to_attr_names(partial: Dict[str, Any], model: Any) -> Dict[str, Any]:
    # Accept snake_case field names as well as stored camelCase attribute names.
    out: Dict[str, Any] = {}
    for name, value in partial.items():
        field = model.model_fields.get(name)
        out[field.alias if field and field.alias else name] = value
    return out


class IdentityLinkStore:
    """Per-DID linked identifiers plus the ``linkedId -> DID`` reverse lookup."""

    def __init__(self, store: Store) -> None:
        self.store = store

    # ---- links (USER#{did} / LINK#{linkedId})

    def create_link(self, did: str, link: Dict[str, Any]) -> IdentityLink:
        linked_id = link.get("linked_id") or link.get("linkedId") or ""
        linked_id_kind(linked_id)
        ts = now_iso()
        attrs = {k: v for k, v in link.items() if k not in _IMMUTABLE_LINK_FIELDS and k not in ("linked_id", "primary_did")}
        model = IdentityLink.model_validate(
            {**attrs, "primary_did": did, "linked_id": linked_id, "created_at": ts, "updated_at": ts}
        )
        self.store.put(model.to_item())
        return model

    def get_link(self, did: str, linked_id: str) -> Optional[IdentityLink]:
        item = self.store.get(keys.user_pk(did), keys.link_sk(linked_id))
        return IdentityLink.from_item(item) if item else None

    def update_link(
        self,
        did: str,
        linked_id: str,
        partial: Dict[str, Any],
        remove_fields: Sequence[str] = (),
    ) -> IdentityLink:
        set_fields = {
            k: v for k, v in _to_attr_names(partial, IdentityLink).items() if k not in _IMMUTABLE_LINK_FIELDS
        }
        set_fields["updatedAt"] = now_iso()
        removes = [
            a for a in _to_attr_names({f: None for f in remove_fields}, IdentityLink)
            if a not in _IMMUTABLE_LINK_FIELDS
        ]
        try:
            item = self.store.update(
                keys.user_pk(did),
                keys.link_sk(linked_id),
                set_fields=set_fields,
                remove_fields=removes,
                if_exists=True,
            )
        except ConditionFailed as exc:
            raise NotFound(f"No link {linked_id} for {did}") from exc
        return IdentityLink.from_item(item)

    def list_links(self, did: str) -> List[IdentityLink]:
        return [
            IdentityLink.from_item(it)
            for it in self.store.query_all(keys.user_pk(did), sk_prefix=keys.LINK_PREFIX)
        ]

    def find_email_link(self, did: str, *, with_provider_token: bool = False) -> Optional[IdentityLink]:
        for link in self.list_links(did):
            if not link.linked_id.startswith("email:"):
                continue
            if with_provider_token and not (link.provider_access_token or link.provider_secret_ciphertext):
                continue
            return link
        return None

    def mark_verified(self, did: str, linked_id: str, *, proof_type: Optional[str] = None) -> IdentityLink:
        ts = now_iso()
        partial: Dict[str, Any] = {"status": "verified", "verifiedAt": ts}
        if linked_id.startswith("email:"):
            partial.update({"emailVerified": True, "emailVerifiedAt": ts})
        if proof_type:
            partial["proofType"] = proof_type
        link = self.update_link(did, linked_id, partial, remove_fields=("emailVerifyTokenHash", "emailVerifyTokenExpiresAt"))
        lookup = self.get_lookup(linked_id)
        if lookup and lookup.primary_did == did and linked_id.startswith("email:"):
            self.update_lookup(linked_id, {"emailVerified": True})
        return link

    def revoke(self, did: str, linked_id: str) -> IdentityLink:
        ts = now_iso()
        link = self.update_link(did, linked_id, {"status": "revoked", "revokedAt": ts})
        lookup = self.get_lookup(linked_id)
        if lookup and lookup.primary_did == did:
            self.update_lookup(linked_id, {"status": "revoked", "revokedAt": ts})
        return link

    # ---- lookups (LINK#{linkedId} / PRIMARY)

    def create_lookup(self, linked_id: str, payload: Dict[str, Any]) -> IdentityLookup:
        linked_id_kind(linked_id)
        ts = now_iso()
        attrs = {k: v for k, v in payload.items() if k not in _IMMUTABLE_LOOKUP_FIELDS and k != "linked_id"}
        model = IdentityLookup.model_validate({**attrs, "linked_id": linked_id, "created_at": ts, "updated_at": ts})
        try:
            self.store.put(model.to_item(), if_absent=True)
        except ConditionFailed as exc:
            record_conflict("identity_lookup")
            logger.info("lookup for %s already registered", linked_id)
            raise AlreadyRegistered(linked_id) from exc
        return model

    def get_lookup(self, linked_id: str) -> Optional[IdentityLookup]:
        item = self.store.get(keys.lookup_pk(linked_id), keys.PRIMARY_SK)
        return IdentityLookup.from_item(item) if item else None

    def update_lookup(self, linked_id: str, partial: Dict[str, Any]) -> IdentityLookup:
        set_fields = {
            k: v for k, v in _to_attr_names(partial, IdentityLookup).items() if k not in _IMMUTABLE_LOOKUP_FIELDS
        }
        set_fields["updatedAt"] = now_iso()
        try:
            item = self.store.update(keys.lookup_pk(linked_id), keys.PRIMARY_SK, set_fields=set_fields, if_exists=True)
        except ConditionFailed as exc:
            raise NotFound(f"No lookup for {linked_id}") from exc
        return IdentityLookup.from_item(item)

    def resolve(self, linked_id: str) -> Optional[str]:
        lookup = self.get_lookup(linked_id)
        if not lookup or lookup.status != "verified":
            return None
        if lookup.link_type == "email" and lookup.email_verified is False:
            return None
        return lookup.primary_did
