from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from atsocial.core import keys
from atsocial.core.crypto import sha256_str
from atsocial.core.cursor import decode_cursor, encode_cursor
from atsocial.core.errors import AlreadyRegistered, Conflict, InvalidReference, NotFound
from atsocial.core.normalize import email_linked_id, normalize_email, search_key, username_from_handle
from atsocial.core.settings import S, Settings
from atsocial.core.store import ConditionFailed, Store, key_of
from atsocial.core.time import now_iso
from atsocial.models import Page, Profile, profile_search_projection, search_index_attributes
from atsocial.services.identity import IdentityLinkStore

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "handle",
    "display_name",
    "bio",
    "avatar_url",
    "banner_url",
    "primary_email",
    "email_login_enabled",
    "auth_providers",
)
COUNTER_FIELDS = ("follower_count", "following_count", "post_count")
_CAMEL = {
    "display_name": "displayName",
    "avatar_url": "avatarUrl",
    "banner_url": "bannerUrl",
    "primary_email": "primaryEmail",
    "email_login_enabled": "emailLoginEnabled",
    "auth_providers": "authProviders",
    "follower_count": "followerCount",
    "following_count": "followingCount",
    "post_count": "postCount",
}
_SNAKE = {v: k for k, v in _CAMEL.items()}
MAX_HANDLE_LEN = 253
MAX_DISPLAY_NAME_LEN = 64
MAX_BIO_LEN = 256


def _clean_str(value: Optional[str], *, max_len: Optional[int] = None) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if max_len is not None and len(trimmed) > max_len:
        raise InvalidReference(f"Value too long (max {max_len})")
    return trimmed


def _snake(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_SNAKE.get(k, k): v for k, v in data.items()}


def anonymized_name(did: str) -> str:
    return f"deleted-user-{sha256_str(did)[:12]}"


class ProfileStore:
    def __init__(
        self,
        store: Store,
        identity: Optional[IdentityLinkStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.identity = identity or IdentityLinkStore(store)
        self.settings = settings or S

    def _register_email(self, did: str, email: str) -> None:
        """Claim ``email`` for ``did`` and record a pending login link for it.

        The lookup is written conditionally before anything else, so an
        address held by another DID fails with AlreadyRegistered.
        """
        normalized = normalize_email(email)
        linked_id = email_linked_id(normalized)
        lookup = self.identity.get_lookup(linked_id)
        if lookup is None:
            self.identity.create_lookup(
                linked_id,
                {"primary_did": did, "link_type": "email", "email_normalized": normalized, "email_verified": False},
            )
        elif lookup.primary_did != did:
            raise AlreadyRegistered(linked_id)
        if self.identity.get_link(did, linked_id) is None:
            self.identity.create_link(
                did,
                {
                    "linked_id": linked_id,
                    "kind": "account",
                    "role": "login",
                    "status": "pending",
                    "email": email.strip(),
                    "email_normalized": normalized,
                    "email_verified": False,
                },
            )
            logger.info("email link %s pending for %s", linked_id, did)

    def create_profile(self, did: str, attrs: Dict[str, Any]) -> Profile:
        data = _snake(attrs)
        handle = _clean_str(data.get("handle"), max_len=MAX_HANDLE_LEN) or ""
        email = data.get("primary_email")
        ts = now_iso()
        profile = Profile(
            primary_did=did,
            handle=handle,
            username=username_from_handle(handle),
            display_name=_clean_str(data.get("display_name"), max_len=MAX_DISPLAY_NAME_LEN) or "",
            bio=_clean_str(data.get("bio"), max_len=MAX_BIO_LEN),
            avatar_url=data.get("avatar_url"),
            banner_url=data.get("banner_url"),
            primary_email=email.strip() if email else None,
            primary_email_normalized=normalize_email(email) if email else None,
            email_login_enabled=data.get("email_login_enabled"),
            auth_providers=data.get("auth_providers"),
            account_status=data.get("account_status") or "active",
            created_at=ts,
            updated_at=ts,
        )
        if email:
            self._register_email(did, email)
        try:
            self.store.put(profile.to_item(), if_absent=True)
        except ConditionFailed as exc:
            raise Conflict(f"Profile already exists for {did}") from exc
        return profile

    def get_profile(self, did: str) -> Optional[Profile]:
        item = self.store.get(keys.user_pk(did), keys.PROFILE_SK)
        return Profile.from_item(item) if item else None

    def require_profile(self, did: str) -> Profile:
        profile = self.get_profile(did)
        if not profile:
            raise NotFound(f"Profile not found: {did}")
        return profile

    def get_profile_by_username(self, username: str) -> Optional[Profile]:
        name = search_key(username_from_handle(username))
        if not name:
            return None
        page = self.store.query(keys.HANDLE_INDEX_PK, index=keys.GSI_USERNAME, sk_prefix=f"{name}#", limit=1)
        return Profile.from_item(page.items[0]) if page.items else None

    def update_profile(self, did: str, partial: Dict[str, Any]) -> Profile:
        """Rewrite only the fields present in ``partial``; ``None`` clears a field.

        Search projections follow the fields they index, so a new display
        name moves the profile's GSI4 entry and so on.
        """
        data = {k: v for k, v in _snake(partial).items() if k in PROFILE_FIELDS}
        set_fields: Dict[str, Any] = {}
        remove_fields: List[str] = []

        if "handle" in data:
            handle = _clean_str(data.pop("handle"), max_len=MAX_HANDLE_LEN) or ""
            username = username_from_handle(handle)
            set_fields.update({"handle": handle, "username": username})
            set_fields.update(profile_search_projection(did, "username", username))
        if "display_name" in data:
            display_name = _clean_str(data.pop("display_name"), max_len=MAX_DISPLAY_NAME_LEN) or ""
            set_fields["displayName"] = display_name
            set_fields.update(profile_search_projection(did, "displayName", display_name))
        if "bio" in data:
            data["bio"] = _clean_str(data["bio"], max_len=MAX_BIO_LEN)
        if "primary_email" in data:
            email = data.pop("primary_email")
            if email:
                normalized = normalize_email(email)
                if not self.get_profile(did):
                    raise NotFound(f"Profile not found: {did}")
                self._register_email(did, email)
                set_fields.update({"primaryEmail": email.strip(), "primaryEmailNormalized": normalized})
                set_fields.update(profile_search_projection(did, "primaryEmailNormalized", normalized))
            else:
                remove_fields += ["primaryEmail", "primaryEmailNormalized"]
                remove_fields += search_index_attributes("primaryEmailNormalized")

        for field, value in data.items():
            attr = _CAMEL.get(field, field)
            if value is None:
                remove_fields.append(attr)
            else:
                set_fields[attr] = value
        set_fields["updatedAt"] = now_iso()

        try:
            item = self.store.update(
                keys.user_pk(did),
                keys.PROFILE_SK,
                set_fields=set_fields,
                remove_fields=remove_fields,
                if_exists=True,
            )
        except ConditionFailed as exc:
            raise NotFound(f"Profile not found: {did}") from exc
        return Profile.from_item(item)

    def set_status(self, did: str, status: str, **extra: Any) -> Profile:
        set_fields = {"accountStatus": status, "updatedAt": now_iso(), **extra}
        try:
            item = self.store.update(keys.user_pk(did), keys.PROFILE_SK, set_fields=set_fields, if_exists=True)
        except ConditionFailed as exc:
            raise NotFound(f"Profile not found: {did}") from exc
        return Profile.from_item(item)

    def soft_delete_profile(self, did: str) -> Profile:
        """Mark deleted and scrub PII; the item itself is never removed."""
        ts = now_iso()
        placeholder = anonymized_name(did)
        set_fields: Dict[str, Any] = {
            "accountStatus": "deleted",
            "deletedAt": ts,
            "updatedAt": ts,
            "handle": placeholder,
            "username": placeholder,
            "displayName": placeholder,
            "emailLoginEnabled": False,
        }
        set_fields.update(profile_search_projection(did, "username", placeholder))
        set_fields.update(profile_search_projection(did, "displayName", placeholder))
        remove_fields = ["primaryEmail", "primaryEmailNormalized", "bio", "avatarUrl", "bannerUrl"]
        remove_fields += search_index_attributes("primaryEmailNormalized")
        try:
            item = self.store.update(
                keys.user_pk(did),
                keys.PROFILE_SK,
                set_fields=set_fields,
                remove_fields=remove_fields,
                if_exists=True,
            )
        except ConditionFailed as exc:
            raise NotFound(f"Profile not found: {did}") from exc
        logger.info("profile %s soft-deleted", did)
        return Profile.from_item(item)

    def adjust_counters(self, did: str, **deltas: int) -> Optional[Profile]:
        add_fields = {_CAMEL[k]: int(v) for k, v in deltas.items() if k in COUNTER_FIELDS and v}
        if not add_fields:
            return None
        try:
            item = self.store.update(keys.user_pk(did), keys.PROFILE_SK, add_fields=add_fields, if_exists=True)
        except ConditionFailed:
            # ADD on a missing profile would create a stub item.
            logger.warning("counter update skipped, no profile for %s: %s", did, add_fields)
            return None
        return Profile.from_item(item)

    def set_counters(self, did: str, **values: int) -> Profile:
        set_fields = {_CAMEL[k]: max(0, int(v)) for k, v in values.items() if k in COUNTER_FIELDS}
        try:
            item = self.store.update(keys.user_pk(did), keys.PROFILE_SK, set_fields=set_fields, if_exists=True)
        except ConditionFailed as exc:
            raise NotFound(f"Profile not found: {did}") from exc
        return Profile.from_item(item)

    def _verified_emails(self, did: str) -> List[str]:
        # Read from the identity links; the profile's own email may be stale.
        emails = []
        for link in self.identity.list_links(did):
            if link.linked_id.startswith("email:") and link.is_verified:
                emails.append(link.email_normalized or link.linked_id[len("email:"):])
        return emails

    def _matches(self, profile: Profile, q: str) -> bool:
        if profile.account_status == "deleted":
            return False
        username = search_key(profile.username or username_from_handle(profile.handle))
        if q in username or q in search_key(profile.display_name):
            return True
        return any(q in email for email in self._verified_emails(profile.primary_did))

    def search_profiles(self, query: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[Profile]:
        """Case-insensitive substring search over username, display name and verified email.

        Walks the username index in key order and filters, so a page may cost
        several reads; the cursor points at the last profile examined.
        """
        q = search_key(query)
        limit = max(1, min(limit or self.settings.default_page_size, self.settings.max_page_size))
        if not q:
            return Page[Profile]()

        results: List[Profile] = []
        start_key = decode_cursor(cursor)
        while True:
            page = self.store.query(
                keys.HANDLE_INDEX_PK,
                index=keys.GSI_USERNAME,
                limit=max(limit, 25),
                start_key=start_key,
            )
            for i, item in enumerate(page.items):
                profile = Profile.from_item(item)
                if not self._matches(profile, q):
                    continue
                results.append(profile)
                if len(results) == limit:
                    more = i < len(page.items) - 1 or bool(page.last_key)
                    next_key = key_of(item, keys.GSI_USERNAME) if more else None
                    return Page[Profile](items=results, next_cursor=encode_cursor(next_key), has_more=more)
            start_key = page.last_key
            if not start_key:
                return Page[Profile](items=results)
