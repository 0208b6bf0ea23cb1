from __future__ import annotations

from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from atsocial.core import keys
from atsocial.core.normalize import search_key, username_from_handle

AccountStatus = Literal["active", "suspended", "deleted"]
LinkKind = Literal["did", "wallet", "account"]
LinkRole = Literal["asset", "login", "org", "device", "other"]
LinkStatus = Literal["pending", "verified", "revoked"]
LookupStatus = Literal["verified", "revoked"]

T = TypeVar("T")


class StoredModel(BaseModel):
    # Attribute names on the table are camelCase.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def attributes(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_item(cls, item: Dict[str, Any]):
        return cls.model_validate(item)


# ---------------------------------------------------------------- profiles

class Profile(StoredModel):
    primary_did: str
    handle: str = ""
    username: str = ""
    display_name: str = ""
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    banner_url: Optional[str] = None
    follower_count: int = 0
    following_count: int = 0
    post_count: int = 0
    account_status: AccountStatus = "active"
    primary_email: Optional[str] = None
    primary_email_normalized: Optional[str] = None
    email_login_enabled: Optional[bool] = None
    auth_providers: Optional[Dict[str, bool]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    suspended_at: Optional[str] = None
    deleted_at: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        attrs = self.attributes()
        attrs["username"] = self.username or username_from_handle(self.handle)
        item = {"PK": keys.user_pk(self.primary_did), "SK": keys.PROFILE_SK, **attrs}
        item.update(profile_search_projection(self.primary_did, "username", attrs["username"]))
        item.update(profile_search_projection(self.primary_did, "displayName", self.display_name))
        if self.primary_email_normalized:
            item.update(profile_search_projection(self.primary_did, "primaryEmailNormalized", self.primary_email_normalized))
        return item


_SEARCH_INDEX_FOR = {
    "username": (keys.GSI_USERNAME, keys.HANDLE_INDEX_PK),
    "displayName": (keys.GSI_DISPLAY_NAME, keys.DISPLAY_NAME_INDEX_PK),
    "primaryEmailNormalized": (keys.GSI_EMAIL, keys.EMAIL_INDEX_PK),
}


def profile_search_projection(did: str, field: str, value: Optional[str]) -> Dict[str, str]:
    """GSI key attributes that index a profile under ``field``'s search key."""
    index, partition = _SEARCH_INDEX_FOR[field]
    pk_name, sk_name = keys.index_keys(index)
    if field == "primaryEmailNormalized":
        return {pk_name: partition, sk_name: search_key(value)}
    return {pk_name: partition, sk_name: f"{search_key(value)}#{did}"}


def search_index_attributes(field: str) -> List[str]:
    index, _ = _SEARCH_INDEX_FOR[field]
    return list(keys.index_keys(index))


# ---------------------------------------------------------------- identity

class IdentityLink(StoredModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    primary_did: str
    linked_id: str
    kind: LinkKind = "account"
    role: LinkRole = "login"
    status: LinkStatus = "pending"
    proof_type: Optional[Literal["mutual-signature", "provider-verified"]] = None
    proof: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    verified_at: Optional[str] = None
    revoked_at: Optional[str] = None

    # email/password links
    email: Optional[str] = None
    email_normalized: Optional[str] = None
    email_verified: Optional[bool] = None
    email_verified_at: Optional[str] = None
    password_hash: Optional[str] = Field(default=None, repr=False)
    password_kdf: Optional[Literal["bcrypt", "argon2id", "scrypt"]] = None
    password_updated_at: Optional[str] = None
    kdf_params: Optional[Dict[str, int]] = None
    failed_login_count: Optional[int] = None
    last_failed_login_at: Optional[str] = None
    lock_until: Optional[str] = None
    email_verify_token_hash: Optional[str] = Field(default=None, repr=False)
    email_verify_token_expires_at: Optional[str] = None
    reset_token_hash: Optional[str] = Field(default=None, repr=False)
    reset_token_expires_at: Optional[str] = None
    last_login_at: Optional[str] = None

    # external provider account
    provider_access_token: Optional[str] = Field(default=None, repr=False)
    provider_secret_ciphertext: Optional[str] = Field(default=None, repr=False)

    @property
    def is_verified(self) -> bool:
        if self.status != "verified":
            return False
        if self.linked_id.startswith("email:"):
            return bool(self.email_verified)
        return True

    def to_item(self) -> Dict[str, Any]:
        return {
            "PK": keys.user_pk(self.primary_did),
            "SK": keys.link_sk(self.linked_id),
            **self.attributes(),
        }


class IdentityLookup(StoredModel):
    linked_id: str
    primary_did: str
    status: LookupStatus = "verified"
    link_type: Optional[Literal["email", "did", "wallet", "account"]] = None
    email_normalized: Optional[str] = None
    email_verified: Optional[bool] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    revoked_at: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return {
            "PK": keys.lookup_pk(self.linked_id),
            "SK": keys.PRIMARY_SK,
            **self.attributes(),
        }


# ---------------------------------------------------------------- records

class StrongRef(StoredModel):
    uri: str
    cid: Optional[str] = None


class ReplyRef(StoredModel):
    root: StrongRef
    parent: StrongRef


class EmbedImage(StoredModel):
    url: str
    alt: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None


class Embed(StoredModel):
    images: List[EmbedImage] = Field(default_factory=list)


class Facet(StoredModel):
    type: Literal["mention", "link", "tag"]
    value: str
    start_index: int
    end_index: int


class PostRecord(StoredModel):
    owner_did: str
    collection: str
    rkey: str
    uri: str
    text: str
    created_at: str
    updated_at: str
    langs: Optional[List[str]] = None
    reply: Optional[ReplyRef] = None
    embed: Optional[Embed] = None
    facets: Optional[List[Facet]] = None

    @property
    def is_reply(self) -> bool:
        return self.reply is not None

    @property
    def root_uri(self) -> str:
        return self.reply.root.uri if self.reply else self.uri

    def to_item(self) -> Dict[str, Any]:
        sk = keys.record_sk(self.collection, self.rkey)
        item = {"PK": keys.repo_pk(self.owner_did), "SK": sk, **self.attributes()}
        if self.reply:
            item["GSI13PK"] = keys.reply_root_pk(self.reply.root.uri)
            item["GSI13SK"] = sk
        else:
            item["GSI1PK"] = keys.repo_pk(self.owner_did)
            item["GSI1SK"] = sk
            item["GSI2PK"] = keys.FEED_PK
            item["GSI2SK"] = sk
        return item


class Like(StoredModel):
    post_uri: str
    user_did: str
    created_at: str

    def to_item(self) -> Dict[str, Any]:
        return {
            "PK": keys.post_pk(self.post_uri),
            "SK": keys.like_sk(self.user_did),
            "GSI1PK": keys.post_pk(self.post_uri),
            "GSI1SK": f"{keys.LIKE_PREFIX}{self.created_at}#{self.user_did}",
            "GSI2PK": keys.user_pk(self.user_did),
            "GSI2SK": f"{keys.LIKE_PREFIX}{self.created_at}#{self.post_uri}",
            **self.attributes(),
        }


class Follow(StoredModel):
    follower_did: str
    following_did: str
    created_at: str

    def to_item(self) -> Dict[str, Any]:
        return {
            "PK": keys.user_pk(self.follower_did),
            "SK": keys.follow_sk(self.following_did),
            "GSI1PK": keys.user_pk(self.follower_did),
            "GSI1SK": f"{keys.FOLLOW_PREFIX}{self.created_at}#{self.following_did}",
            "GSI2PK": keys.user_pk(self.following_did),
            "GSI2SK": f"{keys.FOLLOWER_PREFIX}{self.created_at}#{self.follower_did}",
            **self.attributes(),
        }


Item = Union[Profile, IdentityLink, IdentityLookup, PostRecord, Like, Follow]


def decode_item(raw: Dict[str, Any]) -> Item:
    pk = str(raw.get("PK", ""))
    sk = str(raw.get("SK", ""))
    if pk.startswith(keys.USER_PREFIX):
        if sk == keys.PROFILE_SK:
            return Profile.from_item(raw)
        if sk.startswith(keys.LINK_PREFIX):
            return IdentityLink.from_item(raw)
        if sk.startswith(keys.FOLLOW_PREFIX):
            return Follow.from_item(raw)
    elif pk.startswith(keys.LINK_PREFIX) and sk == keys.PRIMARY_SK:
        return IdentityLookup.from_item(raw)
    elif pk.startswith(keys.REPO_PREFIX) and sk.startswith(keys.REC_PREFIX):
        return PostRecord.from_item(raw)
    elif pk.startswith(keys.POST_PREFIX) and sk.startswith(keys.LIKE_PREFIX):
        return Like.from_item(raw)
    raise ValueError(f"Unrecognized item key ({pk!r}, {sk!r})")


# ---------------------------------------------------------------- read views

class AuthorView(BaseModel):
    did: str
    handle: str = ""
    username: str = ""
    display_name: str = ""
    avatar_url: Optional[str] = None


class PostView(BaseModel):
    uri: str
    owner_did: str
    collection: str
    rkey: str
    text: str
    created_at: str
    updated_at: str
    author: Optional[AuthorView] = None
    langs: Optional[List[str]] = None
    reply: Optional[ReplyRef] = None
    embed: Optional[Embed] = None
    facets: Optional[List[Facet]] = None
    like_count: int = 0
    comment_count: int = 0


class EdgeView(BaseModel):
    did: str
    created_at: str
    handle: str = ""
    username: str = ""
    display_name: str = ""
    avatar_url: Optional[str] = None


class Page(BaseModel, Generic[T]):
    items: List[T] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


# ---------------------------------------------------------------- lifecycle

class LocalDeletionResult(BaseModel):
    did: str
    status: AccountStatus
    deleted_at: Optional[str] = None


class ExternalDeletionResult(BaseModel):
    attempted: bool = False
    success: bool = False
    error: Optional[str] = None


class AccountDeletionResult(BaseModel):
    local: LocalDeletionResult
    external: ExternalDeletionResult = Field(default_factory=ExternalDeletionResult)

    @property
    def fully_scrubbed(self) -> bool:
        return self.local.status == "deleted" and self.external.success
