from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from atsocial.core import keys
from atsocial.core.cursor import decode_cursor, encode_cursor
from atsocial.core.errors import Conflict, InvalidReference, NotFound
from atsocial.core.ids import RecordRef, build_record_uri, generate_record_key, parse_record_uri
from atsocial.core.settings import S, Settings
from atsocial.core.store import ConditionFailed, Page as StorePage, Store, key_of
from atsocial.core.time import now_iso
from atsocial.models import (
    AuthorView,
    Embed,
    Facet,
    Page,
    PostRecord,
    PostView,
    Profile,
    ReplyRef,
    StrongRef,
)
from atsocial.services.profiles import ProfileStore

logger = logging.getLogger(__name__)

MAX_TEXT_LEN = 3000


class ContentStore:
    """Posts and reply-posts stored as AT Protocol records in owner repositories.

    Post like/comment counts are always computed from the related items at
    read time; no counter is stored on the post.
    """

    def __init__(
        self,
        store: Store,
        profiles: Optional[ProfileStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.settings = settings or S
        self.profiles = profiles or ProfileStore(store, settings=self.settings)

    @property
    def collection(self) -> str:
        return self.settings.record_collection

    def _limit(self, limit: Optional[int]) -> int:
        return max(1, min(limit or self.settings.default_page_size, self.settings.max_page_size))

    # ---- addressing

    def resolve_ref(self, uri_or_key: str, owner_did: Optional[str] = None) -> Optional[RecordRef]:
        """Accept an AT URI or a bare record key plus owner; ``None`` if malformed."""
        if not uri_or_key:
            return None
        if uri_or_key.startswith("at://"):
            ref = parse_record_uri(uri_or_key)
            if not ref or ref.collection != self.collection:
                return None
            if owner_did and ref.owner_did != owner_did:
                return None
            return ref
        if not owner_did or "/" in uri_or_key:
            return None
        try:
            build_record_uri(owner_did, self.collection, uri_or_key)
        except InvalidReference:
            return None
        return RecordRef(owner_did, self.collection, uri_or_key)

    def get_record(self, uri_or_key: str, owner_did: Optional[str] = None) -> Optional[PostRecord]:
        ref = self.resolve_ref(uri_or_key, owner_did)
        if not ref:
            return None
        item = self.store.get(keys.repo_pk(ref.owner_did), keys.record_sk(ref.collection, ref.rkey))
        return PostRecord.from_item(item) if item else None

    def _require_ref(self, uri: str, what: str) -> RecordRef:
        ref = parse_record_uri(uri)
        if not ref or ref.collection != self.collection:
            raise InvalidReference(f"Invalid {what} URI: {uri!r}")
        return ref

    # ---- views

    def _author(self, did: str, cache: Dict[str, Optional[Profile]]) -> Optional[AuthorView]:
        if did not in cache:
            cache[did] = self.profiles.get_profile(did)
        profile = cache[did]
        if not profile:
            return None
        return AuthorView(
            did=did,
            handle=profile.handle,
            username=profile.username,
            display_name=profile.display_name,
            avatar_url=profile.avatar_url,
        )

    def count_likes(self, post_uri: str) -> int:
        return self.store.count(keys.post_pk(post_uri), sk_prefix=keys.LIKE_PREFIX)

    def count_comments(self, root_uri: str) -> int:
        return self.store.count(keys.reply_root_pk(root_uri), index=keys.GSI_REPLIES)

    def to_view(self, record: PostRecord, cache: Optional[Dict[str, Optional[Profile]]] = None) -> PostView:
        cache = {} if cache is None else cache
        return PostView(
            uri=record.uri,
            owner_did=record.owner_did,
            collection=record.collection,
            rkey=record.rkey,
            text=record.text,
            created_at=record.created_at,
            updated_at=record.updated_at,
            author=self._author(record.owner_did, cache),
            langs=record.langs,
            reply=record.reply,
            embed=record.embed,
            facets=record.facets,
            like_count=self.count_likes(record.uri),
            # Replies collapse onto their root, so only top-level posts have threads.
            comment_count=0 if record.is_reply else self.count_comments(record.uri),
        )

    def _page(self, page: StorePage) -> Page[PostView]:
        cache: Dict[str, Optional[Profile]] = {}
        views = [self.to_view(PostRecord.from_item(it), cache) for it in page.items]
        return Page[PostView](items=views, next_cursor=encode_cursor(page.last_key), has_more=bool(page.last_key))

    # ---- writes

    def _new_record(
        self,
        owner_did: str,
        text: str,
        *,
        embed: Optional[Any] = None,
        facets: Optional[List[Any]] = None,
        langs: Optional[List[str]] = None,
        reply: Optional[ReplyRef] = None,
    ) -> PostRecord:
        text = (text or "").strip()
        if not text:
            raise InvalidReference("Post text is required")
        if len(text) > MAX_TEXT_LEN:
            raise InvalidReference(f"Post text too long (max {MAX_TEXT_LEN})")
        author = self.profiles.require_profile(owner_did)
        if author.account_status == "deleted":
            raise NotFound(f"Profile not found: {owner_did}")

        rkey = generate_record_key()
        ts = now_iso()
        record = PostRecord(
            owner_did=owner_did,
            collection=self.collection,
            rkey=rkey,
            uri=build_record_uri(owner_did, self.collection, rkey),
            text=text,
            created_at=ts,
            updated_at=ts,
            langs=langs or None,
            reply=reply,
            embed=Embed.model_validate(embed) if embed else None,
            facets=[Facet.model_validate(f) for f in facets] if facets else None,
        )
        try:
            self.store.put(record.to_item(), if_absent=True)
        except ConditionFailed as exc:
            raise Conflict(f"Record key collision for {record.uri}") from exc
        return record

    def create_post(
        self,
        owner_did: str,
        text: str,
        embed: Optional[Any] = None,
        facets: Optional[List[Any]] = None,
        langs: Optional[List[str]] = None,
    ) -> str:
        record = self._new_record(owner_did, text, embed=embed, facets=facets, langs=langs)
        self.profiles.adjust_counters(owner_did, post_count=1)
        logger.debug("post created %s", record.uri)
        return record.uri

    def create_comment(self, owner_did: str, text: str, root_uri: str, parent_uri: str) -> str:
        """Create a reply post; nested replies collapse onto the top-level root."""
        self._require_ref(root_uri, "root")
        self._require_ref(parent_uri, "parent")
        parent = self.get_record(parent_uri)
        if not parent:
            raise NotFound(f"Parent post not found: {parent_uri}")
        effective_root = parent.root_uri
        if effective_root != root_uri:
            logger.debug("reply root %s rewritten to %s", root_uri, effective_root)
        if effective_root != parent.uri and not self.get_record(effective_root):
            raise NotFound(f"Root post not found: {effective_root}")

        reply = ReplyRef(root=StrongRef(uri=effective_root), parent=StrongRef(uri=parent.uri))
        record = self._new_record(owner_did, text, reply=reply)
        return record.uri

    # ---- reads

    def get_post(self, uri_or_key: str, owner_did: Optional[str] = None) -> Optional[PostView]:
        record = self.get_record(uri_or_key, owner_did)
        return self.to_view(record) if record else None

    def list_owner_posts(self, owner_did: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[PostView]:
        page = self.store.query(
            keys.repo_pk(owner_did),
            index=keys.GSI_OWNER,
            sk_prefix=f"{keys.REC_PREFIX}{self.collection}#",
            limit=self._limit(limit),
            start_key=decode_cursor(cursor),
            newest_first=True,
        )
        return self._page(page)

    def list_global_feed(self, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[PostView]:
        page = self.store.query(
            keys.FEED_PK,
            index=keys.GSI_FEED,
            limit=self._limit(limit),
            start_key=decode_cursor(cursor),
            newest_first=True,
        )
        return self._page(page)

    def list_comments(self, root_uri: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[PostView]:
        ref = parse_record_uri(root_uri)
        if not ref:
            return Page[PostView]()
        page = self.store.query(
            keys.reply_root_pk(root_uri),
            index=keys.GSI_REPLIES,
            limit=self._limit(limit),
            start_key=decode_cursor(cursor),
            newest_first=True,
        )
        return self._page(page)

    # ---- deletes

    def _delete_partition(self, partition: str, *, index: Optional[str] = None, sk_prefix: Optional[str] = None) -> int:
        """Batched delete of one partition, one bounded batch per page, until exhausted."""
        deleted = 0
        batch = self.settings.batch_delete_size
        last_key = None
        while True:
            page = self.store.query(partition, index=index, sk_prefix=sk_prefix, limit=batch, start_key=last_key)
            if page.items:
                deleted += self.store.batch_delete([key_of(it) for it in page.items])
            last_key = page.last_key
            if not last_key:
                return deleted

    def _delete_likes(self, post_uri: str) -> int:
        return self._delete_partition(keys.post_pk(post_uri), sk_prefix=keys.LIKE_PREFIX)

    def delete_post(self, uri_or_key: str, owner_did: Optional[str] = None) -> int:
        """Hard-delete a post with its replies and all of their likes.

        Children go first so a failure part-way leaves the post in place and
        the call can simply be repeated.
        """
        record = self.get_record(uri_or_key, owner_did)
        if not record:
            raise NotFound(f"Post not found: {uri_or_key}")
        if record.is_reply:
            return self.delete_comment(record.uri)

        deleted = self._delete_likes(record.uri)
        for reply in self.store.query_all(
            keys.reply_root_pk(record.uri), index=keys.GSI_REPLIES, page_size=self.settings.batch_delete_size
        ):
            deleted += self._delete_likes(reply["uri"])
        deleted += self._delete_partition(keys.reply_root_pk(record.uri), index=keys.GSI_REPLIES)
        deleted += self.store.batch_delete([{"PK": keys.repo_pk(record.owner_did), "SK": keys.record_sk(record.collection, record.rkey)}])
        self.profiles.adjust_counters(record.owner_did, post_count=-1)
        logger.info("post %s deleted with %d items", record.uri, deleted)
        return deleted

    def delete_comment(self, uri_or_key: str, owner_did: Optional[str] = None) -> int:
        record = self.get_record(uri_or_key, owner_did)
        if not record:
            raise NotFound(f"Comment not found: {uri_or_key}")
        if not record.is_reply:
            raise InvalidReference(f"Not a comment: {record.uri}")
        deleted = self._delete_likes(record.uri)
        self.store.delete(keys.repo_pk(record.owner_did), keys.record_sk(record.collection, record.rkey))
        return deleted + 1
