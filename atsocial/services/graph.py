from __future__ import annotations

import logging
from typing import Dict, Optional

from atsocial.core import keys
from atsocial.core.cursor import decode_cursor, encode_cursor
from atsocial.core.errors import InvalidReference, NotFound
from atsocial.core.ids import parse_record_uri
from atsocial.core.settings import S, Settings
from atsocial.core.store import ConditionFailed, Page as StorePage, Store
from atsocial.core.time import now_iso
from atsocial.metrics import record_conflict, record_edge_write
from atsocial.models import EdgeView, Follow, Like, Page, PostRecord, PostView, Profile
from atsocial.services.content import ContentStore
from atsocial.services.profiles import ProfileStore

logger = logging.getLogger(__name__)


class SocialGraphStore:
    """Like and follow edges, at most one per pair.

    Edges are created with a conditional put and removed with a conditional
    delete, so only a write that actually changed state moves a counter.
    """

    def __init__(
        self,
        store: Store,
        profiles: Optional[ProfileStore] = None,
        content: Optional[ContentStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.settings = settings or S
        self.profiles = profiles or ProfileStore(store, settings=self.settings)
        self.content = content or ContentStore(store, self.profiles, self.settings)

    def _limit(self, limit: Optional[int]) -> int:
        return max(1, min(limit or self.settings.default_page_size, self.settings.max_page_size))

    def _edge_page(self, page: StorePage, did_field: str) -> Page[EdgeView]:
        cache: Dict[str, Optional[Profile]] = {}
        views = []
        for item in page.items:
            did = item[did_field]
            if did not in cache:
                cache[did] = self.profiles.get_profile(did)
            profile = cache[did]
            view = EdgeView(did=did, created_at=item.get("createdAt", ""))
            if profile:
                view.handle = profile.handle
                view.username = profile.username
                view.display_name = profile.display_name
                view.avatar_url = profile.avatar_url
            views.append(view)
        return Page[EdgeView](items=views, next_cursor=encode_cursor(page.last_key), has_more=bool(page.last_key))

    # ---- likes

    def like(self, post_uri: str, user_did: str) -> bool:
        """Returns True when a new like was written, False for a duplicate."""
        if not parse_record_uri(post_uri):
            raise InvalidReference(f"Invalid post URI: {post_uri!r}")
        if not self.content.get_record(post_uri):
            raise NotFound(f"Post not found: {post_uri}")
        edge = Like(post_uri=post_uri, user_did=user_did, created_at=now_iso())
        try:
            self.store.put(edge.to_item(), if_absent=True)
        except ConditionFailed:
            record_conflict("like")
            logger.debug("like %s -> %s already exists", user_did, post_uri)
            return False
        record_edge_write("like", "create")
        return True

    def unlike(self, post_uri: str, user_did: str) -> bool:
        try:
            self.store.delete(keys.post_pk(post_uri), keys.like_sk(user_did), if_exists=True)
        except ConditionFailed:
            logger.debug("unlike %s -> %s: no such like", user_did, post_uri)
            return False
        record_edge_write("like", "delete")
        return True

    def is_liked(self, post_uri: str, user_did: str) -> bool:
        return self.store.get(keys.post_pk(post_uri), keys.like_sk(user_did)) is not None

    def list_likers(self, post_uri: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[EdgeView]:
        page = self.store.query(
            keys.post_pk(post_uri),
            index=keys.GSI_OWNER,
            sk_prefix=keys.LIKE_PREFIX,
            limit=self._limit(limit),
            start_key=decode_cursor(cursor),
            newest_first=True,
        )
        return self._edge_page(page, "userDid")

    def list_user_likes(self, user_did: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[PostView]:
        """Posts liked by ``user_did``, most recent like first."""
        page = self.store.query(
            keys.user_pk(user_did),
            index=keys.GSI_FEED,
            sk_prefix=keys.LIKE_PREFIX,
            limit=self._limit(limit),
            start_key=decode_cursor(cursor),
            newest_first=True,
        )
        cache: Dict[str, Optional[Profile]] = {}
        views = []
        for item in page.items:
            record: Optional[PostRecord] = self.content.get_record(item["postUri"])
            if record:
                views.append(self.content.to_view(record, cache))
        return Page[PostView](items=views, next_cursor=encode_cursor(page.last_key), has_more=bool(page.last_key))

    # ---- follows

    def follow(self, follower_did: str, following_did: str) -> bool:
        if follower_did == following_did:
            raise InvalidReference("Cannot follow yourself")
        target = self.profiles.get_profile(following_did)
        if not target or target.account_status == "deleted":
            raise NotFound(f"Profile not found: {following_did}")
        edge = Follow(follower_did=follower_did, following_did=following_did, created_at=now_iso())
        try:
            self.store.put(edge.to_item(), if_absent=True)
        except ConditionFailed:
            record_conflict("follow")
            logger.debug("follow %s -> %s already exists", follower_did, following_did)
            return False
        self.profiles.adjust_counters(follower_did, following_count=1)
        self.profiles.adjust_counters(following_did, follower_count=1)
        record_edge_write("follow", "create")
        return True

    def unfollow(self, follower_did: str, following_did: str) -> bool:
        try:
            self.store.delete(keys.user_pk(follower_did), keys.follow_sk(following_did), if_exists=True)
        except ConditionFailed:
            logger.debug("unfollow %s -> %s: not following", follower_did, following_did)
            return False
        self.profiles.adjust_counters(follower_did, following_count=-1)
        self.profiles.adjust_counters(following_did, follower_count=-1)
        record_edge_write("follow", "delete")
        return True

    def is_following(self, follower_did: str, following_did: str) -> bool:
        return self.store.get(keys.user_pk(follower_did), keys.follow_sk(following_did)) is not None

    def list_followers(self, did: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[EdgeView]:
        page = self.store.query(
            keys.user_pk(did),
            index=keys.GSI_FEED,
            sk_prefix=keys.FOLLOWER_PREFIX,
            limit=self._limit(limit),
            start_key=decode_cursor(cursor),
            newest_first=True,
        )
        return self._edge_page(page, "followerDid")

    def list_following(self, did: str, limit: Optional[int] = None, cursor: Optional[str] = None) -> Page[EdgeView]:
        page = self.store.query(
            keys.user_pk(did),
            index=keys.GSI_OWNER,
            sk_prefix=keys.FOLLOW_PREFIX,
            limit=self._limit(limit),
            start_key=decode_cursor(cursor),
            newest_first=True,
        )
        return self._edge_page(page, "followingDid")

    def recount_follow_counters(self, did: str) -> Profile:
        """Reset stored follow counters from the edges actually present."""
        following = self.store.count(keys.user_pk(did), sk_prefix=keys.FOLLOW_PREFIX)
        followers = self.store.count(keys.user_pk(did), index=keys.GSI_FEED, sk_prefix=keys.FOLLOWER_PREFIX)
        profile = self.profiles.set_counters(did, follower_count=followers, following_count=following)
        logger.info("recounted %s: %d followers, %d following", did, followers, following)
        return profile
