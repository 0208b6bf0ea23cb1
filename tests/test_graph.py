import threading
import unittest

from atsocial.core import keys
from atsocial.core.errors import InvalidReference, NotFound
from atsocial.core.memory_store import MemoryStore
from atsocial.core.settings import Settings
from atsocial.main import create_services

ALICE = "did:plc:alice"
BOB = "did:plc:bob"
CAROL = "did:plc:carol"


def run_together(n, fn):
    barrier = threading.Barrier(n)
    results = []

    def worker():
        barrier.wait()
        results.append(fn())

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class GraphTestCase(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.svc = create_services(self.store, Settings())
        for did, name in ((ALICE, "alice"), (BOB, "bob"), (CAROL, "carol")):
            self.svc.profiles.create_profile(did, {"handle": f"{name}.example.io", "displayName": name.title()})
        self.graph = self.svc.graph

    def counts(self, did):
        p = self.svc.profiles.get_profile(did)
        return p.follower_count, p.following_count


class TestFollows(GraphTestCase):
    def test_follow_twice_is_one_edge(self):
        self.assertTrue(self.graph.follow(ALICE, BOB))
        self.assertFalse(self.graph.follow(ALICE, BOB))
        self.assertEqual(self.store.count(keys.user_pk(ALICE), sk_prefix=keys.FOLLOW_PREFIX), 1)
        self.assertEqual(self.counts(BOB), (1, 0))
        self.assertEqual(self.counts(ALICE), (0, 1))
        self.assertTrue(self.graph.is_following(ALICE, BOB))
        self.assertFalse(self.graph.is_following(BOB, ALICE))

    def test_concurrent_follow_is_one_edge(self):
        results = run_together(8, lambda: self.graph.follow(ALICE, BOB))
        self.assertEqual(results.count(True), 1)
        self.assertEqual(len(results), 8)
        self.assertEqual(self.store.count(keys.user_pk(ALICE), sk_prefix=keys.FOLLOW_PREFIX), 1)
        self.assertEqual(self.counts(BOB), (1, 0))
        self.assertEqual(self.counts(ALICE), (0, 1))

    def test_unfollow_missing_edge_is_noop(self):
        self.assertFalse(self.graph.unfollow(ALICE, BOB))
        self.assertEqual(self.counts(BOB), (0, 0))
        self.assertEqual(self.counts(ALICE), (0, 0))

    def test_unfollow_twice(self):
        self.graph.follow(ALICE, BOB)
        self.assertTrue(self.graph.unfollow(ALICE, BOB))
        self.assertFalse(self.graph.unfollow(ALICE, BOB))
        self.assertEqual(self.counts(BOB), (0, 0))
        self.assertEqual(self.counts(ALICE), (0, 0))

    def test_self_follow_rejected(self):
        with self.assertRaises(InvalidReference):
            self.graph.follow(ALICE, ALICE)

    def test_follow_unknown_profile(self):
        with self.assertRaises(NotFound):
            self.graph.follow(ALICE, "did:plc:ghost")

    def test_followers_and_following_lists(self):
        self.graph.follow(ALICE, CAROL)
        self.graph.follow(BOB, CAROL)
        self.graph.follow(CAROL, ALICE)
        followers = self.graph.list_followers(CAROL)
        self.assertEqual({e.did for e in followers.items}, {ALICE, BOB})
        self.assertEqual({e.display_name for e in followers.items}, {"Alice", "Bob"})
        following = self.graph.list_following(CAROL)
        self.assertEqual([e.did for e in following.items], [ALICE])
        self.assertEqual(following.items[0].username, "alice")

    def test_follower_pages(self):
        for i in range(5):
            did = f"did:plc:f{i}"
            self.svc.profiles.create_profile(did, {"handle": f"f{i}.example.io"})
            self.graph.follow(did, ALICE)
        first = self.graph.list_followers(ALICE, limit=3)
        second = self.graph.list_followers(ALICE, limit=3, cursor=first.next_cursor)
        dids = [e.did for e in first.items + second.items]
        self.assertEqual(len(dids), 5)
        self.assertEqual(len(set(dids)), 5)
        self.assertFalse(second.has_more)

    def test_recount_repairs_drift(self):
        self.graph.follow(ALICE, BOB)
        self.graph.follow(CAROL, BOB)
        self.svc.profiles.set_counters(BOB, follower_count=7, following_count=3)
        profile = self.graph.recount_follow_counters(BOB)
        self.assertEqual((profile.follower_count, profile.following_count), (2, 0))


class TestLikes(GraphTestCase):
    def setUp(self):
        super().setUp()
        self.post = self.svc.content.create_post(ALICE, "likeable")

    def test_like_twice_is_one_edge(self):
        self.assertTrue(self.graph.like(self.post, BOB))
        self.assertFalse(self.graph.like(self.post, BOB))
        self.assertEqual(self.svc.content.get_post(self.post).like_count, 1)
        self.assertTrue(self.graph.is_liked(self.post, BOB))

    def test_concurrent_like_is_one_edge(self):
        results = run_together(8, lambda: self.graph.like(self.post, BOB))
        self.assertEqual(results.count(True), 1)
        self.assertEqual(self.svc.content.get_post(self.post).like_count, 1)
        self.assertEqual([v.did for v in self.graph.list_likers(self.post).items], [BOB])

    def test_unlike(self):
        self.graph.like(self.post, BOB)
        self.assertTrue(self.graph.unlike(self.post, BOB))
        self.assertFalse(self.graph.unlike(self.post, BOB))
        self.assertEqual(self.svc.content.get_post(self.post).like_count, 0)

    def test_like_missing_or_malformed_post(self):
        with self.assertRaises(InvalidReference):
            self.graph.like("not-a-uri", BOB)
        with self.assertRaises(NotFound):
            self.graph.like("at://did:plc:alice/app.bsky.feed.post/2222222222222", BOB)

    def test_likers_and_user_likes(self):
        other = self.svc.content.create_post(CAROL, "another")
        self.graph.like(self.post, BOB)
        self.graph.like(self.post, CAROL)
        self.graph.like(other, BOB)
        likers = self.graph.list_likers(self.post)
        self.assertEqual({e.did for e in likers.items}, {BOB, CAROL})
        liked = self.graph.list_user_likes(BOB)
        self.assertEqual({p.uri for p in liked.items}, {self.post, other})
        self.assertEqual(self.graph.list_user_likes(ALICE).items, [])
