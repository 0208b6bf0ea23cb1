import itertools
import unittest
from unittest.mock import patch

from atsocial.core import keys
from atsocial.core.errors import InvalidReference, NotFound
from atsocial.core.ids import generate_record_key, parse_record_uri
from atsocial.core.memory_store import MemoryStore
from atsocial.core.settings import Settings
from atsocial.main import create_services

ALICE = "did:plc:alice"
BOB = "did:plc:bob"
CAROL = "did:plc:carol"


class ContentTestCase(unittest.TestCase):
    def setUp(self):
        clock = itertools.count(1_700_000_000_000_000, 1000)
        patcher = patch(
            "atsocial.services.content.generate_record_key",
            side_effect=lambda: generate_record_key(now_us=next(clock)),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        self.store = MemoryStore()
        self.svc = create_services(self.store, Settings())
        for did, name in ((ALICE, "alice"), (BOB, "bob"), (CAROL, "carol")):
            self.svc.profiles.create_profile(did, {"handle": f"{name}.example.io", "displayName": name.title()})
        self.content = self.svc.content


class TestPosts(ContentTestCase):
    def test_create_and_get(self):
        uri = self.content.create_post(ALICE, "  hello world  ", langs=["en"])
        ref = parse_record_uri(uri)
        self.assertEqual(ref.owner_did, ALICE)
        self.assertEqual(ref.collection, "app.bsky.feed.post")

        view = self.content.get_post(uri)
        self.assertEqual(view.text, "hello world")
        self.assertEqual(view.author.display_name, "Alice")
        self.assertEqual(view.author.username, "alice")
        self.assertEqual((view.like_count, view.comment_count), (0, 0))
        self.assertEqual(self.content.get_post(ref.rkey, owner_did=ALICE).uri, uri)
        self.assertEqual(self.svc.profiles.get_profile(ALICE).post_count, 1)

    def test_author_is_resolved_at_read_time(self):
        uri = self.content.create_post(ALICE, "hi")
        self.svc.profiles.update_profile(ALICE, {"displayName": "Alice Renamed"})
        self.assertEqual(self.content.get_post(uri).author.display_name, "Alice Renamed")
        feed = self.content.list_global_feed()
        self.assertEqual([v.uri for v in feed.items], [uri])
        self.assertEqual(feed.items[0].author.display_name, "Alice Renamed")
        self.assertEqual(self.content.list_owner_posts(ALICE).items[0].author.display_name, "Alice Renamed")

    def test_malformed_references_read_as_missing(self):
        self.assertIsNone(self.content.get_post("not-a-uri"))
        self.assertIsNone(self.content.get_post("at://did:plc:alice/app.bsky.feed.post"))
        self.assertIsNone(self.content.get_post("3kabc"))
        self.assertEqual(self.content.list_comments("garbage").items, [])

    def test_empty_text_rejected(self):
        with self.assertRaises(InvalidReference):
            self.content.create_post(ALICE, "   ")

    def test_unknown_owner(self):
        with self.assertRaises(NotFound):
            self.content.create_post("did:plc:ghost", "boo")

    def test_embed_and_facets(self):
        uri = self.content.create_post(
            ALICE,
            "look @bob",
            embed={"images": [{"url": "https://cdn/a.png", "alt": "a", "mimeType": "image/png"}]},
            facets=[{"type": "mention", "value": BOB, "startIndex": 5, "endIndex": 9}],
        )
        view = self.content.get_post(uri)
        self.assertEqual(view.embed.images[0].mime_type, "image/png")
        self.assertEqual(view.facets[0].value, BOB)

    def test_feeds_are_newest_first_and_paged(self):
        uris = [self.content.create_post(ALICE if i % 2 else BOB, f"post {i}") for i in range(5)]
        feed = self.content.list_global_feed(limit=3)
        self.assertEqual([p.uri for p in feed.items], uris[::-1][:3])
        self.assertTrue(feed.has_more)
        rest = self.content.list_global_feed(limit=3, cursor=feed.next_cursor)
        self.assertEqual([p.uri for p in rest.items], uris[::-1][3:])
        self.assertFalse(rest.has_more)

        own = self.content.list_owner_posts(ALICE)
        self.assertEqual([p.uri for p in own.items], [uris[3], uris[1]])

    def test_replies_stay_out_of_feeds(self):
        post = self.content.create_post(ALICE, "root")
        self.content.create_comment(BOB, "reply", post, post)
        self.assertEqual([p.uri for p in self.content.list_global_feed().items], [post])
        self.assertEqual(self.content.list_owner_posts(BOB).items, [])


class TestComments(ContentTestCase):
    def test_comment_counts_and_listing(self):
        post = self.content.create_post(ALICE, "root")
        c1 = self.content.create_comment(BOB, "first", post, post)
        c2 = self.content.create_comment(CAROL, "second", post, post)
        self.assertEqual(self.content.get_post(post).comment_count, 2)
        comments = self.content.list_comments(post)
        self.assertEqual([c.uri for c in comments.items], [c2, c1])
        self.assertEqual(comments.items[0].reply.parent.uri, post)

    def test_nested_reply_collapses_to_root(self):
        post = self.content.create_post(ALICE, "root")
        c1 = self.content.create_comment(BOB, "first", post, post)
        nested = self.content.create_comment(CAROL, "nested", c1, c1)
        view = self.content.get_post(nested)
        self.assertEqual(view.reply.root.uri, post)
        self.assertEqual(view.reply.parent.uri, c1)
        self.assertEqual(self.content.get_post(post).comment_count, 2)

    def test_comment_on_missing_post(self):
        missing = f"at://{ALICE}/app.bsky.feed.post/{generate_record_key()}"
        with self.assertRaises(NotFound):
            self.content.create_comment(BOB, "hello?", missing, missing)

    def test_comment_with_malformed_uri(self):
        with self.assertRaises(InvalidReference):
            self.content.create_comment(BOB, "x", "nope", "nope")

    def test_delete_comment_removes_its_likes(self):
        post = self.content.create_post(ALICE, "root")
        c1 = self.content.create_comment(BOB, "first", post, post)
        self.svc.graph.like(c1, ALICE)
        self.content.delete_comment(c1)
        self.assertIsNone(self.content.get_post(c1))
        self.assertEqual(self.store.count(keys.post_pk(c1)), 0)
        self.assertEqual(self.content.get_post(post).comment_count, 0)

    def test_delete_comment_rejects_top_level_post(self):
        post = self.content.create_post(ALICE, "root")
        with self.assertRaises(InvalidReference):
            self.content.delete_comment(post)


class TestDeletePost(ContentTestCase):
    def test_cascade_removes_replies_and_likes(self):
        post = self.content.create_post(ALICE, "root")
        replies = [self.content.create_comment(BOB, f"r{i}", post, post) for i in range(3)]
        self.svc.graph.like(post, BOB)
        self.svc.graph.like(post, CAROL)
        self.svc.graph.like(replies[0], ALICE)
        other = self.content.create_post(BOB, "unrelated")
        self.svc.graph.like(other, ALICE)

        self.content.delete_post(post)

        self.assertIsNone(self.content.get_post(post))
        for uri in replies:
            self.assertIsNone(self.content.get_post(uri))
        self.assertEqual(self.content.list_comments(post).items, [])
        self.assertEqual(self.svc.graph.list_likers(post).items, [])
        self.assertEqual(self.svc.graph.list_likers(replies[0]).items, [])
        self.assertEqual(self.store.count(keys.reply_root_pk(post), index=keys.GSI_REPLIES), 0)
        self.assertEqual(self.store.count(keys.post_pk(post)), 0)
        self.assertEqual(self.store.count(keys.post_pk(replies[0])), 0)
        self.assertFalse(self.svc.graph.is_liked(post, BOB))
        self.assertEqual(self.content.get_post(other).like_count, 1)
        self.assertEqual(self.svc.profiles.get_profile(ALICE).post_count, 0)

    def test_cascade_spans_several_batches(self):
        post = self.content.create_post(ALICE, "popular")
        for i in range(60):
            self.svc.profiles.create_profile(f"did:plc:fan{i}", {"handle": f"fan{i}.example.io"})
            self.svc.graph.like(post, f"did:plc:fan{i}")
        self.assertEqual(self.content.get_post(post).like_count, 60)
        with patch.object(self.store, "batch_delete", wraps=self.store.batch_delete) as spy:
            self.content.delete_post(post)
        self.assertTrue(all(len(call.args[0]) <= 25 for call in spy.call_args_list))
        self.assertEqual(self.store.count(keys.post_pk(post)), 0)

    def test_delete_missing_post(self):
        with self.assertRaises(NotFound):
            self.content.delete_post("at://did:plc:alice/app.bsky.feed.post/2222222222222")
        with self.assertRaises(NotFound):
            self.content.delete_post("garbage")

    def test_delete_by_key_requires_matching_owner(self):
        post = self.content.create_post(ALICE, "mine")
        rkey = parse_record_uri(post).rkey
        with self.assertRaises(NotFound):
            self.content.delete_post(rkey, owner_did=BOB)
        self.content.delete_post(rkey, owner_did=ALICE)
        self.assertIsNone(self.content.get_post(post))
