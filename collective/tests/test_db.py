import unittest

from collective.db import PostgresDbClient
from collective.records import CommentRecord


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.book = self.db.create_media_item("book", "Dune", creator="Frank Herbert", isbn="123")

    def test_sessions(self):
        self.db.save_session("k1", "did:plc:alice", access_token="tok")
        session = self.db.get_session("k1")
        self.assertEqual(session.did, "did:plc:alice")
        self.assertEqual(session.access_token, "tok")
        self.db.delete_session("k1")
        self.assertIsNone(self.db.get_session("k1"))

    def test_create_user_is_idempotent(self):
        user, created = self.db.create_user("did:plc:alice", "alice.test")
        self.assertTrue(created)
        again, created = self.db.create_user("did:plc:alice", "other.test")
        self.assertFalse(created)
        self.assertEqual(again.handle, "alice.test")
        self.assertEqual(self.db.count_users(), 1)

    def test_set_admin_outcomes(self):
        self.assertEqual(self.db.set_admin("did:plc:new", "new.test"), "created")
        self.assertEqual(self.db.set_admin("did:plc:new"), "unchanged")
        self.db.create_user("did:plc:bob", "bob.test")
        self.assertEqual(self.db.set_admin("did:plc:bob"), "promoted")
        self.assertTrue(self.db.is_admin("did:plc:bob"))

    def test_review_lifecycle_keeps_stats_consistent(self):
        saved, previous = self.db.save_review("did:plc:a", self.book.id, "book", 4, "great")
        self.assertIsNone(previous)
        self.db.save_review("did:plc:b", self.book.id, "book", 2, None)

        item = self.db.get_media_item(self.book.id)
        self.assertEqual(item.stats.total_ratings, 2)
        self.assertEqual(item.stats.total_reviews, 1)
        self.assertEqual(item.stats.average_rating, 3.0)

        _, previous = self.db.save_review("did:plc:a", self.book.id, "book", 5, "")
        self.assertEqual(previous.rating, 4)
        item = self.db.get_media_item(self.book.id)
        self.assertEqual(item.stats.total_ratings, 2)
        self.assertEqual(item.stats.total_reviews, 0)
        self.assertEqual(item.stats.distribution["rating4"], 0)
        self.assertEqual(item.stats.distribution["rating5"], 1)
        self.assertEqual(item.stats.average_rating, 3.5)

        removed = self.db.delete_review("did:plc:a", self.book.id, "book")
        self.assertEqual(removed.rating, 5)
        self.assertIsNone(self.db.delete_review("did:plc:a", self.book.id, "book"))
        item = self.db.get_media_item(self.book.id)
        self.assertEqual(item.stats.total_ratings, 1)
        self.assertEqual(item.stats.average_rating, 2.0)

    def test_save_review_rejects_bad_rating(self):
        with self.assertRaises(ValueError):
            self.db.save_review("did:plc:a", self.book.id, "book", 7, "no")
        self.assertIsNone(self.db.get_review("did:plc:a", self.book.id, "book"))

    def test_total_saves_never_negative(self):
        self.db.adjust_total_saves(self.book.id, 1)
        self.db.adjust_total_saves(self.book.id, -1)
        self.db.adjust_total_saves(self.book.id, -1)
        self.assertEqual(self.db.get_media_item(self.book.id).total_saves, 0)

    def test_find_by_isbn(self):
        self.assertEqual(self.db.find_media_item_by_isbn("123", "book").id, self.book.id)
        self.assertIsNone(self.db.find_media_item_by_isbn("123", "movie"))

    def test_share_links(self):
        link = self.db.create_share_link("abc", "did:plc:a", self.book.id, "book")
        self.assertIsNotNone(link)
        self.assertIsNone(self.db.create_share_link("abc", "did:plc:b", self.book.id, "book"))
        self.assertEqual(self.db.record_share_click("abc").times_clicked, 1)
        self.assertEqual(self.db.record_share_click("abc").times_clicked, 2)
        self.assertIsNone(self.db.record_share_click("missing"))

        rows = self.db.list_share_links(limit=10, offset=0, sort_by="timesClicked")
        self.assertEqual(rows[0]["title"], "Dune")
        self.assertEqual(rows[0]["link"].short_code, "abc")

    def test_comments_thread_order(self):
        review_uri = "at://did:plc:a/app.collectivesocial.feed.review/r1"
        first = CommentRecord(uri="at://c/1", cid="x", user_did="did:plc:b", text="one", review_uri=review_uri, created_at=1.0)
        second = CommentRecord(uri="at://c/2", cid="y", user_did="did:plc:c", text="two", review_uri=review_uri, created_at=2.0)
        self.db.save_comment(second)
        self.db.save_comment(first)
        self.assertEqual(
            [c.uri for c in self.db.list_comments_for_review(review_uri)], ["at://c/1", "at://c/2"]
        )
        updated = self.db.update_comment("at://c/1", "edited", "z")
        self.assertEqual(updated.text, "edited")
        self.assertEqual(updated.cid, "z")

    def test_tags_merge(self):
        fiction = self.db.create_tag("Fiction", "fiction")
        scifi = self.db.create_tag("Sci-Fi", "sci-fi")
        movie = self.db.create_media_item("movie", "Arrival")
        self.db.add_item_tag(self.book.id, fiction.id, "did:plc:a")
        self.db.add_item_tag(self.book.id, scifi.id, "did:plc:a")
        self.db.add_item_tag(movie.id, fiction.id, "did:plc:b")
        self.assertFalse(self.db.add_item_tag(movie.id, fiction.id, "did:plc:b"))

        preview = self.db.merge_preview(fiction.id, scifi.id)
        self.assertEqual(len(preview["items"]), 2)
        self.assertEqual(preview["duplicates"], [{"mediaItemId": self.book.id, "userDid": "did:plc:a"}])

        moved = self.db.merge_tags(fiction.id, scifi.id)
        self.assertEqual(moved, 1)
        self.assertEqual(self.db.get_tag(fiction.id).status, "merged")
        self.assertIsNone(self.db.find_active_tag("fiction"))
        self.assertEqual(self.db.tag_usage_count(scifi.id), 2)

    def test_tag_search_treats_wildcards_literally(self):
        self.db.create_tag("sci_fi", "sci-fi")
        self.db.create_tag("Drama", "drama")
        self.db.create_tag("100% true", "100-true")

        self.assertEqual([t["name"] for t in self.db.search_tags("_")], ["sci_fi"])
        self.assertEqual([t["name"] for t in self.db.search_tags("%")], ["100% true"])
        self.assertEqual(len(self.db.search_tags("r")), 2)

    def test_reported_tags_are_hidden_until_resolved(self):
        tag = self.db.create_tag("Boring", "boring")
        self.db.add_item_tag(self.book.id, tag.id, "did:plc:a")
        report = self.db.create_tag_report(self.book.id, tag.id, "did:plc:b", "rude")
        self.assertIsNone(self.db.create_tag_report(self.book.id, tag.id, "did:plc:b", "again"))
        self.assertEqual(self.db.tags_for_item(self.book.id), [])
        self.assertEqual(
            self.db.pending_report_counts(), [{"itemId": self.book.id, "tagId": tag.id, "count": 1}]
        )

        self.assertTrue(self.db.dismiss_tag_report(report.id))
        self.assertEqual([t["slug"] for t in self.db.tags_for_item(self.book.id)], ["boring"])

        self.db.create_tag_report(self.book.id, tag.id, "did:plc:c", "spam")
        self.db.resolve_tag_reports(self.book.id, tag.id)
        self.assertEqual(self.db.tags_for_item(self.book.id), [])
        self.assertEqual(self.db.tag_usage_count(tag.id), 0)

    def test_feedback_update(self):
        feedback = self.db.create_feedback("hello", email="a@b.c")
        self.assertEqual(feedback.status, "new")
        updated = self.db.update_feedback(feedback.id, admin_notes="seen")
        self.assertEqual(updated.status, "new")
        self.assertEqual(updated.admin_notes, "seen")
        self.assertIsNone(self.db.update_feedback(9999, status="done"))


if __name__ == "__main__":
    unittest.main()
