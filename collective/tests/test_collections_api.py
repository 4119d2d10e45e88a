import unittest

from collective.atproto import LIST_COLLECTION, LIST_ITEM_COLLECTION
from collective.tests.support import ApiTestCase, enc

ALICE = "did:plc:alice"
BOB = "did:plc:bob"


class CollectionsApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.book = self.db.create_media_item("book", "Dune", creator="Frank Herbert")
        self.login(ALICE, "alice.test")

    def _events(self):
        return [event["eventName"] for event in self.client.get("/feed/events").json()["events"]]

    def test_requires_session(self):
        self.logout()
        response = self.client.get("/collections")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Not authenticated")

    def test_first_request_registers_user_with_inbox(self):
        response = self.client.get("/collections")
        self.assertEqual(response.status_code, 200)
        collections = response.json()["collections"]
        self.assertEqual(len(collections), 1)
        self.assertEqual(collections[0]["name"], "Inbox")
        self.assertTrue(collections[0]["isDefault"])

        user = self.db.get_user(ALICE)
        self.assertEqual(user.handle, "alice.test")
        self.assertIn("alice.test joined Collective!", self._events())

        # A second request must not create another Inbox.
        self.assertEqual(len(self.client.get("/collections").json()["collections"]), 1)

    def test_create_update_and_delete_collection(self):
        self.client.get("/collections")
        response = self.client.post("/collections", json={"name": "Sci-fi", "visibility": "private"})
        self.assertEqual(response.status_code, 200)
        created = response.json()
        self.assertFalse(created["isDefault"])
        self.assertEqual(created["visibility"], "private")

        self.assertEqual(self.client.post("/collections", json={}).status_code, 400)

        response = self.client.put(f"/collections/{enc(created['uri'])}", json={"name": "SF"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "SF")
        self.assertEqual(response.json()["visibility"], "private")

        response = self.client.delete(f"/collections/{enc(created['uri'])}")
        self.assertEqual(response.json(), {"success": True})

    def test_default_list_cannot_be_deleted(self):
        inbox = self.default_list_uri()
        response = self.client.delete(f"/collections/{enc(inbox)}")
        self.assertEqual(response.status_code, 403)

    def test_cannot_modify_someone_elses_list(self):
        other = self.agent(BOB)
        uri, _ = other.create_record(LIST_COLLECTION, {"name": "Bob's"})
        response = self.client.put(f"/collections/{enc(uri)}", json={"name": "mine now"})
        self.assertEqual(response.status_code, 403)

    def test_add_item_then_merge_with_review(self):
        inbox = self.default_list_uri()
        response = self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={
                "title": "Dune",
                "mediaItemId": self.book.id,
                "mediaType": "book",
                "status": "want",
            },
        )
        self.assertEqual(response.status_code, 200)
        created = response.json()
        self.assertTrue(created["created"])
        self.assertEqual(created["order"], 1)
        self.assertEqual(self.db.get_media_item(self.book.id).total_saves, 1)
        self.assertIn('alice.test wants to read "Dune"', self._events())

        response = self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={
                "title": "Dune",
                "mediaItemId": self.book.id,
                "mediaType": "book",
                "status": "completed",
                "rating": 4.5,
                "review": "Spice must flow",
            },
        )
        merged = response.json()
        self.assertTrue(merged["updated"])
        self.assertEqual(merged["uri"], created["uri"])
        self.assertEqual(merged["status"], "completed")

        item = self.db.get_media_item(self.book.id)
        self.assertEqual(item.total_saves, 1)
        self.assertEqual(item.stats.total_ratings, 1)
        self.assertEqual(item.stats.total_reviews, 1)
        self.assertEqual(item.stats.average_rating, 4.5)

        review = self.db.get_review(ALICE, self.book.id, "book")
        self.assertEqual(review.list_item_uri, created["uri"])
        self.assertIsNotNone(review.review_uri)

        events = self._events()
        self.assertIn('alice.test finished reading "Dune"', events)
        self.assertIn('alice.test reviewed "Dune"', events)

        items = self.client.get(f"/collections/{enc(inbox)}/items").json()["items"]
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["mediaItem"]["totalReviews"], 1)

    def test_invalid_rating_is_rejected(self):
        inbox = self.default_list_uri()
        response = self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={
                "title": "Dune",
                "mediaItemId": self.book.id,
                "mediaType": "book",
                "rating": 7,
                "review": "too much",
            },
        )
        self.assertEqual(response.status_code, 400)

    def test_update_item_clears_review_and_delete_decrements_saves(self):
        inbox = self.default_list_uri()
        item_uri = self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={
                "title": "Dune",
                "mediaItemId": self.book.id,
                "mediaType": "book",
                "status": "in-progress",
                "rating": 3,
                "review": "so far so good",
            },
        ).json()["uri"]
        self.assertIsNotNone(self.db.get_review(ALICE, self.book.id, "book"))

        response = self.client.put(
            f"/collections/{enc(inbox)}/items/{enc(item_uri)}",
            json={"status": "completed", "notes": "reread", "rating": 3, "review": " "},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "completed")
        self.assertEqual(response.json()["notes"], "reread")
        self.assertIsNone(self.db.get_review(ALICE, self.book.id, "book"))
        self.assertEqual(self.db.get_media_item(self.book.id).stats.total_ratings, 0)

        response = self.client.delete(f"/collections/{enc(inbox)}/items/{enc(item_uri)}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.db.get_media_item(self.book.id).total_saves, 0)
        self.assertEqual(self.agent(ALICE).list_records(ALICE, LIST_ITEM_COLLECTION), [])

    def test_delete_item_removes_review_written_from_it(self):
        inbox = self.default_list_uri()
        item_uri = self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={
                "title": "Dune",
                "mediaItemId": self.book.id,
                "mediaType": "book",
                "rating": 5,
                "review": "classic",
            },
        ).json()["uri"]
        self.client.delete(f"/collections/{enc(inbox)}/items/{enc(item_uri)}")
        self.assertIsNone(self.db.get_review(ALICE, self.book.id, "book"))
        self.assertEqual(self.db.get_media_item(self.book.id).stats.total_reviews, 0)

    def test_reorder(self):
        inbox = self.default_list_uri()
        first = self.client.post(f"/collections/{enc(inbox)}/items", json={"title": "A"}).json()
        second = self.client.post(f"/collections/{enc(inbox)}/items", json={"title": "B"}).json()
        self.assertEqual(second["order"], 2)

        response = self.client.put(
            f"/collections/{enc(inbox)}/reorder",
            json={"items": [{"uri": first["uri"], "order": 5}, {"uri": "at://x/y/z", "order": 1}]},
        )
        self.assertEqual(response.json()["updated"], 1)
        titles = [i["title"] for i in self.client.get(f"/collections/{enc(inbox)}/items").json()["items"]]
        self.assertEqual(titles, ["A", "B"])

    def test_clone_marks_reviewed_items_completed(self):
        self.client.get("/collections")
        source = self.client.post("/collections", json={"name": "Classics"}).json()["uri"]
        self.client.post(
            f"/collections/{enc(source)}/items",
            json={"title": "Dune", "mediaItemId": self.book.id, "mediaType": "book", "status": "want"},
        )
        self.db.save_review(ALICE, self.book.id, "book", 4, "good")

        response = self.client.post(f"/collections/{enc(source)}/clone")
        self.assertEqual(response.status_code, 200)
        clone = response.json()
        self.assertEqual(clone["name"], "Classics (Copy)")
        self.assertEqual(clone["parentListUri"], source)
        self.assertEqual(clone["itemCount"], 1)

        items = self.client.get(f"/collections/{enc(clone['uri'])}/items").json()["items"]
        self.assertEqual(items[0]["status"], "completed")

        collections = {c["uri"]: c for c in self.client.get("/collections").json()["collections"]}
        self.assertEqual(collections[source]["copyCount"], 1)

    def test_clone_missing_list(self):
        response = self.client.post(
            f"/collections/{enc('at://did:plc:alice/app.collectivesocial.feed.list/nope')}/clone"
        )
        self.assertEqual(response.status_code, 404)

    def test_recommenders_are_resolved_and_deduped_on_merge(self):
        self.register(BOB, "bob.test")
        inbox = self.default_list_uri()
        created = self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={"title": "Dune", "recommendedBy": "bob.test"},
        ).json()
        self.assertEqual([r["did"] for r in created["recommendations"]], [BOB])

        merged = self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={"title": "Dune", "recommendedBy": ["bob.test", BOB, "unknown.test"]},
        ).json()
        self.assertTrue(merged["updated"])
        self.assertEqual([r["did"] for r in merged["recommendations"]], [BOB, "unknown.test"])

        stored = self.agent(ALICE).list_records(ALICE, LIST_ITEM_COLLECTION)[0].value
        self.assertEqual([r["did"] for r in stored["recommendations"]], [BOB, "unknown.test"])

    def test_status_events_use_media_verbs(self):
        inbox = self.default_list_uri()
        movie = self.db.create_media_item("movie", "Alien")
        body = {"title": "Alien", "mediaItemId": movie.id, "mediaType": "movie", "status": "want"}
        self.client.post(f"/collections/{enc(inbox)}/items", json=body)
        self.client.post(f"/collections/{enc(inbox)}/items", json={**body, "status": "in-progress"})
        for title, media_type, status in (("Blue Train", "music", "completed"), ("Portal", "game", "in-progress")):
            self.client.post(
                f"/collections/{enc(inbox)}/items",
                json={"title": title, "mediaType": media_type, "status": status},
            )

        events = self._events()
        self.assertIn('alice.test wants to watch "Alien"', events)
        self.assertIn('alice.test started watching "Alien"', events)
        self.assertIn('alice.test finished listening to "Blue Train"', events)
        self.assertIn('alice.test started playing "Portal"', events)

    def test_unchanged_status_and_repeat_want_emit_nothing(self):
        inbox = self.default_list_uri()
        body = {"title": "Dune", "mediaItemId": self.book.id, "mediaType": "book", "status": "in-progress"}
        self.client.post(f"/collections/{enc(inbox)}/items", json=body)
        before = self._events()

        self.client.post(f"/collections/{enc(inbox)}/items", json=body)
        self.assertEqual(self._events(), before)

        self.client.post(f"/collections/{enc(inbox)}/items", json={**body, "status": "want"})
        self.assertEqual(self._events(), before)

    def test_public_views_hide_private_lists(self):
        self.client.get("/collections")
        private = self.client.post("/collections", json={"name": "Secret", "visibility": "private"}).json()
        self.client.post(
            f"/collections/{enc(private['uri'])}/items",
            json={"title": "Hidden", "status": "in-progress"},
        )
        inbox = self.default_list_uri()
        self.client.post(
            f"/collections/{enc(inbox)}/items",
            json={"title": "Dune", "mediaItemId": self.book.id, "mediaType": "book", "status": "in-progress"},
        )

        self.logout()
        response = self.client.get(f"/collections/public/{ALICE}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["cache-control"], "public, max-age=60")
        body = response.json()
        self.assertEqual([c["name"] for c in body["collections"]], ["Inbox"])
        self.assertEqual(body["collectionCount"], 1)

        items = self.client.get(f"/collections/public/{ALICE}/in-progress").json()["items"]
        self.assertEqual([i["title"] for i in items], ["Dune"])
        self.assertEqual(items[0]["mediaItem"]["title"], "Dune")
        self.assertEqual(items[0]["listUri"], inbox)


if __name__ == "__main__":
    unittest.main()
