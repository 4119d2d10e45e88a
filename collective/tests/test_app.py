import unittest
from unittest import mock

from fastapi.testclient import TestClient

from collective.atproto import REVIEW_COLLECTION, AtprotoError, InMemoryRepoAgent
from collective.dependencies import get_agent_factory, get_db_client
from collective.tests.support import ApiTestCase, enc

ALICE = "did:plc:alice"


class FailingFactory:
    def __init__(self, error: AtprotoError):
        self.agent = mock.Mock(did="did:plc:alice")
        self.agent.list_records.side_effect = error
        self.agent.get_profile.side_effect = error

    def for_session(self, did, pds_url, access_token):
        return self.agent

    def public(self):
        return self.agent


class ErrorHandlingTests(ApiTestCase):
    def _use(self, error: AtprotoError):
        self.app.dependency_overrides[get_agent_factory] = lambda: FailingFactory(error)
        self.login("did:plc:alice")

    def test_upstream_failure_is_bad_gateway(self):
        self._use(AtprotoError(500, "InternalServerError", "pds exploded"))
        response = self.client.get("/collections")
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json(), {"detail": "pds exploded", "error": "InternalServerError"})

    def test_upstream_not_found_passes_through(self):
        self._use(AtprotoError(404, "RepoNotFound", "no such repo"))
        response = self.client.get("/collections")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "RepoNotFound")

    def test_unusable_session_is_dropped(self):
        factory = mock.Mock()
        factory.for_session.side_effect = AtprotoError(401, "AuthRequired", "expired")
        self.app.dependency_overrides[get_agent_factory] = lambda: factory
        key = self.login("did:plc:alice")
        self.assertEqual(self.client.get("/collections").status_code, 401)
        self.assertIsNone(self.db.get_session(key))

    def test_anonymous_responses_vary_on_cookie(self):
        response = self.client.get("/admin/check")
        self.assertEqual(response.headers["vary"], "Cookie")

    def test_unexpected_error_is_internal_server_error(self):
        broken = mock.Mock()
        broken.list_feed_events.side_effect = RuntimeError("database went away")
        self.app.dependency_overrides[get_db_client] = lambda: broken
        client = TestClient(self.app, raise_server_exceptions=False)

        response = client.get("/feed/events")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"detail": "Internal server error"})


class ReviewMirrorTests(ApiTestCase):
    def test_review_is_saved_when_record_write_fails(self):
        book = self.db.create_media_item("book", "Dune")
        self.login(ALICE, "alice.test")
        inbox = self.default_list_uri()
        create_record = InMemoryRepoAgent.create_record

        def failing_create_record(agent, collection, record, rkey=None):
            if collection == REVIEW_COLLECTION:
                raise AtprotoError(500, "InternalServerError", "pds exploded")
            return create_record(agent, collection, record, rkey)

        with mock.patch.object(InMemoryRepoAgent, "create_record", failing_create_record):
            response = self.client.post(
                f"/collections/{enc(inbox)}/items",
                json={
                    "title": "Dune",
                    "mediaItemId": book.id,
                    "mediaType": "book",
                    "rating": 4,
                    "review": "Great",
                },
            )

        self.assertEqual(response.status_code, 200)
        review = self.db.get_review(ALICE, book.id, "book")
        self.assertEqual(review.rating, 4)
        self.assertIsNone(review.review_uri)
        self.assertEqual(self.db.get_media_item(book.id).stats.total_reviews, 1)
        self.assertEqual(self.agent(ALICE).list_records(ALICE, REVIEW_COLLECTION), [])

    def test_failed_review_update_clears_record_uri(self):
        book = self.db.create_media_item("book", "Dune")
        self.login(ALICE, "alice.test")
        inbox = self.default_list_uri()
        body = {"title": "Dune", "mediaItemId": book.id, "mediaType": "book", "rating": 3, "review": "Fine"}
        self.client.post(f"/collections/{enc(inbox)}/items", json=body)
        self.assertIsNotNone(self.db.get_review(ALICE, book.id, "book").review_uri)

        failure = AtprotoError(500, "InternalServerError", "pds exploded")
        put_record = InMemoryRepoAgent.put_record

        def failing_put_record(agent, collection, rkey, record):
            if collection == REVIEW_COLLECTION:
                raise failure
            return put_record(agent, collection, rkey, record)

        with mock.patch.object(InMemoryRepoAgent, "put_record", failing_put_record):
            response = self.client.post(
                f"/collections/{enc(inbox)}/items", json={**body, "rating": 5, "review": "Better"}
            )

        self.assertEqual(response.status_code, 200)
        review = self.db.get_review(ALICE, book.id, "book")
        self.assertEqual(review.rating, 5)
        self.assertIsNone(review.review_uri)
        self.assertEqual(self.db.get_media_item(book.id).stats.average_rating, 5.0)


if __name__ == "__main__":
    unittest.main()
