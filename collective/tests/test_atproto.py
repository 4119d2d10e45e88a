import unittest
from unittest import mock

import requests

from collective.atproto import (
    LIST_COLLECTION,
    AtprotoError,
    AtUri,
    InMemoryRepoNetwork,
    XrpcAgentFactory,
    XrpcRepoAgent,
    next_tid,
    rkey_of,
)


def _response(status_code=200, payload=None):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.content = b"{}" if payload is not None else b""
    response.text = ""
    return response


class AtUriTests(unittest.TestCase):
    def test_parse_and_str(self):
        uri = AtUri.parse("at://did:plc:abc/app.collectivesocial.feed.list/3kxyz")
        self.assertEqual(uri.did, "did:plc:abc")
        self.assertEqual(uri.collection, LIST_COLLECTION)
        self.assertEqual(uri.rkey, "3kxyz")
        self.assertEqual(str(uri), "at://did:plc:abc/app.collectivesocial.feed.list/3kxyz")
        self.assertEqual(rkey_of(str(uri)), "3kxyz")

    def test_parse_rejects_garbage(self):
        for bad in ("", "https://example.com", "at://did:plc:abc/only-collection"):
            with self.assertRaises(ValueError):
                AtUri.parse(bad)


class TidTests(unittest.TestCase):
    def test_tids_are_sortable(self):
        tids = [next_tid() for _ in range(50)]
        self.assertTrue(all(len(tid) == 13 for tid in tids))
        self.assertEqual(tids, sorted(tids))
        self.assertEqual(len(set(tids)), 50)


class InMemoryRepoTests(unittest.TestCase):
    def setUp(self):
        self.network = InMemoryRepoNetwork()
        self.network.register("did:plc:alice", "alice.test", display_name="Alice")
        self.agent = self.network.agent("did:plc:alice")

    def test_create_get_put_delete(self):
        uri, cid = self.agent.create_record(LIST_COLLECTION, {"name": "Books"})
        rkey = AtUri.parse(uri).rkey
        record = self.agent.get_record("did:plc:alice", LIST_COLLECTION, rkey)
        self.assertEqual(record.cid, cid)
        self.assertEqual(record.value["name"], "Books")

        _, new_cid = self.agent.put_record(LIST_COLLECTION, rkey, {"name": "Novels"})
        self.assertNotEqual(new_cid, cid)

        self.agent.delete_record(LIST_COLLECTION, rkey)
        with self.assertRaises(AtprotoError) as ctx:
            self.agent.get_record("did:plc:alice", LIST_COLLECTION, rkey)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_anonymous_writes_are_rejected(self):
        with self.assertRaises(AtprotoError) as ctx:
            self.network.agent(None).create_record(LIST_COLLECTION, {"name": "x"})
        self.assertEqual(ctx.exception.status_code, 401)

    def test_profiles_and_handles(self):
        self.assertEqual(self.agent.resolve_handle("alice.test"), "did:plc:alice")
        self.assertEqual(self.agent.get_profile("alice.test")["displayName"], "Alice")
        with self.assertRaises(AtprotoError):
            self.agent.resolve_handle("nobody.test")


class XrpcRepoAgentTests(unittest.TestCase):
    def test_list_records_follows_cursor(self):
        session = mock.Mock(spec=requests.Session)
        session.headers = {}
        session.request.side_effect = [
            _response(
                payload={
                    "records": [{"uri": "at://d/c/1", "cid": "a", "value": {"n": 1}}],
                    "cursor": "next",
                }
            ),
            _response(payload={"records": [{"uri": "at://d/c/2", "cid": "b", "value": {}}]}),
        ]
        agent = XrpcRepoAgent("https://pds.test/", did="d", access_token="tok", session=session)
        records = agent.list_records("d", "c")

        self.assertEqual([r.uri for r in records], ["at://d/c/1", "at://d/c/2"])
        self.assertEqual(session.headers["Authorization"], "Bearer tok")
        second_params = session.request.call_args_list[1].kwargs["params"]
        self.assertEqual(second_params["cursor"], "next")
        self.assertEqual(second_params["limit"], 100)

    def test_error_response_raises(self):
        session = mock.Mock(spec=requests.Session)
        session.headers = {}
        session.request.return_value = _response(
            status_code=400, payload={"error": "RecordNotFound", "message": "nope"}
        )
        agent = XrpcRepoAgent("https://pds.test", did="d", session=session)
        with self.assertRaises(AtprotoError) as ctx:
            agent.get_record("d", "c", "r")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.error, "RecordNotFound")

    def test_network_failure_is_bad_gateway(self):
        session = mock.Mock(spec=requests.Session)
        session.headers = {}
        session.request.side_effect = requests.ConnectionError("down")
        agent = XrpcRepoAgent("https://pds.test", session=session)
        with self.assertRaises(AtprotoError) as ctx:
            agent.get_profile("alice.test")
        self.assertEqual(ctx.exception.status_code, 502)

    def test_factory_requires_token(self):
        factory = XrpcAgentFactory(default_service_url="https://pds.test")
        with self.assertRaises(AtprotoError):
            factory.for_session("did:plc:alice", None, None)
        agent = factory.for_session("did:plc:alice", "https://other.test", "tok")
        self.assertEqual(agent.service_url, "https://other.test")


if __name__ == "__main__":
    unittest.main()
