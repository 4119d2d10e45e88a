"""
Shared fixtures for API tests: a fresh SQLite database, an in-memory ATProto
network and a TestClient wired to both.
"""

import unittest
import uuid
from urllib.parse import quote

from fastapi.testclient import TestClient

from collective.app import create_app
from collective.atproto import InMemoryAgentFactory, InMemoryRepoNetwork
from collective.db import IN_MEMORY_DATABASE_URL, PostgresDbClient
from collective.dependencies import (
    get_agent_factory,
    get_db_client,
    get_profile_resolver,
    get_repo_network,
)
from collective.profiles import InMemoryProfileCache, ProfileResolver


def enc(uri: str) -> str:
    """Percent-encode an at-uri for use as a path segment."""
    return quote(uri, safe="")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.db = PostgresDbClient(IN_MEMORY_DATABASE_URL)
        self.network = InMemoryRepoNetwork()
        self.profiles = ProfileResolver(
            cache=InMemoryProfileCache(), agent=self.network.agent(None)
        )
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_repo_network] = lambda: self.network
        self.app.dependency_overrides[get_agent_factory] = lambda: InMemoryAgentFactory(
            self.network
        )
        self.app.dependency_overrides[get_profile_resolver] = lambda: self.profiles
        self.client = TestClient(self.app)

    def tearDown(self):
        self.client.close()

    def register(self, did: str, handle: str, display_name: str | None = None) -> None:
        self.network.register(did, handle, display_name=display_name)

    def login(self, did: str, handle: str | None = None, admin: bool = False) -> str:
        """Create a session row for `did` and send its cookie on later requests."""
        if handle:
            self.register(did, handle)
        key = uuid.uuid4().hex
        self.db.save_session(key, did)
        self.client.cookies.set("sid", key)
        if admin:
            # Register through a normal request first so the Inbox exists.
            self.client.get("/auth/session")
            self.db.set_admin(did, handle)
        return key

    def logout(self) -> None:
        self.client.cookies.clear()

    def agent(self, did: str):
        return self.network.agent(did)

    def default_list_uri(self) -> str:
        lists = self.client.get("/collections").json()["collections"]
        return next(c["uri"] for c in lists if c["isDefault"])
