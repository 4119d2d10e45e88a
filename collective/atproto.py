"""
ATProto record access for the API.

Supports an in-memory repo network for tests/local runs and an XRPC client
that talks to a user's PDS for production.
"""

from __future__ import annotations

import base64
import copy
import hashlib
import json
import random
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

LIST_COLLECTION = "app.collectivesocial.feed.list"
LIST_ITEM_COLLECTION = "app.collectivesocial.feed.listitem"
REVIEW_COLLECTION = "app.collectivesocial.feed.review"
REVIEW_SEGMENT_COLLECTION = "app.collectivesocial.feed.reviewsegment"
COMMENT_COLLECTION = "app.collectivesocial.feed.comment"
REACT_COLLECTION = "app.collectivesocial.feed.react"

CURATE_LIST_PURPOSE = "app.collectivesocial.defs#curatelist"

# Used in strong refs when the referenced record cannot be fetched.
PLACEHOLDER_CID = "bafyreib2rxk3rh6kzwq"

_AT_URI_PATTERN = re.compile(r"^at://([^/]+)/([^/]+)/([^/]+)$")
_TID_ALPHABET = "234567abcdefghijklmnopqrstuvwxyz"
_tid_lock = threading.Lock()
_tid_clock_id = random.randrange(1024)
_last_tid_micros = 0


class AtprotoError(Exception):
    """Raised when a PDS/XRPC call fails."""

    def __init__(self, status_code: int, error: str, message: str = ""):
        super().__init__(message or error)
        self.status_code = status_code
        self.error = error
        self.message = message or error


@dataclass(frozen=True)
class AtUri:
    did: str
    collection: str
    rkey: str

    @classmethod
    def parse(cls, uri: str) -> "AtUri":
        match = _AT_URI_PATTERN.match(uri or "")
        if not match:
            raise ValueError(f"bad at-uri: {uri}")
        return cls(did=match.group(1), collection=match.group(2), rkey=match.group(3))

    def __str__(self) -> str:
        return f"at://{self.did}/{self.collection}/{self.rkey}"


def next_tid() -> str:
    """
    Return a new timestamp identifier usable as a record key.

    TIDs are 13 base32-sortable characters: 53 bits of microseconds since the
    epoch followed by a 10-bit clock id. Values are strictly increasing within
    the process.
    """
    global _last_tid_micros
    with _tid_lock:
        micros = int(time.time() * 1_000_000)
        if micros <= _last_tid_micros:
            micros = _last_tid_micros + 1
        _last_tid_micros = micros
    value = (micros << 10) | _tid_clock_id
    chars = []
    for _ in range(13):
        chars.append(_TID_ALPHABET[value & 31])
        value >>= 5
    return "".join(reversed(chars))


@dataclass
class RepoRecord:
    uri: str
    cid: str
    value: dict

    def as_dict(self) -> dict:
        return {"uri": self.uri, "cid": self.cid, "value": self.value}


class RepoAgent(Protocol):
    """Operations the API needs against ATProto repos."""

    did: Optional[str]

    def list_records(self, repo: str, collection: str) -> list[RepoRecord]:
        ...

    def get_record(self, repo: str, collection: str, rkey: str) -> RepoRecord:
        ...

    def create_record(
        self, collection: str, record: dict, rkey: str | None = None
    ) -> tuple[str, str]:
        ...

    def put_record(self, collection: str, rkey: str, record: dict) -> tuple[str, str]:
        ...

    def delete_record(self, collection: str, rkey: str) -> None:
        ...

    def get_profile(self, actor: str) -> dict:
        ...

    def resolve_handle(self, handle: str) -> str:
        ...


def _compute_cid(record: dict) -> str:
    digest = hashlib.sha256(
        json.dumps(record, sort_keys=True, default=str).encode("utf-8")
    ).digest()
    return "bafyrei" + base64.b32encode(digest).decode("ascii").lower().rstrip("=")


@dataclass
class InMemoryRepoNetwork:
    """Shared state behind in-memory agents: repos, profiles and handles."""

    repos: dict = field(default_factory=dict)
    profiles: dict = field(default_factory=dict)
    handles: dict = field(default_factory=dict)

    def register(
        self,
        did: str,
        handle: str,
        display_name: str | None = None,
        avatar: str | None = None,
    ) -> None:
        self.handles[handle] = did
        self.profiles[did] = {
            "did": did,
            "handle": handle,
            "displayName": display_name,
            "avatar": avatar,
        }

    def agent(self, did: str | None = None) -> "InMemoryRepoAgent":
        return InMemoryRepoAgent(network=self, did=did)

    def collection(self, did: str, collection: str) -> dict:
        return self.repos.setdefault(did, {}).setdefault(collection, {})

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.repos.clear()
        self.profiles.clear()
        self.handles.clear()


@dataclass
class InMemoryRepoAgent:
    """Test double for a PDS session."""

    network: InMemoryRepoNetwork
    did: Optional[str] = None

    def _require_did(self) -> str:
        if not self.did:
            raise AtprotoError(401, "AuthRequired", "Authentication required")
        return self.did

    def list_records(self, repo: str, collection: str) -> list[RepoRecord]:
        stored = self.network.collection(repo, collection)
        records = []
        for rkey in sorted(stored, reverse=True):
            cid, value = stored[rkey]
            records.append(
                RepoRecord(
                    uri=f"at://{repo}/{collection}/{rkey}",
                    cid=cid,
                    value=copy.deepcopy(value),
                )
            )
        return records

    def get_record(self, repo: str, collection: str, rkey: str) -> RepoRecord:
        stored = self.network.collection(repo, collection)
        if rkey not in stored:
            raise AtprotoError(
                400, "RecordNotFound", f"Could not locate record: {collection}/{rkey}"
            )
        cid, value = stored[rkey]
        return RepoRecord(
            uri=f"at://{repo}/{collection}/{rkey}", cid=cid, value=copy.deepcopy(value)
        )

    def create_record(
        self, collection: str, record: dict, rkey: str | None = None
    ) -> tuple[str, str]:
        did = self._require_did()
        rkey = rkey or next_tid()
        stored = self.network.collection(did, collection)
        if rkey in stored:
            raise AtprotoError(400, "InvalidRequest", f"Record already exists: {rkey}")
        return self._write(did, collection, rkey, record)

    def put_record(self, collection: str, rkey: str, record: dict) -> tuple[str, str]:
        did = self._require_did()
        return self._write(did, collection, rkey, record)

    def _write(self, did: str, collection: str, rkey: str, record: dict) -> tuple[str, str]:
        value = copy.deepcopy(record)
        value.setdefault("$type", collection)
        cid = _compute_cid(value)
        self.network.collection(did, collection)[rkey] = (cid, value)
        return f"at://{did}/{collection}/{rkey}", cid

    def delete_record(self, collection: str, rkey: str) -> None:
        did = self._require_did()
        self.network.collection(did, collection).pop(rkey, None)

    def get_profile(self, actor: str) -> dict:
        did = self.network.handles.get(actor, actor)
        profile = self.network.profiles.get(did)
        if not profile:
            raise AtprotoError(400, "InvalidRequest", "Profile not found")
        return dict(profile)

    def resolve_handle(self, handle: str) -> str:
        did = self.network.handles.get(handle)
        if not did:
            raise AtprotoError(400, "InvalidRequest", "Unable to resolve handle")
        return did


class XrpcRepoAgent:
    """
    PDS-backed agent using XRPC over HTTP.

    The access token is sent as a bearer token; acquiring and refreshing it
    happens outside this service.
    """

    page_size = 100

    def __init__(
        self,
        service_url: str,
        did: str | None = None,
        access_token: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.service_url = service_url.rstrip("/")
        self.did = did
        self.timeout = timeout
        self._session = session or requests.Session()
        if access_token:
            self._session.headers["Authorization"] = f"Bearer {access_token}"

    def _call(
        self, method: str, nsid: str, *, params: dict | None = None, body: dict | None = None
    ) -> dict:
        url = f"{self.service_url}/xrpc/{nsid}"
        try:
            response = self._session.request(
                method, url, params=params, json=body, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise AtprotoError(502, "UpstreamUnavailable", str(exc)) from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            raise AtprotoError(
                response.status_code,
                payload.get("error") or "UpstreamError",
                payload.get("message") or response.text[:200],
            )
        if not response.content:
            return {}
        return response.json()

    def _require_did(self) -> str:
        if not self.did:
            raise AtprotoError(401, "AuthRequired", "Authentication required")
        return self.did

    def list_records(self, repo: str, collection: str) -> list[RepoRecord]:
        records: list[RepoRecord] = []
        cursor = None
        while True:
            params = {"repo": repo, "collection": collection, "limit": self.page_size}
            if cursor:
                params["cursor"] = cursor
            data = self._call("GET", "com.atproto.repo.listRecords", params=params)
            page = data.get("records") or []
            records.extend(
                RepoRecord(uri=item["uri"], cid=item["cid"], value=item.get("value") or {})
                for item in page
            )
            cursor = data.get("cursor")
            if not cursor or not page:
                return records

    def get_record(self, repo: str, collection: str, rkey: str) -> RepoRecord:
        data = self._call(
            "GET",
            "com.atproto.repo.getRecord",
            params={"repo": repo, "collection": collection, "rkey": rkey},
        )
        return RepoRecord(uri=data["uri"], cid=data.get("cid") or "", value=data.get("value") or {})

    def create_record(
        self, collection: str, record: dict, rkey: str | None = None
    ) -> tuple[str, str]:
        body = {"repo": self._require_did(), "collection": collection, "record": record}
        if rkey:
            body["rkey"] = rkey
        data = self._call("POST", "com.atproto.repo.createRecord", body=body)
        return data["uri"], data["cid"]

    def put_record(self, collection: str, rkey: str, record: dict) -> tuple[str, str]:
        data = self._call(
            "POST",
            "com.atproto.repo.putRecord",
            body={
                "repo": self._require_did(),
                "collection": collection,
                "rkey": rkey,
                "record": record,
            },
        )
        return data["uri"], data["cid"]

    def delete_record(self, collection: str, rkey: str) -> None:
        self._call(
            "POST",
            "com.atproto.repo.deleteRecord",
            body={"repo": self._require_did(), "collection": collection, "rkey": rkey},
        )

    def get_profile(self, actor: str) -> dict:
        return self._call("GET", "app.bsky.actor.getProfile", params={"actor": actor})

    def resolve_handle(self, handle: str) -> str:
        data = self._call(
            "GET", "com.atproto.identity.resolveHandle", params={"handle": handle}
        )
        return data["did"]


class AgentFactory(Protocol):
    """Builds agents for sessions and for anonymous public reads."""

    def for_session(self, did: str, pds_url: str | None, access_token: str | None) -> RepoAgent:
        ...

    def public(self) -> RepoAgent:
        ...


@dataclass
class InMemoryAgentFactory:
    network: InMemoryRepoNetwork

    def for_session(self, did: str, pds_url: str | None, access_token: str | None) -> RepoAgent:
        return self.network.agent(did)

    def public(self) -> RepoAgent:
        return self.network.agent(None)


@dataclass
class XrpcAgentFactory:
    default_service_url: str
    timeout: float = 10.0

    def for_session(self, did: str, pds_url: str | None, access_token: str | None) -> RepoAgent:
        if not access_token:
            raise AtprotoError(401, "AuthRequired", "Session has no access token")
        return XrpcRepoAgent(
            pds_url or self.default_service_url,
            did=did,
            access_token=access_token,
            timeout=self.timeout,
        )

    def public(self) -> RepoAgent:
        return XrpcRepoAgent(self.default_service_url, timeout=self.timeout)


def rkey_of(uri: str) -> str:
    """Return the record key (last path segment) of an at-uri."""
    return AtUri.parse(uri).rkey
