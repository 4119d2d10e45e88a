"""
Profile lookups with a small cache in front of the AppView.

Supports an in-memory cache for tests/local runs and a Redis-backed cache
for production.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from collective.atproto import AtprotoError, RepoAgent

logger = logging.getLogger(__name__)


class ProfileCache(Protocol):
    """Key/value cache for profile dicts."""

    def get(self, actor: str) -> Optional[dict]:
        ...

    def set(self, actor: str, profile: dict) -> None:
        ...


@dataclass
class InMemoryProfileCache:
    ttl_seconds: int = 3600
    entries: dict = field(default_factory=dict)

    def get(self, actor: str) -> Optional[dict]:
        entry = self.entries.get(actor)
        if not entry:
            return None
        expires_at, profile = entry
        if expires_at < time.time():
            self.entries.pop(actor, None)
            return None
        return dict(profile)

    def set(self, actor: str, profile: dict) -> None:
        self.entries[actor] = (time.time() + self.ttl_seconds, dict(profile))

    def clear(self) -> None:
        self.entries.clear()


@dataclass
class RedisProfileCache:
    """Redis-backed cache storing JSON blobs with SETEX."""

    url: str
    ttl_seconds: int = 3600
    key_prefix: str = "collective:profile:"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def get(self, actor: str) -> Optional[dict]:
        try:
            raw = self.client.get(self.key_prefix + actor)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and treat as a miss.
            self.client = redis.Redis.from_url(self.url)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable cached profile for %s", actor)
            return None

    def set(self, actor: str, profile: dict) -> None:
        try:
            self.client.setex(self.key_prefix + actor, self.ttl_seconds, json.dumps(profile))
        except redis_exceptions.ConnectionError:
            self.client = redis.Redis.from_url(self.url)
            logger.warning("Profile cache unavailable; skipped caching %s", actor)


def _normalize(data: dict) -> dict:
    return {
        "did": data.get("did"),
        "handle": data.get("handle"),
        "displayName": data.get("displayName"),
        "avatar": data.get("avatar"),
    }


@dataclass
class ProfileResolver:
    """
    Resolves DIDs and handles to public profiles.

    `agent` is an unauthenticated agent pointed at the AppView. Lookup
    failures are logged and reported as None so callers can fall back to
    showing the raw DID.
    """

    cache: ProfileCache
    agent: RepoAgent

    def get_profile(self, actor: str) -> Optional[dict]:
        if not actor:
            return None
        cached = self.cache.get(actor)
        if cached:
            return cached
        try:
            profile = _normalize(self.agent.get_profile(actor))
        except AtprotoError as exc:
            logger.info("Profile lookup failed for %s: %s", actor, exc.message)
            return None
        self.cache.set(actor, profile)
        if profile.get("did") and profile["did"] != actor:
            self.cache.set(profile["did"], profile)
        return profile

    def handles_for(self, dids: Iterable[str]) -> dict[str, str]:
        handles = {}
        for did in set(dids):
            profile = self.get_profile(did)
            handles[did] = (profile or {}).get("handle") or did
        return handles

    def resolve_handle(self, handle: str) -> Optional[str]:
        try:
            return self.agent.resolve_handle(handle)
        except AtprotoError as exc:
            logger.info("Handle resolution failed for %s: %s", handle, exc.message)
            return None
