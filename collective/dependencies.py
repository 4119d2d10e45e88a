"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from collective.atproto import (
    AgentFactory,
    InMemoryAgentFactory,
    InMemoryRepoNetwork,
    XrpcAgentFactory,
    XrpcRepoAgent,
)
from collective.config import get_settings
from collective.db import IN_MEMORY_DATABASE_URL, DbClient, PostgresDbClient
from collective.profiles import (
    InMemoryProfileCache,
    ProfileCache,
    ProfileResolver,
    RedisProfileCache,
)

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_repo_network: InMemoryRepoNetwork | None = None
_agent_factory: AgentFactory | None = None
_profile_cache: ProfileCache | None = None
_profile_resolver: ProfileResolver | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so cached state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-process SQLite database")
        _db_client = PostgresDbClient(IN_MEMORY_DATABASE_URL)
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_repo_network() -> InMemoryRepoNetwork:
    """Shared in-memory ATProto network used when no PDS is configured."""
    global _repo_network
    if _repo_network is None:
        _repo_network = InMemoryRepoNetwork()
    return _repo_network


def get_agent_factory() -> AgentFactory:
    global _agent_factory
    if _agent_factory:
        return _agent_factory

    settings = get_settings()
    if settings.use_in_memory_backends:
        _agent_factory = InMemoryAgentFactory(network=get_repo_network())
    else:
        _agent_factory = XrpcAgentFactory(
            default_service_url=settings.pds_url,
            timeout=settings.http_timeout_seconds,
        )
    return _agent_factory


def get_profile_cache() -> ProfileCache:
    global _profile_cache
    if _profile_cache:
        return _profile_cache

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _profile_cache = RedisProfileCache(
            url=settings.redis_url,
            ttl_seconds=settings.profile_cache_ttl_seconds,
            key_prefix=settings.profile_cache_prefix,
        )
    else:
        _profile_cache = InMemoryProfileCache(ttl_seconds=settings.profile_cache_ttl_seconds)
    return _profile_cache


def get_profile_resolver() -> ProfileResolver:
    global _profile_resolver
    if _profile_resolver:
        return _profile_resolver

    settings = get_settings()
    if settings.use_in_memory_backends:
        agent = get_repo_network().agent(None)
    else:
        agent = XrpcRepoAgent(settings.appview_url, timeout=settings.http_timeout_seconds)
    _profile_resolver = ProfileResolver(cache=get_profile_cache(), agent=agent)
    return _profile_resolver
