"""
Session resolution: maps the session cookie to an ATProto agent.

The OAuth login flow that writes `auth_sessions` rows lives outside this
service; here we only read (and on logout, delete) them.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, Response

from collective.activity import record_activity
from collective.atproto import AgentFactory, AtprotoError, RepoAgent
from collective.config import get_settings
from collective.db import DbClient
from collective.dependencies import get_agent_factory, get_db_client

logger = logging.getLogger(__name__)


def session_key(request: Request) -> Optional[str]:
    return request.cookies.get(get_settings().session_cookie_name)


def get_optional_agent(
    request: Request,
    response: Response,
    db: DbClient = Depends(get_db_client),
    factory: AgentFactory = Depends(get_agent_factory),
) -> Optional[RepoAgent]:
    response.headers["Vary"] = "Cookie"
    key = session_key(request)
    if not key:
        return None
    session = db.get_session(key)
    if not session:
        return None

    response.headers["cache-control"] = "private, no-store"
    try:
        agent = factory.for_session(session.did, session.pds_url, session.access_token)
    except AtprotoError as exc:
        logger.warning("Dropping unusable session for %s: %s", session.did, exc.message)
        db.delete_session(key)
        return None

    record_activity(db, agent)
    return agent


def get_session_agent(agent: Optional[RepoAgent] = Depends(get_optional_agent)) -> RepoAgent:
    if agent is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return agent


def require_admin(
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
) -> RepoAgent:
    if not db.is_admin(agent.did):
        raise HTTPException(status_code=403, detail="Admin access required")
    return agent


def get_repo_reader(
    agent: Optional[RepoAgent] = Depends(get_optional_agent),
    factory: AgentFactory = Depends(get_agent_factory),
) -> Callable[[str], RepoAgent]:
    """Dependency returning `agent_for_repo(did)` for public reads of any repo."""

    def agent_for_repo(did: str) -> RepoAgent:
        if agent is not None:
            return agent
        return factory.public()

    return agent_for_repo
