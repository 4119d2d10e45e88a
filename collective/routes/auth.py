"""
Session endpoints. Login happens elsewhere; these only inspect or end the
session the login flow created.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from collective.atproto import RepoAgent
from collective.auth import get_optional_agent, session_key
from collective.config import get_settings
from collective.db import DbClient
from collective.dependencies import get_db_client, get_profile_resolver
from collective.profiles import ProfileResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/logout")
def logout(request: Request, response: Response, db: DbClient = Depends(get_db_client)):
    response.headers["cache-control"] = "no-store"
    key = session_key(request)
    if key:
        db.delete_session(key)
        logger.info("Session ended")
    response.delete_cookie(get_settings().session_cookie_name, path="/")
    return {"success": True}


@router.get("/session")
def current_session(
    agent: Optional[RepoAgent] = Depends(get_optional_agent),
    db: DbClient = Depends(get_db_client),
    profiles: ProfileResolver = Depends(get_profile_resolver),
):
    if agent is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.get_user(agent.did)
    handle = user.handle if user and user.handle else None
    if not handle:
        handle = (profiles.get_profile(agent.did) or {}).get("handle") or agent.did
    return {"did": agent.did, "handle": handle, "isAdmin": bool(user and user.is_admin)}
