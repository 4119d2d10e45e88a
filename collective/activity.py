"""
User registration and activity tracking for authenticated requests.
"""

from __future__ import annotations

import logging
import time

from collective.atproto import CURATE_LIST_PURPOSE, LIST_COLLECTION, AtprotoError, RepoAgent
from collective.db import DbClient
from collective.records import now_iso

logger = logging.getLogger(__name__)

PROFILE_REFRESH_SECONDS = 24 * 60 * 60


def default_list_record() -> dict:
    return {
        "$type": LIST_COLLECTION,
        "name": "Inbox",
        "description": "Your default inbox for recommendations and items to review",
        "visibility": "public",
        "isDefault": True,
        "purpose": CURATE_LIST_PURPOSE,
        "createdAt": now_iso(),
    }


def _register(db: DbClient, agent: RepoAgent) -> None:
    profile = agent.get_profile(agent.did)
    handle = profile.get("handle") or agent.did
    _, created = db.create_user(
        agent.did,
        handle,
        display_name=profile.get("displayName"),
        avatar=profile.get("avatar"),
    )
    if not created:
        return
    agent.create_record(LIST_COLLECTION, default_list_record())
    logger.info("Created default Inbox list for %s", agent.did)
    db.add_feed_event(f"{handle} joined Collective!", agent.did)


def record_activity(db: DbClient, agent: RepoAgent) -> None:
    """
    Register first-time users and bump activity for known ones.

    Errors are logged; activity tracking never fails the request.
    """
    did = agent.did
    if not did:
        return
    try:
        user = db.get_user(did)
        if user is None:
            _register(db, agent)
            logger.info("New user first login recorded: %s", did)
            return
        if time.time() - user.updated_at > PROFILE_REFRESH_SECONDS:
            try:
                profile = agent.get_profile(did)
            except AtprotoError as exc:
                logger.info("Profile refresh failed for %s: %s", did, exc.message)
                db.touch_user(did)
                return
            db.update_user_profile(
                did,
                profile.get("handle") or user.handle,
                profile.get("displayName"),
                profile.get("avatar"),
            )
        else:
            db.touch_user(did)
    except Exception:
        logger.exception("Failed to track user activity for %s", did)
