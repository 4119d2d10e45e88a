"""
Activity feed events.

Feed writes are best-effort: a failure is logged and never fails the
request that triggered it.
"""

from __future__ import annotations

import logging
from typing import Optional

from collective.atproto import AtprotoError, RepoAgent
from collective.db import DbClient

logger = logging.getLogger(__name__)

# (verb, progressive) per media type
_VERBS = {
    "book": ("read", "reading"),
    "article": ("read", "reading"),
    "movie": ("watch", "watching"),
    "tv": ("watch", "watching"),
    "music": ("listen to", "listening to"),
    "podcast": ("listen to", "listening to"),
    "game": ("play", "playing"),
}


def media_link(media_item_id) -> Optional[str]:
    return f"/items/{media_item_id}" if media_item_id else None


def actor_handle(db: DbClient, agent: RepoAgent) -> str:
    """Handle of the acting user, from the users table or their profile."""
    user = db.get_user(agent.did)
    if user and user.handle:
        return user.handle
    try:
        return agent.get_profile(agent.did).get("handle") or agent.did
    except AtprotoError:
        return agent.did


def status_event_name(
    handle: str,
    title: str,
    media_type: Optional[str],
    status: Optional[str],
    old_status: Optional[str],
    is_new: bool,
) -> Optional[str]:
    """
    Describe a list-item status transition, or None when nothing happened.

    `want` only counts for brand-new items; other statuses count when the
    status actually changed.
    """
    verbs = _VERBS.get(media_type or "")
    if not verbs or not status:
        return None
    verb, progressive = verbs
    if status == "want" and is_new:
        return f'{handle} wants to {verb} "{title}"'
    if status == old_status:
        return None
    if status == "in-progress":
        return f'{handle} started {progressive} "{title}"'
    if status == "completed":
        return f'{handle} finished {progressive} "{title}"'
    return None


def emit(db: DbClient, event_name: str, user_did: str, link: Optional[str] = None) -> None:
    try:
        db.add_feed_event(event_name, user_did, link)
    except Exception:
        logger.exception("Failed to create feed event %r", event_name)


def emit_status_event(
    db: DbClient,
    agent: RepoAgent,
    *,
    title: str,
    media_type: Optional[str],
    media_item_id,
    status: Optional[str],
    old_status: Optional[str] = None,
    is_new: bool = False,
) -> None:
    if not status or (not is_new and status == old_status):
        return
    name = status_event_name(
        actor_handle(db, agent), title, media_type, status, old_status, is_new
    )
    if name:
        emit(db, name, agent.did, media_link(media_item_id))
