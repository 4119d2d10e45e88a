"""
Review upsert and removal.

A review lives in two places: the `reviews` table (which drives the media
item's aggregate stats) and a mirrored `feed.review` record in the author's
repo. The database write is authoritative; mirroring is best-effort.
"""

from __future__ import annotations

import logging
from typing import Optional

from collective.atproto import REVIEW_COLLECTION, AtprotoError, AtUri, RepoAgent
from collective.db import DbClient
from collective.feed import actor_handle, emit, media_link
from collective.ratings import validate_rating
from collective.records import ReviewRecord, iso_timestamp, now_iso

logger = logging.getLogger(__name__)


def _mirror_review(
    agent: RepoAgent,
    existing: Optional[ReviewRecord],
    media_item_id: int,
    media_type: str,
    rating: float,
    text: str,
    list_item_uri: Optional[str],
) -> Optional[str]:
    now = now_iso()
    record = {
        "$type": REVIEW_COLLECTION,
        "text": text,
        "rating": rating,
        "mediaItemId": media_item_id,
        "mediaType": media_type,
        "createdAt": now,
        "updatedAt": now,
    }
    if list_item_uri:
        record["listItem"] = list_item_uri
    try:
        if existing and existing.review_uri:
            record["createdAt"] = _iso_or_now(existing.created_at)
            uri, _ = agent.put_record(
                REVIEW_COLLECTION, AtUri.parse(existing.review_uri).rkey, record
            )
        else:
            uri, _ = agent.create_record(REVIEW_COLLECTION, record)
        return uri
    except (AtprotoError, ValueError) as exc:
        logger.error("Failed to write review record for %s: %s", agent.did, exc)
        return None


def _iso_or_now(ts: Optional[float]) -> str:
    return iso_timestamp(ts) if ts else now_iso()


def upsert_review(
    db: DbClient,
    agent: RepoAgent,
    media_item_id: int,
    media_type: str,
    rating: float,
    text: str,
    list_item_uri: Optional[str] = None,
    title: Optional[str] = None,
) -> ReviewRecord:
    """
    Create or update the caller's review of a media item.

    Raises ValueError for a rating outside 0-5 in half steps.
    """
    rating = validate_rating(rating)
    text = text.strip()
    existing = db.get_review(agent.did, media_item_id, media_type)
    review_uri = _mirror_review(
        agent, existing, media_item_id, media_type, rating, text, list_item_uri
    )
    saved, previous = db.save_review(
        agent.did,
        media_item_id,
        media_type,
        rating,
        text,
        list_item_uri=list_item_uri,
        review_uri=review_uri,
    )
    if previous is None:
        handle = actor_handle(db, agent)
        emit(db, f'{handle} reviewed "{title or "an item"}"', agent.did, media_link(media_item_id))
    return saved


def remove_review(
    db: DbClient, agent: RepoAgent, media_item_id: int, media_type: str
) -> Optional[ReviewRecord]:
    removed = db.delete_review(agent.did, media_item_id, media_type)
    if removed and removed.review_uri:
        try:
            agent.delete_record(REVIEW_COLLECTION, AtUri.parse(removed.review_uri).rkey)
        except (AtprotoError, ValueError) as exc:
            logger.warning("Failed to delete review record %s: %s", removed.review_uri, exc)
    return removed
