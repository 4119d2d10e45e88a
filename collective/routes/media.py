"""
Media catalog routes backed by the local database.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from collective.atproto import RepoAgent
from collective.auth import get_session_agent
from collective.db import DbClient
from collective.dependencies import get_db_client, get_profile_resolver
from collective.profiles import ProfileResolver
from collective.records import MEDIA_TYPES, iso_timestamp
from collective.schemas import MediaCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


@router.post("/add")
def add_media_item(
    payload: MediaCreate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    if not payload.title or not payload.media_type:
        raise HTTPException(status_code=400, detail="Title and mediaType are required")
    if payload.media_type not in MEDIA_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported mediaType: {payload.media_type}")

    if payload.isbn and payload.media_type == "book":
        existing = db.find_media_item_by_isbn(payload.isbn, payload.media_type)
        if existing:
            return {"mediaItemId": existing.id, "existed": True}

    item = db.create_media_item(
        payload.media_type,
        payload.title,
        creator=payload.creator or None,
        isbn=payload.isbn or None,
        external_id=payload.external_id or None,
        cover_image=payload.cover_image or None,
        description=payload.description or None,
        published_year=payload.published_year,
        length=payload.length,
    )
    logger.info("Added media item %s (%s) for %s", item.id, item.media_type, agent.did)
    return {"mediaItemId": item.id, "existed": False}


@router.get("/{media_item_id}")
def get_media_item(media_item_id: int, db: DbClient = Depends(get_db_client)):
    item = db.get_media_item(media_item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Media item not found")
    return item.as_dict()


@router.get("/{media_item_id}/reviews")
def list_media_reviews(
    media_item_id: int,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: DbClient = Depends(get_db_client),
    profiles: ProfileResolver = Depends(get_profile_resolver),
):
    reviews = db.list_reviews_for_media(media_item_id, limit=limit, offset=offset)
    results = []
    for review in reviews:
        profile = profiles.get_profile(review.author_did) or {}
        handle = profile.get("handle") or review.author_did
        results.append(
            {
                "id": review.id,
                "authorDid": review.author_did,
                "authorHandle": handle,
                "authorDisplayName": profile.get("displayName") or handle,
                "authorAvatar": profile.get("avatar"),
                "rating": review.rating,
                "review": review.review,
                "reviewUri": review.review_uri,
                "listItemUri": review.list_item_uri,
                "createdAt": iso_timestamp(review.created_at),
                "updatedAt": iso_timestamp(review.updated_at),
            }
        )
    return {"reviews": results, "hasMore": len(reviews) == limit}
