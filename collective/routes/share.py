"""
Share links for recommending a media item to people outside the app.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request

from collective.atproto import RepoAgent
from collective.auth import get_session_agent
from collective.config import get_settings
from collective.db import DbClient
from collective.dependencies import get_db_client
from collective.records import iso_timestamp
from collective.schemas import ShareCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/share", tags=["share"])

SHORT_CODE_LENGTH = 10
MAX_CODE_ATTEMPTS = 5


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    return secrets.token_urlsafe(length)[:length]


def share_url(origin: str, short_code: str) -> str:
    return f"{origin.rstrip('/')}/share/{short_code}"


@router.post("")
def create_share_link(
    request: Request,
    payload: ShareCreate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    media_item_id = payload.media_item_id
    media_type = payload.media_type
    if not media_item_id or not media_type:
        raise HTTPException(status_code=400, detail="mediaItemId and mediaType are required")

    origin = request.headers.get("origin") or get_settings().client_url
    link = db.find_share_link(agent.did, media_item_id, media_type)
    if link is None:
        for _ in range(MAX_CODE_ATTEMPTS):
            link = db.create_share_link(generate_short_code(), agent.did, media_item_id, media_type)
            if link is not None:
                break
        else:
            raise HTTPException(status_code=500, detail="Failed to generate unique share code")
        logger.info("Share link %s created for %s item %s", link.short_code, agent.did, media_item_id)

    return {
        "shortCode": link.short_code,
        "url": share_url(origin, link.short_code),
        "timesClicked": link.times_clicked,
    }


@router.get("/{short_code}")
def resolve_share_link(short_code: str, db: DbClient = Depends(get_db_client)):
    link = db.record_share_click(short_code)
    if link is None:
        raise HTTPException(status_code=404, detail="Share link not found")
    logger.info("Share link %s accessed (%s clicks)", short_code, link.times_clicked)
    return {
        "mediaItemId": link.media_item_id,
        "mediaType": link.media_type,
        "recommendedBy": link.user_did,
        "timesClicked": link.times_clicked,
        "createdAt": iso_timestamp(link.created_at),
    }
