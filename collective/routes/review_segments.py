"""
Review segments: progress notes ("at 40% I think...") kept only in the
user's repo. Nothing here touches the database.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from collective.atproto import REVIEW_SEGMENT_COLLECTION, RepoAgent, RepoRecord, next_tid
from collective.auth import get_session_agent
from collective.records import now_iso
from collective.routes.common import blank_to_none, owned_uri, require_record
from collective.schemas import ReviewSegmentPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviewsegments", tags=["review segments"])

# Optional fields, in the order they appear on the record.
_OPTIONAL_FIELDS = (
    ("title", "title"),
    ("text", "text"),
    ("media_item_id", "mediaItemId"),
    ("media_type", "mediaType"),
    ("list_item", "listItem"),
)


def _check_percentage(percentage: Optional[float]) -> None:
    if percentage is not None and not 0 <= percentage <= 100:
        raise HTTPException(status_code=400, detail="Percentage must be between 0 and 100")


def _clean(value):
    if isinstance(value, str):
        return blank_to_none(value)
    return value or None


def _segment_response(uri: str, cid: str, record: dict) -> dict:
    return {
        "success": True,
        "uri": uri,
        "cid": cid,
        "reviewSegment": {"uri": uri, "cid": cid, "value": record},
    }


def _sorted(records: list[RepoRecord]) -> list[dict]:
    ordered = sorted(records, key=lambda r: r.value.get("percentage") or 0)
    return [record.as_dict() for record in ordered]


@router.post("")
def create_segment(payload: ReviewSegmentPayload, agent: RepoAgent = Depends(get_session_agent)):
    if payload.percentage is None:
        raise HTTPException(status_code=400, detail="Percentage is required")
    _check_percentage(payload.percentage)

    record = {"$type": REVIEW_SEGMENT_COLLECTION, "percentage": payload.percentage, "createdAt": now_iso()}
    for attr, key in _OPTIONAL_FIELDS:
        value = _clean(getattr(payload, attr))
        if value is not None:
            record[key] = value

    uri, cid = agent.put_record(REVIEW_SEGMENT_COLLECTION, next_tid(), record)
    logger.info("Created review segment %s", uri)
    return _segment_response(uri, cid, record)


@router.get("/media/{media_item_id}")
def segments_for_media(media_item_id: int, agent: RepoAgent = Depends(get_session_agent)):
    records = agent.list_records(agent.did, REVIEW_SEGMENT_COLLECTION)
    return {"segments": _sorted([r for r in records if r.value.get("mediaItemId") == media_item_id])}


@router.get("/list/{list_item_uri:path}")
def segments_for_list_item(list_item_uri: str, agent: RepoAgent = Depends(get_session_agent)):
    records = agent.list_records(agent.did, REVIEW_SEGMENT_COLLECTION)
    return {"segments": _sorted([r for r in records if r.value.get("listItem") == list_item_uri])}


@router.get("/user/{did}")
def segments_for_user(
    did: str,
    media_item_id: Optional[int] = Query(default=None, alias="mediaItemId"),
    agent: RepoAgent = Depends(get_session_agent),
):
    records = agent.list_records(did, REVIEW_SEGMENT_COLLECTION)
    if media_item_id:
        records = [r for r in records if r.value.get("mediaItemId") == media_item_id]
    return {"segments": _sorted(records)}


@router.put("/{segment_uri:path}")
def update_segment(
    segment_uri: str,
    payload: ReviewSegmentPayload,
    agent: RepoAgent = Depends(get_session_agent),
):
    parsed = owned_uri(segment_uri, agent.did, "review segment")
    current = require_record(agent, parsed, "review segment").value
    _check_percentage(payload.percentage)

    record = {
        "$type": REVIEW_SEGMENT_COLLECTION,
        "percentage": payload.percentage if payload.percentage is not None else current.get("percentage"),
        "createdAt": current.get("createdAt") or now_iso(),
    }
    for attr, key in _OPTIONAL_FIELDS:
        if attr in payload.model_fields_set:
            value = _clean(getattr(payload, attr))
        else:
            value = current.get(key) or None
        if value is not None:
            record[key] = value

    uri, cid = agent.put_record(REVIEW_SEGMENT_COLLECTION, parsed.rkey, record)
    return _segment_response(uri, cid, record)


@router.delete("/{segment_uri:path}")
def delete_segment(segment_uri: str, agent: RepoAgent = Depends(get_session_agent)):
    parsed = owned_uri(segment_uri, agent.did, "review segment")
    agent.delete_record(REVIEW_SEGMENT_COLLECTION, parsed.rkey)
    return {"success": True}
