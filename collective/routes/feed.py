"""
Public activity feed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from collective.db import DbClient
from collective.dependencies import get_db_client

router = APIRouter(prefix="/feed", tags=["feed"])


@router.get("/events")
def feed_events(
    response: Response,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: DbClient = Depends(get_db_client),
):
    response.headers["cache-control"] = "public, max-age=30"
    events = db.list_feed_events(limit=limit, offset=offset)
    return {"events": [event.as_dict() for event in events], "limit": limit, "offset": offset}
