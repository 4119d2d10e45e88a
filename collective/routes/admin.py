"""
Admin dashboard: users, media and share link stats.
"""

from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from collective.atproto import RepoAgent
from collective.auth import get_optional_agent, require_admin
from collective.config import get_settings
from collective.db import DbClient
from collective.dependencies import get_db_client, get_profile_resolver
from collective.profiles import ProfileResolver
from collective.records import iso_timestamp
from collective.routes.share import share_url

router = APIRouter(prefix="/admin", tags=["admin"])

RECENT_LIMIT = 10


@router.get("/users")
def admin_users(
    _: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    profiles: ProfileResolver = Depends(get_profile_resolver),
):
    users = []
    for user in db.list_recent_users(limit=RECENT_LIMIT):
        profile = profiles.get_profile(user.did) or {}
        users.append(
            {
                "did": user.did,
                "handle": profile.get("handle") or user.handle,
                "firstLoginAt": iso_timestamp(user.first_login_at),
                "lastActivityAt": iso_timestamp(user.last_activity_at),
                "isAdmin": user.is_admin,
                "createdAt": iso_timestamp(user.created_at),
            }
        )
    return {"totalUsers": db.count_users(), "users": users}


@router.get("/media")
def admin_media(_: RepoAgent = Depends(require_admin), db: DbClient = Depends(get_db_client)):
    items = [
        {
            "id": item.id,
            "mediaType": item.media_type,
            "title": item.title,
            "creator": item.creator,
            "isbn": item.isbn,
            "totalRatings": item.stats.total_ratings,
            "totalReviews": item.stats.total_reviews,
            "totalSaves": item.total_saves,
            "averageRating": item.stats.average_rating,
            "createdAt": iso_timestamp(item.created_at),
        }
        for item in db.list_recent_media_items(limit=RECENT_LIMIT)
    ]
    return {"totalMediaItems": db.count_media_items(), "mediaItems": items}


@router.get("/share-links")
def admin_share_links(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: str = Query(default="timesClicked", alias="sortBy"),
    order: str = Query(default="desc"),
    _: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if sort_by not in ("timesClicked", "createdAt"):
        sort_by = "timesClicked"
    if order not in ("asc", "desc"):
        order = "desc"

    total = db.count_share_links()
    origin = request.headers.get("origin") or get_settings().client_url
    rows = db.list_share_links(limit=limit, offset=(page - 1) * limit, sort_by=sort_by, order=order)
    links = []
    for row in rows:
        link = row["link"]
        links.append(
            {
                "id": link.id,
                "shortCode": link.short_code,
                "userDid": link.user_did,
                "mediaItemId": link.media_item_id,
                "mediaType": link.media_type,
                "timesClicked": link.times_clicked,
                "createdAt": iso_timestamp(link.created_at),
                "updatedAt": iso_timestamp(link.updated_at),
                "title": row["title"],
                "creator": row["creator"],
                "coverImage": row["cover_image"],
                "url": share_url(origin, link.short_code),
            }
        )
    return {
        "totalLinks": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit),
        "sortBy": sort_by,
        "order": order,
        "links": links,
    }


@router.get("/check")
def admin_check(
    agent: Optional[RepoAgent] = Depends(get_optional_agent),
    db: DbClient = Depends(get_db_client),
):
    if agent is None:
        return {"isAdmin": False}
    return {"isAdmin": db.is_admin(agent.did)}
