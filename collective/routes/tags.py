"""
Community tags on media items, tag reports, and admin moderation.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from collective.atproto import RepoAgent
from collective.auth import get_session_agent, require_admin
from collective.db import DbClient
from collective.dependencies import get_db_client
from collective.records import iso_timestamp
from collective.schemas import TagCreate, TagMergeRequest, TagReportCreate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tags"])

SEARCH_LIMIT = 10


def normalize_tag(name: str) -> str:
    """Slug for a tag name: "Science Fiction!" -> "science-fiction"."""
    slug = name.lower().strip()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^\w-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


@router.get("/tags/search")
def search_tags(q: Optional[str] = Query(default=None), db: DbClient = Depends(get_db_client)):
    if not q or not q.strip():
        return {"tags": []}
    return {"tags": db.search_tags(q.strip(), limit=SEARCH_LIMIT)}


@router.get("/media/{media_item_id}/tags")
def item_tags(media_item_id: int, db: DbClient = Depends(get_db_client)):
    return {"tags": db.tags_for_item(media_item_id)}


@router.post("/media/{media_item_id}/tags")
def add_tag(
    media_item_id: int,
    payload: TagCreate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Tag name is required")
    slug = normalize_tag(name)
    if not slug:
        raise HTTPException(status_code=400, detail="Invalid tag name")
    if not db.get_media_item(media_item_id):
        raise HTTPException(status_code=404, detail="Media item not found")

    tag = db.find_active_tag(slug) or db.create_tag(name, slug)
    if not db.add_item_tag(media_item_id, tag.id, agent.did):
        raise HTTPException(status_code=400, detail="You have already added this tag to this item")

    logger.info("Added tag %s to media item %s for %s", tag.id, media_item_id, agent.did)
    return {
        "tag": {
            "id": tag.id,
            "name": tag.name,
            "slug": tag.slug,
            "usageCount": db.tag_usage_count(tag.id) or 1,
        }
    }


@router.delete("/media/{media_item_id}/tags/{tag_id}")
def remove_tag(
    media_item_id: int,
    tag_id: int,
    agent: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.remove_item_tag(media_item_id, tag_id):
        raise HTTPException(status_code=404, detail="Tag association not found")
    logger.info("Admin %s removed tag %s from media item %s", agent.did, tag_id, media_item_id)
    return {"success": True}


@router.post("/media/{media_item_id}/tags/{tag_id}/report")
def report_tag(
    media_item_id: int,
    tag_id: int,
    payload: TagReportCreate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    reason = (payload.reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Reason is required")
    report = db.create_tag_report(media_item_id, tag_id, agent.did, reason)
    if report is None:
        raise HTTPException(status_code=400, detail="You have already reported this tag")
    logger.info("Tag %s on media item %s reported by %s", tag_id, media_item_id, agent.did)
    return {"success": True}


@router.get("/admin/tags")
def admin_list_tags(
    _: RepoAgent = Depends(require_admin), db: DbClient = Depends(get_db_client)
):
    return {"tags": db.list_tags_with_stats()}


@router.get("/admin/tags/merge-preview")
def merge_preview(
    source_tag_id: Optional[int] = Query(default=None, alias="sourceTagId"),
    target_tag_id: Optional[int] = Query(default=None, alias="targetTagId"),
    _: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not source_tag_id or not target_tag_id:
        raise HTTPException(status_code=400, detail="sourceTagId and targetTagId are required")
    preview = db.merge_preview(source_tag_id, target_tag_id)
    return {
        "affectedItems": preview["items"],
        "duplicateCount": len(preview["duplicates"]),
        "duplicates": preview["duplicates"],
    }


@router.post("/admin/tags/merge")
def merge_tags(
    payload: TagMergeRequest,
    agent: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not payload.source_tag_id or not payload.target_tag_id:
        raise HTTPException(status_code=400, detail="sourceTagId and targetTagId are required")
    if payload.source_tag_id == payload.target_tag_id:
        raise HTTPException(status_code=400, detail="Cannot merge a tag into itself")
    moved = db.merge_tags(payload.source_tag_id, payload.target_tag_id)
    logger.info("Admin %s merged tags", agent.did)
    return {"success": True, "rowsUpdated": moved}


@router.get("/admin/tag-reports")
def list_tag_reports(
    status: Optional[str] = Query(default=None),
    _: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    rows = db.list_tag_reports(None if not status or status == "all" else status)
    reports = [
        {
            "id": row["report"].id,
            "itemId": row["report"].item_id,
            "tagId": row["report"].tag_id,
            "reporterDid": row["report"].reporter_did,
            "reason": row["report"].reason,
            "status": row["report"].status,
            "createdAt": iso_timestamp(row["report"].created_at),
            "tagName": row["tag_name"],
            "tagSlug": row["tag_slug"],
            "itemTitle": row["item_title"],
            "itemCreator": row["item_creator"],
            "itemMediaType": row["item_media_type"],
        }
        for row in rows
    ]
    return {"reports": reports, "reportCounts": db.pending_report_counts()}


@router.post("/admin/tag-reports/{report_id}/remove-tag")
def remove_reported_tag(
    report_id: int,
    agent: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    report = db.get_tag_report(report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    db.resolve_tag_reports(report.item_id, report.tag_id)
    logger.info(
        "Admin %s removed tag %s from media item %s via report %s",
        agent.did,
        report.tag_id,
        report.item_id,
        report_id,
    )
    return {"success": True}


@router.post("/admin/tag-reports/{report_id}/dismiss")
def dismiss_report(
    report_id: int,
    _: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.dismiss_tag_report(report_id):
        raise HTTPException(status_code=404, detail="Report not found")
    return {"success": True}
