"""
Collections (lists) and their items, stored in the user's ATProto repo.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from collective.atproto import (
    CURATE_LIST_PURPOSE,
    LIST_COLLECTION,
    LIST_ITEM_COLLECTION,
    AtprotoError,
    RepoAgent,
    RepoRecord,
)
from collective.auth import get_repo_reader, get_session_agent
from collective.db import DbClient
from collective.dependencies import get_db_client
from collective.feed import emit_status_event
from collective.ratings import validate_rating
from collective.records import now_iso
from collective.reviews import remove_review, upsert_review
from collective.routes.common import compact, owned_uri, parse_uri, require_record
from collective.schemas import (
    CollectionCreate,
    CollectionUpdate,
    ListItemCreate,
    ListItemUpdate,
    ReorderRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/collections", tags=["collections"])


def _collection_dict(record: RepoRecord, item_count: int = 0, copy_count: int | None = None) -> dict:
    value = record.value
    data = {
        "uri": record.uri,
        "cid": record.cid,
        "name": value.get("name"),
        "description": value.get("description"),
        "parentListUri": value.get("parentListUri"),
        "visibility": value.get("visibility") or "public",
        "isDefault": bool(value.get("isDefault")),
        "purpose": value.get("purpose"),
        "avatar": value.get("avatar"),
        "createdAt": value.get("createdAt"),
        "itemCount": item_count,
    }
    if copy_count is not None:
        data["copyCount"] = copy_count
    return data


def _item_dict(record: RepoRecord) -> dict:
    value = record.value
    return {
        "uri": record.uri,
        "cid": record.cid,
        "list": value.get("list"),
        "title": value.get("title"),
        "creator": value.get("creator"),
        "description": value.get("description"),
        "order": value.get("order") or 0,
        "mediaType": value.get("mediaType"),
        "mediaItemId": value.get("mediaItemId"),
        "status": value.get("status"),
        "rating": value.get("rating"),
        "review": value.get("review"),
        "notes": value.get("notes"),
        "completedAt": value.get("completedAt"),
        "recommendations": value.get("recommendations") or [],
        "createdAt": value.get("createdAt"),
    }


def _item_counts(items: list[RepoRecord]) -> Counter:
    return Counter(item.value.get("list") for item in items)


def _resolve_recommenders(agent: RepoAgent, recommended_by) -> list[dict]:
    if not recommended_by:
        return []
    recommenders = recommended_by if isinstance(recommended_by, list) else [recommended_by]
    suggested_at = now_iso()
    recommendations = []
    for recommender in recommenders:
        did = recommender
        if not recommender.startswith("did:"):
            try:
                did = agent.resolve_handle(recommender)
            except AtprotoError:
                logger.warning("Failed to resolve handle %s, using as-is", recommender)
        recommendations.append({"did": did, "suggestedAt": suggested_at})
    return recommendations


def _check_review_input(payload, fields: set) -> bool:
    """True when the body carries both review and rating; validates a non-blank review's rating."""
    if not {"review", "rating"} <= fields:
        return False
    if payload.review and payload.review.strip():
        try:
            validate_rating(payload.rating)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    return True


def _sync_review(
    db: DbClient,
    agent: RepoAgent,
    *,
    review: Optional[str],
    rating,
    media_item_id,
    media_type: Optional[str],
    list_item_uri: str,
    title: str,
) -> None:
    if not media_item_id or not media_type:
        return
    if review and review.strip():
        upsert_review(
            db,
            agent,
            media_item_id,
            media_type,
            rating,
            review,
            list_item_uri=list_item_uri,
            title=title,
        )
    else:
        remove_review(db, agent, media_item_id, media_type)


def _attach_media(db: DbClient, items: list[dict], full: bool = False) -> list[dict]:
    media = db.get_media_items(item["mediaItemId"] for item in items if item.get("mediaItemId"))
    for item in items:
        found = media.get(item.get("mediaItemId"))
        if found:
            item["mediaItem"] = found.as_dict() if full else found.summary_dict()
    return items


@router.get("")
def list_collections(agent: RepoAgent = Depends(get_session_agent)):
    lists = agent.list_records(agent.did, LIST_COLLECTION)
    items = agent.list_records(agent.did, LIST_ITEM_COLLECTION)
    item_counts = _item_counts(items)
    copy_counts = Counter(
        record.value.get("parentListUri") for record in lists if record.value.get("parentListUri")
    )
    return {
        "collections": [
            _collection_dict(record, item_counts[record.uri], copy_counts[record.uri])
            for record in lists
        ]
    }


@router.post("")
def create_collection(payload: CollectionCreate, agent: RepoAgent = Depends(get_session_agent)):
    if not payload.name:
        raise HTTPException(status_code=400, detail="Name is required")
    existing = agent.list_records(agent.did, LIST_COLLECTION)
    is_default = not any(record.value.get("isDefault") for record in existing)
    record = compact(
        {
            "$type": LIST_COLLECTION,
            "name": payload.name,
            "description": payload.description or None,
            "parentListUri": payload.parent_list_uri or None,
            "visibility": payload.visibility or "public",
            "purpose": payload.purpose or CURATE_LIST_PURPOSE,
            "isDefault": True if is_default else None,
            "createdAt": now_iso(),
        }
    )
    uri, cid = agent.create_record(LIST_COLLECTION, record)
    logger.info("Created collection %s", uri)
    return _collection_dict(RepoRecord(uri=uri, cid=cid, value=record))


@router.get("/public/{did}/in-progress")
def public_in_progress(
    did: str,
    response: Response,
    reader: Callable[[str], RepoAgent] = Depends(get_repo_reader),
    db: DbClient = Depends(get_db_client),
):
    agent = reader(did)
    public_lists = {
        record.uri
        for record in agent.list_records(did, LIST_COLLECTION)
        if (record.value.get("visibility") or "public") == "public"
    }
    items = []
    for record in agent.list_records(did, LIST_ITEM_COLLECTION):
        if record.value.get("list") in public_lists and record.value.get("status") == "in-progress":
            item = _item_dict(record)
            item["listUri"] = record.value.get("list")
            items.append(item)
    response.headers["cache-control"] = "public, max-age=60"
    return {"items": _attach_media(db, items, full=True)}


@router.get("/public/{did}")
def public_collections(
    did: str,
    response: Response,
    reader: Callable[[str], RepoAgent] = Depends(get_repo_reader),
    db: DbClient = Depends(get_db_client),
):
    agent = reader(did)
    item_counts = _item_counts(agent.list_records(did, LIST_ITEM_COLLECTION))
    collections = [
        _collection_dict(record, item_counts[record.uri])
        for record in agent.list_records(did, LIST_COLLECTION)
        if (record.value.get("visibility") or "public") == "public"
    ]
    response.headers["cache-control"] = "public, max-age=60"
    return {
        "collections": collections,
        "collectionCount": len(collections),
        "reviewCount": db.count_reviews_by_author(did),
    }


@router.put("/{list_uri:path}/reorder")
def reorder_items(
    list_uri: str, payload: ReorderRequest, agent: RepoAgent = Depends(get_session_agent)
):
    owned_uri(list_uri, agent.did, "list")
    by_uri = {
        record.uri: record
        for record in agent.list_records(agent.did, LIST_ITEM_COLLECTION)
        if record.value.get("list") == list_uri
    }
    updated = 0
    for entry in payload.items:
        record = by_uri.get(entry.uri)
        if record is None:
            continue
        value = {**record.value, "order": entry.order}
        agent.put_record(LIST_ITEM_COLLECTION, parse_uri(record.uri, "item").rkey, value)
        updated += 1
    return {"success": True, "updated": updated}


@router.post("/{list_uri:path}/clone")
def clone_collection(
    list_uri: str,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    source = next(
        (r for r in agent.list_records(agent.did, LIST_COLLECTION) if r.uri == list_uri), None
    )
    if source is None:
        raise HTTPException(status_code=404, detail="Source list not found")

    source_value = source.value
    new_list = compact(
        {
            "$type": LIST_COLLECTION,
            "name": f"{source_value.get('name')} (Copy)",
            "description": source_value.get("description") or None,
            "parentListUri": source_value.get("parentListUri") or list_uri,
            "visibility": source_value.get("visibility") or "public",
            "purpose": source_value.get("purpose") or CURATE_LIST_PURPOSE,
            "isDefault": False,
            "createdAt": now_iso(),
        }
    )
    new_uri, new_cid = agent.create_record(LIST_COLLECTION, new_list)

    all_items = agent.list_records(agent.did, LIST_ITEM_COLLECTION)
    source_items = [item for item in all_items if item.value.get("list") == list_uri]
    reviewed = {review.media_item_id for review in db.list_reviews_by_author(agent.did)}
    in_progress = {
        item.value.get("mediaItemId")
        for item in all_items
        if item.value.get("status") == "in-progress" and item.value.get("mediaItemId")
    }

    for item in source_items:
        value = item.value
        media_item_id = value.get("mediaItemId")
        status = value.get("status") or "want"
        if media_item_id and media_item_id in reviewed:
            status = "completed"
        elif media_item_id and media_item_id in in_progress:
            status = "in-progress"
        agent.create_record(
            LIST_ITEM_COLLECTION,
            compact(
                {
                    "$type": LIST_ITEM_COLLECTION,
                    "list": new_uri,
                    "title": value.get("title"),
                    "creator": value.get("creator") or None,
                    "description": value.get("description") or None,
                    "mediaType": value.get("mediaType") or "book",
                    "mediaItemId": media_item_id or None,
                    "status": status,
                    "order": value.get("order"),
                    "recommendations": value.get("recommendations") or None,
                    "createdAt": now_iso(),
                }
            ),
        )

    logger.info("Cloned %s into %s (%s items)", list_uri, new_uri, len(source_items))
    return {
        "success": True,
        "uri": new_uri,
        "cid": new_cid,
        "name": new_list["name"],
        "description": new_list.get("description"),
        "parentListUri": list_uri,
        "itemCount": len(source_items),
    }


@router.get("/{list_uri:path}/items")
def list_items(
    list_uri: str,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    items = [
        _item_dict(record)
        for record in agent.list_records(agent.did, LIST_ITEM_COLLECTION)
        if record.value.get("list") == list_uri
    ]
    items.sort(key=lambda item: item["order"] or 0, reverse=True)
    return {"items": _attach_media(db, items)}


@router.post("/{list_uri:path}/items")
def add_item(
    list_uri: str,
    payload: ListItemCreate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    if not payload.title:
        raise HTTPException(status_code=400, detail="Title is required")
    fields = payload.model_fields_set
    has_review_input = _check_review_input(payload, fields)

    in_list = [
        record
        for record in agent.list_records(agent.did, LIST_ITEM_COLLECTION)
        if record.value.get("list") == list_uri
    ]
    if payload.media_item_id:
        existing = next(
            (r for r in in_list if r.value.get("mediaItemId") == payload.media_item_id), None
        )
    else:
        existing = next((r for r in in_list if r.value.get("title") == payload.title), None)
    recommendations = _resolve_recommenders(agent, payload.recommended_by)

    if existing is not None:
        return _merge_existing_item(
            db, agent, existing, payload, recommendations, has_review_input
        )

    now = now_iso()
    order = max((record.value.get("order") or 0 for record in in_list), default=0) + 1
    record = compact(
        {
            "$type": LIST_ITEM_COLLECTION,
            "list": list_uri,
            "title": payload.title,
            "creator": payload.creator or None,
            "description": payload.description or None,
            "order": order,
            "mediaItemId": payload.media_item_id or None,
            "mediaType": payload.media_type or None,
            "status": payload.status or None,
            "completedAt": (payload.completed_at or now) if payload.status == "completed" else None,
            "recommendations": recommendations or None,
            "createdAt": now,
        }
    )
    uri, cid = agent.create_record(LIST_ITEM_COLLECTION, record)

    if payload.media_item_id:
        db.adjust_total_saves(payload.media_item_id, 1)
    if has_review_input and payload.review and payload.review.strip():
        _sync_review(
            db,
            agent,
            review=payload.review,
            rating=payload.rating,
            media_item_id=payload.media_item_id,
            media_type=payload.media_type,
            list_item_uri=uri,
            title=payload.title,
        )
    emit_status_event(
        db,
        agent,
        title=payload.title,
        media_type=payload.media_type,
        media_item_id=payload.media_item_id,
        status=payload.status,
        is_new=True,
    )
    return {
        "uri": uri,
        "cid": cid,
        "created": True,
        "title": payload.title,
        "status": record.get("status"),
        "mediaType": record.get("mediaType"),
        "creator": record.get("creator"),
        "mediaItemId": record.get("mediaItemId"),
        "order": order,
        "recommendations": recommendations,
    }


def _merge_existing_item(
    db: DbClient,
    agent: RepoAgent,
    existing: RepoRecord,
    payload: ListItemCreate,
    recommendations: list[dict],
    has_review_input: bool,
) -> dict:
    current = existing.value
    old_status = current.get("status")

    merged = list(current.get("recommendations") or [])
    known = {rec.get("did") for rec in merged}
    for rec in recommendations:
        if rec["did"] not in known:
            merged.append(rec)
            known.add(rec["did"])

    completed_at = current.get("completedAt")
    if payload.status == "completed":
        completed_at = payload.completed_at or completed_at or now_iso()

    updated = {
        **current,
        "status": payload.status or current.get("status"),
        "creator": payload.creator or current.get("creator"),
        "completedAt": completed_at,
        "recommendations": merged or None,
    }
    if "description" in payload.model_fields_set:
        updated["description"] = payload.description or None
    updated = compact(updated)
    _, cid = agent.put_record(
        LIST_ITEM_COLLECTION, parse_uri(existing.uri, "item").rkey, updated
    )

    if has_review_input:
        _sync_review(
            db,
            agent,
            review=payload.review,
            rating=payload.rating,
            media_item_id=payload.media_item_id,
            media_type=payload.media_type,
            list_item_uri=existing.uri,
            title=payload.title,
        )
    emit_status_event(
        db,
        agent,
        title=payload.title,
        media_type=payload.media_type or current.get("mediaType"),
        media_item_id=payload.media_item_id,
        status=payload.status,
        old_status=old_status,
    )
    return {
        "uri": existing.uri,
        "cid": cid,
        "updated": True,
        "title": updated.get("title"),
        "status": updated.get("status"),
        "mediaType": updated.get("mediaType"),
        "creator": updated.get("creator"),
        "mediaItemId": payload.media_item_id,
        "recommendations": merged,
    }


@router.put("/{list_uri:path}/items/{item_uri:path}")
def update_item(
    list_uri: str,
    item_uri: str,
    payload: ListItemUpdate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    parsed = owned_uri(item_uri, agent.did, "item")
    fields = payload.model_fields_set
    has_review_input = _check_review_input(payload, fields)
    record = require_record(agent, parsed, "item")
    current = record.value

    updated = dict(current)
    if payload.status is not None:
        updated["status"] = payload.status
    if "notes" in fields:
        updated["notes"] = payload.notes or None
    updated = compact(updated)
    _, cid = agent.put_record(LIST_ITEM_COLLECTION, parsed.rkey, updated)

    media_item_id = current.get("mediaItemId")
    if has_review_input and media_item_id:
        _sync_review(
            db,
            agent,
            review=payload.review,
            rating=payload.rating,
            media_item_id=media_item_id,
            media_type=current.get("mediaType"),
            list_item_uri=item_uri,
            title=current.get("title") or "",
        )
    emit_status_event(
        db,
        agent,
        title=current.get("title") or "",
        media_type=current.get("mediaType"),
        media_item_id=media_item_id,
        status=payload.status,
        old_status=current.get("status"),
    )
    return {"success": True, **_item_dict(RepoRecord(uri=item_uri, cid=cid, value=updated))}


@router.delete("/{list_uri:path}/items/{item_uri:path}")
def delete_item(
    list_uri: str,
    item_uri: str,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    owned_uri(list_uri, agent.did, "list")
    parsed = owned_uri(item_uri, agent.did, "item")
    record = require_record(agent, parsed, "item")
    agent.delete_record(LIST_ITEM_COLLECTION, parsed.rkey)

    media_item_id = record.value.get("mediaItemId")
    media_type = record.value.get("mediaType")
    if media_item_id:
        db.adjust_total_saves(media_item_id, -1)
        if media_type:
            review = db.get_review(agent.did, media_item_id, media_type)
            if review and review.list_item_uri == item_uri:
                remove_review(db, agent, media_item_id, media_type)
    return {"success": True}


@router.put("/{list_uri:path}")
def update_collection(
    list_uri: str, payload: CollectionUpdate, agent: RepoAgent = Depends(get_session_agent)
):
    if not payload.name:
        raise HTTPException(status_code=400, detail="Name is required")
    parsed = owned_uri(list_uri, agent.did, "list")
    record = require_record(agent, parsed, "list")
    updated = compact(
        {
            **record.value,
            "name": payload.name,
            "description": payload.description or None,
            "visibility": payload.visibility or record.value.get("visibility") or "public",
        }
    )
    uri, cid = agent.put_record(LIST_COLLECTION, parsed.rkey, updated)
    return _collection_dict(RepoRecord(uri=uri, cid=cid, value=updated))


@router.delete("/{list_uri:path}")
def delete_collection(list_uri: str, agent: RepoAgent = Depends(get_session_agent)):
    parsed = owned_uri(list_uri, agent.did, "list")
    record = require_record(agent, parsed, "list")
    if record.value.get("isDefault"):
        raise HTTPException(status_code=403, detail="Cannot delete the default Inbox list")
    agent.delete_record(LIST_COLLECTION, parsed.rkey)
    logger.info("Deleted collection %s", list_uri)
    return {"success": True}
