"""
Comments on reviews and replies to comments.

Comments are written to the author's repo and mirrored into the local
database so threads can be read without touching every PDS.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from collective.atproto import COMMENT_COLLECTION, PLACEHOLDER_CID, AtprotoError, AtUri, RepoAgent
from collective.auth import get_session_agent
from collective.db import DbClient
from collective.dependencies import get_db_client
from collective.records import CommentRecord, now_iso
from collective.routes.common import compact, find_record, parse_uri
from collective.schemas import CommentCreate, CommentUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/comments", tags=["comments"])

MAX_COMMENT_LENGTH = 3000


def _validated_text(text: Optional[str]) -> str:
    if not text or not text.strip():
        raise HTTPException(status_code=400, detail="Comment text is required")
    if len(text) > MAX_COMMENT_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Comment text cannot exceed {MAX_COMMENT_LENGTH} characters",
        )
    return text.strip()


def _strong_ref(agent: RepoAgent, uri: str, what: str) -> dict:
    parsed = parse_uri(uri, what)
    try:
        record = find_record(agent, parsed)
    except AtprotoError as exc:
        logger.warning("Could not fetch %s %s: %s", what, uri, exc.message)
        record = None
    if record is None or not record.cid:
        logger.info("Using placeholder CID for %s %s", what, uri)
        return {"uri": uri, "cid": PLACEHOLDER_CID}
    return {"uri": uri, "cid": record.cid}


def _with_users(db: DbClient, comments: list[CommentRecord]) -> list[dict]:
    users = db.get_users(comment.user_did for comment in comments)
    results = []
    for comment in comments:
        user = users.get(comment.user_did)
        results.append({**comment.as_dict(), "user": user.as_dict() if user else None})
    return results


def _owned_comment(db: DbClient, uri: str, did: str) -> CommentRecord:
    comment = db.get_comment(uri)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.user_did != did:
        raise HTTPException(status_code=403, detail="Not authorized to modify this comment")
    return comment


@router.post("")
def create_comment(
    payload: CommentCreate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    text = _validated_text(payload.text)
    if bool(payload.review_uri) == bool(payload.parent_comment_uri):
        raise HTTPException(
            status_code=400,
            detail="Comment must reference either a review or a parent comment, but not both",
        )

    now = now_iso()
    record = compact(
        {
            "$type": COMMENT_COLLECTION,
            "text": text,
            "reviewRef": _strong_ref(agent, payload.review_uri, "review")
            if payload.review_uri
            else None,
            "parentCommentRef": _strong_ref(agent, payload.parent_comment_uri, "comment")
            if payload.parent_comment_uri
            else None,
            "createdAt": now,
            "updatedAt": now,
        }
    )
    uri, cid = agent.create_record(COMMENT_COLLECTION, record)

    comment = CommentRecord(
        uri=uri,
        cid=cid,
        user_did=agent.did,
        text=text,
        review_uri=payload.review_uri or None,
        parent_comment_uri=payload.parent_comment_uri or None,
    )
    db.save_comment(comment)
    return comment.as_dict()


@router.get("/review/{review_uri:path}")
def list_review_comments(
    review_uri: str, response: Response, db: DbClient = Depends(get_db_client)
):
    response.headers["cache-control"] = "public, max-age=30"
    return {"comments": _with_users(db, db.list_comments_for_review(review_uri))}


@router.get("/{comment_uri:path}/replies")
def list_replies(comment_uri: str, response: Response, db: DbClient = Depends(get_db_client)):
    response.headers["cache-control"] = "public, max-age=30"
    return {"comments": _with_users(db, db.list_replies(comment_uri))}


@router.put("/{comment_uri:path}")
def update_comment(
    comment_uri: str,
    payload: CommentUpdate,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    text = _validated_text(payload.text)
    comment = _owned_comment(db, comment_uri, agent.did)
    parsed = AtUri.parse(comment.uri)

    existing = find_record(agent, parsed)
    value = dict(existing.value) if existing else {"$type": COMMENT_COLLECTION}
    value.update({"text": text, "updatedAt": now_iso()})
    if not existing:
        if comment.review_uri:
            value["reviewRef"] = _strong_ref(agent, comment.review_uri, "review")
        if comment.parent_comment_uri:
            value["parentCommentRef"] = _strong_ref(agent, comment.parent_comment_uri, "comment")
        value.setdefault("createdAt", now_iso())
    _, cid = agent.put_record(COMMENT_COLLECTION, parsed.rkey, value)

    updated = db.update_comment(comment_uri, text, cid)
    return updated.as_dict() if updated else {**comment.as_dict(), "text": text, "cid": cid}


@router.delete("/{comment_uri:path}")
def delete_comment(
    comment_uri: str,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    comment = _owned_comment(db, comment_uri, agent.did)
    agent.delete_record(COMMENT_COLLECTION, AtUri.parse(comment.uri).rkey)
    db.delete_comment(comment_uri)
    logger.info("Deleted comment %s for %s", comment_uri, agent.did)
    return {"success": True}
