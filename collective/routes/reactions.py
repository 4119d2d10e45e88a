"""
Emoji reactions on reviews and comments.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from collective.atproto import (
    COMMENT_COLLECTION,
    PLACEHOLDER_CID,
    REACT_COLLECTION,
    REVIEW_COLLECTION,
    AtprotoError,
    AtUri,
    RepoAgent,
    rkey_of,
)
from collective.auth import get_optional_agent, get_session_agent
from collective.db import DbClient
from collective.dependencies import get_db_client
from collective.records import ReactionRecord, now_iso
from collective.schemas import ReactionToggle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reactions", tags=["reactions"])

VALID_EMOJIS = ("joy", "heart", "grin", "sob", "scream", "upside_down", "smirk")
SUBJECT_TYPES = ("review", "comment")


def _check_subject_type(subject_type: Optional[str]) -> str:
    if subject_type not in SUBJECT_TYPES:
        raise HTTPException(status_code=400, detail='Subject type must be "review" or "comment"')
    return subject_type


def _subject_cid(agent: RepoAgent, subject_uri: str, subject_type: str) -> str:
    collection = REVIEW_COLLECTION if subject_type == "review" else COMMENT_COLLECTION
    try:
        parsed = AtUri.parse(subject_uri)
        return agent.get_record(parsed.did, collection, parsed.rkey).cid
    except (ValueError, AtprotoError) as exc:
        logger.warning("Could not fetch subject CID for %s, using placeholder: %s", subject_uri, exc)
        return PLACEHOLDER_CID


@router.post("")
def toggle_reaction(
    payload: ReactionToggle,
    response: Response,
    agent: RepoAgent = Depends(get_session_agent),
    db: DbClient = Depends(get_db_client),
):
    response.headers["cache-control"] = "no-store"
    if not payload.emoji or payload.emoji not in VALID_EMOJIS:
        raise HTTPException(status_code=400, detail="Invalid emoji type")
    if not payload.subject_uri or not payload.subject_type:
        raise HTTPException(status_code=400, detail="Subject URI and type are required")
    subject_type = _check_subject_type(payload.subject_type)

    existing = db.find_reaction(agent.did, payload.subject_uri, payload.emoji)
    if existing:
        agent.delete_record(REACT_COLLECTION, rkey_of(existing.uri))
        db.delete_reaction(existing.uri)
        return {"removed": True}

    record = {
        "$type": REACT_COLLECTION,
        "emoji": payload.emoji,
        "subject": {
            "$type": f"{REACT_COLLECTION}#{subject_type}Ref",
            "uri": payload.subject_uri,
            "cid": _subject_cid(agent, payload.subject_uri, subject_type),
        },
        "createdAt": now_iso(),
    }
    uri, cid = agent.create_record(REACT_COLLECTION, record)
    db.save_reaction(
        ReactionRecord(
            uri=uri,
            cid=cid,
            user_did=agent.did,
            emoji=payload.emoji,
            subject_uri=payload.subject_uri,
            subject_type=subject_type,
        )
    )
    return {"uri": uri, "cid": cid, "emoji": payload.emoji, "added": True}


@router.get("/user/{subject_type}/{subject_uri:path}")
def my_reactions(
    subject_type: str,
    subject_uri: str,
    response: Response,
    agent: Optional[RepoAgent] = Depends(get_optional_agent),
    db: DbClient = Depends(get_db_client),
):
    response.headers["cache-control"] = "no-store"
    if agent is None:
        return {"userReactions": []}
    _check_subject_type(subject_type)
    reactions = db.list_reactions(subject_uri, subject_type)
    return {"userReactions": [r.emoji for r in reactions if r.user_did == agent.did]}


@router.get("/{subject_type}/{subject_uri:path}")
def subject_reactions(
    subject_type: str,
    subject_uri: str,
    response: Response,
    db: DbClient = Depends(get_db_client),
):
    _check_subject_type(subject_type)
    response.headers["cache-control"] = "public, max-age=30"
    aggregated: dict[str, dict] = {}
    for reaction in db.list_reactions(subject_uri, subject_type):
        entry = aggregated.setdefault(reaction.emoji, {"count": 0, "userDids": []})
        entry["count"] += 1
        entry["userDids"].append(reaction.user_did)
    return {"reactions": aggregated}
