"""
User feedback: anyone can submit, admins triage.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from collective.atproto import RepoAgent
from collective.auth import get_optional_agent, require_admin
from collective.db import DbClient
from collective.dependencies import get_db_client, get_profile_resolver
from collective.profiles import ProfileResolver
from collective.records import iso_timestamp
from collective.routes.common import blank_to_none
from collective.schemas import FeedbackCreate, FeedbackUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post("")
def submit_feedback(
    payload: FeedbackCreate,
    agent: Optional[RepoAgent] = Depends(get_optional_agent),
    db: DbClient = Depends(get_db_client),
):
    message = blank_to_none(payload.message)
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")

    feedback = db.create_feedback(
        message,
        user_did=agent.did if agent else None,
        email=blank_to_none(payload.email),
    )
    logger.info("Feedback %s submitted", feedback.id)
    return {
        "success": True,
        "feedback": {
            "id": feedback.id,
            "status": feedback.status,
            "createdAt": iso_timestamp(feedback.created_at),
        },
    }


@router.get("")
def list_feedback(
    _: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    profiles: ProfileResolver = Depends(get_profile_resolver),
):
    entries = db.list_feedback()
    results = []
    for entry in entries:
        profile = profiles.get_profile(entry.user_did) if entry.user_did else None
        results.append({**entry.as_dict(), "userHandle": (profile or {}).get("handle")})
    return {"feedback": results}


@router.put("/{feedback_id}")
def update_feedback(
    feedback_id: int,
    payload: FeedbackUpdate,
    agent: RepoAgent = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    changes = {}
    if "status" in payload.model_fields_set:
        changes["status"] = payload.status
    if "admin_notes" in payload.model_fields_set:
        changes["admin_notes"] = payload.admin_notes

    feedback = db.update_feedback(feedback_id, **changes)
    if feedback is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    logger.info("Admin %s updated feedback %s", agent.did, feedback_id)
    return {
        "success": True,
        "feedback": {
            "id": feedback.id,
            "status": feedback.status,
            "adminNotes": feedback.admin_notes,
            "updatedAt": iso_timestamp(feedback.updated_at),
        },
    }
