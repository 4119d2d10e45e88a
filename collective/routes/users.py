"""
Public user profiles.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from collective.dependencies import get_profile_resolver
from collective.profiles import ProfileResolver

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{handle}")
def get_user(handle: str, profiles: ProfileResolver = Depends(get_profile_resolver)):
    profile = profiles.get_profile(handle)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile
