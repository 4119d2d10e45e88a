"""
HTTP routes, one module per area.
"""

from fastapi import APIRouter

from collective.routes import (
    admin,
    auth,
    collections,
    comments,
    feed,
    feedback,
    media,
    reactions,
    review_segments,
    share,
    tags,
    users,
)

router = APIRouter()

for module in (
    auth,
    collections,
    media,
    tags,
    share,
    comments,
    reactions,
    review_segments,
    feed,
    feedback,
    admin,
    users,
):
    router.include_router(module.router)
