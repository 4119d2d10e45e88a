"""
Plain records returned by the database layer.

`as_dict()` renders the camelCase JSON shape the web client consumes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from collective.ratings import MediaStats

MEDIA_TYPES = ("book", "movie", "tv", "podcast", "article", "game", "music")


def iso_timestamp(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    moment = datetime.fromtimestamp(ts, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return iso_timestamp(time.time())


@dataclass
class SessionRecord:
    key: str
    did: str
    pds_url: Optional[str] = None
    access_token: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class UserRecord:
    did: str
    handle: Optional[str]
    display_name: Optional[str]
    avatar: Optional[str]
    is_admin: bool
    first_login_at: float
    last_activity_at: float
    created_at: float
    updated_at: float

    def as_dict(self) -> dict:
        return {
            "did": self.did,
            "handle": self.handle,
            "displayName": self.display_name,
            "avatar": self.avatar,
            "isAdmin": self.is_admin,
            "firstLoginAt": iso_timestamp(self.first_login_at),
            "lastActivityAt": iso_timestamp(self.last_activity_at),
            "createdAt": iso_timestamp(self.created_at),
            "updatedAt": iso_timestamp(self.updated_at),
        }


@dataclass
class MediaItemRecord:
    id: int
    media_type: str
    title: str
    creator: Optional[str] = None
    isbn: Optional[str] = None
    external_id: Optional[str] = None
    cover_image: Optional[str] = None
    description: Optional[str] = None
    published_year: Optional[int] = None
    length: Optional[int] = None
    total_saves: int = 0
    stats: MediaStats = field(default_factory=MediaStats)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def summary_dict(self) -> dict:
        """Subset attached to list items."""
        return {
            "id": self.id,
            "isbn": self.isbn,
            "externalId": self.external_id,
            "coverImage": self.cover_image,
            "description": self.description,
            "publishedYear": self.published_year,
            "length": self.length,
            "totalReviews": self.stats.total_reviews,
            "totalSaves": self.total_saves,
            "averageRating": self.stats.average_rating,
        }

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "mediaType": self.media_type,
            "title": self.title,
            "creator": self.creator,
            "isbn": self.isbn,
            "externalId": self.external_id,
            "coverImage": self.cover_image,
            "description": self.description,
            "publishedYear": self.published_year,
            "length": self.length,
            "totalSaves": self.total_saves,
            **self.stats.as_dict(),
            "createdAt": iso_timestamp(self.created_at),
            "updatedAt": iso_timestamp(self.updated_at),
        }


@dataclass
class ReviewRecord:
    id: int
    author_did: str
    media_item_id: int
    media_type: str
    rating: float
    review: Optional[str]
    list_item_uri: Optional[str]
    review_uri: Optional[str]
    created_at: float
    updated_at: float

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "authorDid": self.author_did,
            "mediaItemId": self.media_item_id,
            "mediaType": self.media_type,
            "rating": self.rating,
            "review": self.review,
            "listItemUri": self.list_item_uri,
            "reviewUri": self.review_uri,
            "createdAt": iso_timestamp(self.created_at),
            "updatedAt": iso_timestamp(self.updated_at),
        }


@dataclass
class FeedEventRecord:
    id: int
    event_name: str
    media_link: Optional[str]
    user_did: str
    created_at: float

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "eventName": self.event_name,
            "mediaLink": self.media_link,
            "userDid": self.user_did,
            "createdAt": iso_timestamp(self.created_at),
        }


@dataclass
class FeedbackRecord:
    id: int
    user_did: Optional[str]
    email: Optional[str]
    message: str
    status: str
    admin_notes: Optional[str]
    created_at: float
    updated_at: float

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "userDid": self.user_did,
            "email": self.email,
            "message": self.message,
            "status": self.status,
            "adminNotes": self.admin_notes,
            "createdAt": iso_timestamp(self.created_at),
            "updatedAt": iso_timestamp(self.updated_at),
        }


@dataclass
class ShareLinkRecord:
    id: int
    short_code: str
    user_did: str
    media_item_id: int
    media_type: str
    times_clicked: int
    created_at: float
    updated_at: float


@dataclass
class CommentRecord:
    uri: str
    cid: str
    user_did: str
    text: str
    review_uri: Optional[str] = None
    parent_comment_uri: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "uri": self.uri,
            "cid": self.cid,
            "userDid": self.user_did,
            "text": self.text,
            "reviewUri": self.review_uri,
            "parentCommentUri": self.parent_comment_uri,
            "createdAt": iso_timestamp(self.created_at),
            "updatedAt": iso_timestamp(self.updated_at),
        }


@dataclass
class ReactionRecord:
    uri: str
    cid: str
    user_did: str
    emoji: str
    subject_uri: str
    subject_type: str
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class TagRecord:
    id: int
    name: str
    slug: str
    status: str
    created_at: float

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "createdAt": iso_timestamp(self.created_at),
        }


@dataclass
class TagReportRecord:
    id: int
    item_id: int
    tag_id: int
    reporter_did: str
    reason: str
    status: str
    created_at: float
