"""
Pydantic request schemas for the Collective API.

Bodies arrive in camelCase from the web client; `model_fields_set` tells an
omitted field apart from an explicit null where the routes care.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CollectionCreate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    purpose: Optional[str] = None
    visibility: Optional[str] = None
    parent_list_uri: Optional[str] = None


class CollectionUpdate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    visibility: Optional[str] = None


class ListItemCreate(CamelModel):
    title: Optional[str] = None
    rating: Optional[float] = None
    status: Optional[str] = None
    review: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    media_type: Optional[str] = None
    creator: Optional[str] = None
    media_item_id: Optional[int] = None
    recommended_by: Union[str, list[str], None] = None
    completed_at: Optional[str] = None


class ListItemUpdate(CamelModel):
    status: Optional[str] = None
    rating: Optional[float] = None
    review: Optional[str] = None
    notes: Optional[str] = None


class ReorderEntry(CamelModel):
    uri: str
    order: int


class ReorderRequest(CamelModel):
    items: list[ReorderEntry] = Field(default_factory=list)


class MediaCreate(CamelModel):
    title: Optional[str] = None
    media_type: Optional[str] = None
    creator: Optional[str] = None
    isbn: Optional[str] = None
    external_id: Optional[str] = None
    cover_image: Optional[str] = None
    description: Optional[str] = None
    published_year: Optional[int] = None
    length: Optional[int] = None


class TagCreate(CamelModel):
    name: Optional[str] = None


class TagReportCreate(CamelModel):
    reason: Optional[str] = None


class TagMergeRequest(CamelModel):
    source_tag_id: Optional[int] = None
    target_tag_id: Optional[int] = None


class ShareCreate(CamelModel):
    media_item_id: Optional[int] = None
    media_type: Optional[str] = None


class CommentCreate(CamelModel):
    text: Optional[str] = None
    review_uri: Optional[str] = None
    parent_comment_uri: Optional[str] = None


class CommentUpdate(CamelModel):
    text: Optional[str] = None


class ReactionToggle(CamelModel):
    emoji: Optional[str] = None
    subject_uri: Optional[str] = None
    subject_type: Optional[str] = None


class ReviewSegmentPayload(CamelModel):
    percentage: Optional[float] = None
    title: Optional[str] = None
    text: Optional[str] = None
    media_item_id: Optional[int] = None
    media_type: Optional[str] = None
    list_item: Optional[str] = None


class FeedbackCreate(CamelModel):
    message: Optional[str] = None
    email: Optional[str] = None


class FeedbackUpdate(CamelModel):
    status: Optional[str] = None
    admin_notes: Optional[str] = None
