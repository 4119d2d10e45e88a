"""
SQLAlchemy table definitions for the local cache.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class SessionRow(Base):
    __tablename__ = "auth_sessions"

    key = Column(String, primary_key=True)
    did = Column(String, nullable=False, index=True)
    pds_url = Column(String, nullable=True)
    access_token = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    did = Column(String, primary_key=True)
    handle = Column(String, nullable=True)
    display_name = Column(String, nullable=True)
    avatar = Column(Text, nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    first_login_at = Column(Float, nullable=False)
    last_activity_at = Column(Float, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class MediaItemRow(Base):
    __tablename__ = "media_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    media_type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    creator = Column(String, nullable=True)
    isbn = Column(String, nullable=True, index=True)
    external_id = Column(String, nullable=True)
    cover_image = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    published_year = Column(Integer, nullable=True)
    length = Column(Integer, nullable=True)
    total_ratings = Column(Integer, nullable=False, default=0)
    total_reviews = Column(Integer, nullable=False, default=0)
    total_saves = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=True)
    rating0 = Column(Integer, nullable=False, default=0)
    rating0_5 = Column(Integer, nullable=False, default=0)
    rating1 = Column(Integer, nullable=False, default=0)
    rating1_5 = Column(Integer, nullable=False, default=0)
    rating2 = Column(Integer, nullable=False, default=0)
    rating2_5 = Column(Integer, nullable=False, default=0)
    rating3 = Column(Integer, nullable=False, default=0)
    rating3_5 = Column(Integer, nullable=False, default=0)
    rating4 = Column(Integer, nullable=False, default=0)
    rating4_5 = Column(Integer, nullable=False, default=0)
    rating5 = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ReviewRow(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint(
            "author_did", "media_item_id", "media_type", name="reviews_author_item_key"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    author_did = Column(String, nullable=False, index=True)
    media_item_id = Column(Integer, nullable=False, index=True)
    media_type = Column(String, nullable=False)
    rating = Column(Float, nullable=False)
    review = Column(Text, nullable=True)
    list_item_uri = Column(String, nullable=True)
    review_uri = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class FeedEventRow(Base):
    __tablename__ = "feed_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_name = Column(String, nullable=False)
    media_link = Column(String, nullable=True)
    user_did = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False, index=True)


class FeedbackRow(Base):
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_did = Column(String, nullable=True)
    email = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="new")
    admin_notes = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ShareLinkRow(Base):
    __tablename__ = "share_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    short_code = Column(String, nullable=False, unique=True)
    user_did = Column(String, nullable=False, index=True)
    media_item_id = Column(Integer, nullable=False)
    media_type = Column(String, nullable=False)
    times_clicked = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class CommentRow(Base):
    __tablename__ = "comments"

    uri = Column(String, primary_key=True)
    cid = Column(String, nullable=False)
    user_did = Column(String, nullable=False, index=True)
    text = Column(Text, nullable=False)
    review_uri = Column(String, nullable=True, index=True)
    parent_comment_uri = Column(String, nullable=True, index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ReactionRow(Base):
    __tablename__ = "reactions"

    uri = Column(String, primary_key=True)
    cid = Column(String, nullable=False)
    user_did = Column(String, nullable=False, index=True)
    emoji = Column(String, nullable=False)
    subject_uri = Column(String, nullable=False, index=True)
    subject_type = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class TagRow(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="active")
    created_at = Column(Float, nullable=False)


class MediaItemTagRow(Base):
    __tablename__ = "media_item_tags"

    media_item_id = Column(Integer, primary_key=True)
    tag_id = Column(Integer, primary_key=True, index=True)
    user_did = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False)


class TagReportRow(Base):
    __tablename__ = "tag_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, nullable=False, index=True)
    tag_id = Column(Integer, nullable=False, index=True)
    reporter_did = Column(String, nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(Float, nullable=False)
