"""
Database access for the local relational cache.

The PDS is the source of truth for user records; this layer holds aggregated
media statistics plus server-only data (users, sessions, tags, share links,
feedback, feed events and mirrored comments/reactions).
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional, Protocol

from sqlalchemy import and_, case, create_engine, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from collective.ratings import (
    RATING_BUCKETS,
    MediaStats,
    add_rating,
    change_rating,
    has_text,
    remove_rating,
    validate_rating,
)
from collective.records import (
    CommentRecord,
    FeedbackRecord,
    FeedEventRecord,
    MediaItemRecord,
    ReactionRecord,
    ReviewRecord,
    SessionRecord,
    ShareLinkRecord,
    TagRecord,
    TagReportRecord,
    UserRecord,
)
from collective.tables import (
    Base,
    CommentRow,
    FeedbackRow,
    FeedEventRow,
    MediaItemRow,
    MediaItemTagRow,
    ReactionRow,
    ReviewRow,
    SessionRow,
    ShareLinkRow,
    TagReportRow,
    TagRow,
    UserRow,
)

logger = logging.getLogger(__name__)

IN_MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"


class DbClient(Protocol):
    """Interface for database access."""

    # sessions
    def save_session(
        self, key: str, did: str, pds_url: str | None = None, access_token: str | None = None
    ) -> SessionRecord:
        ...

    def get_session(self, key: str) -> Optional[SessionRecord]:
        ...

    def delete_session(self, key: str) -> None:
        ...

    # users
    def get_user(self, did: str) -> Optional[UserRecord]:
        ...

    def get_users(self, dids: Iterable[str]) -> dict[str, UserRecord]:
        ...

    def create_user(
        self,
        did: str,
        handle: str | None,
        display_name: str | None = None,
        avatar: str | None = None,
        is_admin: bool = False,
    ) -> tuple[UserRecord, bool]:
        ...

    def update_user_profile(
        self, did: str, handle: str | None, display_name: str | None, avatar: str | None
    ) -> None:
        ...

    def touch_user(self, did: str) -> None:
        ...

    def set_admin(self, did: str, handle: str | None = None) -> str:
        ...

    def is_admin(self, did: str) -> bool:
        ...

    def count_users(self) -> int:
        ...

    def list_recent_users(self, limit: int = 10) -> list[UserRecord]:
        ...

    # media
    def create_media_item(self, media_type: str, title: str, **fields) -> MediaItemRecord:
        ...

    def get_media_item(self, media_item_id: int) -> Optional[MediaItemRecord]:
        ...

    def get_media_items(self, ids: Iterable[int]) -> dict[int, MediaItemRecord]:
        ...

    def find_media_item_by_isbn(self, isbn: str, media_type: str) -> Optional[MediaItemRecord]:
        ...

    def adjust_total_saves(self, media_item_id: int, delta: int) -> None:
        ...

    def count_media_items(self) -> int:
        ...

    def list_recent_media_items(self, limit: int = 10) -> list[MediaItemRecord]:
        ...

    # reviews
    def get_review(
        self, author_did: str, media_item_id: int, media_type: str
    ) -> Optional[ReviewRecord]:
        ...

    def save_review(
        self,
        author_did: str,
        media_item_id: int,
        media_type: str,
        rating: float,
        review: str | None,
        list_item_uri: str | None = None,
        review_uri: str | None = None,
    ) -> tuple[ReviewRecord, Optional[ReviewRecord]]:
        ...

    def delete_review(
        self, author_did: str, media_item_id: int, media_type: str
    ) -> Optional[ReviewRecord]:
        ...

    def list_reviews_for_media(
        self, media_item_id: int, limit: int = 20, offset: int = 0
    ) -> list[ReviewRecord]:
        ...

    def list_reviews_by_author(self, author_did: str) -> list[ReviewRecord]:
        ...

    def count_reviews_by_author(self, author_did: str) -> int:
        ...

    # feed and feedback
    def add_feed_event(
        self, event_name: str, user_did: str, media_link: str | None = None
    ) -> FeedEventRecord:
        ...

    def list_feed_events(self, limit: int = 50, offset: int = 0) -> list[FeedEventRecord]:
        ...

    def create_feedback(
        self, message: str, user_did: str | None = None, email: str | None = None
    ) -> FeedbackRecord:
        ...

    def list_feedback(self) -> list[FeedbackRecord]:
        ...

    def update_feedback(self, feedback_id: int, **changes) -> Optional[FeedbackRecord]:
        ...

    # share links
    def find_share_link(
        self, user_did: str, media_item_id: int, media_type: str
    ) -> Optional[ShareLinkRecord]:
        ...

    def create_share_link(
        self, short_code: str, user_did: str, media_item_id: int, media_type: str
    ) -> Optional[ShareLinkRecord]:
        ...

    def record_share_click(self, short_code: str) -> Optional[ShareLinkRecord]:
        ...

    def count_share_links(self) -> int:
        ...

    def list_share_links(
        self, limit: int, offset: int, sort_by: str = "createdAt", order: str = "desc"
    ) -> list[dict]:
        ...

    # comments and reactions
    def save_comment(self, comment: CommentRecord) -> None:
        ...

    def get_comment(self, uri: str) -> Optional[CommentRecord]:
        ...

    def list_comments_for_review(self, review_uri: str) -> list[CommentRecord]:
        ...

    def list_replies(self, parent_comment_uri: str) -> list[CommentRecord]:
        ...

    def update_comment(self, uri: str, text: str, cid: str) -> Optional[CommentRecord]:
        ...

    def delete_comment(self, uri: str) -> None:
        ...

    def find_reaction(
        self, user_did: str, subject_uri: str, emoji: str
    ) -> Optional[ReactionRecord]:
        ...

    def save_reaction(self, reaction: ReactionRecord) -> None:
        ...

    def delete_reaction(self, uri: str) -> None:
        ...

    def list_reactions(self, subject_uri: str, subject_type: str) -> list[ReactionRecord]:
        ...

    # tags
    def find_active_tag(self, slug: str) -> Optional[TagRecord]:
        ...

    def create_tag(self, name: str, slug: str) -> TagRecord:
        ...

    def get_tag(self, tag_id: int) -> Optional[TagRecord]:
        ...

    def search_tags(self, term: str, limit: int = 10) -> list[dict]:
        ...

    def tags_for_item(self, media_item_id: int) -> list[dict]:
        ...

    def add_item_tag(self, media_item_id: int, tag_id: int, user_did: str) -> bool:
        ...

    def tag_usage_count(self, tag_id: int) -> int:
        ...

    def remove_item_tag(self, media_item_id: int, tag_id: int) -> int:
        ...

    def list_tags_with_stats(self) -> list[dict]:
        ...

    def merge_preview(self, source_tag_id: int, target_tag_id: int) -> dict:
        ...

    def merge_tags(self, source_tag_id: int, target_tag_id: int) -> int:
        ...

    def create_tag_report(
        self, media_item_id: int, tag_id: int, reporter_did: str, reason: str
    ) -> Optional[TagReportRecord]:
        ...

    def get_tag_report(self, report_id: int) -> Optional[TagReportRecord]:
        ...

    def list_tag_reports(self, status: str | None = None) -> list[dict]:
        ...

    def pending_report_counts(self) -> list[dict]:
        ...

    def resolve_tag_reports(self, media_item_id: int, tag_id: int) -> int:
        ...

    def dismiss_tag_report(self, report_id: int) -> bool:
        ...


def _stats_of(row: MediaItemRow) -> MediaStats:
    return MediaStats(
        total_ratings=row.total_ratings or 0,
        total_reviews=row.total_reviews or 0,
        average_rating=row.average_rating,
        distribution={bucket: getattr(row, bucket) or 0 for bucket in RATING_BUCKETS},
    )


def _apply_stats(row: MediaItemRow, stats: MediaStats, now: float) -> None:
    row.total_ratings = stats.total_ratings
    row.total_reviews = stats.total_reviews
    row.average_rating = stats.average_rating
    for bucket in RATING_BUCKETS:
        setattr(row, bucket, stats.distribution.get(bucket, 0))
    row.updated_at = now


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url:
                # One shared connection, otherwise every checkout sees an empty database.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def reset(self) -> None:
        """Drop and recreate every table (useful in tests)."""
        Base.metadata.drop_all(self.engine)
        Base.metadata.create_all(self.engine)

    # ------------------------------------------------------------------ converters

    def _to_user(self, row: UserRow) -> UserRecord:
        return UserRecord(
            did=row.did,
            handle=row.handle,
            display_name=row.display_name,
            avatar=row.avatar,
            is_admin=bool(row.is_admin),
            first_login_at=row.first_login_at,
            last_activity_at=row.last_activity_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_media_item(self, row: MediaItemRow) -> MediaItemRecord:
        return MediaItemRecord(
            id=row.id,
            media_type=row.media_type,
            title=row.title,
            creator=row.creator,
            isbn=row.isbn,
            external_id=row.external_id,
            cover_image=row.cover_image,
            description=row.description,
            published_year=row.published_year,
            length=row.length,
            total_saves=row.total_saves or 0,
            stats=_stats_of(row),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_review(self, row: ReviewRow) -> ReviewRecord:
        return ReviewRecord(
            id=row.id,
            author_did=row.author_did,
            media_item_id=row.media_item_id,
            media_type=row.media_type,
            rating=row.rating,
            review=row.review,
            list_item_uri=row.list_item_uri,
            review_uri=row.review_uri,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_feedback(self, row: FeedbackRow) -> FeedbackRecord:
        return FeedbackRecord(
            id=row.id,
            user_did=row.user_did,
            email=row.email,
            message=row.message,
            status=row.status,
            admin_notes=row.admin_notes,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_share_link(self, row: ShareLinkRow) -> ShareLinkRecord:
        return ShareLinkRecord(
            id=row.id,
            short_code=row.short_code,
            user_did=row.user_did,
            media_item_id=row.media_item_id,
            media_type=row.media_type,
            times_clicked=row.times_clicked or 0,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_comment(self, row: CommentRow) -> CommentRecord:
        return CommentRecord(
            uri=row.uri,
            cid=row.cid,
            user_did=row.user_did,
            text=row.text,
            review_uri=row.review_uri,
            parent_comment_uri=row.parent_comment_uri,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_reaction(self, row: ReactionRow) -> ReactionRecord:
        return ReactionRecord(
            uri=row.uri,
            cid=row.cid,
            user_did=row.user_did,
            emoji=row.emoji,
            subject_uri=row.subject_uri,
            subject_type=row.subject_type,
            created_at=row.created_at,
        )

    def _to_tag(self, row: TagRow) -> TagRecord:
        return TagRecord(
            id=row.id, name=row.name, slug=row.slug, status=row.status, created_at=row.created_at
        )

    def _to_tag_report(self, row: TagReportRow) -> TagReportRecord:
        return TagReportRecord(
            id=row.id,
            item_id=row.item_id,
            tag_id=row.tag_id,
            reporter_did=row.reporter_did,
            reason=row.reason,
            status=row.status,
            created_at=row.created_at,
        )

    # ------------------------------------------------------------------ sessions

    def save_session(
        self, key: str, did: str, pds_url: str | None = None, access_token: str | None = None
    ) -> SessionRecord:
        now = time.time()
        with self.Session() as session:
            row = session.get(SessionRow, key)
            if row:
                row.did = did
                row.pds_url = pds_url
                row.access_token = access_token
            else:
                session.add(
                    SessionRow(
                        key=key,
                        did=did,
                        pds_url=pds_url,
                        access_token=access_token,
                        created_at=now,
                    )
                )
            session.commit()
        return SessionRecord(
            key=key, did=did, pds_url=pds_url, access_token=access_token, created_at=now
        )

    def get_session(self, key: str) -> Optional[SessionRecord]:
        with self.Session() as session:
            row = session.get(SessionRow, key)
            if not row:
                return None
            return SessionRecord(
                key=row.key,
                did=row.did,
                pds_url=row.pds_url,
                access_token=row.access_token,
                created_at=row.created_at,
            )

    def delete_session(self, key: str) -> None:
        with self.Session() as session:
            session.execute(delete(SessionRow).where(SessionRow.key == key))
            session.commit()

    # ------------------------------------------------------------------ users

    def get_user(self, did: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, did)
            return self._to_user(row) if row else None

    def get_users(self, dids: Iterable[str]) -> dict[str, UserRecord]:
        wanted = {did for did in dids if did}
        if not wanted:
            return {}
        with self.Session() as session:
            rows = session.execute(select(UserRow).where(UserRow.did.in_(wanted))).scalars()
            return {row.did: self._to_user(row) for row in rows}

    def create_user(
        self,
        did: str,
        handle: str | None,
        display_name: str | None = None,
        avatar: str | None = None,
        is_admin: bool = False,
    ) -> tuple[UserRecord, bool]:
        """Insert a user; returns (user, created). A concurrent insert yields created=False."""
        now = time.time()
        with self.Session() as session:
            existing = session.get(UserRow, did)
            if existing:
                return self._to_user(existing), False
            row = UserRow(
                did=did,
                handle=handle,
                display_name=display_name,
                avatar=avatar,
                is_admin=is_admin,
                first_login_at=now,
                last_activity_at=now,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return self._to_user(session.get(UserRow, did)), False
            return self._to_user(row), True

    def update_user_profile(
        self, did: str, handle: str | None, display_name: str | None, avatar: str | None
    ) -> None:
        now = time.time()
        with self.Session() as session:
            row = session.get(UserRow, did)
            if not row:
                return
            row.handle = handle
            row.display_name = display_name
            row.avatar = avatar
            row.last_activity_at = now
            row.updated_at = now
            session.commit()

    def touch_user(self, did: str) -> None:
        with self.Session() as session:
            session.execute(
                update(UserRow).where(UserRow.did == did).values(last_activity_at=time.time())
            )
            session.commit()

    def set_admin(self, did: str, handle: str | None = None) -> str:
        """Grant admin; returns "created", "promoted" or "unchanged"."""
        now = time.time()
        with self.Session() as session:
            row = session.get(UserRow, did)
            if row and row.is_admin:
                return "unchanged"
            if row:
                row.is_admin = True
                row.updated_at = now
                outcome = "promoted"
            else:
                session.add(
                    UserRow(
                        did=did,
                        handle=handle,
                        is_admin=True,
                        first_login_at=now,
                        last_activity_at=now,
                        created_at=now,
                        updated_at=now,
                    )
                )
                outcome = "created"
            session.commit()
            return outcome

    def is_admin(self, did: str) -> bool:
        with self.Session() as session:
            row = session.get(UserRow, did)
            return bool(row and row.is_admin)

    def count_users(self) -> int:
        with self.Session() as session:
            return session.execute(select(func.count()).select_from(UserRow)).scalar_one()

    def list_recent_users(self, limit: int = 10) -> list[UserRecord]:
        with self.Session() as session:
            stmt = select(UserRow).order_by(UserRow.first_login_at.desc()).limit(limit)
            return [self._to_user(row) for row in session.execute(stmt).scalars()]

    # ------------------------------------------------------------------ media

    def create_media_item(self, media_type: str, title: str, **fields) -> MediaItemRecord:
        now = time.time()
        with self.Session() as session:
            row = MediaItemRow(
                media_type=media_type,
                title=title,
                creator=fields.get("creator"),
                isbn=fields.get("isbn"),
                external_id=fields.get("external_id"),
                cover_image=fields.get("cover_image"),
                description=fields.get("description"),
                published_year=fields.get("published_year"),
                length=fields.get("length"),
                total_ratings=0,
                total_reviews=0,
                total_saves=0,
                created_at=now,
                updated_at=now,
            )
            for bucket in RATING_BUCKETS:
                setattr(row, bucket, 0)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_media_item(row)

    def get_media_item(self, media_item_id: int) -> Optional[MediaItemRecord]:
        with self.Session() as session:
            row = session.get(MediaItemRow, media_item_id)
            return self._to_media_item(row) if row else None

    def get_media_items(self, ids: Iterable[int]) -> dict[int, MediaItemRecord]:
        wanted = {int(item_id) for item_id in ids if item_id is not None}
        if not wanted:
            return {}
        with self.Session() as session:
            rows = session.execute(
                select(MediaItemRow).where(MediaItemRow.id.in_(wanted))
            ).scalars()
            return {row.id: self._to_media_item(row) for row in rows}

    def find_media_item_by_isbn(self, isbn: str, media_type: str) -> Optional[MediaItemRecord]:
        with self.Session() as session:
            stmt = (
                select(MediaItemRow)
                .where(MediaItemRow.isbn == isbn, MediaItemRow.media_type == media_type)
                .order_by(MediaItemRow.id.asc())
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_media_item(row) if row else None

    def adjust_total_saves(self, media_item_id: int, delta: int) -> None:
        adjusted = MediaItemRow.total_saves + delta
        with self.Session() as session:
            session.execute(
                update(MediaItemRow)
                .where(MediaItemRow.id == media_item_id)
                .values(
                    total_saves=case((adjusted < 0, 0), else_=adjusted),
                    updated_at=time.time(),
                )
            )
            session.commit()

    def count_media_items(self) -> int:
        with self.Session() as session:
            return session.execute(select(func.count()).select_from(MediaItemRow)).scalar_one()

    def list_recent_media_items(self, limit: int = 10) -> list[MediaItemRecord]:
        with self.Session() as session:
            stmt = select(MediaItemRow).order_by(MediaItemRow.created_at.desc()).limit(limit)
            return [self._to_media_item(row) for row in session.execute(stmt).scalars()]

    # ------------------------------------------------------------------ reviews

    def _review_stmt(self, author_did: str, media_item_id: int, media_type: str):
        return select(ReviewRow).where(
            ReviewRow.author_did == author_did,
            ReviewRow.media_item_id == media_item_id,
            ReviewRow.media_type == media_type,
        )

    def get_review(
        self, author_did: str, media_item_id: int, media_type: str
    ) -> Optional[ReviewRecord]:
        with self.Session() as session:
            row = session.execute(
                self._review_stmt(author_did, media_item_id, media_type)
            ).scalar_one_or_none()
            return self._to_review(row) if row else None

    def save_review(
        self,
        author_did: str,
        media_item_id: int,
        media_type: str,
        rating: float,
        review: str | None,
        list_item_uri: str | None = None,
        review_uri: str | None = None,
    ) -> tuple[ReviewRecord, Optional[ReviewRecord]]:
        """
        Insert or update a review and fold it into the media item's stats.

        Both writes share one transaction with the media row locked, so
        concurrent reviews of the same item serialize on that lock. Returns
        the saved review and the previous version (None if it is new).
        """
        rating = validate_rating(rating)
        now = time.time()
        with self.Session() as session:
            item = session.execute(
                select(MediaItemRow).where(MediaItemRow.id == media_item_id).with_for_update()
            ).scalar_one_or_none()
            row = session.execute(
                self._review_stmt(author_did, media_item_id, media_type).with_for_update()
            ).scalar_one_or_none()

            previous = self._to_review(row) if row else None
            if row:
                row.rating = rating
                row.review = review
                row.list_item_uri = list_item_uri
                row.review_uri = review_uri
                row.updated_at = now
            else:
                row = ReviewRow(
                    author_did=author_did,
                    media_item_id=media_item_id,
                    media_type=media_type,
                    rating=rating,
                    review=review,
                    list_item_uri=list_item_uri,
                    review_uri=review_uri,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)

            if item is not None:
                if previous:
                    stats = change_rating(
                        _stats_of(item),
                        previous.rating,
                        rating,
                        has_text(previous.review),
                        has_text(review),
                    )
                else:
                    stats = add_rating(_stats_of(item), rating, has_text(review))
                _apply_stats(item, stats, now)
            else:
                logger.warning("Review saved for unknown media item %s", media_item_id)

            session.commit()
            session.refresh(row)
            return self._to_review(row), previous

    def delete_review(
        self, author_did: str, media_item_id: int, media_type: str
    ) -> Optional[ReviewRecord]:
        """Delete a review and remove it from the media stats; returns the removed review."""
        now = time.time()
        with self.Session() as session:
            item = session.execute(
                select(MediaItemRow).where(MediaItemRow.id == media_item_id).with_for_update()
            ).scalar_one_or_none()
            row = session.execute(
                self._review_stmt(author_did, media_item_id, media_type).with_for_update()
            ).scalar_one_or_none()
            if not row:
                return None
            removed = self._to_review(row)
            session.delete(row)
            if item is not None:
                stats = remove_rating(_stats_of(item), removed.rating, has_text(removed.review))
                _apply_stats(item, stats, now)
            session.commit()
            return removed

    def list_reviews_for_media(
        self, media_item_id: int, limit: int = 20, offset: int = 0
    ) -> list[ReviewRecord]:
        with self.Session() as session:
            stmt = (
                select(ReviewRow)
                .where(ReviewRow.media_item_id == media_item_id)
                .order_by(ReviewRow.created_at.desc(), ReviewRow.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return [self._to_review(row) for row in session.execute(stmt).scalars()]

    def list_reviews_by_author(self, author_did: str) -> list[ReviewRecord]:
        with self.Session() as session:
            stmt = select(ReviewRow).where(ReviewRow.author_did == author_did)
            return [self._to_review(row) for row in session.execute(stmt).scalars()]

    def count_reviews_by_author(self, author_did: str) -> int:
        with self.Session() as session:
            return session.execute(
                select(func.count())
                .select_from(ReviewRow)
                .where(ReviewRow.author_did == author_did)
            ).scalar_one()

    # ------------------------------------------------------------------ feed and feedback

    def add_feed_event(
        self, event_name: str, user_did: str, media_link: str | None = None
    ) -> FeedEventRecord:
        with self.Session() as session:
            row = FeedEventRow(
                event_name=event_name,
                media_link=media_link,
                user_did=user_did,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return FeedEventRecord(
                id=row.id,
                event_name=row.event_name,
                media_link=row.media_link,
                user_did=row.user_did,
                created_at=row.created_at,
            )

    def list_feed_events(self, limit: int = 50, offset: int = 0) -> list[FeedEventRecord]:
        with self.Session() as session:
            stmt = (
                select(FeedEventRow)
                .order_by(FeedEventRow.created_at.desc(), FeedEventRow.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return [
                FeedEventRecord(
                    id=row.id,
                    event_name=row.event_name,
                    media_link=row.media_link,
                    user_did=row.user_did,
                    created_at=row.created_at,
                )
                for row in session.execute(stmt).scalars()
            ]

    def create_feedback(
        self, message: str, user_did: str | None = None, email: str | None = None
    ) -> FeedbackRecord:
        now = time.time()
        with self.Session() as session:
            row = FeedbackRow(
                user_did=user_did,
                email=email,
                message=message,
                status="new",
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_feedback(row)

    def list_feedback(self) -> list[FeedbackRecord]:
        with self.Session() as session:
            stmt = select(FeedbackRow).order_by(FeedbackRow.created_at.desc(), FeedbackRow.id.desc())
            return [self._to_feedback(row) for row in session.execute(stmt).scalars()]

    def update_feedback(self, feedback_id: int, **changes) -> Optional[FeedbackRecord]:
        """Apply `status` and/or `admin_notes`; keys that are absent are left alone."""
        with self.Session() as session:
            row = session.get(FeedbackRow, feedback_id)
            if not row:
                return None
            if "status" in changes and changes["status"] is not None:
                row.status = changes["status"]
            if "admin_notes" in changes:
                row.admin_notes = changes["admin_notes"]
            row.updated_at = time.time()
            session.commit()
            return self._to_feedback(row)

    # ------------------------------------------------------------------ share links

    def find_share_link(
        self, user_did: str, media_item_id: int, media_type: str
    ) -> Optional[ShareLinkRecord]:
        with self.Session() as session:
            stmt = (
                select(ShareLinkRow)
                .where(
                    ShareLinkRow.user_did == user_did,
                    ShareLinkRow.media_item_id == media_item_id,
                    ShareLinkRow.media_type == media_type,
                )
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_share_link(row) if row else None

    def create_share_link(
        self, short_code: str, user_did: str, media_item_id: int, media_type: str
    ) -> Optional[ShareLinkRecord]:
        """Insert a share link; returns None when the short code is already taken."""
        now = time.time()
        with self.Session() as session:
            row = ShareLinkRow(
                short_code=short_code,
                user_did=user_did,
                media_item_id=media_item_id,
                media_type=media_type,
                times_clicked=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(row)
            return self._to_share_link(row)

    def record_share_click(self, short_code: str) -> Optional[ShareLinkRecord]:
        with self.Session() as session:
            result = session.execute(
                update(ShareLinkRow)
                .where(ShareLinkRow.short_code == short_code)
                .values(times_clicked=ShareLinkRow.times_clicked + 1, updated_at=time.time())
            )
            if not result.rowcount:
                session.rollback()
                return None
            session.commit()
            row = session.execute(
                select(ShareLinkRow).where(ShareLinkRow.short_code == short_code)
            ).scalar_one()
            return self._to_share_link(row)

    def count_share_links(self) -> int:
        with self.Session() as session:
            return session.execute(select(func.count()).select_from(ShareLinkRow)).scalar_one()

    def list_share_links(
        self, limit: int, offset: int, sort_by: str = "createdAt", order: str = "desc"
    ) -> list[dict]:
        column = ShareLinkRow.times_clicked if sort_by == "timesClicked" else ShareLinkRow.created_at
        ordering = column.asc() if order == "asc" else column.desc()
        with self.Session() as session:
            stmt = (
                select(
                    ShareLinkRow,
                    MediaItemRow.title,
                    MediaItemRow.creator,
                    MediaItemRow.cover_image,
                )
                .outerjoin(MediaItemRow, MediaItemRow.id == ShareLinkRow.media_item_id)
                .order_by(ordering, ShareLinkRow.id.desc())
                .limit(limit)
                .offset(offset)
            )
            results = []
            for link, title, creator, cover_image in session.execute(stmt):
                results.append(
                    {
                        "link": self._to_share_link(link),
                        "title": title,
                        "creator": creator,
                        "cover_image": cover_image,
                    }
                )
            return results

    # ------------------------------------------------------------------ comments

    def save_comment(self, comment: CommentRecord) -> None:
        with self.Session() as session:
            session.merge(
                CommentRow(
                    uri=comment.uri,
                    cid=comment.cid,
                    user_did=comment.user_did,
                    text=comment.text,
                    review_uri=comment.review_uri,
                    parent_comment_uri=comment.parent_comment_uri,
                    created_at=comment.created_at,
                    updated_at=comment.updated_at,
                )
            )
            session.commit()

    def get_comment(self, uri: str) -> Optional[CommentRecord]:
        with self.Session() as session:
            row = session.get(CommentRow, uri)
            return self._to_comment(row) if row else None

    def list_comments_for_review(self, review_uri: str) -> list[CommentRecord]:
        with self.Session() as session:
            stmt = (
                select(CommentRow)
                .where(CommentRow.review_uri == review_uri)
                .order_by(CommentRow.created_at.asc())
            )
            return [self._to_comment(row) for row in session.execute(stmt).scalars()]

    def list_replies(self, parent_comment_uri: str) -> list[CommentRecord]:
        with self.Session() as session:
            stmt = (
                select(CommentRow)
                .where(CommentRow.parent_comment_uri == parent_comment_uri)
                .order_by(CommentRow.created_at.asc())
            )
            return [self._to_comment(row) for row in session.execute(stmt).scalars()]

    def update_comment(self, uri: str, text: str, cid: str) -> Optional[CommentRecord]:
        with self.Session() as session:
            row = session.get(CommentRow, uri)
            if not row:
                return None
            row.text = text
            row.cid = cid
            row.updated_at = time.time()
            session.commit()
            return self._to_comment(row)

    def delete_comment(self, uri: str) -> None:
        with self.Session() as session:
            session.execute(delete(CommentRow).where(CommentRow.uri == uri))
            session.commit()

    # ------------------------------------------------------------------ reactions

    def find_reaction(
        self, user_did: str, subject_uri: str, emoji: str
    ) -> Optional[ReactionRecord]:
        with self.Session() as session:
            stmt = (
                select(ReactionRow)
                .where(
                    ReactionRow.user_did == user_did,
                    ReactionRow.subject_uri == subject_uri,
                    ReactionRow.emoji == emoji,
                )
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_reaction(row) if row else None

    def save_reaction(self, reaction: ReactionRecord) -> None:
        with self.Session() as session:
            session.merge(
                ReactionRow(
                    uri=reaction.uri,
                    cid=reaction.cid,
                    user_did=reaction.user_did,
                    emoji=reaction.emoji,
                    subject_uri=reaction.subject_uri,
                    subject_type=reaction.subject_type,
                    created_at=reaction.created_at,
                )
            )
            session.commit()

    def delete_reaction(self, uri: str) -> None:
        with self.Session() as session:
            session.execute(delete(ReactionRow).where(ReactionRow.uri == uri))
            session.commit()

    def list_reactions(self, subject_uri: str, subject_type: str) -> list[ReactionRecord]:
        with self.Session() as session:
            stmt = (
                select(ReactionRow)
                .where(
                    ReactionRow.subject_uri == subject_uri,
                    ReactionRow.subject_type == subject_type,
                )
                .order_by(ReactionRow.created_at.asc())
            )
            return [self._to_reaction(row) for row in session.execute(stmt).scalars()]

    # ------------------------------------------------------------------ tags

    def find_active_tag(self, slug: str) -> Optional[TagRecord]:
        with self.Session() as session:
            stmt = (
                select(TagRow)
                .where(TagRow.slug == slug, TagRow.status == "active")
                .order_by(TagRow.id.asc())
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_tag(row) if row else None

    def create_tag(self, name: str, slug: str) -> TagRecord:
        with self.Session() as session:
            row = TagRow(name=name, slug=slug, status="active", created_at=time.time())
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_tag(row)

    def get_tag(self, tag_id: int) -> Optional[TagRecord]:
        with self.Session() as session:
            row = session.get(TagRow, tag_id)
            return self._to_tag(row) if row else None

    def _usage_counts(self, session: Session, tag_ids: Iterable[int]) -> dict[int, int]:
        wanted = set(tag_ids)
        if not wanted:
            return {}
        stmt = (
            select(MediaItemTagRow.tag_id, func.count(func.distinct(MediaItemTagRow.media_item_id)))
            .where(MediaItemTagRow.tag_id.in_(wanted))
            .group_by(MediaItemTagRow.tag_id)
        )
        return {tag_id: count for tag_id, count in session.execute(stmt)}

    def search_tags(self, term: str, limit: int = 10) -> list[dict]:
        escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        usage = func.count(func.distinct(MediaItemTagRow.media_item_id))
        with self.Session() as session:
            stmt = (
                select(TagRow, usage.label("usage"))
                .outerjoin(MediaItemTagRow, MediaItemTagRow.tag_id == TagRow.id)
                .where(
                    TagRow.status == "active",
                    or_(
                        func.lower(TagRow.name).like(pattern, escape="\\"),
                        TagRow.slug.like(pattern, escape="\\"),
                    ),
                )
                .group_by(TagRow.id)
                .order_by(usage.desc(), TagRow.name.asc())
                .limit(limit)
            )
            return [
                {**self._to_tag(row).as_dict(), "usageCount": count}
                for row, count in session.execute(stmt)
            ]

    def tags_for_item(self, media_item_id: int) -> list[dict]:
        """Active tags on an item, hiding tags with a pending report against that item."""
        with self.Session() as session:
            reported = select(TagReportRow.tag_id).where(
                TagReportRow.item_id == media_item_id, TagReportRow.status == "pending"
            )
            stmt = (
                select(TagRow)
                .join(MediaItemTagRow, MediaItemTagRow.tag_id == TagRow.id)
                .where(
                    MediaItemTagRow.media_item_id == media_item_id,
                    TagRow.status == "active",
                    TagRow.id.not_in(reported),
                )
                .distinct()
                .order_by(TagRow.name.asc())
            )
            tags = list(session.execute(stmt).scalars())
            counts = self._usage_counts(session, (tag.id for tag in tags))
            return [
                {"id": tag.id, "name": tag.name, "slug": tag.slug, "usageCount": counts.get(tag.id, 0)}
                for tag in tags
            ]

    def add_item_tag(self, media_item_id: int, tag_id: int, user_did: str) -> bool:
        """Associate a tag with an item for a user; False if that user already did."""
        with self.Session() as session:
            if session.get(MediaItemTagRow, (media_item_id, tag_id, user_did)):
                return False
            session.add(
                MediaItemTagRow(
                    media_item_id=media_item_id,
                    tag_id=tag_id,
                    user_did=user_did,
                    created_at=time.time(),
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def tag_usage_count(self, tag_id: int) -> int:
        with self.Session() as session:
            return self._usage_counts(session, [tag_id]).get(tag_id, 0)

    def remove_item_tag(self, media_item_id: int, tag_id: int) -> int:
        with self.Session() as session:
            result = session.execute(
                delete(MediaItemTagRow).where(
                    MediaItemTagRow.media_item_id == media_item_id,
                    MediaItemTagRow.tag_id == tag_id,
                )
            )
            session.commit()
            return result.rowcount or 0

    def list_tags_with_stats(self) -> list[dict]:
        with self.Session() as session:
            stmt = (
                select(
                    TagRow,
                    func.count(func.distinct(MediaItemTagRow.media_item_id)),
                    func.count(func.distinct(MediaItemTagRow.user_did)),
                )
                .outerjoin(MediaItemTagRow, MediaItemTagRow.tag_id == TagRow.id)
                .group_by(TagRow.id)
                .order_by(func.count(func.distinct(MediaItemTagRow.media_item_id)).desc(), TagRow.name.asc())
            )
            return [
                {**self._to_tag(row).as_dict(), "itemCount": items, "userCount": users}
                for row, items, users in session.execute(stmt)
            ]

    def merge_preview(self, source_tag_id: int, target_tag_id: int) -> dict:
        target = MediaItemTagRow.__table__.alias("target")
        with self.Session() as session:
            items_stmt = (
                select(
                    MediaItemRow.id,
                    MediaItemRow.title,
                    MediaItemRow.creator,
                    MediaItemRow.media_type,
                    MediaItemTagRow.user_did,
                )
                .join(MediaItemTagRow, MediaItemTagRow.media_item_id == MediaItemRow.id)
                .where(MediaItemTagRow.tag_id == source_tag_id)
                .order_by(MediaItemRow.title.asc())
            )
            items = [
                {
                    "id": item_id,
                    "title": title,
                    "creator": creator,
                    "mediaType": media_type,
                    "userDid": user_did,
                }
                for item_id, title, creator, media_type, user_did in session.execute(items_stmt)
            ]
            duplicates_stmt = (
                select(MediaItemTagRow.media_item_id, MediaItemTagRow.user_did)
                .join(
                    target,
                    and_(
                        target.c.media_item_id == MediaItemTagRow.media_item_id,
                        target.c.user_did == MediaItemTagRow.user_did,
                        target.c.tag_id == target_tag_id,
                    ),
                )
                .where(MediaItemTagRow.tag_id == source_tag_id)
            )
            duplicates = [
                {"mediaItemId": item_id, "userDid": user_did}
                for item_id, user_did in session.execute(duplicates_stmt)
            ]
            return {"items": items, "duplicates": duplicates}

    def merge_tags(self, source_tag_id: int, target_tag_id: int) -> int:
        """Move every association from source to target in one transaction; returns rows moved."""
        with self.Session() as session:
            target_pairs = {
                (item_id, user_did)
                for item_id, user_did in session.execute(
                    select(MediaItemTagRow.media_item_id, MediaItemTagRow.user_did).where(
                        MediaItemTagRow.tag_id == target_tag_id
                    )
                )
            }
            source_rows = session.execute(
                select(
                    MediaItemTagRow.media_item_id,
                    MediaItemTagRow.user_did,
                    MediaItemTagRow.created_at,
                ).where(MediaItemTagRow.tag_id == source_tag_id)
            ).all()
            session.execute(
                delete(MediaItemTagRow).where(MediaItemTagRow.tag_id == source_tag_id)
            )
            moved = 0
            for item_id, user_did, created_at in source_rows:
                if (item_id, user_did) in target_pairs:
                    continue
                session.add(
                    MediaItemTagRow(
                        media_item_id=item_id,
                        tag_id=target_tag_id,
                        user_did=user_did,
                        created_at=created_at,
                    )
                )
                moved += 1
            session.execute(
                update(TagRow).where(TagRow.id == source_tag_id).values(status="merged")
            )
            session.commit()
            logger.info("Merged tag %s into %s (%s associations moved)", source_tag_id, target_tag_id, moved)
            return moved

    def create_tag_report(
        self, media_item_id: int, tag_id: int, reporter_did: str, reason: str
    ) -> Optional[TagReportRecord]:
        """Create a pending report; None if this reporter already has one pending."""
        with self.Session() as session:
            existing = session.execute(
                select(TagReportRow.id).where(
                    TagReportRow.item_id == media_item_id,
                    TagReportRow.tag_id == tag_id,
                    TagReportRow.reporter_did == reporter_did,
                    TagReportRow.status == "pending",
                )
            ).first()
            if existing:
                return None
            row = TagReportRow(
                item_id=media_item_id,
                tag_id=tag_id,
                reporter_did=reporter_did,
                reason=reason,
                status="pending",
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_tag_report(row)

    def get_tag_report(self, report_id: int) -> Optional[TagReportRecord]:
        with self.Session() as session:
            row = session.get(TagReportRow, report_id)
            return self._to_tag_report(row) if row else None

    def list_tag_reports(self, status: str | None = None) -> list[dict]:
        with self.Session() as session:
            stmt = (
                select(
                    TagReportRow,
                    TagRow.name,
                    TagRow.slug,
                    MediaItemRow.title,
                    MediaItemRow.creator,
                    MediaItemRow.media_type,
                )
                .outerjoin(TagRow, TagRow.id == TagReportRow.tag_id)
                .outerjoin(MediaItemRow, MediaItemRow.id == TagReportRow.item_id)
                .order_by(TagReportRow.created_at.desc(), TagReportRow.id.desc())
            )
            if status:
                stmt = stmt.where(TagReportRow.status == status)
            return [
                {
                    "report": self._to_tag_report(report),
                    "tag_name": tag_name,
                    "tag_slug": tag_slug,
                    "item_title": title,
                    "item_creator": creator,
                    "item_media_type": media_type,
                }
                for report, tag_name, tag_slug, title, creator, media_type in session.execute(stmt)
            ]

    def pending_report_counts(self) -> list[dict]:
        with self.Session() as session:
            stmt = (
                select(TagReportRow.item_id, TagReportRow.tag_id, func.count())
                .where(TagReportRow.status == "pending")
                .group_by(TagReportRow.item_id, TagReportRow.tag_id)
            )
            return [
                {"itemId": item_id, "tagId": tag_id, "count": count}
                for item_id, tag_id, count in session.execute(stmt)
            ]

    def resolve_tag_reports(self, media_item_id: int, tag_id: int) -> int:
        """Remove the tag from the item and resolve every report about it."""
        with self.Session() as session:
            session.execute(
                delete(MediaItemTagRow).where(
                    MediaItemTagRow.media_item_id == media_item_id,
                    MediaItemTagRow.tag_id == tag_id,
                )
            )
            result = session.execute(
                update(TagReportRow)
                .where(TagReportRow.item_id == media_item_id, TagReportRow.tag_id == tag_id)
                .values(status="resolved")
            )
            session.commit()
            return result.rowcount or 0

    def dismiss_tag_report(self, report_id: int) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(TagReportRow).where(TagReportRow.id == report_id).values(status="dismissed")
            )
            session.commit()
            return bool(result.rowcount)
