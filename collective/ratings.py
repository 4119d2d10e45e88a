"""
Aggregate rating statistics for media items.

Ratings are kept as a histogram of half-star buckets. Totals and the average
are always derived from that histogram so repeated updates cannot drift.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

RATING_VALUES: tuple[float, ...] = tuple(step / 2 for step in range(11))


def validate_rating(rating) -> float:
    """Return the rating as a float, or raise ValueError if it is not 0-5 in half steps."""
    try:
        value = float(rating)
    except (TypeError, ValueError):
        raise ValueError(f"Rating must be a number, got {rating!r}")
    if value not in RATING_VALUES:
        raise ValueError("Rating must be between 0 and 5 in steps of 0.5")
    return value


def rating_bucket(rating: float) -> str:
    """Map a rating to its histogram bucket, e.g. 3.5 -> "rating3_5"."""
    value = validate_rating(rating)
    whole = int(value)
    if value == whole:
        return f"rating{whole}"
    return f"rating{whole}_5"


RATING_BUCKETS: tuple[str, ...] = tuple(rating_bucket(value) for value in RATING_VALUES)
_BUCKET_VALUES = dict(zip(RATING_BUCKETS, RATING_VALUES))


def has_text(review: Optional[str]) -> bool:
    return bool(review and review.strip())


def empty_distribution() -> dict[str, int]:
    return {bucket: 0 for bucket in RATING_BUCKETS}


@dataclass(frozen=True)
class MediaStats:
    total_ratings: int = 0
    total_reviews: int = 0
    average_rating: Optional[float] = None
    distribution: dict = field(default_factory=empty_distribution)

    def as_dict(self) -> dict:
        return {
            "totalRatings": self.total_ratings,
            "totalReviews": self.total_reviews,
            "averageRating": self.average_rating,
            "ratingDistribution": dict(self.distribution),
        }


def _rebuild(distribution: dict[str, int], total_reviews: int) -> MediaStats:
    total = sum(distribution.values())
    if total:
        weighted = sum(_BUCKET_VALUES[bucket] * count for bucket, count in distribution.items())
        average = round(weighted / total, 2)
    else:
        average = None
    return MediaStats(
        total_ratings=total,
        total_reviews=max(total_reviews, 0),
        average_rating=average,
        distribution=distribution,
    )


def _bump(distribution: dict[str, int], bucket: str, delta: int) -> dict[str, int]:
    updated = {name: distribution.get(name, 0) for name in RATING_BUCKETS}
    updated[bucket] = max(updated[bucket] + delta, 0)
    return updated


def add_rating(stats: MediaStats, rating: float, with_text: bool) -> MediaStats:
    distribution = _bump(stats.distribution, rating_bucket(rating), 1)
    return _rebuild(distribution, stats.total_reviews + (1 if with_text else 0))


def change_rating(
    stats: MediaStats,
    old_rating: float,
    new_rating: float,
    had_text: bool,
    with_text: bool,
) -> MediaStats:
    distribution = stats.distribution
    if rating_bucket(old_rating) != rating_bucket(new_rating):
        distribution = _bump(distribution, rating_bucket(old_rating), -1)
        distribution = _bump(distribution, rating_bucket(new_rating), 1)
    review_delta = int(with_text) - int(had_text)
    return _rebuild(dict(distribution), stats.total_reviews + review_delta)


def remove_rating(stats: MediaStats, old_rating: float, had_text: bool) -> MediaStats:
    distribution = _bump(stats.distribution, rating_bucket(old_rating), -1)
    updated = _rebuild(distribution, stats.total_reviews - (1 if had_text else 0))
    if updated.total_ratings == 0:
        return replace(updated, total_reviews=0)
    return updated
