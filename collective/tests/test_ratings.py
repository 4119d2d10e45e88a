import unittest

from collective.ratings import (
    RATING_BUCKETS,
    MediaStats,
    add_rating,
    change_rating,
    rating_bucket,
    remove_rating,
    validate_rating,
)


class RatingValidationTests(unittest.TestCase):
    def test_accepts_half_steps(self):
        self.assertEqual(validate_rating(0), 0.0)
        self.assertEqual(validate_rating("3.5"), 3.5)
        self.assertEqual(validate_rating(5), 5.0)

    def test_rejects_out_of_range_and_off_step(self):
        for bad in (-0.5, 5.5, 2.25, None, "abc"):
            with self.assertRaises(ValueError):
                validate_rating(bad)

    def test_bucket_names(self):
        self.assertEqual(rating_bucket(0), "rating0")
        self.assertEqual(rating_bucket(3.5), "rating3_5")
        self.assertEqual(rating_bucket(5), "rating5")
        self.assertEqual(len(RATING_BUCKETS), 11)


class MediaStatsTests(unittest.TestCase):
    def test_add_ratings_updates_average_and_distribution(self):
        stats = add_rating(MediaStats(), 4, with_text=True)
        stats = add_rating(stats, 3, with_text=False)
        self.assertEqual(stats.total_ratings, 2)
        self.assertEqual(stats.total_reviews, 1)
        self.assertEqual(stats.average_rating, 3.5)
        self.assertEqual(stats.distribution["rating4"], 1)
        self.assertEqual(stats.distribution["rating3"], 1)

    def test_change_rating_moves_bucket(self):
        stats = add_rating(MediaStats(), 2, with_text=False)
        stats = change_rating(stats, 2, 4.5, had_text=False, with_text=True)
        self.assertEqual(stats.total_ratings, 1)
        self.assertEqual(stats.total_reviews, 1)
        self.assertEqual(stats.distribution["rating2"], 0)
        self.assertEqual(stats.distribution["rating4_5"], 1)
        self.assertEqual(stats.average_rating, 4.5)

    def test_change_to_same_bucket_only_adjusts_review_count(self):
        stats = add_rating(MediaStats(), 3, with_text=True)
        stats = change_rating(stats, 3, 3, had_text=True, with_text=False)
        self.assertEqual(stats.total_ratings, 1)
        self.assertEqual(stats.total_reviews, 0)
        self.assertEqual(stats.distribution["rating3"], 1)

    def test_removing_last_rating_resets(self):
        stats = add_rating(MediaStats(), 1.5, with_text=True)
        stats = remove_rating(stats, 1.5, had_text=True)
        self.assertEqual(stats.total_ratings, 0)
        self.assertEqual(stats.total_reviews, 0)
        self.assertIsNone(stats.average_rating)

    def test_counts_never_go_negative(self):
        stats = remove_rating(MediaStats(), 2, had_text=True)
        self.assertEqual(stats.distribution["rating2"], 0)
        self.assertEqual(stats.total_reviews, 0)

    def test_as_dict_shape(self):
        data = add_rating(MediaStats(), 5, with_text=False).as_dict()
        self.assertEqual(data["totalRatings"], 1)
        self.assertEqual(data["averageRating"], 5.0)
        self.assertEqual(data["ratingDistribution"]["rating5"], 1)


if __name__ == "__main__":
    unittest.main()
