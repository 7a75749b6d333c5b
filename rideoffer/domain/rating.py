"""
Running-average rating
======================

    new_average = (old_average x n + rating) / (n + 1)      n > 0
    new_average = rating                                     n == 0

``n`` is the identity's total ride count, used as a stand-in for the
number of ratings received.
"""

from .errors import InvalidRating

MIN_RATING = 1
MAX_RATING = 5


def validate_rating(rating: float) -> None:
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidRating(f"Rating must be between {MIN_RATING} and {MAX_RATING}")


def running_average(old_average: float, prior_count: int, rating: float) -> float:
    if prior_count <= 0:
        return float(rating)
    return (old_average * prior_count + rating) / (prior_count + 1)
