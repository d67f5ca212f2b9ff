"""
Shared ranking utilities

Both recalculation modes rank through here so every snapshot is ordered
the same way.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple


@dataclass
class UserAggregate:
    """Per-user totals accumulated from submission history."""
    user_id: str
    total_points: float = 0
    challenges_solved: int = 0
    last_submission: Optional[datetime] = None

    def add(self, points: float, submitted_at: Optional[datetime]) -> None:
        self.total_points += points
        self.challenges_solved += 1
        if submitted_at is not None and (self.last_submission is None or submitted_at > self.last_submission):
            self.last_submission = submitted_at


class RankingUtility:
    """Shared ranking logic for consistent leaderboard ordering."""

    @staticmethod
    def full_sort_key(aggregate: UserAggregate) -> Tuple:
        """
        Points descending, then whoever reached the score earlier, then user id.

        A missing timestamp sorts before any real one.
        """
        timestamp_key = (0,) if aggregate.last_submission is None else (1, aggregate.last_submission)
        return (-aggregate.total_points, timestamp_key, aggregate.user_id)

    @staticmethod
    def rank_aggregates(aggregates: Iterable[UserAggregate]) -> List[Tuple[int, UserAggregate]]:
        """Assign 1-based positional ranks in full-recalculation order."""
        ordered = sorted(aggregates, key=RankingUtility.full_sort_key)
        return [(index + 1, aggregate) for index, aggregate in enumerate(ordered)]

    @staticmethod
    def validate_page(page: int, page_size: int, max_page_size: int) -> None:
        """Validate pagination parameters."""
        if not isinstance(page, int) or page < 1:
            raise ValueError("page must be a positive integer")
        if not isinstance(page_size, int) or page_size < 1 or page_size > max_page_size:
            raise ValueError(f"page_size must be between 1 and {max_page_size}")
