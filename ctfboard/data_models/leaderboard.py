"""
Leaderboard data models

Immutable data transfer objects for ranked leaderboard snapshots and
recalculation results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single ranked leaderboard row."""
    rank: int
    user_id: str
    username: str
    display_name: Optional[str]
    total_points: float
    challenges_solved: int
    last_submission: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'username': self.username,
            'displayName': self.display_name,
            'totalPoints': self.total_points,
            'challengesSolved': self.challenges_solved,
            'lastSubmission': self.last_submission,
            'rank': self.rank,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> 'LeaderboardEntry':
        return cls(
            rank=data.get('rank', 0),
            user_id=data.get('userId', ''),
            username=data.get('username', ''),
            display_name=data.get('displayName'),
            total_points=data.get('totalPoints', 0),
            challenges_solved=data.get('challengesSolved', 0),
            last_submission=data.get('lastSubmission'),
        )


@dataclass(frozen=True)
class LeaderboardPage:
    """Paginated leaderboard data."""
    entries: List[LeaderboardEntry]
    current_page: int
    total_pages: int
    total_users: int
    updated_at: Optional[datetime] = None
    mode: Optional[str] = None


@dataclass(frozen=True)
class RecalcResult:
    """Outcome of a leaderboard recalculation."""
    mode: str
    total_users: int
    total_submissions: int
    total_points: float
    top_users: List[LeaderboardEntry] = field(default_factory=list)
    batches_committed: int = 0
    skipped_user_ids: List[str] = field(default_factory=list)
