"""
Username sync data models

Findings of a `users` vs `usernames` scan and the outcome of a fix run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class OrphanEntry:
    """Index entry pointing at a user that does not exist."""
    username: str
    user_id: Optional[str]
    email: Optional[str] = None


@dataclass(frozen=True)
class MissingEntry:
    """User with a username but no index entry under its normalized key."""
    user_id: str
    username: str
    normalized: str
    email: Optional[str] = None


@dataclass(frozen=True)
class MismatchEntry:
    """Index entry whose key no longer matches its user's normalized username."""
    indexed_username: str
    current_username: str
    normalized: str
    user_id: str
    email: Optional[str] = None
    # Another user already owns the normalized key, so no entry is created
    target_taken: bool = False


@dataclass(frozen=True)
class UsernameConflict:
    """Two users whose usernames normalize to the same key. Reported, never fixed."""
    user_id: str
    username: str
    normalized: str
    holder_id: str


@dataclass
class SyncReport:
    """Result of a read-only scan."""
    total_usernames: int
    total_users: int
    orphans: List[OrphanEntry] = field(default_factory=list)
    missing: List[MissingEntry] = field(default_factory=list)
    mismatches: List[MismatchEntry] = field(default_factory=list)
    conflicts: List[UsernameConflict] = field(default_factory=list)

    @property
    def issue_count(self) -> int:
        return len(self.orphans) + len(self.missing) + len(self.mismatches)

    @property
    def is_clean(self) -> bool:
        return self.issue_count == 0

    def details(self) -> List[str]:
        lines: List[str] = []

        if self.orphans:
            lines.append(f"Found {len(self.orphans)} orphaned usernames:")
            for orphan in self.orphans:
                lines.append(f"  • {orphan.username} (User ID: {orphan.user_id})")

        if self.missing:
            lines.append(f"Found {len(self.missing)} users without username documents:")
            for missing in self.missing:
                lines.append(f"  • {missing.username} → {missing.normalized} (User ID: {missing.user_id})")

        if self.mismatches:
            lines.append(f"Found {len(self.mismatches)} mismatched usernames:")
            for mismatch in self.mismatches:
                lines.append(f"  • In 'usernames': {mismatch.indexed_username}")
                lines.append(f"  • In 'users': {mismatch.current_username}")

        if self.conflicts:
            lines.append(f"Found {len(self.conflicts)} username conflicts (not fixed automatically):")
            for conflict in self.conflicts:
                lines.append(
                    f"  • {conflict.normalized} is held by {conflict.holder_id}, "
                    f"also wanted by {conflict.user_id}"
                )

        return lines


class FixOutcome(Enum):
    APPLIED = "applied"
    CANCELLED = "cancelled"
    NOTHING_TO_DO = "nothing_to_do"


@dataclass
class SyncFixResult:
    """Outcome of a fix run."""
    outcome: FixOutcome
    operation_count: int = 0
    batches_committed: int = 0
    details: List[str] = field(default_factory=list)
