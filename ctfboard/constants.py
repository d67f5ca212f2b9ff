"""
Shared constants for the CTF board services.

Collection names, document field names and UI values used throughout
the codebase live here so the jobs and the Discord surface agree on them.
"""

class Collections:
    """Document store collection names."""

    USERS = "users"
    USERNAMES = "usernames"
    SUBMISSIONS = "submissions"
    LEADERBOARD = "leaderboard"

class LeaderboardConstants:
    """Constants for leaderboard snapshots."""

    # Document id of the ranked snapshot inside the leaderboard collection
    SNAPSHOT_ID = "current"

    MODE_FULL = "full"
    MODE_QUICK = "quick"

    # Redis key guarding concurrent recalculations
    RECALC_LOCK_KEY = "leaderboard_recalc_lock"

class Roles:
    """Role claims stored on user documents."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"

class PaginationConstants:
    """Constants for paginated displays."""

    DEFAULT_PAGE_SIZE = 10
    MAX_PAGE_SIZE = 25

    # Detail lines shown in a report embed before the rest are summarized
    MAX_DETAIL_LINES = 15

class UIConstants:
    """Constants for Discord UI elements."""

    # Embed colors
    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    GOLD_RANK_COLOR = 0xffd700     # Gold for #1 ranked users

    TROPHY_EMOJI = "🏆"

    CONFIRMATION_TIMEOUT = 60.0
