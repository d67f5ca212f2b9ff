"""
Leaderboard service

Serves paginated pages of the ranked snapshot written by the
recalculation job, with a short TTL cache.
"""

import asyncio
import logging
import time

from ctfboard.constants import Collections, LeaderboardConstants, PaginationConstants
from ctfboard.data_models.leaderboard import LeaderboardEntry, LeaderboardPage
from ctfboard.services.base import BaseService
from ctfboard.utils.ranking import RankingUtility

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for leaderboard snapshot reads with caching."""

    def __init__(self, store, cache_ttl: int = 180):
        super().__init__(store)
        self._cache = {}
        self._cache_timestamps = {}
        self._cache_ttl = cache_ttl
        self._cache_lock = asyncio.Lock()

    async def _get_cached(self, key: str):
        async with self._cache_lock:
            timestamp = self._cache_timestamps.get(key)
            if timestamp is None or time.time() - timestamp >= self._cache_ttl:
                return None
            return self._cache[key]

    def clear_cache(self) -> None:
        """Drop cached pages, e.g. after a recalculation."""
        self._cache.clear()
        self._cache_timestamps.clear()

    async def get_page(self, page: int = 1, page_size: int = PaginationConstants.DEFAULT_PAGE_SIZE) -> LeaderboardPage:
        """Get one page of the current ranked snapshot."""
        RankingUtility.validate_page(page, page_size, PaginationConstants.MAX_PAGE_SIZE)

        cache_key = f"leaderboard:{page}:{page_size}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        snapshot = await self.store.get(Collections.LEADERBOARD, LeaderboardConstants.SNAPSHOT_ID)
        if snapshot is None:
            logger.info("No leaderboard snapshot yet; run a recalculation first")
            rows = []
        else:
            rows = snapshot.get('users') or []

        total_users = len(rows)
        offset = (page - 1) * page_size
        entries = [LeaderboardEntry.from_document(row) for row in rows[offset:offset + page_size]]

        leaderboard_page = LeaderboardPage(
            entries=entries,
            current_page=page,
            total_pages=(total_users + page_size - 1) // page_size if total_users > 0 else 1,
            total_users=total_users,
            updated_at=snapshot.get('updatedAt') if snapshot else None,
            mode=snapshot.get('mode') if snapshot else None,
        )

        async with self._cache_lock:
            self._cache[cache_key] = leaderboard_page
            self._cache_timestamps[cache_key] = time.time()

        return leaderboard_page
