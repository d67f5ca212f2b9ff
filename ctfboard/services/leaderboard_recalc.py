"""
Leaderboard Recalculation Service

Rebuilds user aggregates and the ranked leaderboard snapshot on demand.

Two modes:
- Full: replays every correct submission, rewrites user totals in
  size-bounded batches and ranks by (points desc, earliest last solve).
  This is the authoritative mode and the only one that assigns real ranks
  from history.
- Quick: re-sorts the totals already stored on user documents and rewrites
  the snapshot. Cheap, but only as good as those totals.

An optional Redis lock stops two recalculations from running at once
across processes.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from redis.exceptions import RedisError

from ctfboard.config import Config
from ctfboard.constants import Collections, LeaderboardConstants
from ctfboard.data_models.leaderboard import LeaderboardEntry, RecalcResult
from ctfboard.database.documents import SERVER_TIMESTAMP, Document, PendingWrite, where
from ctfboard.services.base import BaseService, ProgressCallback, report_progress
from ctfboard.utils.exceptions import (
    RecalculationError, RecalculationInProgressError, StoreError
)
from ctfboard.utils.logger import setup_logger
from ctfboard.utils.ranking import RankingUtility, UserAggregate
from ctfboard.utils.usernames import fallback_username

logger = setup_logger(__name__)


def _points_of(submission: Document) -> float:
    points = submission.get('pointsAwarded') or submission.get('points') or 0
    if isinstance(points, bool) or not isinstance(points, (int, float)):
        return 0
    return points


def _timestamp_of(submission: Document) -> Optional[datetime]:
    submitted_at = submission.get('submittedAt')
    if not isinstance(submitted_at, datetime):
        return None
    # Naive timestamps are taken as UTC so they compare with stored ones
    if submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)
    return submitted_at


class LeaderboardRecalcService(BaseService):
    """Service for full and quick leaderboard recalculation."""

    def __init__(self, store, redis_client=None, batch_limit: Optional[int] = None, lock_ttl: Optional[int] = None):
        super().__init__(store, batch_limit)
        self.redis_client = redis_client
        self.lock_ttl = lock_ttl or Config.RECALC_LOCK_TTL
        self.top_count = Config.LEADERBOARD_TOP_COUNT

    @asynccontextmanager
    async def _recalc_lock(self):
        if self.redis_client is None:
            logger.debug("Running recalculation without Redis locking")
            yield
            return

        try:
            acquired = await self.redis_client.set(
                LeaderboardConstants.RECALC_LOCK_KEY, "1", ex=self.lock_ttl, nx=True
            )
        except RedisError as e:
            logger.error(f"Failed to acquire recalculation lock: {e}. Running without locking.")
            yield
            return

        if not acquired:
            logger.info("Leaderboard recalculation throttled - lock exists")
            raise RecalculationInProgressError()

        try:
            yield
        finally:
            try:
                await self.redis_client.delete(LeaderboardConstants.RECALC_LOCK_KEY)
            except RedisError as e:
                # Lock expires on its own after lock_ttl
                logger.warning(f"Failed to release recalculation lock: {e}")

    async def recalculate_full(self, progress: Optional[ProgressCallback] = None) -> RecalcResult:
        """
        Rebuild user totals and the ranked snapshot from submission history.

        Raises:
            RecalculationError: a batch failed; earlier batches stay committed
            RecalculationInProgressError: another recalculation holds the lock
        """
        async with self._recalc_lock():
            return await self._run_full(progress)

    async def recalculate_quick(self, progress: Optional[ProgressCallback] = None) -> RecalcResult:
        """Re-rank the totals already stored on user documents."""
        async with self._recalc_lock():
            return await self._run_quick(progress)

    async def _run_full(self, progress: Optional[ProgressCallback]) -> RecalcResult:
        mode = LeaderboardConstants.MODE_FULL
        logger.info("Starting full leaderboard recalculation")

        # Step 1: aggregate correct submissions per user
        await report_progress(progress, 0, 0, "Fetching correct submissions...")
        try:
            submissions = await self.store.query(Collections.SUBMISSIONS, where('isCorrect', '==', True))
            users = {doc.id: doc for doc in await self.store.query(Collections.USERS)}
        except StoreError as e:
            raise RecalculationError(mode, 0, 0, str(e)) from e

        await report_progress(progress, 0, 0, f"Found {len(submissions)} correct submissions")

        aggregates: Dict[str, UserAggregate] = {}
        for submission in submissions:
            user_id = submission.get('userId')
            if not user_id:
                continue
            aggregate = aggregates.setdefault(user_id, UserAggregate(user_id))
            aggregate.add(_points_of(submission), _timestamp_of(submission))

        skipped = sorted(user_id for user_id in aggregates if user_id not in users)
        for user_id in skipped:
            logger.warning(f"Skipping submissions for unknown user {user_id}")
            del aggregates[user_id]

        # Step 2: merge totals into user documents, chunked
        user_ids = sorted(aggregates)
        total = len(user_ids)
        groups = [
            [PendingWrite('set', Collections.USERS, user_id, {
                'totalPoints': aggregates[user_id].total_points,
                'challengesSolved': aggregates[user_id].challenges_solved,
                'lastSubmission': aggregates[user_id].last_submission or SERVER_TIMESTAMP,
                'updatedAt': SERVER_TIMESTAMP,
                'leaderboardRecalculated': SERVER_TIMESTAMP,
            }, merge=True)]
            for user_id in user_ids
        ]

        committed = 0

        async def on_batch(batches_done: int, groups_done: int):
            nonlocal committed
            committed = groups_done
            await report_progress(progress, groups_done, total, f"Updated {groups_done}/{total} users...")

        await report_progress(progress, 0, total, "Updating user documents...")
        try:
            batches, _ = await self.commit_groups(groups, on_batch)
        except StoreError as e:
            logger.error(f"Full recalculation aborted after {committed}/{total} users: {e}")
            raise RecalculationError(mode, committed, total, str(e)) from e

        # Step 3: rank and write the snapshot
        await report_progress(progress, total, total, "Updating leaderboard...")
        entries = [
            LeaderboardEntry(
                rank=rank,
                user_id=aggregate.user_id,
                username=users[aggregate.user_id].get('username') or fallback_username(aggregate.user_id),
                display_name=users[aggregate.user_id].get('displayName'),
                total_points=aggregate.total_points,
                challenges_solved=aggregate.challenges_solved,
                last_submission=aggregate.last_submission,
            )
            for rank, aggregate in RankingUtility.rank_aggregates(aggregates.values())
        ]
        try:
            await self._write_snapshot(entries, mode)
        except StoreError as e:
            raise RecalculationError(mode, committed, total, str(e)) from e

        result = RecalcResult(
            mode=mode,
            total_users=total,
            total_submissions=len(submissions),
            total_points=sum(entry.total_points for entry in entries),
            top_users=entries[:self.top_count],
            batches_committed=batches + 1,
            skipped_user_ids=skipped,
        )
        logger.info(
            f"Full recalculation complete: {result.total_users} users, "
            f"{result.total_submissions} submissions, {result.batches_committed} batches"
        )
        return result

    async def _run_quick(self, progress: Optional[ProgressCallback]) -> RecalcResult:
        mode = LeaderboardConstants.MODE_QUICK
        logger.info("Starting quick leaderboard recalculation")

        await report_progress(progress, 0, 0, "Quick recalculating leaderboard...")
        try:
            user_docs = await self.store.query(Collections.USERS)
        except StoreError as e:
            raise RecalculationError(mode, 0, 0, str(e)) from e

        users = []
        skipped: List[str] = []
        for user in user_docs:
            points = user.get('totalPoints')
            if points is None:
                continue
            if isinstance(points, bool) or not isinstance(points, (int, float)):
                logger.warning(f"Skipping user {user.id}: non-numeric totalPoints {points!r}")
                skipped.append(user.id)
                continue
            users.append(user)
        # query() returns ids in ascending order, so ties keep that order
        users.sort(key=lambda d: d.get('totalPoints'), reverse=True)

        entries = [
            LeaderboardEntry(
                rank=index + 1,
                user_id=user.id,
                username=user.get('username') or fallback_username(user.id),
                display_name=user.get('displayName'),
                total_points=user.get('totalPoints') or 0,
                challenges_solved=user.get('challengesSolved') or 0,
                last_submission=user.get('lastSubmission'),
            )
            for index, user in enumerate(users)
        ]

        try:
            await self._write_snapshot(entries, mode)
        except StoreError as e:
            raise RecalculationError(mode, 0, len(entries), str(e)) from e

        await report_progress(progress, len(entries), len(entries), "Leaderboard quickly recalculated!")
        logger.info(f"Quick recalculation complete: {len(entries)} users ranked")

        return RecalcResult(
            mode=mode,
            total_users=len(entries),
            total_submissions=0,
            total_points=sum(entry.total_points for entry in entries),
            top_users=entries[:self.top_count],
            batches_committed=1,
            skipped_user_ids=skipped,
        )

    async def _write_snapshot(self, entries: List[LeaderboardEntry], mode: str) -> None:
        batch = self.store.batch()
        batch.set(Collections.LEADERBOARD, LeaderboardConstants.SNAPSHOT_ID, {
            'users': [entry.to_document() for entry in entries],
            'totalUsers': len(entries),
            'mode': mode,
            'updatedAt': SERVER_TIMESTAMP,
            'recalculatedAt': SERVER_TIMESTAMP,
        })
        await batch.commit()
