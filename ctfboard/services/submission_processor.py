"""
Submission Processor

Keeps user totals and per-user leaderboard entries in step with the stream
of correct submissions, without replaying history on every event.

Known limitations:
- Increments are additive, so a redelivered change counts twice. Pass
  deduplicate=True to remember processed submission ids for the lifetime of
  the process.
- Rank is never maintained here. New entries carry the unranked placeholder
  until the next full recalculation assigns real ranks.
"""

from typing import Any, Dict, Optional, Set

from ctfboard.config import Config
from ctfboard.constants import Collections
from ctfboard.database.documents import SERVER_TIMESTAMP, ChangeType, DocumentChange, Increment, where
from ctfboard.services.base import BaseService
from ctfboard.utils.exceptions import CTFBoardException
from ctfboard.utils.logger import setup_logger
from ctfboard.utils.usernames import fallback_username

logger = setup_logger(__name__)


class SubmissionProcessor(BaseService):
    """Background service applying correct submissions to user and leaderboard aggregates."""

    def __init__(self, store, unranked_rank: Optional[int] = None, deduplicate: Optional[bool] = None):
        super().__init__(store)
        self.unranked_rank = unranked_rank if unranked_rank is not None else Config.UNRANKED_RANK
        self.deduplicate = Config.SUBMISSION_DEDUPLICATE if deduplicate is None else deduplicate
        self._subscription = None
        self._processed_ids: Set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        """Subscribe to correct submissions. No-op when already running."""
        if self._subscription is not None:
            return

        logger.info("🔍 Starting submission processor...")
        self._subscription = self.store.subscribe(
            Collections.SUBMISSIONS,
            [where('isCorrect', '==', True)],
            self._on_change
        )

    def stop(self) -> None:
        """Detach the subscription. Safe to call when not running."""
        if self._subscription is None:
            return
        self._subscription.close()
        self._subscription = None
        logger.info("🔍 Submission processor stopped")

    async def wait_idle(self) -> None:
        """Wait for every change delivered so far to be processed."""
        if self._subscription is not None:
            await self._subscription.wait_idle()

    async def _on_change(self, change: DocumentChange) -> None:
        if change.type not in (ChangeType.ADDED, ChangeType.MODIFIED):
            return
        await self.process_submission(change.document.data, submission_id=change.document.id)

    async def process_submission(self, submission: Dict[str, Any], submission_id: Optional[str] = None) -> bool:
        """
        Apply one correct submission to the user and leaderboard aggregates.

        Errors are logged and swallowed so one bad event never stops the
        stream. Returns True when the user totals were incremented.
        """
        user_id = submission.get('userId')
        points = submission.get('pointsAwarded')

        if not user_id or isinstance(points, bool) or not isinstance(points, (int, float)) or points <= 0:
            logger.debug(f"Skipping submission {submission_id}: no user or no points awarded")
            return False

        if self.deduplicate and submission_id in self._processed_ids:
            logger.info(f"Skipping already processed submission {submission_id}")
            return False

        try:
            logger.info(f"🏆 Processing correct submission for user {user_id}: +{points} points")

            updated = await self._update_user_stats(user_id, points)
            if not updated:
                return False

            # Only counted submissions are remembered, so a failed one can be redelivered
            if self.deduplicate and submission_id:
                self._processed_ids.add(submission_id)

            await self._update_leaderboard(user_id, points)

            logger.info(f"✅ Updated leaderboard for user {user_id}")
            return True

        except CTFBoardException as e:
            logger.error(f"❌ Error processing submission {submission_id} for user {user_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"❌ Unexpected error processing submission {submission_id}: {e}", exc_info=True)
            return False

    async def _update_user_stats(self, user_id: str, points: float) -> bool:
        user = await self.store.get(Collections.USERS, user_id)
        if user is None:
            logger.error(f"User {user_id} not found")
            return False

        await self.store.update(Collections.USERS, user_id, {
            'totalPoints': Increment(points),
            'challengesSolved': Increment(1),
            'lastActive': SERVER_TIMESTAMP,
        })
        return True

    async def _update_leaderboard(self, user_id: str, points: float) -> None:
        entry = await self.store.get(Collections.LEADERBOARD, user_id)

        if entry is not None:
            await self.store.update(Collections.LEADERBOARD, user_id, {
                'totalPoints': Increment(points),
                'challengesSolved': Increment(1),
                'lastUpdated': SERVER_TIMESTAMP,
            })
            return

        user = await self.store.get(Collections.USERS, user_id)
        if user is None:
            logger.warning(f"User {user_id} disappeared before leaderboard entry was created")
            return

        await self.store.set(Collections.LEADERBOARD, user_id, {
            'userId': user_id,
            'username': user.get('username') or fallback_username(user_id, prefix='user_', length=8),
            'displayName': user.get('displayName') or 'Unknown User',
            'totalPoints': points,
            'challengesSolved': 1,
            'rank': self.unranked_rank,
            'lastUpdated': SERVER_TIMESTAMP,
            'avatar': user.get('photoURL'),
            'country': user.get('country'),
            'institution': user.get('institution'),
        })

    async def replay_existing(self) -> int:
        """
        Push every stored correct submission through the processing path.

        Manual repair tool for submissions that landed while the processor
        was down. Totals are additive, so replaying submissions that were
        already processed counts them again; prefer a full recalculation when
        unsure.
        """
        logger.info("🔧 Replaying all existing correct submissions...")
        submissions = await self.store.query(Collections.SUBMISSIONS, where('isCorrect', '==', True))

        replayed = 0
        for document in submissions:
            if await self.process_submission(document.data, submission_id=document.id):
                replayed += 1

        logger.info(f"✅ Replayed {replayed} of {len(submissions)} submissions")
        return replayed
