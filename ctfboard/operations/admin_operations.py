"""
Administrative Operations Module

Business logic composition for the admin tools: leaderboard recalculation,
username synchronization and submission processor control.

Every operation returns a JobReport (success/error/info plus detail lines)
instead of raising, so the command layer only has to render it.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ctfboard.data_models.identity import Caller
from ctfboard.data_models.leaderboard import RecalcResult
from ctfboard.data_models.username_sync import FixOutcome
from ctfboard.services.base import ProgressCallback
from ctfboard.services.identity import IdentityService
from ctfboard.services.leaderboard_recalc import LeaderboardRecalcService
from ctfboard.services.submission_processor import SubmissionProcessor
from ctfboard.services.username_sync import ConfirmCallback, UsernameSyncService
from ctfboard.utils.exceptions import CTFBoardException, InsufficientPrivilegeError
from ctfboard.utils.logger import setup_logger

logger = setup_logger(__name__)


class JobStatus:
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass
class JobReport:
    """User-facing outcome of an admin operation."""
    status: str
    message: str
    details: List[str] = field(default_factory=list)
    operation_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status != JobStatus.ERROR


def _format_points(points: float) -> str:
    return f"{points:g}"


def _recalc_details(result: RecalcResult) -> List[str]:
    details = [
        f"Users ranked: {result.total_users}",
        f"Total points: {_format_points(result.total_points)}",
        f"Batches committed: {result.batches_committed}",
    ]
    if result.total_submissions:
        details.insert(1, f"Correct submissions: {result.total_submissions}")
    if result.skipped_user_ids:
        details.append(f"Skipped users: {', '.join(result.skipped_user_ids)}")
    for entry in result.top_users:
        details.append(f"#{entry.rank} {entry.username} - {_format_points(entry.total_points)} pts")
    return details


class AdminOperations:
    """
    Business logic operations for the CTF board admin tools.

    Low-level errors are caught here and turned into error reports; nothing
    propagates to the presentation layer.
    """

    def __init__(self, recalc_service: LeaderboardRecalcService, username_sync: UsernameSyncService,
                 processor: SubmissionProcessor):
        self.recalc_service = recalc_service
        self.username_sync = username_sync
        self.processor = processor
        self.logger = logger

    async def run_full_recalc(self, progress: Optional[ProgressCallback] = None) -> JobReport:
        try:
            result = await self.recalc_service.recalculate_full(progress)
        except CTFBoardException as e:
            self.logger.error(f"Full recalculation failed: {e}")
            return JobReport(JobStatus.ERROR, e.user_message)

        return JobReport(
            JobStatus.SUCCESS,
            "✅ Leaderboard recalculated successfully!",
            _recalc_details(result),
            operation_count=result.total_users,
        )

    async def run_quick_recalc(self, progress: Optional[ProgressCallback] = None) -> JobReport:
        try:
            result = await self.recalc_service.recalculate_quick(progress)
        except CTFBoardException as e:
            self.logger.error(f"Quick recalculation failed: {e}")
            return JobReport(JobStatus.ERROR, e.user_message)

        return JobReport(
            JobStatus.SUCCESS,
            "✅ Leaderboard quickly recalculated!",
            _recalc_details(result),
            operation_count=result.total_users,
        )

    async def scan_usernames(self) -> JobReport:
        try:
            report = await self.username_sync.scan()
        except CTFBoardException as e:
            self.logger.error(f"Username scan failed: {e}")
            return JobReport(JobStatus.ERROR, f"Error during scan: {e.user_message}")

        details = [
            f"Usernames: {report.total_usernames}",
            f"Users: {report.total_users}",
        ] + report.details()

        if report.is_clean:
            return JobReport(
                JobStatus.SUCCESS,
                "✅ All usernames are properly synchronized! No issues found.",
                details,
            )
        return JobReport(
            JobStatus.INFO,
            f"Found {report.issue_count} issues that need fixing.",
            details,
            operation_count=report.issue_count,
        )

    async def fix_usernames(self, caller: Caller, confirm: ConfirmCallback) -> JobReport:
        try:
            result = await self.username_sync.fix(caller, confirm)
        except InsufficientPrivilegeError as e:
            return JobReport(JobStatus.ERROR, e.user_message)
        except CTFBoardException as e:
            self.logger.error(f"Username fix failed: {e}")
            return JobReport(JobStatus.ERROR, f"Batch commit failed: {e.user_message}")

        if result.outcome == FixOutcome.NOTHING_TO_DO:
            return JobReport(JobStatus.INFO, "No changes needed - everything is already synchronized", result.details)
        if result.outcome == FixOutcome.CANCELLED:
            return JobReport(JobStatus.INFO, "Operation cancelled.", result.details, result.operation_count)
        return JobReport(
            JobStatus.SUCCESS,
            f"✅ Successfully applied {result.operation_count} operations!",
            result.details,
            result.operation_count,
        )

    def processor_status(self) -> JobReport:
        state = "running" if self.processor.is_running else "stopped"
        details = [f"Deduplication: {'on' if self.processor.deduplicate else 'off'}"]
        return JobReport(JobStatus.INFO, f"Submission processor is {state}.", details)

    def start_processor(self, caller: Caller) -> JobReport:
        try:
            IdentityService.require_admin(caller)
        except InsufficientPrivilegeError as e:
            return JobReport(JobStatus.ERROR, e.user_message)
        if self.processor.is_running:
            return JobReport(JobStatus.INFO, "Submission processor is already running.")
        self.processor.start()
        return JobReport(JobStatus.SUCCESS, "🔍 Submission processor started.")

    def stop_processor(self, caller: Caller) -> JobReport:
        try:
            IdentityService.require_admin(caller)
        except InsufficientPrivilegeError as e:
            return JobReport(JobStatus.ERROR, e.user_message)
        if not self.processor.is_running:
            return JobReport(JobStatus.INFO, "Submission processor is not running.")
        self.processor.stop()
        return JobReport(JobStatus.SUCCESS, "🔍 Submission processor stopped.")

    async def replay_submissions(self, caller: Caller) -> JobReport:
        try:
            IdentityService.require_admin(caller)
            replayed = await self.processor.replay_existing()
        except CTFBoardException as e:
            self.logger.error(f"Submission replay failed: {e}")
            return JobReport(JobStatus.ERROR, e.user_message)

        return JobReport(
            JobStatus.SUCCESS,
            f"✅ Replayed {replayed} submissions",
            ["Totals are additive; run a full recalculation if submissions were already counted."],
            operation_count=replayed,
        )
