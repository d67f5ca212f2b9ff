import pytest

from ctfboard.constants import Collections, LeaderboardConstants
from ctfboard.operations.admin_operations import AdminOperations, JobStatus
from ctfboard.services.leaderboard_recalc import LeaderboardRecalcService
from ctfboard.services.submission_processor import SubmissionProcessor
from ctfboard.services.username_sync import UsernameSyncService
from helpers import DownRedis, FakeRedis, add_index_entry, add_submission, add_user, at, spy_commits


@pytest.fixture
async def processor(store):
    processor = SubmissionProcessor(store, deduplicate=False)
    yield processor
    processor.stop()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def admin_ops(store, processor, redis_client):
    return AdminOperations(
        recalc_service=LeaderboardRecalcService(store, redis_client=redis_client),
        username_sync=UsernameSyncService(store),
        processor=processor,
    )


async def approve(operation_count, details):
    return True


async def test_full_recalc_success_report(store, admin_ops):
    await add_user(store, 'u1', username='one')
    await add_submission(store, 's1', 'u1', 40, at(1))

    report = await admin_ops.run_full_recalc()

    assert report.status == JobStatus.SUCCESS
    assert report.ok
    assert "Users ranked: 1" in report.details
    assert "#1 one - 40 pts" in report.details


async def test_recalc_while_locked_is_an_error_report(admin_ops, redis_client):
    redis_client.values[LeaderboardConstants.RECALC_LOCK_KEY] = "1"

    report = await admin_ops.run_quick_recalc()

    assert report.status == JobStatus.ERROR
    assert not report.ok
    assert "already running" in report.message


async def test_redis_outage_does_not_fail_recalc(store, processor):
    await add_user(store, 'u1', username='one')
    await add_submission(store, 's1', 'u1', 40, at(1))
    admin_ops = AdminOperations(
        recalc_service=LeaderboardRecalcService(store, redis_client=DownRedis()),
        username_sync=UsernameSyncService(store),
        processor=processor,
    )

    assert (await admin_ops.run_full_recalc()).status == JobStatus.SUCCESS
    assert (await admin_ops.run_quick_recalc()).status == JobStatus.SUCCESS


async def test_recalc_failure_is_an_error_report(store, admin_ops):
    await add_user(store, 'u1')
    await add_submission(store, 's1', 'u1', 10, at(1))
    spy_commits(store, fail_on=1)

    report = await admin_ops.run_full_recalc()

    assert report.status == JobStatus.ERROR
    assert "0/1" in report.message


async def test_scan_reports_issues_as_info(store, admin_ops):
    await add_user(store, 'u1', username='John Doe!')
    await add_index_entry(store, 'ghost', 'gone')

    report = await admin_ops.scan_usernames()

    assert report.status == JobStatus.INFO
    assert report.operation_count == 2
    assert any('john_doe' in line for line in report.details)


async def test_scan_clean_is_success(admin_ops):
    report = await admin_ops.scan_usernames()
    assert report.status == JobStatus.SUCCESS


async def test_fix_by_non_admin_is_an_error_report(store, admin_ops, player):
    await add_index_entry(store, 'ghost', 'gone')

    report = await admin_ops.fix_usernames(player, approve)

    assert report.status == JobStatus.ERROR
    assert "admin" in report.message
    assert await store.get(Collections.USERNAMES, 'ghost') is not None


async def test_fix_outcomes(store, admin_ops, admin):
    assert (await admin_ops.fix_usernames(admin, approve)).status == JobStatus.INFO

    await add_index_entry(store, 'ghost', 'gone')

    async def decline(operation_count, details):
        return False

    cancelled = await admin_ops.fix_usernames(admin, decline)
    assert cancelled.status == JobStatus.INFO
    assert cancelled.message == "Operation cancelled."

    applied = await admin_ops.fix_usernames(admin, approve)
    assert applied.status == JobStatus.SUCCESS
    assert applied.operation_count == 1


async def test_processor_controls_require_admin(admin_ops, admin, player):
    assert admin_ops.start_processor(player).status == JobStatus.ERROR
    assert not admin_ops.processor.is_running

    assert admin_ops.start_processor(admin).status == JobStatus.SUCCESS
    assert admin_ops.start_processor(admin).status == JobStatus.INFO
    assert "running" in admin_ops.processor_status().message

    assert admin_ops.stop_processor(player).status == JobStatus.ERROR
    assert admin_ops.stop_processor(admin).status == JobStatus.SUCCESS
    assert admin_ops.stop_processor(admin).status == JobStatus.INFO
    assert "stopped" in admin_ops.processor_status().message


async def test_replay_submissions(store, admin_ops, admin, player):
    await add_user(store, 'u1', totalPoints=0)
    await add_submission(store, 's1', 'u1', 10, at(1))

    assert (await admin_ops.replay_submissions(player)).status == JobStatus.ERROR

    report = await admin_ops.replay_submissions(admin)
    assert report.status == JobStatus.SUCCESS
    assert report.operation_count == 1
    assert (await store.get(Collections.USERS, 'u1')).get('totalPoints') == 10
