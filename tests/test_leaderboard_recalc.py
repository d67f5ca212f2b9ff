import pytest

from ctfboard.constants import Collections, LeaderboardConstants
from ctfboard.services.leaderboard import LeaderboardService
from ctfboard.services.leaderboard_recalc import LeaderboardRecalcService
from ctfboard.utils.exceptions import RecalculationError, RecalculationInProgressError
from helpers import DownRedis, FakeRedis, add_submission, add_user, at, make_store, spy_commits


async def snapshot_of(store):
    return await store.get(Collections.LEADERBOARD, LeaderboardConstants.SNAPSHOT_ID)


async def test_earlier_last_submission_wins_tie(store):
    await add_user(store, 'A', username='alpha')
    await add_user(store, 'B', username='bravo')
    await add_submission(store, 's1', 'A', 100, at(10))
    await add_submission(store, 's2', 'B', 100, at(5))

    result = await LeaderboardRecalcService(store).recalculate_full()

    assert [(entry.rank, entry.user_id) for entry in result.top_users] == [(1, 'B'), (2, 'A')]
    snapshot = await snapshot_of(store)
    assert [(row['rank'], row['userId']) for row in snapshot.get('users')] == [(1, 'B'), (2, 'A')]
    assert snapshot.get('mode') == LeaderboardConstants.MODE_FULL
    assert snapshot.get('totalUsers') == 2


async def test_full_rebuilds_user_totals_from_history(store):
    await add_user(store, 'u1', username='one', totalPoints=999, challengesSolved=42, bio='kept')
    await add_user(store, 'u2', username='two', totalPoints=5)
    await add_submission(store, 's1', 'u1', 10, at(1))
    await add_submission(store, 's2', 'u1', 15, at(7))
    await add_submission(store, 's3', 'u1', 500, at(8), correct=False)

    result = await LeaderboardRecalcService(store).recalculate_full()

    user = await store.get(Collections.USERS, 'u1')
    assert user.get('totalPoints') == 25
    assert user.get('challengesSolved') == 2
    assert user.get('lastSubmission') == at(7)
    assert user.get('bio') == 'kept'
    assert user.get('leaderboardRecalculated') is not None

    # Users without correct submissions are left alone
    assert (await store.get(Collections.USERS, 'u2')).get('totalPoints') == 5
    assert result.total_users == 1
    assert result.total_submissions == 2
    assert result.total_points == 25


async def test_full_skips_submissions_of_unknown_users(store):
    await add_user(store, 'u1', username='one')
    await add_submission(store, 's1', 'u1', 10, at(1))
    await add_submission(store, 's2', 'ghost', 50, at(2))

    result = await LeaderboardRecalcService(store).recalculate_full()

    assert result.skipped_user_ids == ['ghost']
    assert await store.get(Collections.USERS, 'ghost') is None
    assert [row['userId'] for row in (await snapshot_of(store)).get('users')] == ['u1']


async def test_full_is_deterministic(store):
    for index in range(6):
        await add_user(store, f'u{index}', username=f'user{index}')
        await add_submission(store, f's{index}', f'u{index}', 10 * (index % 3), at(index % 2))
    await add_submission(store, 'extra', 'u4', 10)

    service = LeaderboardRecalcService(store)
    first = (await service.recalculate_full()).top_users
    first_rows = (await snapshot_of(store)).get('users')
    second = (await service.recalculate_full()).top_users
    second_rows = (await snapshot_of(store)).get('users')

    assert first == second
    assert first_rows == second_rows


async def test_full_batches_stay_within_limit(small_store):
    for index in range(7):
        await add_user(small_store, f'u{index}')
        await add_submission(small_store, f's{index}', f'u{index}', index + 1, at(index))
    sizes = spy_commits(small_store)

    result = await LeaderboardRecalcService(small_store).recalculate_full()

    assert sizes == [3, 3, 1, 1]
    assert result.batches_committed == 4
    assert max(sizes) <= small_store.batch_limit


async def test_full_failure_reports_committed_progress(small_store):
    for index in range(7):
        await add_user(small_store, f'u{index}', totalPoints=0)
        await add_submission(small_store, f's{index}', f'u{index}', 10, at(index))
    spy_commits(small_store, fail_on=2)

    with pytest.raises(RecalculationError) as excinfo:
        await LeaderboardRecalcService(small_store).recalculate_full()

    assert excinfo.value.committed == 3
    assert excinfo.value.total == 7
    # First batch stays committed, the rest were never written
    totals = [(await small_store.get(Collections.USERS, f'u{index}')).get('totalPoints') for index in range(7)]
    assert totals == [10, 10, 10, 0, 0, 0, 0]
    assert await snapshot_of(small_store) is None


async def test_full_reports_progress(store):
    for index in range(3):
        await add_user(store, f'u{index}')
        await add_submission(store, f's{index}', f'u{index}', 5, at(index))
    calls = []

    await LeaderboardRecalcService(store).recalculate_full(lambda current, total, message: calls.append(
        (current, total, message)
    ))

    assert calls[0][2] == "Fetching correct submissions..."
    assert (3, 3, "Updated 3/3 users...") in calls
    assert calls[-1] == (3, 3, "Updating leaderboard...")


async def test_async_progress_callback_is_awaited(store):
    await add_user(store, 'u1')
    await add_submission(store, 's1', 'u1', 5, at(1))
    messages = []

    async def progress(current, total, message):
        messages.append(message)

    await LeaderboardRecalcService(store).recalculate_full(progress)
    assert "Updating leaderboard..." in messages


async def test_quick_ranks_stored_totals(store):
    await add_user(store, 'x', username='xray', totalPoints=50, challengesSolved=2)
    await add_user(store, 'y', username='yankee', totalPoints=80, challengesSolved=4)
    await add_user(store, 'z', totalPoints=50)
    await add_user(store, 'w', username='whiskey')

    result = await LeaderboardRecalcService(store).recalculate_quick()

    rows = (await snapshot_of(store)).get('users')
    assert [(row['rank'], row['userId']) for row in rows] == [(1, 'y'), (2, 'x'), (3, 'z')]
    assert rows[2]['username'] == 'User_z'
    assert result.mode == LeaderboardConstants.MODE_QUICK
    assert result.batches_committed == 1
    assert result.total_points == 180


async def test_quick_with_no_users_writes_empty_snapshot(store):
    result = await LeaderboardRecalcService(store).recalculate_quick()

    assert result.total_users == 0
    snapshot = await snapshot_of(store)
    assert snapshot.get('users') == []
    assert snapshot.get('totalUsers') == 0


async def test_naive_timestamps_are_treated_as_utc(store):
    await add_user(store, 'A')
    await add_user(store, 'B')
    await add_submission(store, 's1', 'A', 10, at(10))
    await add_submission(store, 's2', 'B', 10, at(5).replace(tzinfo=None))

    result = await LeaderboardRecalcService(store).recalculate_full()
    assert [entry.user_id for entry in result.top_users] == ['B', 'A']


async def test_lock_blocks_concurrent_recalculation(store):
    redis_client = FakeRedis()
    redis_client.values[LeaderboardConstants.RECALC_LOCK_KEY] = "1"
    service = LeaderboardRecalcService(store, redis_client=redis_client, lock_ttl=60)

    with pytest.raises(RecalculationInProgressError):
        await service.recalculate_quick()
    assert await snapshot_of(store) is None


async def test_lock_is_released_after_run(store):
    redis_client = FakeRedis()
    service = LeaderboardRecalcService(store, redis_client=redis_client, lock_ttl=60)

    await service.recalculate_quick()
    await service.recalculate_quick()

    assert redis_client.set_calls == [(LeaderboardConstants.RECALC_LOCK_KEY, 60, True)] * 2
    assert LeaderboardConstants.RECALC_LOCK_KEY not in redis_client.values


async def test_leaderboard_pages_read_the_snapshot():
    store = await make_store()
    try:
        for index in range(12):
            await add_user(store, f'u{index:02d}', username=f'user{index}')
            await add_submission(store, f's{index}', f'u{index:02d}', 100 - index, at(index))
        await LeaderboardRecalcService(store).recalculate_full()

        service = LeaderboardService(store)
        first = await service.get_page(page=1, page_size=10)
        second = await service.get_page(page=2, page_size=10)

        assert first.total_pages == 2
        assert first.total_users == 12
        assert [entry.rank for entry in first.entries] == list(range(1, 11))
        assert [entry.user_id for entry in second.entries] == ['u10', 'u11']
        assert second.mode == LeaderboardConstants.MODE_FULL

        with pytest.raises(ValueError):
            await service.get_page(page=0)
    finally:
        await store.close()


async def test_empty_leaderboard_page(store):
    page = await LeaderboardService(store).get_page()
    assert page.entries == []
    assert page.total_pages == 1
    assert page.total_users == 0


async def test_quick_skips_non_numeric_totals(store):
    await add_user(store, 'u1', totalPoints=10)
    await add_user(store, 'u2', totalPoints='20')
    await add_user(store, 'u3', totalPoints=True)

    result = await LeaderboardRecalcService(store).recalculate_quick()

    assert result.skipped_user_ids == ['u2', 'u3']
    assert [row['userId'] for row in (await snapshot_of(store)).get('users')] == ['u1']


async def test_recalculation_runs_unlocked_when_redis_is_down(store):
    await add_user(store, 'u1')
    await add_submission(store, 's1', 'u1', 10, at(1))
    service = LeaderboardRecalcService(store, redis_client=DownRedis())

    full = await service.recalculate_full()
    quick = await service.recalculate_quick()

    assert full.total_users == 1
    assert quick.total_points == 10
    assert (await snapshot_of(store)).get('mode') == LeaderboardConstants.MODE_QUICK
