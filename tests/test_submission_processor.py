import asyncio

import pytest

from ctfboard.constants import Collections
from ctfboard.services.submission_processor import SubmissionProcessor
from helpers import add_submission, add_user, at, spy_commits


@pytest.fixture
async def processor(store):
    processor = SubmissionProcessor(store, unranked_rank=999, deduplicate=False)
    yield processor
    processor.stop()


async def test_interleaved_submissions_are_all_counted(store, processor):
    await add_user(store, 'u3', username='u3', totalPoints=0, challengesSolved=0)
    processor.start()

    await asyncio.gather(
        add_submission(store, 's1', 'u3', 50, at(1)),
        add_submission(store, 's2', 'u3', 30, at(2)),
        add_submission(store, 's3', 'u3', 20, at(3)),
    )
    await processor.wait_idle()

    user = await store.get(Collections.USERS, 'u3')
    assert user.get('totalPoints') == 100
    assert user.get('challengesSolved') == 3
    assert user.get('lastActive') is not None

    entry = await store.get(Collections.LEADERBOARD, 'u3')
    assert entry.get('totalPoints') == 100
    assert entry.get('challengesSolved') == 3
    assert entry.get('rank') == 999


async def test_new_leaderboard_entry_is_seeded_from_user(store, processor):
    await add_user(store, 'abcdefghijk', photoURL='http://img', country='NZ')

    assert await processor.process_submission({'userId': 'abcdefghijk', 'pointsAwarded': 40}, 's1')

    entry = await store.get(Collections.LEADERBOARD, 'abcdefghijk')
    assert entry.get('username') == 'user_abcdefgh'
    assert entry.get('displayName') == 'ABCDEFGHIJK'
    assert entry.get('totalPoints') == 40
    assert entry.get('challengesSolved') == 1
    assert entry.get('avatar') == 'http://img'
    assert entry.get('country') == 'NZ'
    assert entry.get('institution') is None


async def test_missing_user_is_skipped(store, processor):
    assert not await processor.process_submission({'userId': 'ghost', 'pointsAwarded': 10}, 's1')

    assert await store.get(Collections.USERS, 'ghost') is None
    assert await store.get(Collections.LEADERBOARD, 'ghost') is None


@pytest.mark.parametrize("points", [0, -5, None, "10", True])
async def test_events_without_positive_points_are_ignored(store, processor, points):
    await add_user(store, 'u1', totalPoints=7)

    assert not await processor.process_submission({'userId': 'u1', 'pointsAwarded': points}, 's1')
    assert (await store.get(Collections.USERS, 'u1')).get('totalPoints') == 7


async def test_incorrect_submissions_are_not_processed(store, processor):
    await add_user(store, 'u1', totalPoints=0)
    processor.start()

    await add_submission(store, 's1', 'u1', 25, correct=False)
    await processor.wait_idle()

    assert (await store.get(Collections.USERS, 'u1')).get('totalPoints') == 0


async def test_start_and_stop_are_idempotent(store, processor):
    await add_user(store, 'u1', totalPoints=0)

    processor.start()
    processor.start()
    assert processor.is_running

    await add_submission(store, 's1', 'u1', 10)
    await processor.wait_idle()

    processor.stop()
    processor.stop()
    assert not processor.is_running

    await add_submission(store, 's2', 'u1', 10)
    await asyncio.sleep(0)
    assert (await store.get(Collections.USERS, 'u1')).get('totalPoints') == 10


async def test_redelivery_double_counts_by_default(store, processor):
    await add_user(store, 'u1', totalPoints=0)
    submission = {'userId': 'u1', 'pointsAwarded': 10}

    await processor.process_submission(submission, 's1')
    await processor.process_submission(submission, 's1')

    assert (await store.get(Collections.USERS, 'u1')).get('totalPoints') == 20


async def test_deduplication_skips_seen_submission_ids(store):
    processor = SubmissionProcessor(store, deduplicate=True)
    await add_user(store, 'u1', totalPoints=0)
    submission = {'userId': 'u1', 'pointsAwarded': 10}

    assert await processor.process_submission(submission, 's1')
    assert not await processor.process_submission(submission, 's1')
    assert await processor.process_submission(submission, 's2')

    assert (await store.get(Collections.USERS, 'u1')).get('totalPoints') == 20


async def test_replay_existing_processes_stored_submissions(store, processor):
    await add_user(store, 'u1', totalPoints=0, challengesSolved=0)
    await add_submission(store, 's1', 'u1', 10)
    await add_submission(store, 's2', 'u1', 15)
    await add_submission(store, 's3', 'u1', 99, correct=False)
    await add_submission(store, 's4', 'ghost', 5)

    assert await processor.replay_existing() == 2

    user = await store.get(Collections.USERS, 'u1')
    assert user.get('totalPoints') == 25
    assert user.get('challengesSolved') == 2


async def test_failed_submission_is_retried_when_deduplicating(store):
    processor = SubmissionProcessor(store, deduplicate=True)
    await add_user(store, 'u1', totalPoints=0)
    submission = {'userId': 'u1', 'pointsAwarded': 10}
    spy_commits(store, fail_on=1)

    assert not await processor.process_submission(submission, 's1')
    assert await processor.process_submission(submission, 's1')
    assert not await processor.process_submission(submission, 's1')

    assert (await store.get(Collections.USERS, 'u1')).get('totalPoints') == 10


async def test_store_failure_does_not_stop_later_events(store, processor):
    await add_user(store, 'u1', totalPoints=0, challengesSolved=0)
    processor.start()
    # Commit 1 stores s1, commit 2 is the user update for s1
    sizes = spy_commits(store, fail_on=2)

    await add_submission(store, 's1', 'u1', 10, at(1))
    await processor.wait_idle()
    await add_submission(store, 's2', 'u1', 15, at(2))
    await processor.wait_idle()

    assert sizes[1] is None
    user = await store.get(Collections.USERS, 'u1')
    assert user.get('totalPoints') == 15
    assert user.get('challengesSolved') == 1
    assert (await store.get(Collections.LEADERBOARD, 'u1')).get('totalPoints') == 15
