"""Seeding helpers shared by the test modules."""

from datetime import datetime, timedelta, timezone

from redis.exceptions import ConnectionError as RedisConnectionError

from ctfboard.constants import Collections, Roles
from ctfboard.database.database import Database
from ctfboard.utils.exceptions import StoreError

MEMORY_URL = 'sqlite+aiosqlite:///:memory:'

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    """Timestamp `seconds` after a fixed epoch."""
    return T0 + timedelta(seconds=seconds)


async def make_store(batch_limit: int = 500) -> Database:
    store = Database(MEMORY_URL, batch_limit=batch_limit)
    await store.initialize()
    return store


async def add_user(store, user_id: str, **fields):
    data = {'email': f'{user_id}@example.com', 'displayName': user_id.upper()}
    data.update(fields)
    await store.set(Collections.USERS, user_id, data)


async def add_submission(store, submission_id: str, user_id: str, points, submitted_at=None, correct=True):
    data = {'userId': user_id, 'pointsAwarded': points, 'isCorrect': correct}
    if submitted_at is not None:
        data['submittedAt'] = submitted_at
    await store.set(Collections.SUBMISSIONS, submission_id, data)


async def add_index_entry(store, key: str, user_id, **fields):
    data = {'userId': user_id, 'email': f'{user_id}@example.com'}
    data.update(fields)
    await store.set(Collections.USERNAMES, key, data)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX EX locking."""

    def __init__(self):
        self.values = {}
        self.set_calls = []

    async def set(self, key, value, ex=None, nx=False):
        self.set_calls.append((key, ex, nx))
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def delete(self, key):
        self.values.pop(key, None)


def spy_commits(store, fail_on=None):
    """Record the size of every committed write set; optionally fail the Nth commit."""
    sizes = []
    original = store._commit_ops

    async def commit_ops(ops):
        if fail_on is not None and len(sizes) + 1 == fail_on:
            sizes.append(None)
            raise StoreError("batch commit", "injected failure")
        sizes.append(len(ops))
        await original(ops)

    store._commit_ops = commit_ops
    return sizes


async def add_admin(store, caller):
    """Give `caller` an admin user document so privileged writes accept it."""
    await add_user(store, caller.uid, email=caller.email, role=Roles.ADMIN)


class DownRedis(FakeRedis):
    """Redis client whose server is unreachable."""

    async def set(self, key, value, ex=None, nx=False):
        raise RedisConnectionError("redis down")

    async def delete(self, key):
        raise RedisConnectionError("redis down")
