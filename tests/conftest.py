import pytest

from ctfboard.constants import Roles
from ctfboard.data_models.identity import Caller
from helpers import add_admin, make_store


@pytest.fixture
async def store():
    db = await make_store()
    yield db
    await db.close()


@pytest.fixture
async def small_store():
    """Store whose batches hold at most three operations."""
    db = await make_store(batch_limit=3)
    yield db
    await db.close()


@pytest.fixture
async def admin(store):
    caller = Caller(uid='admin-1', email='admin@example.com', role=Roles.ADMIN)
    await add_admin(store, caller)
    return caller


@pytest.fixture
def player():
    return Caller(uid='player-1', email='player@example.com', role=Roles.USER)
