import pytest

from ctfboard.config import Config
from ctfboard.constants import Roles
from ctfboard.data_models.identity import Caller
from ctfboard.services.identity import IdentityService
from ctfboard.utils.exceptions import InsufficientPrivilegeError
from helpers import add_user


async def test_role_comes_from_user_document(store):
    await add_user(store, 'u1', role=Roles.ADMIN)
    await add_user(store, 'u2', role='superuser')
    service = IdentityService(store)

    admin = await service.get_caller('u1')
    assert admin.is_admin
    assert admin.email == 'u1@example.com'

    assert (await service.get_caller('u2')).role == Roles.USER
    assert (await service.get_caller('nobody')).role == Roles.USER


async def test_discord_account_links_to_platform_user(store, monkeypatch):
    monkeypatch.setattr(Config, 'OWNER_DISCORD_ID', 0)
    await add_user(store, 'u1', role=Roles.MODERATOR, discordId='1234')
    service = IdentityService(store)

    linked = await service.caller_for_discord(1234, 'Mod')
    assert linked.uid == 'u1'
    assert linked.is_moderator and not linked.is_admin

    unlinked = await service.caller_for_discord(999)
    assert unlinked.uid == 'discord:999'
    assert unlinked.role == Roles.USER


async def test_bot_owner_is_always_admin(store, monkeypatch):
    monkeypatch.setattr(Config, 'OWNER_DISCORD_ID', 42)

    caller = await IdentityService(store).caller_for_discord(42)
    assert caller.is_admin


def test_require_admin():
    admin = Caller(uid='a', role=Roles.ADMIN)
    assert IdentityService.require_admin(admin) is admin

    for caller in (Caller(uid='m', role=Roles.MODERATOR), None):
        with pytest.raises(InsufficientPrivilegeError):
            IdentityService.require_admin(caller)


async def test_refresh_rereads_role(store, monkeypatch):
    monkeypatch.setattr(Config, 'OWNER_DISCORD_ID', 42)
    await add_user(store, 'u1', role=Roles.MODERATOR)
    service = IdentityService(store)

    fresh = await service.refresh(Caller(uid='u1', role=Roles.ADMIN, discord_id=7))
    assert fresh.role == Roles.MODERATOR
    assert fresh.discord_id == 7

    owner = await service.refresh(Caller(uid='u1', discord_id=42))
    assert owner.is_admin
