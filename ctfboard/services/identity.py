"""
Identity service

Resolves callers and their role claims from user documents. The role on
`users/{uid}` is the source of truth; a Discord account is linked to a
platform user through the user document's `discordId` field.
"""

from dataclasses import replace
from typing import Optional

from ctfboard.config import Config
from ctfboard.constants import Collections, Roles
from ctfboard.data_models.identity import Caller
from ctfboard.database.documents import where
from ctfboard.services.base import BaseService
from ctfboard.utils.exceptions import InsufficientPrivilegeError
from ctfboard.utils.logger import setup_logger

logger = setup_logger(__name__)

_KNOWN_ROLES = (Roles.USER, Roles.MODERATOR, Roles.ADMIN)


class IdentityService(BaseService):
    """Service for resolving callers and checking role claims."""

    async def get_caller(self, uid: str, email: Optional[str] = None, display_name: Optional[str] = None) -> Caller:
        """Build a Caller for a platform user id, reading the role from its user document."""
        user = await self.store.get(Collections.USERS, uid)
        role = Roles.USER
        if user is not None:
            role = user.get('role') or Roles.USER
            if role not in _KNOWN_ROLES:
                logger.warning(f"User {uid} has unknown role '{role}', treating as '{Roles.USER}'")
                role = Roles.USER
            email = email or user.get('email')
            display_name = display_name or user.get('displayName')
        return Caller(uid=uid, email=email, display_name=display_name, role=role)

    async def caller_for_discord(self, discord_id: int, display_name: Optional[str] = None) -> Caller:
        """
        Resolve the platform caller behind a Discord account.

        The configured bot owner is always treated as an admin.
        """
        linked = await self.store.query(Collections.USERS, where('discordId', '==', str(discord_id)), limit=1)
        if linked:
            caller = await self.get_caller(linked[0].id, display_name=display_name)
        else:
            caller = Caller(uid=f"discord:{discord_id}", display_name=display_name)

        caller = replace(caller, discord_id=discord_id)
        if self._is_owner(discord_id) and not caller.is_admin:
            caller = replace(caller, role=Roles.ADMIN)
        return caller

    async def refresh(self, caller: Caller) -> Caller:
        """
        Re-read the caller's role from its user document.

        Used before privileged writes so a role held only on the Caller
        object is not trusted. The bot owner stays an admin.
        """
        fresh = await self.get_caller(caller.uid, caller.email, caller.display_name)
        fresh = replace(fresh, discord_id=caller.discord_id)
        if self._is_owner(caller.discord_id) and not fresh.is_admin:
            fresh = replace(fresh, role=Roles.ADMIN)
        return fresh

    @staticmethod
    def _is_owner(discord_id: Optional[int]) -> bool:
        return bool(Config.OWNER_DISCORD_ID) and discord_id == Config.OWNER_DISCORD_ID

    @staticmethod
    def require_admin(caller: Optional[Caller]) -> Caller:
        """Raise InsufficientPrivilegeError unless caller holds the admin role."""
        if caller is None or not caller.is_admin:
            uid = caller.uid if caller else 'anonymous'
            logger.info(f"Permission denied: {uid} is not an admin")
            raise InsufficientPrivilegeError(uid, Roles.ADMIN)
        return caller
