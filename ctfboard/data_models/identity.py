"""
Identity data models

The authenticated caller and the role claim used to gate admin tools.
"""

from dataclasses import dataclass
from typing import Optional

from ctfboard.constants import Roles


@dataclass(frozen=True)
class Caller:
    """Authenticated platform user invoking an operation."""
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: str = Roles.USER
    discord_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Roles.ADMIN

    @property
    def is_moderator(self) -> bool:
        return self.role in (Roles.MODERATOR, Roles.ADMIN)
