"""
Rate limiting for Discord commands.

Simple in-memory sliding windows keyed by user and command.
"""

import asyncio
import logging
import time
from collections import defaultdict, deque
from functools import wraps

from ctfboard.config import Config
from ctfboard.utils.error_embeds import ErrorEmbeds

logger = logging.getLogger(__name__)


class SimpleRateLimiter:
    """In-memory rate limiter for Discord commands."""

    def __init__(self):
        self._requests = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def is_allowed(self, user_id: int, command: str, limit: int, window: int) -> bool:
        """Check if user can execute command within rate limit."""
        if limit <= 0 or window <= 0:
            return False

        key = f"{user_id}:{command}"
        now = time.time()

        async with self._lock:
            requests = self._requests[key]
            while requests and requests[0] < now - window:
                requests.popleft()

            if len(requests) < limit:
                requests.append(now)
                return True

            return False


def rate_limit(command: str, limit: int = 1, window: int = 60):
    """Decorator for rate limiting slash commands on a cog whose bot has a rate_limiter."""
    def decorator(func):
        @wraps(func)
        async def wrapper(self, interaction, *args, **kwargs):
            # Bot owner bypasses rate limits
            if interaction.user.id == Config.OWNER_DISCORD_ID:
                return await func(self, interaction, *args, **kwargs)

            if not await self.bot.rate_limiter.is_allowed(interaction.user.id, command, limit, window):
                logger.info(f"Rate limit hit for /{command} by {interaction.user.id}")
                await interaction.response.send_message(embed=ErrorEmbeds.rate_limited(), ephemeral=True)
                return

            return await func(self, interaction, *args, **kwargs)
        return wrapper
    return decorator
