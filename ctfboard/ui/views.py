"""
Discord UI Views for the CTF board bot

Components:
- ConfirmationView: Confirm/Cancel buttons restricted to the command author,
  awaitable from a service-level confirmation callback
"""

from typing import Optional

import discord

from ctfboard.constants import UIConstants
from ctfboard.utils.logger import setup_logger

logger = setup_logger(__name__)


class ConfirmationView(discord.ui.View):
    """
    Two-button confirmation for destructive admin operations.

    After `await view.wait()`, `confirmed` is True only if the author
    pressed Confirm before the timeout.
    """

    def __init__(self, author_id: int, action: str, timeout: float = UIConstants.CONFIRMATION_TIMEOUT):
        super().__init__(timeout=timeout)
        self.author_id = author_id
        self.action = action
        self.confirmed = False
        self.timed_out = False
        self.message: Optional[discord.Message] = None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.author_id:
            await interaction.response.send_message(
                "❌ Only the command author can respond to this confirmation.", ephemeral=True
            )
            return False
        return True

    def _disable_all(self):
        for child in self.children:
            child.disabled = True

    @discord.ui.button(label="✅ Confirm", style=discord.ButtonStyle.danger)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.confirmed = True
        self._disable_all()
        self.stop()

        await interaction.response.edit_message(
            embed=discord.Embed(
                title=f"🔄 Processing {self.action}...",
                description="Applying changes, this may take a moment.",
                color=discord.Color.orange()
            ),
            view=self
        )

    @discord.ui.button(label="❌ Cancel", style=discord.ButtonStyle.secondary)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.stop()

        await interaction.response.edit_message(
            embed=discord.Embed(
                title=f"❌ {self.action} Cancelled",
                description="Operation cancelled by admin.",
                color=discord.Color.red()
            ),
            view=None
        )

    async def on_timeout(self):
        """Disable buttons and leave the message in a timed-out state."""
        self.timed_out = True
        self._disable_all()
        if self.message is not None:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException as e:
                logger.warning(f"Failed to disable confirmation buttons: {e}")
