import logging

import discord
from discord import app_commands
from discord.ext import commands

from ctfboard.services.rate_limiter import rate_limit
from ctfboard.utils.embeds import build_leaderboard_embed
from ctfboard.utils.error_embeds import ErrorEmbeds
from ctfboard.utils.exceptions import CTFBoardException
from ctfboard.views.leaderboard import LeaderboardView

logger = logging.getLogger(__name__)


class LeaderboardCog(commands.Cog):
    """Public leaderboard commands"""

    def __init__(self, bot):
        self.bot = bot
        self.leaderboard_service = bot.leaderboard_service

    @app_commands.command(name="leaderboard", description="View the CTF leaderboard")
    @app_commands.describe(page="Page number to start on")
    @rate_limit("leaderboard", limit=5, window=60)
    async def leaderboard(self, interaction: discord.Interaction, page: app_commands.Range[int, 1] = 1):
        """Display the ranked leaderboard snapshot."""
        await interaction.response.defer()

        try:
            page_data = await self.leaderboard_service.get_page(page=page)
        except ValueError as e:
            await interaction.followup.send(embed=ErrorEmbeds.invalid_input(str(e)))
            return
        except CTFBoardException as e:
            logger.error(f"Error in leaderboard command: {e}")
            await interaction.followup.send(embed=ErrorEmbeds.command_error(e.user_message))
            return

        view = LeaderboardView(
            leaderboard_service=self.leaderboard_service,
            current_page=page_data.current_page,
            total_pages=page_data.total_pages
        )
        await interaction.followup.send(embed=build_leaderboard_embed(page_data), view=view)


async def setup(bot):
    await bot.add_cog(LeaderboardCog(bot))
