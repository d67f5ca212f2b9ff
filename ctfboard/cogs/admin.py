from typing import List

import discord
from discord import app_commands
from discord.ext import commands

from ctfboard.constants import LeaderboardConstants
from ctfboard.data_models.identity import Caller
from ctfboard.operations.admin_operations import AdminOperations
from ctfboard.ui.views import ConfirmationView
from ctfboard.utils.embeds import build_confirmation_embed, build_job_report_embed, build_progress_embed
from ctfboard.utils.error_embeds import ErrorEmbeds
from ctfboard.utils.logger import setup_logger

logger = setup_logger(__name__)


class AdminCog(commands.Cog):
    """Admin-only commands for maintaining the CTF leaderboard and username index"""

    def __init__(self, bot):
        self.bot = bot
        self.admin_ops: AdminOperations = bot.admin_ops
        self.logger = logger

    async def _admin_caller(self, interaction: discord.Interaction):
        """Resolve the caller behind an interaction; reply and return None unless admin."""
        caller = await self.bot.identity_service.caller_for_discord(
            interaction.user.id, interaction.user.display_name
        )
        if not caller.is_admin:
            self.logger.info(
                f"Permission denied for '{interaction.command.name if interaction.command else 'Unknown'}' "
                f"by {interaction.user} ({caller.uid})"
            )
            await interaction.followup.send(embed=ErrorEmbeds.admin_required(), ephemeral=True)
            return None
        return caller

    @app_commands.command(name="admin-recalc-leaderboard", description="Recalculate the CTF leaderboard")
    @app_commands.describe(mode="full rebuilds every total from submissions; quick re-ranks stored totals")
    @app_commands.choices(mode=[
        app_commands.Choice(name="Full (rebuild from submissions)", value=LeaderboardConstants.MODE_FULL),
        app_commands.Choice(name="Quick (re-rank stored totals)", value=LeaderboardConstants.MODE_QUICK),
    ])
    async def recalc_leaderboard(self, interaction: discord.Interaction, mode: str = LeaderboardConstants.MODE_FULL):
        """Recalculate the leaderboard, editing the reply as progress is reported."""
        await interaction.response.defer(ephemeral=True)
        caller = await self._admin_caller(interaction)
        if caller is None:
            return

        title = "🔄 Recalculating Leaderboard" if mode == LeaderboardConstants.MODE_FULL else "⚡ Quick Recalculation"

        async def progress(current: int, total: int, message: str):
            try:
                await interaction.edit_original_response(embed=build_progress_embed(title, current, total, message))
            except discord.HTTPException as e:
                self.logger.warning(f"Failed to update recalculation progress: {e}")

        self.logger.info(f"{mode} leaderboard recalculation requested by {caller.uid}")
        if mode == LeaderboardConstants.MODE_QUICK:
            report = await self.admin_ops.run_quick_recalc(progress)
        else:
            report = await self.admin_ops.run_full_recalc(progress)

        if report.ok:
            self.bot.leaderboard_service.clear_cache()
        await interaction.edit_original_response(embed=build_job_report_embed("🏆 Leaderboard Recalculation", report))

    @app_commands.command(name="admin-username-scan", description="Scan for username index inconsistencies")
    async def username_scan(self, interaction: discord.Interaction):
        """Read-only scan of the users and usernames collections."""
        await interaction.response.defer(ephemeral=True)
        caller = await self._admin_caller(interaction)
        if caller is None:
            return

        report = await self.admin_ops.scan_usernames()
        await interaction.followup.send(
            embed=build_job_report_embed("🔍 Username Scan Results", report), ephemeral=True
        )

    @app_commands.command(name="admin-username-fix", description="Fix username index inconsistencies")
    async def username_fix(self, interaction: discord.Interaction):
        """Plan the fix, ask for button confirmation, then commit in batches."""
        await interaction.response.defer(ephemeral=True)
        caller = await self._admin_caller(interaction)
        if caller is None:
            return

        async def confirm(operation_count: int, details: List[str]) -> bool:
            view = ConfirmationView(interaction.user.id, "Username Fix")
            view.message = await interaction.followup.send(
                embed=build_confirmation_embed("⚠️ Confirm Username Fix", operation_count, details),
                view=view,
                ephemeral=True,
                wait=True
            )
            await view.wait()
            if view.timed_out:
                await interaction.followup.send(embed=ErrorEmbeds.confirmation_timeout(), ephemeral=True)
            return view.confirmed

        report = await self.admin_ops.fix_usernames(caller, confirm)
        await interaction.followup.send(
            embed=build_job_report_embed("🛠️ Username Fix", report), ephemeral=True
        )

    @app_commands.command(name="admin-processor", description="Control the submission processor")
    @app_commands.describe(action="What to do with the submission processor")
    @app_commands.choices(action=[
        app_commands.Choice(name="Status", value="status"),
        app_commands.Choice(name="Start", value="start"),
        app_commands.Choice(name="Stop", value="stop"),
        app_commands.Choice(name="Replay existing submissions", value="replay"),
    ])
    async def processor(self, interaction: discord.Interaction, action: str = "status"):
        """Show, start, stop or replay the submission processor."""
        await interaction.response.defer(ephemeral=True)
        caller: Caller = await self._admin_caller(interaction)
        if caller is None:
            return

        if action == "start":
            report = self.admin_ops.start_processor(caller)
        elif action == "stop":
            report = self.admin_ops.stop_processor(caller)
        elif action == "replay":
            report = await self.admin_ops.replay_submissions(caller)
        else:
            report = self.admin_ops.processor_status()

        await interaction.followup.send(
            embed=build_job_report_embed("🔍 Submission Processor", report), ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(AdminCog(bot))
