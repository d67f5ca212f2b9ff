import asyncio
import logging
import traceback
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from ctfboard.config import Config
from ctfboard.database.database import Database
from ctfboard.operations.admin_operations import AdminOperations
from ctfboard.services.identity import IdentityService
from ctfboard.services.leaderboard import LeaderboardService
from ctfboard.services.leaderboard_recalc import LeaderboardRecalcService
from ctfboard.services.rate_limiter import SimpleRateLimiter
from ctfboard.services.submission_processor import SubmissionProcessor
from ctfboard.services.username_sync import UsernameSyncService
from ctfboard.utils.error_embeds import ErrorEmbeds
from ctfboard.utils.logger import setup_logger
from ctfboard.utils.redis_utils import RedisUtils


class CTFBoardBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.redis_client = None
        self.rate_limiter = SimpleRateLimiter()
        self.processor: Optional[SubmissionProcessor] = None
        self.identity_service: Optional[IdentityService] = None
        self.leaderboard_service: Optional[LeaderboardService] = None
        self.admin_ops: Optional[AdminOperations] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up CTF Board Bot...")

        self.db = Database()
        await self.db.initialize()

        self.redis_client = await RedisUtils.create_redis_client()

        self.processor = SubmissionProcessor(self.db)
        self.identity_service = IdentityService(self.db)
        self.leaderboard_service = LeaderboardService(self.db)
        self.admin_ops = AdminOperations(
            recalc_service=LeaderboardRecalcService(self.db, redis_client=self.redis_client),
            username_sync=UsernameSyncService(self.db),
            processor=self.processor
        )

        if Config.PROCESSOR_AUTOSTART:
            self.processor.start()

        await self.load_cogs()
        await self._sync_commands()

        self.logger.info("CTF Board Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        for cog in ('ctfboard.cogs.admin', 'ctfboard.cogs.leaderboard'):
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except commands.ExtensionError as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        guild_ids = Config.get_guild_ids()
        try:
            if not guild_ids:
                # Global sync can take up to an hour to propagate
                synced = await self.tree.sync()
                self.logger.info(f"Successfully synced {len(synced)} command(s) globally")
                return

            for guild_id in guild_ids:
                try:
                    guild = discord.Object(id=guild_id)
                    self.tree.copy_global_to(guild=guild)
                    synced = await self.tree.sync(guild=guild)
                    self.logger.info(f"Successfully synced {len(synced)} command(s) to guild {guild_id}")
                except discord.Forbidden:
                    self.logger.error(
                        f"Permission error syncing to guild {guild_id}. Ensure the bot has the "
                        f"'application.commands' scope and is in the guild.", exc_info=True
                    )
        except discord.HTTPException as e:
            self.logger.error(f"Failed to sync commands. Status: {e.status}, Response: {e.text}", exc_info=True)

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(activity=discord.Game(name="CTF Leaderboard | /leaderboard"))

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            if command_name.startswith('admin-'):
                embed = ErrorEmbeds.admin_required()
            else:
                embed = ErrorEmbeds.command_error("You don't have permission to use this command.")
        elif isinstance(error, app_commands.CommandOnCooldown):
            embed = ErrorEmbeds.command_error(f"Command is on cooldown. Try again in {error.retry_after:.2f} seconds.")
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=True)
            embed = ErrorEmbeds.command_error("An unexpected error occurred while processing your command.")

        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down CTF Board Bot...")

        if self.processor:
            self.processor.stop()
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        if self.db:
            await self.db.close()
            self.db = None

        await super().close()


async def main():
    """Main entry point"""
    Config.validate()

    bot = CTFBoardBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
