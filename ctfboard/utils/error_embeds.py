"""
Centralized error embeds for consistent error handling across the CTF board bot.

Provides standardized error messages and formatting to maintain consistency
and improve user experience when errors occur.
"""

import discord


class ErrorEmbeds:
    """Centralized error embed factory for consistent error handling."""

    @staticmethod
    def command_error(error: str) -> discord.Embed:
        """Create embed for general command errors."""
        return discord.Embed(
            title="Command Error",
            description=f"An error occurred: {error}\n\nPlease try again or contact an administrator.",
            color=discord.Color.red()
        )

    @staticmethod
    def invalid_input(message: str) -> discord.Embed:
        """Create embed for invalid user input."""
        return discord.Embed(
            title="Invalid Input",
            description=message,
            color=discord.Color.red()
        )

    @staticmethod
    def admin_required() -> discord.Embed:
        """Create embed for admin-only commands."""
        embed = discord.Embed(
            title="❌ Administrative Privileges Required",
            description="This command is restricted to CTF administrators only.",
            color=discord.Color.red()
        )
        embed.set_footer(text="Contact the bot owner if you believe you should have access.")
        return embed

    @staticmethod
    def rate_limited() -> discord.Embed:
        """Create embed for rate limiting errors."""
        return discord.Embed(
            title="Rate Limited",
            description="You're using commands too quickly. Please wait a moment and try again.",
            color=discord.Color.orange()
        )

    @staticmethod
    def confirmation_timeout() -> discord.Embed:
        """Create embed for a confirmation that nobody answered."""
        return discord.Embed(
            title="⏰ Confirmation Timed Out",
            description="No changes were made.",
            color=discord.Color.orange()
        )
