"""
Shared embed utilities for the CTF board bot.

Provides reusable embed building functions to maintain consistency
across cogs and views.
"""

from typing import List

import discord

from ctfboard.constants import PaginationConstants, UIConstants
from ctfboard.data_models.leaderboard import LeaderboardPage
from ctfboard.operations.admin_operations import JobReport, JobStatus

_STATUS_COLORS = {
    JobStatus.SUCCESS: discord.Color.green(),
    JobStatus.ERROR: discord.Color.red(),
    JobStatus.INFO: discord.Color.blue(),
}


def truncate_details(details: List[str], max_lines: int = PaginationConstants.MAX_DETAIL_LINES) -> str:
    """
    Join detail lines for an embed field, keeping under Discord's limits.

    Args:
        details: Detail lines in display order
        max_lines: Maximum lines shown before summarizing the rest

    Returns:
        Field value no longer than 1024 characters
    """
    shown = details[:max_lines]
    value = "\n".join(shown)
    if len(details) > max_lines:
        value += f"\n... and {len(details) - max_lines} more"
    # Discord caps embed field values at 1024 characters
    if len(value) > 1024:
        value = value[:1020] + "\n..."
    return value


def build_job_report_embed(title: str, report: JobReport) -> discord.Embed:
    """Build the embed for an admin job outcome."""
    embed = discord.Embed(
        title=title,
        description=report.message,
        color=_STATUS_COLORS.get(report.status, discord.Color.blue())
    )
    if report.details:
        embed.add_field(name="Details", value=truncate_details(report.details), inline=False)
    if report.operation_count:
        embed.set_footer(text=f"Operations: {report.operation_count}")
    return embed


def build_progress_embed(title: str, current: int, total: int, message: str) -> discord.Embed:
    """Build the embed shown while a long job is running."""
    description = message
    if total:
        description += f"\n\n**Progress:** {current}/{total}"
    return discord.Embed(title=title, description=description, color=discord.Color.orange())


def build_confirmation_embed(title: str, operation_count: int, details: List[str]) -> discord.Embed:
    """Build the embed asking an admin to confirm a batch of writes."""
    embed = discord.Embed(
        title=title,
        description=f"This will perform **{operation_count}** operations.",
        color=discord.Color.orange()
    )
    if details:
        embed.add_field(name="Planned Changes", value=truncate_details(details), inline=False)
    embed.set_footer(
        text=f"Click ✅ to confirm or ❌ to cancel • Times out in {int(UIConstants.CONFIRMATION_TIMEOUT)} seconds"
    )
    return embed


def build_leaderboard_embed(page_data: LeaderboardPage) -> discord.Embed:
    """Build formatted leaderboard embed."""
    top_page = page_data.current_page == 1 and page_data.entries
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} CTF Leaderboard",
        color=UIConstants.GOLD_RANK_COLOR if top_page else UIConstants.DEFAULT_EMBED_COLOR
    )

    if not page_data.entries:
        embed.description = "The leaderboard is empty. An admin can run `/admin-recalc-leaderboard` to build it."
        return embed

    # Compact table for Discord constraints
    lines = ["```", f"{'#':<4} {'User':<18} {'Points':<8} {'Solves':<6}", "-" * 39]
    for entry in page_data.entries:
        name = (entry.display_name or entry.username or entry.user_id)[:16]
        lines.append(f"{entry.rank:<4} {name:<18} {entry.total_points:<8g} {entry.challenges_solved:<6}")
    lines.append("```")
    embed.description = "\n".join(lines)

    footer = f"Page {page_data.current_page}/{page_data.total_pages} | Total Users: {page_data.total_users}"
    if page_data.mode:
        footer += f" | Mode: {page_data.mode}"
    embed.set_footer(text=footer)
    if page_data.updated_at:
        embed.timestamp = page_data.updated_at

    return embed
