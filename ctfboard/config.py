import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """CTF board configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))

    # Document store settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///ctfboard.db')
    REDIS_URL = os.getenv('REDIS_URL')

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    # Store limits
    BATCH_LIMIT = int(os.getenv('BATCH_LIMIT', 500))  # Max operations per atomic batch

    # Submission processor settings
    UNRANKED_RANK = 999  # Placeholder rank until the next full recalculation
    SUBMISSION_DEDUPLICATE = os.getenv('SUBMISSION_DEDUPLICATE', 'False').lower() == 'true'
    PROCESSOR_AUTOSTART = os.getenv('PROCESSOR_AUTOSTART', 'True').lower() == 'true'

    # Recalculation settings
    RECALC_LOCK_TTL = int(os.getenv('RECALC_LOCK_TTL', 300))  # Seconds
    LEADERBOARD_TOP_COUNT = 5

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.BATCH_LIMIT < 3:
            # A username mismatch fix needs three writes in one batch
            raise ValueError("BATCH_LIMIT must be at least 3")
