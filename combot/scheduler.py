"""Pending-action expiry sweeper for Combot."""

import logging
from discord.ext import commands, tasks
from .config import PENDING_SWEEP_MINUTES
from .errors import StorageError
from .logic import sweep_expired_pending
from .storage import EncounterStorage


logger = logging.getLogger(__name__)


class PendingSweeper:
    """Periodically drops pending actions nobody answered in time."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = EncounterStorage()

        self.sweep.start()

    def cog_unload(self):
        """Clean shutdown of the sweeper."""
        self.sweep.cancel()

    @tasks.loop(minutes=PENDING_SWEEP_MINUTES)
    async def sweep(self):
        """Sweep every stored encounter."""
        try:
            dropped = await sweep_expired_pending(self.storage)
            if dropped:
                logger.info(f"Pending sweep dropped {dropped} expired action(s)")
        except StorageError as e:
            logger.error(f"Pending sweep failed: {e}")

    @sweep.before_loop
    async def before_sweep(self):
        """Wait for bot to be ready before sweeping."""
        await self.bot.wait_until_ready()
        await self.storage.initialize()
        logger.info("Pending action sweeper initialized")


async def setup(bot: commands.Bot):
    """Setup function to add the sweeper to the bot."""
    sweeper = PendingSweeper(bot)
    # Store reference so it doesn't get garbage collected
    bot.pending_sweeper = sweeper
