"""Round tracker publication for Combot."""

import logging
from typing import Optional
import discord
from .config import GM_USER_ID
from .errors import StorageError
from .logic import channel_lock
from .models import ActionResult, Encounter
from .state import all_pending
from .storage import EncounterStorage
from .view import CombatView, apply_mentions

logger = logging.getLogger(__name__)


class TrackerPublisher:
    """Keeps one round tracker message per channel up to date.

    While anyone owes a pending reply the tracker is edited in place; otherwise a
    fresh tracker is posted at the bottom and the old message deleted.
    """

    def __init__(self, bot, storage: EncounterStorage):
        self.bot = bot
        self.storage = storage

    async def _fetch_message(self, channel: discord.abc.Messageable, message_id: Optional[str]) -> Optional[discord.Message]:
        if not message_id:
            return None
        try:
            return await channel.fetch_message(int(message_id))
        except (discord.NotFound, discord.Forbidden, discord.HTTPException) as e:
            logger.info(f"Previous tracker {message_id} unavailable: {e}")
            return None

    async def publish(self, channel: discord.abc.Messageable, encounter: Encounter, bump: Optional[bool] = None):
        """Show the current tracker for an encounter and remember its message."""
        data = CombatView.tracker_data(encounter)
        embed = CombatView.tracker_embed(data)
        content = apply_mentions(data.content, GM_USER_ID)
        if bump is None:
            bump = not all_pending(encounter)

        old = await self._fetch_message(channel, encounter.message_id)
        if old and not bump:
            await old.edit(content=content, embed=embed)
            return

        message = await channel.send(content=content, embed=embed)
        if old:
            try:
                await old.delete()
            except discord.HTTPException as e:
                logger.warning(f"Failed to delete previous tracker {old.id}: {e}")
        await self._remember(encounter.channel_id, str(message.id))

    async def _remember(self, channel_id: str, message_id: str):
        async with channel_lock(channel_id):
            try:
                encounter = await self.storage.get_encounter(channel_id)
                if encounter:
                    encounter.message_id = message_id
                    await self.storage.save_encounter(encounter)
            except StorageError as e:
                logger.error(f"Could not record tracker message for {channel_id}: {e}")

    async def send_public_message(self, channel: discord.abc.Messageable, content: str):
        """Post an announcement in the combat channel."""
        try:
            await channel.send(apply_mentions(content, GM_USER_ID))
        except discord.HTTPException as e:
            logger.error(f"Failed to send public message: {e}")

    async def send_result(self, interaction: discord.Interaction, result: ActionResult, bump: Optional[bool] = None):
        """Reply to the acting user, then announce and refresh the tracker as needed."""
        await interaction.followup.send(embed=CombatView.format_result(result), ephemeral=True)
        if not result.success:
            return

        if result.public_message:
            await self.send_public_message(interaction.channel, result.public_message)
        if result.refresh_tracker and result.encounter:
            try:
                await self.publish(interaction.channel, result.encounter, bump)
            except discord.HTTPException as e:
                logger.error(f"Failed to update round tracker: {e}")
