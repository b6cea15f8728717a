"""GM commands for running and repairing a combat."""

import discord
from discord.ext import commands
from discord import app_commands
from .config import BOT_OWNER_ID, GEMINI_API_KEY, GM_USER_ID
from .extraction import ActionExtractor, GeminiClient
from .logic import CombatLogic, sweep_expired_pending
from .notifications import TrackerPublisher
from .storage import EncounterStorage


def is_gm(bot: commands.Bot, user_id: int) -> bool:
    """Check if a user may run GM commands."""
    if str(user_id) == GM_USER_ID or (BOT_OWNER_ID and user_id == BOT_OWNER_ID):
        return True

    # The Discord application owner can always step in
    application = getattr(bot, "application", None)
    owner = getattr(application, "owner", None)
    return owner is not None and user_id == owner.id


class GMCommands(commands.Cog):
    """GM-only commands for running combat."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = EncounterStorage()
        self.client = GeminiClient(GEMINI_API_KEY)
        self.extractor = ActionExtractor(self.client)
        self.publisher = TrackerPublisher(bot, self.storage)

    async def cog_load(self):
        await self.storage.initialize()

    async def cog_unload(self):
        await self.client.close()

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if is_gm(self.bot, interaction.user.id):
            return True
        await interaction.response.send_message("❌ This command is restricted to the GM.", ephemeral=True)
        return False

    def _get_channel_logic(self, interaction: discord.Interaction) -> CombatLogic:
        return CombatLogic(self.storage, self.extractor, str(interaction.channel_id))

    @app_commands.command(name="gm_end_combat", description="[GM] End the combat in this channel")
    async def end_combat(self, interaction: discord.Interaction):
        """End the combat."""
        await interaction.response.defer(ephemeral=True)
        result = await self._get_channel_logic(interaction).end_combat()
        await self.publisher.send_result(interaction, result)

    @app_commands.command(name="gm_resolve", description="[GM] Choose the defender's special effects")
    @app_commands.describe(effects="The effects chosen, e.g. 'trip opponent and 2 extra damage'")
    async def resolve(self, interaction: discord.Interaction, effects: str):
        """Answer the GM's pending effect choice."""
        await interaction.response.defer(ephemeral=True)
        result = await self._get_channel_logic(interaction).gm_resolve(effects)
        await self.publisher.send_result(interaction, result)

    @app_commands.command(name="gm_defeat", description="[GM] Mark an enemy as defeated")
    @app_commands.describe(enemy="Enemy name or id")
    async def defeat(self, interaction: discord.Interaction, enemy: str):
        """Defeat an enemy by hand."""
        await interaction.response.defer(ephemeral=True)
        result = await self._get_channel_logic(interaction).gm_defeat(enemy)
        await self.publisher.send_result(interaction, result)

    @app_commands.command(name="gm_sweep", description="[GM] Drop expired pending actions now")
    async def sweep(self, interaction: discord.Interaction):
        """Run the pending-action sweep immediately."""
        await interaction.response.defer(ephemeral=True)
        dropped = await sweep_expired_pending(self.storage)
        await interaction.followup.send(f"🧹 Dropped {dropped} expired pending action(s).", ephemeral=True)


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(GMCommands(bot))
