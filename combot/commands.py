"""Discord slash commands for Combot."""

import discord
from discord.ext import commands
from discord import app_commands
from .config import GEMINI_API_KEY
from .extraction import ActionExtractor, GeminiClient
from .logic import CombatLogic
from .notifications import TrackerPublisher
from .storage import EncounterStorage
from .admin_commands import is_gm


class CombatCommands(commands.Cog):
    """Cog containing the player-facing combat commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = EncounterStorage()
        self.client = GeminiClient(GEMINI_API_KEY)
        self.extractor = ActionExtractor(self.client)
        self.publisher = TrackerPublisher(bot, self.storage)

    async def cog_load(self):
        """Initialize the database when the cog loads."""
        await self.storage.initialize()

    async def cog_unload(self):
        await self.client.close()

    def _get_channel_logic(self, interaction: discord.Interaction) -> CombatLogic:
        """Get a CombatLogic instance for the interaction's channel."""
        return CombatLogic(self.storage, self.extractor, str(interaction.channel_id))

    @app_commands.command(name="identify", description="Link your character sheet")
    @app_commands.describe(url="The URL of your character sheet")
    async def identify(self, interaction: discord.Interaction, url: str):
        """Link a character sheet for this channel."""
        await interaction.response.defer(ephemeral=True)
        logic = self._get_channel_logic(interaction)
        result = await logic.identify(str(interaction.user.id), url)
        await self.publisher.send_result(interaction, result)

    @app_commands.command(name="start_combat", description="[GM] Start a combat encounter")
    @app_commands.describe(enemies="Describe the enemies, e.g. '3 stormtroopers and a sith apprentice'")
    async def start_combat(self, interaction: discord.Interaction, enemies: str):
        """Start combat in this channel."""
        if not is_gm(self.bot, interaction.user.id):
            await interaction.response.send_message("❌ Only the GM can start combat.", ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        logic = self._get_channel_logic(interaction)
        result = await logic.start_combat(enemies)
        await self.publisher.send_result(interaction, result, bump=True)

    @app_commands.command(name="initiative", description="Roll initiative and join the combat")
    async def initiative(self, interaction: discord.Interaction):
        """Join the initiative order."""
        await interaction.response.defer(ephemeral=True)
        logic = self._get_channel_logic(interaction)
        result = await logic.join_initiative(str(interaction.user.id), interaction.user.display_name)
        await self.publisher.send_result(interaction, result, bump=True)

    @app_commands.command(name="act", description="Take a combat action or answer a pending one")
    @app_commands.describe(action="What your character does, e.g. 'I slash the droid with my lightsaber, 34 to hit'")
    async def act(self, interaction: discord.Interaction, action: str):
        """Take a combat action."""
        await interaction.response.defer(ephemeral=True)
        logic = self._get_channel_logic(interaction)
        result = await logic.act(str(interaction.user.id), interaction.user.display_name, action)
        await self.publisher.send_result(interaction, result)

    @app_commands.command(name="edit_act", description="Replace your most recent action")
    @app_commands.describe(action="The corrected action")
    async def edit_act(self, interaction: discord.Interaction, action: str):
        """Edit the last combat action."""
        await interaction.response.defer(ephemeral=True)
        logic = self._get_channel_logic(interaction)
        result = await logic.edit_act(str(interaction.user.id), interaction.user.display_name, action)
        await self.publisher.send_result(interaction, result)

    @app_commands.command(name="new_round", description="Start the next combat round")
    async def new_round(self, interaction: discord.Interaction):
        """Advance to the next round."""
        await interaction.response.defer(ephemeral=True)
        logic = self._get_channel_logic(interaction)
        result = await logic.new_round()
        await self.publisher.send_result(interaction, result, bump=True)


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(CombatCommands(bot))
