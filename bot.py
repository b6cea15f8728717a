"""Main entry point for the Combot Discord bot."""

import os
import sys
import asyncio
import logging
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv

from error_handler import ErrorHandler

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('combot.log')
    ]
)
logger = logging.getLogger(__name__)

EXTENSIONS = [
    ("combot.commands", "combat commands", True),
    ("combot.admin_commands", "GM commands", False),
    ("combot.scheduler", "pending action sweeper", False),
]


def load_or_prompt_env():
    """Load environment variables or prompt for token if missing."""
    load_dotenv()

    token = os.getenv('DISCORD_TOKEN')
    if not token:
        logger.warning("DISCORD_TOKEN not found in .env file")
        token = input("Please enter your Discord bot token: ").strip()

        if not token:
            logger.error("No token provided. Exiting.")
            sys.exit(1)

        # Save token to .env file
        env_path = Path('.env')
        with env_path.open('a') as f:
            f.write(f"\nDISCORD_TOKEN={token}\n")
        logger.info("Token saved to .env file")

    if not os.getenv('GEMINI_API_KEY'):
        logger.warning("GEMINI_API_KEY not set; free-text actions will fail")

    return token


class CombotBot(commands.Bot):
    """The main Combot bot class."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = False  # We only use slash commands

        super().__init__(
            command_prefix='!',  # Unused but required
            intents=intents,
            description="A Discord bot that referees Mythras-style combat"
        )

        owner_id = int(os.getenv('BOT_OWNER_ID', '0'))
        self.error_handler = ErrorHandler(self, owner_id)

    async def setup_hook(self):
        """Setup hook called when the bot is ready."""
        logger.info("Setting up Combot...")
        self.tree.error(self.on_app_command_error)

        for extension, label, required in EXTENSIONS:
            try:
                await self.load_extension(extension)
                logger.info(f"Loaded {label}")
            except commands.ExtensionError as e:
                await self.error_handler.notify_owner(f"Failed to load {label}", str(e), e)
                logger.error(f"Failed to load {label}: {e}")
                if required:
                    raise

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} command(s)")
        except discord.HTTPException as e:
            await self.error_handler.notify_owner("Failed to sync commands", str(e), e)
            logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Combot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        try:
            activity = discord.Game(name="Combat | /initiative")
            await self.change_presence(activity=activity)

            await self.error_handler.send_startup_notification()
        except discord.HTTPException as e:
            logger.error(f"Error in on_ready: {e}")

    async def on_app_command_error(self, interaction, error):
        """Handle application command errors."""
        await self.error_handler.handle_interaction_error(interaction, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        if exc_value:
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

        logger.error(f"Bot error in event {event}", exc_info=True)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down Combot...")
        await self.error_handler.notify_owner("Bot Shutdown", "Combot is shutting down normally")
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_or_prompt_env()
    bot = CombotBot()
    try:
        await bot.start(token)
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
