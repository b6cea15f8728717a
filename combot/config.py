"""Combat configuration constants and settings."""

import os

DATABASE_PATH = os.getenv("COMBOT_DB_PATH", "combot.db")
TIMEZONE = "UTC"

# Referee (GM) configuration
GM_USER_ID = os.getenv("GM_USER_ID", "123743747052666880")
REFEREE_ID = "__GM__"  # Owner of pending actions the GM must resolve
GM_MENTION_PLACEHOLDER = "@GM"

# Encounter rules
DEFAULT_ACTION_POINTS = 2  # Player action points per round
DEFAULT_ENEMY_ACTION_POINTS = 2
DEFAULT_SKILL = 50  # Fallback for missing or malformed percentages
DEFAULT_WEAPON_SIZE = "M"

# Pending actions
PENDING_TTL_MINUTES = int(os.getenv("PENDING_TTL_MINUTES", "120"))
PENDING_SWEEP_MINUTES = 10

# Tracker display
RECENT_LOG_LINES = 10
EMBED_FIELD_LIMIT = 1024

# Extraction service
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
GEMINI_MODELS = [
    "gemini-2.5-flash-lite",
    "gemini-2.5-flash",
    "gemini-2.5-pro",
]
GEMINI_RETRIES_PER_MODEL = 2
GEMINI_BACKOFF_SECONDS = 0.1
HTTP_TIMEOUT_SECONDS = 30

# Credentials
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
BOT_OWNER_ID = int(os.getenv("BOT_OWNER_ID", "0"))
