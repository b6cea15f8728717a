"""Character sheet lookup for players."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import httpx
from .config import HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_INT = 10


@dataclass
class CharacterData:
    """The parts of a character sheet combat cares about."""
    name: Optional[str] = None
    skills: List[Dict[str, Any]] = field(default_factory=list)
    characteristics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["CharacterData"]:
        """Parse a sheet reply, wrapped as ``{success, data: {characterData}}`` or raw."""
        if not isinstance(payload, dict):
            return None
        data = payload
        wrapped = payload.get("data")
        if payload.get("success") and isinstance(wrapped, dict) and isinstance(wrapped.get("characterData"), dict):
            data = wrapped["characterData"]

        skills_raw = data.get("skills")
        if not isinstance(skills_raw, list):
            skills_raw = []
        skills = [
            s for s in skills_raw
            if isinstance(s, dict) and s.get("name")
        ]
        characteristics = data.get("characteristics")
        return cls(
            name=data.get("name") if isinstance(data.get("name"), str) else None,
            skills=skills,
            characteristics=characteristics if isinstance(characteristics, dict) else {},
        )

    def skill(self, name: str) -> Optional[int]:
        """Value of a skill by case-insensitive name."""
        wanted = name.strip().lower()
        for skill in self.skills:
            if str(skill["name"]).strip().lower() == wanted:
                value = skill.get("value")
                return value if isinstance(value, (int, float)) else None
        return None

    @property
    def initiative_bonus(self) -> int:
        intelligence = self.characteristics.get("int")
        if not isinstance(intelligence, (int, float)) or isinstance(intelligence, bool):
            intelligence = DEFAULT_INT
        return int(intelligence // 10)

    def skills_block(self) -> str:
        if not self.skills:
            return "No skills available"
        return "\n".join(f"\"{s['name']}\": {s.get('value')}%" for s in self.skills)


def initiative_bonus(character: Optional[CharacterData]) -> int:
    if character is None:
        return DEFAULT_INT // 10
    return character.initiative_bonus


def clean_sheet_url(url: str) -> Optional[str]:
    """Strip the fragment and trailing slashes; None unless it is http(s)."""
    url = (url or "").strip().split("#", 1)[0].rstrip("/")
    if not url.startswith(("http://", "https://")):
        return None
    return url


async def fetch_character(url: str, http_client: Optional[httpx.AsyncClient] = None) -> Optional[CharacterData]:
    """Fetch ``<url>/json``. Any failure yields None so play can go on without a sheet."""
    client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
    try:
        response = await client.get(f"{url}/json")
        response.raise_for_status()
        return CharacterData.from_payload(response.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Could not fetch character sheet {url}: {e}")
        return None
    finally:
        if http_client is None:
            await client.aclose()
