"""Structured extraction of free-text combat input through Gemini.

Everything the model returns is untrusted: the validators below turn raw JSON into
the dataclasses the rules work on, or into ``InvalidInput`` with a reason.
"""

import asyncio
import json
import logging
import math
import random
from typing import Any, Dict, List, Optional, Tuple, Union
import httpx
from .character import CharacterData
from .config import (
    DEFAULT_SKILL, GEMINI_API_URL, GEMINI_BACKOFF_SECONDS, GEMINI_MODELS,
    GEMINI_RETRIES_PER_MODEL, HTTP_TIMEOUT_SECONDS,
)
from .dice import normalize_percent
from .errors import ExtractionError
from .models import (
    AttackResultPending, ChooseSpecialEffectPending, Encounter, Enemy, EnemyDefense, EnemyRoster,
    EnemySpec, InvalidInput, ParsedAction, PendingAction, PendingResolutionPayload,
    RollDamagePending, ENEMY_TYPES, MOOK, PARRY,
)
from .rules import find_enemy
from .tables import ARMOR_TYPES, HIT_LOCATION_KEYS, WEAPON_SIZE_ORDER, weapon_size

logger = logging.getLogger(__name__)

ACTION_SYSTEM_PROMPT = (
    "You are a combat action parser. Your ONLY job is to parse and structure text into the "
    "provided JSON schema. Do not evaluate rules or apply game mechanics. Never invent values "
    "when the schema expects values present in the provided context; prefer null/omission over "
    "invention. Return strictly valid JSON conforming to the schema."
)

ACTION_PROMPT = """Parse this combat action into structured data. You are ONLY parsing, not evaluating rules.

Extract:
- What skill is being used (match to character's actual skill name)
- Which enemies are targeted (by name)
- Weapon being used and its size category
- Defense determination:
  * Battle Droids with blaster_rifles CANNOT parry energy attacks - they must EVADE
  * Only lightsaber-wielding enemies OR Beskar weapons can PARRY melee energy attacks. Only lightsabers can parry blasters.
  * All other enemies MUST EVADE energy attacks
- Enemy defense skills are INTEGERS: MOOK: 50%, COMBATANT: 60%, BOSS: 75%

playerRoll (d100):
- Extract the exact dice roll digits from text like "99 to hit", "01 to hit", "00".
- "01" => 1, "09" => 9, "99" => 99. Treat "00" as 100.
- Never convert the roll into a percentage and do not compute success/failure.

Targeting:
- If the action is NOT AoE, select exactly ONE target, the best single match.
"""

ENEMY_SYSTEM_PROMPT = """You are creating enemies for a Star Wars Mythras encounter.
Rules:
- Use EXACT numbers if specified ("2 stormtroopers" = exactly 2)
- Use the names as given in the prompt, marked as X 1, X 2, etc. where X is the name
- Default to 4-5 mooks if no specifics given
- Specify weapon and armor type for each enemy

ACTION POINTS (whole numbers only):
- MOOKs: 2 action points (or 1 if civilian)
- COMBATANTs: 2 action points
- BOSSes and named enemies: 3 or more action points

Common enemies:
- Stormtrooper: COMBATANT, blaster_rifle, durasteel armor, 2 AP
- Battle Droid: MOOK, blaster_rifle, common armor, 2 AP
- Dark Trooper: COMBATANT, heavy_repeater, durasteel armor, 2 AP
- Sith Apprentice: BOSS, lightsaber, common armor, 3 AP
- Bounty Hunter: COMBATANT, various weapons, durasteel armor, 2 AP
- Thug/Pirate: MOOK, blaster_pistol, no armor, 2 AP"""

ENEMY_PROMPT = """For each enemy specify:
- Name and type (MOOK/COMBATANT/BOSS)
- Weapon (determines size: lightsaber=L, blaster=M, etc)
- Armor type if any (none/common/durasteel/beskar)
- Action Points (turns per round), NOT armor points
- Skills: MOOK 40-60%, COMBATANT 50-70%, BOSS 60-90%
- Hit points per location if BOSS"""

_NUMBER = {"type": "NUMBER"}
_SIZE = {"type": "STRING", "enum": WEAPON_SIZE_ORDER}

ACTION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "attackerSkillName": {"type": "STRING", "description": "EXACT skill name from the character sheet"},
        "attackerSkillValue": {"type": "NUMBER", "description": "Skill value from the character sheet, not the roll"},
        "weaponUsed": {"type": "STRING", "description": "Weapon name (lightsaber, blaster_rifle, etc.)"},
        "weaponSize": _SIZE,
        "isRanged": {"type": "BOOLEAN"},
        "isEnergy": {"type": "BOOLEAN"},
        "targetIds": {"type": "ARRAY", "items": {"type": "STRING"}},
        "isAoE": {"type": "BOOLEAN"},
        "playerRoll": {"type": "NUMBER", "nullable": True, "description": "The d100 roll from the text"},
        "enemyDefenses": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "enemyId": {"type": "STRING"},
                    "canParry": {"type": "BOOLEAN"},
                    "mustEvade": {"type": "BOOLEAN"},
                    "weaponSize": dict(_SIZE, nullable=True),
                    "parrySkill": {"type": "NUMBER", "description": "Integer percentage"},
                    "evadeSkill": {"type": "NUMBER", "description": "Integer percentage"},
                    "armorByLocation": {
                        "type": "OBJECT",
                        "properties": {key: dict(_NUMBER, nullable=True) for key in HIT_LOCATION_KEYS},
                    },
                },
            },
        },
    },
    "required": [
        "attackerSkillName", "attackerSkillValue", "weaponUsed", "weaponSize",
        "isRanged", "isEnergy", "targetIds", "enemyDefenses",
    ],
}

ENEMY_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "enemies": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "type": {"type": "STRING", "enum": ENEMY_TYPES},
                    "weapon": {"type": "STRING"},
                    "armorType": {"type": "STRING", "enum": ARMOR_TYPES, "nullable": True},
                    "actionPoints": {"type": "NUMBER", "description": "Turns per round, a whole number"},
                    "skills": {
                        "type": "OBJECT",
                        "properties": {
                            name: _NUMBER for name in ("parry", "evade", "combat", "endurance", "willpower")
                        },
                        "required": ["parry", "evade", "combat"],
                    },
                    "hitLocations": {
                        "type": "OBJECT",
                        "nullable": True,
                        "properties": {key: _NUMBER for key in HIT_LOCATION_KEYS},
                    },
                },
                "required": ["name", "type", "weapon", "actionPoints"],
            },
        },
    },
    "required": ["enemies"],
}

REPLY_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "damage": {"type": "INTEGER", "nullable": True},
        "lastingAfflictions": {"type": "ARRAY", "items": {"type": "STRING"}, "nullable": True},
        "extraDamage": {"type": "INTEGER", "nullable": True},
        "bypassArmor": {"type": "BOOLEAN", "nullable": True},
    },
}


class GeminiClient:
    """Calls the Gemini generateContent endpoint, falling back across models."""

    def __init__(
        self,
        api_key: str,
        models: Optional[List[str]] = None,
        retries: int = GEMINI_RETRIES_PER_MODEL,
        backoff_seconds: float = GEMINI_BACKOFF_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.models = models or list(GEMINI_MODELS)
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self.client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)

    async def close(self):
        await self.client.aclose()

    def _body(self, prompt: str, schema: Optional[Dict], system_prompt: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if system_prompt:
            body["system_instruction"] = {"parts": [{"text": system_prompt}]}
        if schema:
            body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            }
        return body

    async def _call(self, model: str, body: Dict[str, Any], structured: bool) -> Any:
        response = await self.client.post(
            GEMINI_API_URL.format(model=model),
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            json=body,
        )
        response.raise_for_status()
        text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
        return json.loads(text) if structured else text

    async def generate(self, prompt: str, schema: Optional[Dict] = None, system_prompt: Optional[str] = None) -> Any:
        """Generate a reply, parsed as JSON when a schema is given.

        Each model gets a few attempts with jittered exponential backoff before the
        next model is tried. Raises ExtractionError once every model has failed.
        """
        body = self._body(prompt, schema, system_prompt)
        last_error: Optional[Exception] = None

        for model in self.models:
            for attempt in range(self.retries + 1):
                try:
                    return await self._call(model, body, schema is not None)
                except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
                    last_error = e
                    logger.warning(f"Gemini model {model} attempt {attempt + 1} failed: {e}")
                    if attempt < self.retries:
                        delay = self.backoff_seconds * (2 ** attempt) * random.uniform(0.5, 1.5)
                        await asyncio.sleep(delay)

        raise ExtractionError(f"All Gemini models failed: {last_error}")


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _int_or_none(value: Any, minimum: int = 0) -> Optional[int]:
    number = _number(value)
    if number is None or number < minimum:
        return None
    return int(number)


def _parse_roll(value: Any) -> Optional[int]:
    number = _number(value)
    if number is None or number != int(number):
        return None
    roll = _int_or_none(number, minimum=0)
    if roll == 0:
        return 100  # "00" on percentile dice
    if roll is None or roll > 100:
        return None
    return roll


def _parse_defense(raw: Any) -> Optional[EnemyDefense]:
    if not isinstance(raw, dict) or not isinstance(raw.get("enemyId"), str) or not raw["enemyId"].strip():
        return None
    armor = raw.get("armorByLocation")
    armor_by_location = None
    if isinstance(armor, dict):
        armor_by_location = {
            key: int(value) for key, value in armor.items()
            if key in HIT_LOCATION_KEYS and _number(value) is not None
        }
    size = raw.get("weaponSize")
    return EnemyDefense(
        enemy_id=raw["enemyId"].strip(),
        can_parry=raw.get("canParry") is not False,
        must_evade=bool(raw.get("mustEvade")),
        weapon_size=size if size in WEAPON_SIZE_ORDER else None,
        parry_skill=normalize_percent(raw.get("parrySkill"), DEFAULT_SKILL),
        evade_skill=normalize_percent(raw.get("evadeSkill"), DEFAULT_SKILL),
        armor_by_location=armor_by_location or None,
    )


def restrict_to_single_target(action: ParsedAction, enemies: List[Enemy]) -> ParsedAction:
    """Narrow a non-area action to one target and its matching defense."""
    if action.is_aoe or not action.target_ids:
        return action

    chosen = None
    for target in action.target_ids:
        chosen = find_enemy(enemies, target)
        if chosen:
            break

    if chosen is None:
        action.target_ids = action.target_ids[:1]
        action.enemy_defenses = action.enemy_defenses[:1]
        return action

    action.target_ids = [chosen.id]
    matching = [d for d in action.enemy_defenses if find_enemy(enemies, d.enemy_id) is chosen]
    action.enemy_defenses = matching[:1] or action.enemy_defenses[:1]
    return action


def validate_parsed_action(raw: Any, enemies: List[Enemy]) -> Union[ParsedAction, InvalidInput]:
    """Check and normalize an extracted action."""
    if not isinstance(raw, dict):
        return InvalidInput("action is not an object")

    skill_name = raw.get("attackerSkillName")
    weapon = raw.get("weaponUsed")
    if not isinstance(skill_name, str) or not skill_name.strip():
        return InvalidInput("missing attacker skill")
    if not isinstance(weapon, str) or not weapon.strip():
        return InvalidInput("missing weapon")

    targets = raw.get("targetIds")
    if not isinstance(targets, list):
        return InvalidInput("targetIds is not a list")
    defenses_raw = raw.get("enemyDefenses")
    if not isinstance(defenses_raw, list):
        return InvalidInput("enemyDefenses is not a list")

    defenses = [d for d in (_parse_defense(item) for item in defenses_raw) if d]
    if not defenses:
        return InvalidInput("no enemy defenses")

    target_ids = [str(t).strip() for t in targets if str(t).strip()]
    if not target_ids:
        return InvalidInput("no targets")

    size = raw.get("weaponSize")
    action = ParsedAction(
        attacker_skill_name=skill_name.strip(),
        attacker_skill_value=normalize_percent(raw.get("attackerSkillValue"), DEFAULT_SKILL),
        weapon_used=weapon.strip(),
        weapon_size=size if size in WEAPON_SIZE_ORDER else weapon_size(weapon),
        target_ids=target_ids,
        enemy_defenses=defenses,
        is_ranged=bool(raw.get("isRanged")),
        is_energy=bool(raw.get("isEnergy")),
        is_aoe=bool(raw.get("isAoE")),
        player_roll=_parse_roll(raw.get("playerRoll")),
    )
    return restrict_to_single_target(action, enemies)


def _parse_enemy(raw: Any) -> Optional[EnemySpec]:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    enemy_type = str(raw.get("type") or "").upper()
    weapon = raw.get("weapon")
    skills_raw = raw.get("skills")
    skills = None
    if isinstance(skills_raw, dict):
        skills = {
            key: normalize_percent(value, DEFAULT_SKILL) for key, value in skills_raw.items()
            if _number(value) is not None
        }
    locations_raw = raw.get("hitLocations")
    hit_locations = None
    if isinstance(locations_raw, dict):
        hit_locations = {
            key: int(value) for key, value in locations_raw.items()
            if key in HIT_LOCATION_KEYS and _number(value) is not None and value > 0
        }
    armor = raw.get("armorType")

    return EnemySpec(
        name=name.strip(),
        type=enemy_type if enemy_type in ENEMY_TYPES else MOOK,
        weapon=weapon.strip() if isinstance(weapon, str) and weapon.strip() else "blaster_rifle",
        action_points=_number(raw.get("actionPoints")) or 2,
        armor_type=armor if armor in ARMOR_TYPES else None,
        skills=skills or None,
        hit_locations=hit_locations or None,
    )


def validate_enemy_roster(raw: Any) -> Union[EnemyRoster, InvalidInput]:
    """Check an extracted enemy list, dropping entries with no usable name."""
    if not isinstance(raw, dict) or not isinstance(raw.get("enemies"), list):
        return InvalidInput("no enemies list")
    enemies = [e for e in (_parse_enemy(item) for item in raw["enemies"]) if e]
    if not enemies:
        return InvalidInput("no usable enemies")
    return EnemyRoster(enemies=enemies)


def validate_resolution_payload(raw: Any) -> Union[PendingResolutionPayload, InvalidInput]:
    """Check an extracted pending-action reply. An empty reply is still a payload."""
    if not isinstance(raw, dict):
        return InvalidInput("reply is not an object")
    afflictions = raw.get("lastingAfflictions")
    if not isinstance(afflictions, list):
        afflictions = []
    extra = _int_or_none(raw.get("extraDamage"))
    return PendingResolutionPayload(
        damage=_int_or_none(raw.get("damage")),
        lasting_afflictions=[a.strip() for a in afflictions if isinstance(a, str) and a.strip()],
        extra_damage=extra or None,
        bypass_armor=raw.get("bypassArmor") is True,
    )


def _parry_note(defense_type: Optional[str], fully_blocked: bool) -> str:
    if defense_type != PARRY:
        return ""
    return f" Parry outcome: {'fully blocked' if fully_blocked else 'partial block'}."


def reply_prompt(pending: PendingAction, text: str) -> Tuple[str, str]:
    """Prompt and system prompt for a reply to a pending action."""
    if isinstance(pending, RollDamagePending):
        return (
            f"Extract just the damage value from: \"{text}\"",
            "You extract integer damage values and nothing else.",
        )
    if isinstance(pending, ChooseSpecialEffectPending):
        return (
            f"Choose up to {pending.special_effect_count} special effects and extract them from: \"{text}\"."
            f"{_parry_note(pending.defense_type, pending.parry_fully_blocked)} If extra damage applies "
            "from effects, include it as extraDamage. Set bypassArmor=true ONLY if 'bypass armor' "
            "is among the chosen effects.",
            "You select effects/afflictions based on context and return them as an array, with any "
            "additional damage as extraDamage.",
        )
    count = pending.special_effect_count if isinstance(pending, AttackResultPending) else 0
    note = _parry_note(getattr(pending, "defense_type", None), getattr(pending, "parry_fully_blocked", False))
    return (
        f"Extract both damage (if provided) and up to {count} lasting afflictions from: \"{text}\".{note} "
        "Set bypassArmor=true ONLY if 'bypass armor' is stated.",
        "You extract both a damage integer and a list of lasting afflictions in one pass. "
        "Do not infer values not present.",
    )


class ActionExtractor:
    """Turns player and GM text into validated structured input."""

    def __init__(self, client: GeminiClient):
        self.client = client

    async def parse_action(
        self,
        text: str,
        encounter: Encounter,
        character: Optional[CharacterData] = None,
    ) -> Union[ParsedAction, InvalidInput]:
        enemies_block = "\n".join(
            f"- {e.name} [{e.id}] ({e.type}): weapon={e.weapon}, AP={e.action_points}, "
            f"skills: parry={e.skills.get('parry')}%, evade={e.skills.get('evade')}%"
            for e in encounter.living_enemies()
        )
        skills_block = character.skills_block() if character else "No skills available"
        prompt = (
            f"Parse this combat action into the schema:\n\"{text}\"\n\n{ACTION_PROMPT}\n\n"
            f"Current enemies:\n{enemies_block}\n\nCharacter skills:\n{skills_block}"
        )
        raw = await self.client.generate(prompt, ACTION_SCHEMA, ACTION_SYSTEM_PROMPT)
        return validate_parsed_action(raw, encounter.enemies)

    async def create_enemies(self, text: str) -> Union[EnemyRoster, InvalidInput]:
        prompt = f"Create encounter: \"{text}\"\n{ENEMY_PROMPT}"
        raw = await self.client.generate(prompt, ENEMY_SCHEMA, ENEMY_SYSTEM_PROMPT)
        return validate_enemy_roster(raw)

    async def parse_pending_reply(self, pending: PendingAction, text: str) -> Union[PendingResolutionPayload, InvalidInput]:
        prompt, system_prompt = reply_prompt(pending, text)
        raw = await self.client.generate(prompt, REPLY_SCHEMA, system_prompt)
        return validate_resolution_payload(raw)
