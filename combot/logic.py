"""Combat command orchestration for Combot."""

import asyncio
import contextlib
import functools
import logging
import random
from typing import Awaitable, Callable, Dict, List, Optional
from .applier import apply_resolutions, apply_user_reply, create_pending_actions, register_pending_actions
from .character import CharacterData, clean_sheet_url, fetch_character, initiative_bonus
from .config import PENDING_TTL_MINUTES, REFEREE_ID
from .dice import roll_d10, roll_d100
from .errors import ExtractionError, StaleEncounterError, StorageError
from .extraction import ActionExtractor
from .lifecycle import (
    action_line, create_encounter, default_roster, drop_expired_pending, join_initiative,
    mark_defeated, new_round, unwind_last_action,
)
from .models import (
    ActionResult, AttackResolution, DiceRolls, Encounter, InvalidInput, Participant, CRITICAL, PARRY, SUCCESS,
)
from .rules import evaluate_attack, find_enemy
from .state import format_pending_action, has_pending, pending_for_user
from .storage import EncounterStorage

logger = logging.getLogger(__name__)

SheetFetcher = Callable[[str], Awaitable[Optional[CharacterData]]]

# Only channels with a command running or waiting keep an entry
_channel_locks: Dict[str, asyncio.Lock] = {}
_lock_holders: Dict[str, int] = {}


@contextlib.asynccontextmanager
async def channel_lock(channel_id: str):
    """Serialize every command in one channel."""
    lock = _channel_locks.setdefault(channel_id, asyncio.Lock())
    _lock_holders[channel_id] = _lock_holders.get(channel_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _lock_holders[channel_id] -= 1
        if not _lock_holders[channel_id]:
            del _lock_holders[channel_id]
            del _channel_locks[channel_id]


def recovers_faults(func):
    """Run a command under its channel lock, turning infrastructure faults into replies."""
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            async with channel_lock(self.channel_id):
                return await func(self, *args, **kwargs)
        except StaleEncounterError as e:
            logger.warning(f"{func.__name__} lost a write race: {e}")
            return ActionResult(False, "⚠️ Combat changed while you were acting. Please try again.")
        except StorageError as e:
            logger.error(f"{func.__name__} failed on storage: {e}")
            return ActionResult(False, "❌ Could not save combat state. Please try again.")
        except ExtractionError as e:
            logger.error(f"{func.__name__} failed on extraction: {e}")
            return ActionResult(False, "❌ Could not understand that right now. Please try again.")
    return wrapper


def summarize_resolution(resolution: AttackResolution, target_name: str) -> str:
    """One log line describing an attack against one target."""
    line = (
        f"🎯 {target_name}: {resolution.attack_roll} vs {resolution.defense_roll} "
        f"({resolution.attack_degree} vs {resolution.defense_type} {resolution.defense_degree})"
    )
    if resolution.needs_damage_roll:
        line += ", hit"
    elif resolution.defense_type == PARRY and resolution.defense_degree in (SUCCESS, CRITICAL):
        line += ", parried"
    if "prone" in resolution.effects:
        line += ", prone"
    if resolution.levels_of_success:
        line += f", {resolution.levels_of_success} effect(s) to the {resolution.effects_awarded_to}"
    return line


class CombatLogic:
    """Handles every combat command for one channel."""

    def __init__(
        self,
        storage: EncounterStorage,
        extractor: ActionExtractor,
        channel_id: str,
        rng: Optional[random.Random] = None,
        sheet_fetcher: Optional[SheetFetcher] = None,
    ):
        self.storage = storage
        self.extractor = extractor
        self.channel_id = channel_id
        self.rng = rng or random.Random()
        self.fetch_sheet = sheet_fetcher or fetch_character

    async def _character(self, user_id: str) -> Optional[CharacterData]:
        url = await self.storage.get_character_url(user_id, self.channel_id)
        if not url:
            return None
        return await self.fetch_sheet(url)

    @recovers_faults
    async def identify(self, user_id: str, url: str) -> ActionResult:
        """Link a character sheet to a player in this channel."""
        cleaned = clean_sheet_url(url)
        if not cleaned:
            return ActionResult(False, "❌ Please provide a valid http(s) character sheet URL.")
        await self.storage.save_character_url(user_id, self.channel_id, cleaned)
        return ActionResult(True, f"✅ Character sheet linked: {cleaned}")

    @recovers_faults
    async def start_combat(self, text: str) -> ActionResult:
        """Replace any combat in the channel with a new one built from a description."""
        roster = await self.extractor.create_enemies(text)
        note = ""
        if isinstance(roster, InvalidInput):
            logger.warning(f"Enemy creation unusable ({roster.reason}), using default roster")
            roster = default_roster()
            note = "\n⚠️ Could not understand the enemies, using default stormtroopers."

        previous = await self.storage.get_encounter(self.channel_id)
        await self.storage.delete_encounter(self.channel_id)
        encounter = create_encounter(self.channel_id, roster)
        # Lets the old tracker message be replaced
        if previous:
            encounter.message_id = previous.message_id
        names = ", ".join(enemy.name for enemy in encounter.enemies)
        encounter.log.append(f"⚔️ Combat started against {names}")
        await self.storage.save_encounter(encounter)

        return ActionResult(
            True,
            f"⚔️ Combat started with {len(encounter.enemies)} enemies.{note}",
            "⚔️ **Combat has begun!** Use `/initiative` to join.",
            encounter=encounter,
            refresh_tracker=True,
        )

    @recovers_faults
    async def join_initiative(self, user_id: str, name: str) -> ActionResult:
        """Roll initiative and join the turn order."""
        encounter = await self.storage.get_encounter(self.channel_id)
        if not encounter:
            return ActionResult(False, "❌ No active combat in this channel.")
        if encounter.participant(user_id):
            return ActionResult(False, "You're already in the initiative order!")

        bonus = initiative_bonus(await self._character(user_id))
        roll = roll_d10(self.rng)
        total = roll + bonus
        join_initiative(encounter, user_id, name, total)
        encounter.log.append(f"🎲 {name} rolled **{total}** for initiative! ({roll} + {bonus})")
        await self.storage.save_encounter(encounter)

        return ActionResult(
            True,
            f"🎲 You rolled **{total}** for initiative! ({roll} + {bonus})",
            encounter=encounter,
            refresh_tracker=True,
        )

    async def _perform_action(self, encounter: Encounter, participant: Participant, text: str) -> ActionResult:
        """Resolve a fresh action. Leaves saving to the caller."""
        character = await self._character(participant.user_id)
        action = await self.extractor.parse_action(text, encounter, character)
        if isinstance(action, InvalidInput):
            logger.info(f"Unusable action from {participant.user_id}: {action.reason}")
            return ActionResult(False, "❌ Could not understand that action. Try naming your skill, weapon and target.")

        # The sheet is the authority on skill values when it has the skill
        if character:
            sheet_value = character.skill(action.attacker_skill_name)
            if sheet_value is not None:
                action.attacker_skill_value = sheet_value

        rolls = DiceRolls(
            attack=roll_d100(self.rng),
            defense=[roll_d100(self.rng) for _ in action.enemy_defenses],
        )
        resolutions = evaluate_attack(action, encounter.enemies, rolls, participant.user_id)
        if not resolutions:
            return ActionResult(False, "❌ No matching target for that action.")

        lines: List[str] = [action_line(participant.name, text)]
        for resolution in resolutions:
            enemy = find_enemy(encounter.enemies, resolution.target_id)
            lines.append(summarize_resolution(resolution, enemy.name if enemy else resolution.target_id))
        lines.extend(apply_resolutions(encounter, resolutions, participant.user_id, self.rng))

        pending = create_pending_actions(resolutions, participant.user_id, PENDING_TTL_MINUTES)
        register_pending_actions(encounter, pending)
        encounter.log.extend(lines)
        participant.last_action = text

        message = "\n".join(lines[1:])
        prompts = [format_pending_action(p) for p in pending if p.user_id == participant.user_id]
        if prompts:
            message += "\n\n" + "\n".join(prompts)
        return ActionResult(True, message, encounter=encounter, needs_follow_up=bool(prompts), refresh_tracker=True)

    async def _resolve_reply(self, encounter: Encounter, user_id: str, name: str, text: str) -> ActionResult:
        """Answer the user's outstanding pending action(s). Leaves saving to the caller."""
        primary = has_pending(encounter, user_id)
        payload = await self.extractor.parse_pending_reply(primary, text)
        invalid = f"❌ Invalid response for pending action.\n{format_pending_action(primary)}"
        if isinstance(payload, InvalidInput):
            return ActionResult(False, invalid, needs_follow_up=True)

        outcome = apply_user_reply(encounter, user_id, payload, self.rng)
        if outcome is None or not outcome.valid:
            return ActionResult(False, invalid, needs_follow_up=True)

        encounter.log.append(action_line(name, text, follow_up=True))
        encounter.log.extend(line for line in outcome.message.split("\n") if line)

        message = outcome.message
        remaining = pending_for_user(encounter, user_id)
        if remaining:
            message += "\n\n" + format_pending_action(remaining[0])
        return ActionResult(True, message, encounter=encounter, needs_follow_up=bool(remaining), refresh_tracker=True)

    @recovers_faults
    async def act(self, user_id: str, name: str, text: str) -> ActionResult:
        """Take an action, or answer a pending one if the user owes a reply."""
        encounter = await self.storage.get_encounter(self.channel_id)
        if not encounter:
            return ActionResult(False, "❌ No active combat in this channel.")
        participant = encounter.participant(user_id)
        if not participant:
            return ActionResult(False, "❌ You need to roll initiative first! Use `/initiative`")

        if has_pending(encounter, user_id):
            result = await self._resolve_reply(encounter, user_id, name, text)
        elif participant.action_points <= 0:
            return ActionResult(False, "❌ You have no action points left this round.")
        else:
            result = await self._perform_action(encounter, participant, text)

        if result.success:
            await self.storage.save_encounter(encounter)
        return result

    @recovers_faults
    async def edit_act(self, user_id: str, name: str, text: str) -> ActionResult:
        """Replace the user's most recent action with a new one."""
        encounter = await self.storage.get_encounter(self.channel_id)
        if not encounter:
            return ActionResult(False, "❌ No active combat in this channel.")
        participant = encounter.participant(user_id)
        if not participant:
            return ActionResult(False, "❌ You need to roll initiative first! Use `/initiative`")
        if not unwind_last_action(encounter, participant.name, user_id):
            return ActionResult(False, "❌ No previous action to edit.")

        result = await self._perform_action(encounter, participant, text)
        if result.success:
            result.message = f"✏️ Action edited.\n{result.message}"
            await self.storage.save_encounter(encounter)
        return result

    @recovers_faults
    async def new_round(self) -> ActionResult:
        """Start the next round, refilling action points."""
        encounter = await self.storage.get_encounter(self.channel_id)
        if not encounter:
            return ActionResult(False, "❌ No active combat in this channel.")

        new_round(encounter)
        encounter.log.append(f"🔄 Round {encounter.round} begins")
        await self.storage.save_encounter(encounter)
        return ActionResult(
            True,
            f"🔄 Round {encounter.round} begins!",
            encounter=encounter,
            refresh_tracker=True,
        )

    @recovers_faults
    async def end_combat(self) -> ActionResult:
        encounter = await self.storage.get_encounter(self.channel_id)
        if not encounter:
            return ActionResult(False, "❌ No active combat in this channel.")
        await self.storage.delete_encounter(self.channel_id)
        return ActionResult(True, "🏁 Combat ended.", "🏁 **Combat has ended.**", encounter=encounter)

    @recovers_faults
    async def gm_resolve(self, text: str) -> ActionResult:
        """Answer the pending effect choice owed by the GM."""
        encounter = await self.storage.get_encounter(self.channel_id)
        if not encounter:
            return ActionResult(False, "❌ No active combat in this channel.")
        if not has_pending(encounter, REFEREE_ID):
            return ActionResult(False, "There is nothing for the GM to resolve.")

        result = await self._resolve_reply(encounter, REFEREE_ID, "GM", text)
        if result.success:
            await self.storage.save_encounter(encounter)
        return result

    @recovers_faults
    async def gm_defeat(self, reference: str) -> ActionResult:
        """Mark an enemy as defeated by hand."""
        encounter = await self.storage.get_encounter(self.channel_id)
        if not encounter:
            return ActionResult(False, "❌ No active combat in this channel.")
        enemy = mark_defeated(encounter, reference)
        if not enemy:
            return ActionResult(False, f"❌ No enemy matches '{reference}'.")

        encounter.log.append(f"☠️ {enemy.name} is defeated")
        await self.storage.save_encounter(encounter)
        return ActionResult(True, f"☠️ {enemy.name} is defeated.", encounter=encounter, refresh_tracker=True)


async def sweep_expired_pending(storage: EncounterStorage, current: Optional[int] = None) -> int:
    """Drop expired pending actions in every stored encounter. Returns how many went."""
    total = 0
    for encounter in await storage.list_encounters():
        async with channel_lock(encounter.channel_id):
            fresh = await storage.get_encounter(encounter.channel_id)
            if not fresh:
                continue
            dropped = drop_expired_pending(fresh, current)
            if dropped:
                await storage.save_encounter(fresh)
                total += dropped
    return total
