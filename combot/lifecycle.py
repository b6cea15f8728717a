"""Encounter lifecycle: creation, initiative, rounds, and undoing an action."""

import logging
import random
import re
import uuid
from collections import Counter
from typing import List, Optional
from .config import DEFAULT_ACTION_POINTS, DEFAULT_ENEMY_ACTION_POINTS
from .dice import roll_d10, round_half_up
from .models import Encounter, Enemy, EnemyRoster, EnemySpec, Participant, BOSS, ENEMY_TYPES, MOOK
from .rules import find_enemy
from .state import all_pending, generate_enemy_skills, initialize_hit_locations, pending_for_user, resolve_pending
from .tables import ARMOR_TYPES, location_key, weapon_size
from .timeutils import is_expired, now_timestamp

logger = logging.getLogger(__name__)

# "**Name**: text" starts an action block; "**Name** (follow-up): text" continues one
ACTION_LINE = re.compile(r"^\*\*(?P<name>.+?)\*\*(?P<follow_up> \(follow-up\))?:")
DAMAGE_LINE = re.compile(
    r"^💥 (?P<name>.+?) takes (?P<amount>\d+) damage"
    r"(?: to the (?P<location>[a-z ]+?))?(?P<armor> \(armor\))?(?P<defeated>, DEFEATED)?$"
)


def action_line(name: str, text: str, follow_up: bool = False) -> str:
    """Log line recording what a user did."""
    if follow_up:
        return f"**{name}** (follow-up): {text}"
    return f"**{name}**: {text}"


def default_roster() -> EnemyRoster:
    """Fallback enemies used when the enemy description cannot be understood."""
    return EnemyRoster(enemies=[
        EnemySpec(name="Stormtrooper", type=MOOK, weapon="blaster_rifle", action_points=2, armor_type="common")
        for _ in range(3)
    ])


def _unique_names(specs: List[EnemySpec]) -> List[str]:
    """Number repeated names so each enemy can be told apart in the log."""
    counts = Counter(spec.name for spec in specs)
    seen: Counter = Counter()
    names = []
    for spec in specs:
        if counts[spec.name] > 1:
            seen[spec.name] += 1
            names.append(f"{spec.name} {seen[spec.name]}")
        else:
            names.append(spec.name)
    return names


def build_enemy(spec: EnemySpec, index: int, name: Optional[str] = None) -> Enemy:
    """Turn one validated enemy description into a fresh enemy."""
    enemy_type = spec.type if spec.type in ENEMY_TYPES else MOOK
    action_points = max(1, round_half_up(spec.action_points or DEFAULT_ENEMY_ACTION_POINTS))
    armor_type = spec.armor_type if spec.armor_type in ARMOR_TYPES else "none"

    skills = generate_enemy_skills(enemy_type)
    if spec.skills:
        skills.update(spec.skills)

    hit_locations = None
    if enemy_type == BOSS or spec.hit_locations:
        hit_locations = initialize_hit_locations(armor_type, spec.hit_locations)

    return Enemy(
        id=f"enemy_{index}",
        name=name or spec.name,
        type=enemy_type,
        weapon=spec.weapon,
        weapon_size=weapon_size(spec.weapon),
        armor_type=armor_type,
        action_points=action_points,
        max_action_points=action_points,
        skills=skills,
        hit_locations=hit_locations,
        unconscious=False if enemy_type == BOSS else None,
    )


def create_encounter(channel_id: str, roster: EnemyRoster, encounter_id: Optional[str] = None) -> Encounter:
    """A fresh encounter at round 1 with no one in initiative yet."""
    names = _unique_names(roster.enemies)
    enemies = [build_enemy(spec, i, names[i]) for i, spec in enumerate(roster.enemies)]
    encounter = Encounter(
        id=encounter_id or uuid.uuid4().hex,
        channel_id=channel_id,
        enemies=enemies,
    )
    logger.info(f"Created encounter {encounter.id} in {channel_id} with {len(enemies)} enemies")
    return encounter


def roll_initiative(bonus: int = 0, rng: Optional[random.Random] = None) -> int:
    return roll_d10(rng) + bonus


def join_initiative(encounter: Encounter, user_id: str, name: str, roll: int) -> Participant:
    """Add a player to the initiative order, highest roll first.

    Equal rolls keep their join order.
    """
    participant = Participant(
        user_id=user_id,
        name=name,
        roll=roll,
        action_points=DEFAULT_ACTION_POINTS,
        max_action_points=DEFAULT_ACTION_POINTS,
    )
    current = encounter.current_participant()
    encounter.participants.append(participant)
    encounter.participants.sort(key=lambda p: p.roll, reverse=True)

    # Keep the turn pointer on whoever held it before the re-sort
    if current is not None:
        encounter.current_turn = encounter.participants.index(current)
    return participant


def new_round(encounter: Encounter):
    """Advance the round and refill every action point pool."""
    encounter.round += 1
    encounter.current_turn = 0
    for participant in encounter.participants:
        participant.action_points = participant.max_action_points
    for enemy in encounter.enemies:
        enemy.action_points = enemy.max_action_points


def mark_defeated(encounter: Encounter, reference: str) -> Optional[Enemy]:
    enemy = find_enemy(encounter.enemies, reference)
    if enemy:
        enemy.alive = False
    return enemy


def drop_expired_pending(encounter: Encounter, current: Optional[int] = None) -> int:
    """Remove pending actions whose expiry has passed. Returns how many went."""
    current = current if current is not None else now_timestamp()
    expired = [action for action in all_pending(encounter) if is_expired(action.expires_at, current)]
    for action in expired:
        resolve_pending(encounter, action.id)
    if expired:
        logger.info(f"Dropped {len(expired)} expired pending action(s) in {encounter.channel_id}")
    return len(expired)


def _find_by_name(encounter: Encounter, name: str):
    for enemy in encounter.enemies:
        if enemy.name == name:
            return enemy
    for participant in encounter.participants:
        if participant.name == name:
            return participant
    return None


def _reverse_damage_line(encounter: Encounter, line: str):
    match = DAMAGE_LINE.match(line)
    if not match:
        return
    amount = int(match.group("amount"))
    target = _find_by_name(encounter, match.group("name"))

    if isinstance(target, Participant):
        target.damage = max(0, target.damage - amount)
        return
    if target is None:
        logger.debug(f"Cannot unwind damage for unknown {match.group('name')!r}")
        return

    if match.group("location") and target.hit_locations:
        # Disabled locations stay disabled
        segment = target.hit_locations.get(location_key(match.group("location")))
        if segment:
            segment.current_hp = min(segment.max_hp, segment.current_hp + amount)
        return

    target.damage = max(0, target.damage - amount)
    if match.group("defeated"):
        target.alive = True


def unwind_last_action(encounter: Encounter, user_name: str, user_id: str) -> bool:
    """Undo the user's most recent action as far as the log allows.

    Removes the action line, the system lines and follow-ups after it, reverses
    the damage those lines recorded, gives back one action point and drops what
    the user still owed. Returns False if the user has no action in the log.
    """
    log = encounter.log
    start = None
    for i in range(len(log) - 1, -1, -1):
        match = ACTION_LINE.match(log[i])
        if match and match.group("name") == user_name and not match.group("follow_up"):
            start = i
            break
    if start is None:
        return False

    end = start + 1
    while end < len(log):
        match = ACTION_LINE.match(log[end])
        if match and not (match.group("follow_up") and match.group("name") == user_name):
            break
        end += 1

    removed = log[start + 1:end]
    del log[start:end]
    for line in removed:
        _reverse_damage_line(encounter, line)

    participant = encounter.participant(user_id)
    if participant:
        # Spending the last point passed the turn on; take it back
        if participant.action_points == 0:
            encounter.current_turn = encounter.participants.index(participant)
        participant.action_points = min(participant.max_action_points, participant.action_points + 1)
        participant.last_action = None
    for action in pending_for_user(encounter, user_id):
        resolve_pending(encounter, action.id)

    logger.info(f"Unwound last action of {user_name} in {encounter.channel_id}")
    return True
