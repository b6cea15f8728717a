"""Applying attack resolutions and pending-action replies to an encounter."""

import logging
import random
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple
from .dice import roll_d20
from .models import (
    AttackResolution, AttackResultPending, ChooseSpecialEffectPending, Encounter, Enemy,
    PendingAction, PendingResolutionPayload, RollDamagePending,
    ATTACKER, BOSS, CRITICAL, DEFENDER, MOOK, PARRY, SUCCESS,
)
from .config import REFEREE_ID
from .rules import calculate_parry_damage_reduction, find_enemy
from .state import add_pending, pending_for_user, resolve_pending
from .tables import HIT_LOCATION_NAMES, VITAL_LOCATIONS, hit_location_for_roll, location_key
from .timeutils import timestamp_from_minutes

logger = logging.getLogger(__name__)


@dataclass
class DamageOutcome:
    """What one application of damage did to an enemy."""
    enemy_name: str
    amount: int
    location: Optional[str] = None
    armor_reduced: bool = False
    defeated: bool = False

    def describe(self) -> str:
        line = f"💥 {self.enemy_name} takes {self.amount} damage"
        if self.location:
            line += f" to the {HIT_LOCATION_NAMES.get(self.location, self.location).lower()}"
        if self.armor_reduced:
            line += " (armor)"
        if self.defeated:
            line += ", DEFEATED"
        return line


@dataclass
class PendingOutcome:
    """Result of applying a reply to a pending action."""
    valid: bool
    message: str


def new_pending_id() -> str:
    return uuid.uuid4().hex[:8]


def apply_damage(
    enemy: Enemy,
    amount: int,
    bypass_armor: bool = False,
    rng: Optional[random.Random] = None,
    location: Optional[str] = None,
) -> Optional[DamageOutcome]:
    """Apply damage to an enemy, by hit location when it tracks them."""
    if amount <= 0:
        return None

    if enemy.tracks_locations:
        key = location_key(location) if location else hit_location_for_roll(roll_d20(rng))
        segment = enemy.hit_locations.get(key)
        if segment is None:
            logger.warning(f"{enemy.id} has no hit location {key!r}")
            return None

        final = amount
        if not bypass_armor and segment.armor_points > 0:
            final = max(0, amount - segment.armor_points)
        segment.current_hp -= final

        if segment.current_hp <= 0:
            segment.disabled = True
            if enemy.type == BOSS:
                if key in VITAL_LOCATIONS:
                    enemy.unconscious = True
                    enemy.alive = False
            else:
                enemy.alive = False

        return DamageOutcome(
            enemy_name=enemy.name,
            amount=final,
            location=key,
            armor_reduced=final != amount,
            defeated=not enemy.alive,
        )

    enemy.damage += amount
    # A MOOK has no hit point pool: any damage that lands is lethal
    if enemy.type == MOOK:
        enemy.alive = False
    return DamageOutcome(enemy_name=enemy.name, amount=amount, defeated=not enemy.alive)


def apply_resolutions(
    encounter: Encounter,
    resolutions: List[AttackResolution],
    user_id: str,
    rng: Optional[random.Random] = None,
) -> List[str]:
    """Apply resolved attacks, then spend the actor's action point."""
    lines: List[str] = []

    for resolution in resolutions:
        enemy = find_enemy(encounter.enemies, resolution.target_id)
        if not enemy:
            logger.info(f"Resolution target {resolution.target_id!r} not found, nothing applied")
            continue

        if resolution.final_damage > 0:
            outcome = apply_damage(enemy, resolution.final_damage, rng=rng, location=resolution.hit_location)
            if outcome:
                lines.append(outcome.describe())

        for effect in resolution.effects:
            enemy.add_affliction(effect)

    participant = encounter.participant(user_id)
    if participant:
        participant.action_points = max(0, participant.action_points - 1)
        if participant.action_points == 0 and encounter.participants:
            encounter.current_turn = (encounter.current_turn + 1) % len(encounter.participants)

    return lines


def create_pending_actions(
    resolutions: List[AttackResolution],
    user_id: str,
    ttl_minutes: Optional[int] = None,
) -> List[PendingAction]:
    """Build the follow-ups each resolution still needs.

    The attacker owes an ``attack_result`` when damage must be rolled or they won
    effect picks. Picks won by the defender go to the GM.
    """
    expires_at = timestamp_from_minutes(ttl_minutes) if ttl_minutes else None
    actions: List[PendingAction] = []

    for resolution in resolutions:
        defense_succeeded = resolution.defense_degree in (SUCCESS, CRITICAL)
        parry_fully_blocked = (
            resolution.defense_type == PARRY and defense_succeeded and not resolution.needs_damage_roll
        )
        attacker_picks = resolution.levels_of_success if resolution.effects_awarded_to == ATTACKER else 0
        defender_picks = resolution.levels_of_success if resolution.effects_awarded_to == DEFENDER else 0

        if resolution.needs_damage_roll or attacker_picks > 0:
            actions.append(AttackResultPending(
                id=new_pending_id(),
                user_id=user_id,
                target_id=resolution.target_id,
                expires_at=expires_at,
                special_effect_count=attacker_picks,
                weapon_damage=resolution.suggested_damage,
                attack_roll=resolution.attack_roll,
                attack_degree=resolution.attack_degree,
                defense_roll=resolution.defense_roll,
                defense_type=resolution.defense_type,
                defense_degree=resolution.defense_degree,
                weapon_size=resolution.weapon_size,
                enemy_weapon_size=resolution.enemy_weapon_size,
                parry_fully_blocked=parry_fully_blocked,
                want_damage=resolution.needs_damage_roll,
            ))

        if defender_picks > 0:
            actions.append(ChooseSpecialEffectPending(
                id=new_pending_id(),
                user_id=REFEREE_ID,
                target_id=resolution.target_id,
                expires_at=expires_at,
                special_effect_count=defender_picks,
                awarded_to=DEFENDER,
                attacker_id=user_id,
                defense_type=resolution.defense_type,
                defense_degree=resolution.defense_degree,
                parry_fully_blocked=parry_fully_blocked,
            ))

    return actions


def register_pending_actions(encounter: Encounter, actions: List[PendingAction]):
    for action in actions:
        add_pending(encounter, action)


def _payload_is_usable(pending: PendingAction, payload: PendingResolutionPayload) -> bool:
    if isinstance(pending, RollDamagePending):
        return payload.damage is not None
    if isinstance(pending, ChooseSpecialEffectPending):
        return bool(payload.lasting_afflictions) or payload.extra_damage is not None
    return not payload.is_empty


def _main_damage(pending: PendingAction, damage: int) -> Tuple[int, str]:
    """Damage left after the recorded parry, with a note for the log."""
    if not isinstance(pending, AttackResultPending):
        return damage, ""
    if pending.defense_type != PARRY or pending.defense_degree not in (SUCCESS, CRITICAL):
        return damage, ""
    if pending.parry_fully_blocked or pending.attack_degree == CRITICAL:
        return 0, "🛡️ Parry blocked all damage"
    through = calculate_parry_damage_reduction(pending.weapon_size, pending.enemy_weapon_size, damage)
    if through < damage:
        return through, f"🛡️ Parry reduced {damage} damage to {through}"
    return through, ""


def _apply_to_attacker(encounter: Encounter, pending: ChooseSpecialEffectPending,
                       payload: PendingResolutionPayload) -> List[str]:
    participant = encounter.participant(pending.attacker_id or "")
    if not participant:
        return []
    parts = []
    if payload.extra_damage:
        participant.damage += payload.extra_damage
        parts.append(f"💥 {participant.name} takes {payload.extra_damage} damage")
    added = [a for a in payload.lasting_afflictions if a and a not in participant.afflictions]
    participant.afflictions.extend(added)
    if payload.lasting_afflictions:
        parts.append(f"📌 {participant.name}: + {', '.join(payload.lasting_afflictions)}")
    return parts


def apply_pending_resolution(
    encounter: Encounter,
    pending: PendingAction,
    payload: PendingResolutionPayload,
    rng: Optional[random.Random] = None,
) -> PendingOutcome:
    """Apply a reply to a pending action and remove it.

    A reply carrying nothing the action asked for leaves state untouched and the
    action registered, so the user can try again.
    """
    if not _payload_is_usable(pending, payload):
        return PendingOutcome(False, "❌ Invalid response for pending action.")

    if isinstance(pending, ChooseSpecialEffectPending) and pending.awarded_to == DEFENDER:
        parts = _apply_to_attacker(encounter, pending, payload)
        resolve_pending(encounter, pending.id)
        return PendingOutcome(True, "\n".join(parts) or "✨ Defensive effects noted")

    enemy = find_enemy(encounter.enemies, pending.target_id)
    parts: List[str] = []

    if enemy is None:
        logger.info(f"Pending action {pending.id} targets unknown enemy {pending.target_id!r}")
    else:
        if payload.damage is not None and not isinstance(pending, ChooseSpecialEffectPending):
            damage, note = _main_damage(pending, payload.damage)
            if note:
                parts.append(note)
            outcome = apply_damage(enemy, damage, payload.bypass_armor, rng)
            if outcome:
                parts.append(outcome.describe())

        if payload.extra_damage and not isinstance(pending, RollDamagePending):
            outcome = apply_damage(enemy, payload.extra_damage, payload.bypass_armor, rng)
            if outcome:
                parts.append(outcome.describe())

        if payload.lasting_afflictions and not isinstance(pending, RollDamagePending):
            for affliction in payload.lasting_afflictions:
                enemy.add_affliction(affliction)
            parts.append(f"📌 {enemy.name}: + {', '.join(payload.lasting_afflictions)}")

    resolve_pending(encounter, pending.id)
    return PendingOutcome(True, "\n".join(parts) or "⚔️ Nothing to apply")


def apply_user_reply(
    encounter: Encounter,
    user_id: str,
    payload: PendingResolutionPayload,
    rng: Optional[random.Random] = None,
) -> Optional[PendingOutcome]:
    """Apply a reply to whatever the user owes, or None if they owe nothing.

    A user holding both a damage roll and an effect choice answers both at once:
    the damage goes to the roll, afflictions and extra damage to the choice.
    """
    actions = pending_for_user(encounter, user_id)
    if not actions:
        return None

    roll = next((a for a in actions if isinstance(a, RollDamagePending)), None)
    choice = next((a for a in actions if isinstance(a, ChooseSpecialEffectPending)), None)
    if roll is None or choice is None:
        return apply_pending_resolution(encounter, actions[0], payload, rng)

    damage_part = PendingResolutionPayload(damage=payload.damage, bypass_armor=payload.bypass_armor)
    effect_part = PendingResolutionPayload(
        lasting_afflictions=list(payload.lasting_afflictions),
        extra_damage=payload.extra_damage,
        bypass_armor=payload.bypass_armor,
    )
    if not _payload_is_usable(roll, damage_part) and not _payload_is_usable(choice, effect_part):
        return PendingOutcome(False, "❌ Invalid response for pending action.")

    messages = []
    for pending, part in ((roll, damage_part), (choice, effect_part)):
        if _payload_is_usable(pending, part):
            messages.append(apply_pending_resolution(encounter, pending, part, rng).message)
    return PendingOutcome(True, "\n".join(messages))
