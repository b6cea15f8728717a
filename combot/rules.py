"""Attack resolution rules.

Turns a structured action plus pre-rolled dice into one ``AttackResolution`` per
defended target. The resolver never rolls damage; it only decides whether a
damage roll is still owed and which side earned special-effect picks.
"""

import logging
from typing import List, Optional
from .dice import classify_roll, compare_degrees, normalize_percent
from .config import DEFAULT_SKILL, DEFAULT_WEAPON_SIZE
from .models import (
    AttackResolution, DiceRolls, Enemy, EnemyDefense, ParsedAction, PendingChoice,
    CRITICAL, SUCCESS, PARRY, EVADE,
)
from .tables import damage_dice, size_index

logger = logging.getLogger(__name__)

SUCCESSFUL = (SUCCESS, CRITICAL)


def find_enemy(enemies: List[Enemy], reference: Optional[str]) -> Optional[Enemy]:
    """Find an enemy by exact id, else by case-insensitive substring of name or id."""
    if not reference:
        return None
    for enemy in enemies:
        if enemy.id == reference:
            return enemy
    search = reference.lower()
    for enemy in enemies:
        if search in enemy.name.lower() or search in enemy.id.lower():
            return enemy
    return None


def calculate_parry_damage_reduction(attacker_size: str, defender_size: str, base_damage: int) -> int:
    """Damage that gets past a successful parry, by weapon size difference."""
    attack_index = size_index(attacker_size)
    defense_index = size_index(defender_size)
    if attack_index < 0 or defense_index < 0:
        return base_damage

    size_diff = defense_index - attack_index
    if size_diff >= 0:
        return 0
    if size_diff == -1:
        return base_damage // 2
    return base_damage


def parry_blocks_all(attacker_size: str, defender_size: str) -> bool:
    """Whether a parry at these sizes stops every point of damage."""
    return size_index(defender_size) - size_index(attacker_size) >= 0


def evaluate_attack(
    action: ParsedAction,
    enemies: List[Enemy],
    rolls: DiceRolls,
    attacker_id: str = "player",
) -> List[AttackResolution]:
    """Resolve an attack against every defended target.

    Defending costs the enemy one action point, even on a successful defense.
    Only the first defense is processed unless the action is area-effect.
    """
    results: List[AttackResolution] = []

    attack_skill = normalize_percent(action.attacker_skill_value, DEFAULT_SKILL)
    attack_roll = action.player_roll or rolls.attack
    attack_degree = classify_roll(attack_roll, attack_skill)
    logger.info(f"Evaluating attack: skill={attack_skill}%, roll={attack_roll}, degree={attack_degree}")

    defenses = action.enemy_defenses if action.is_aoe else action.enemy_defenses[:1]
    suggested = damage_dice(action.weapon_used)

    for index, defense in enumerate(defenses):
        enemy = find_enemy(enemies, defense.enemy_id)
        if not enemy:
            logger.info(f"No enemy matches {defense.enemy_id!r}, skipping")
            continue
        if index >= len(rolls.defense):
            logger.warning(f"No defense roll supplied for {enemy.id}, skipping")
            continue

        resolution = _resolve_target(
            action, defense, enemy, attacker_id, attack_roll, attack_skill, attack_degree,
            rolls.defense[index], suggested,
        )
        results.append(resolution)

    return results


def _resolve_target(
    action: ParsedAction,
    defense: EnemyDefense,
    enemy: Enemy,
    attacker_id: str,
    attack_roll: int,
    attack_skill: int,
    attack_degree: str,
    defense_roll: int,
    suggested: str,
) -> AttackResolution:
    defense_type = EVADE if defense.must_evade else PARRY
    defense_skill = normalize_percent(
        defense.evade_skill if defense.must_evade else defense.parry_skill, DEFAULT_SKILL
    )
    # No action points left means no resources to defend with
    if enemy.action_points <= 0:
        defense_skill = 0
    defense_degree = classify_roll(defense_roll, defense_skill)
    if enemy.action_points > 0:
        enemy.action_points -= 1

    levels, awarded_to = compare_degrees(attack_degree, defense_degree)

    attacker_size = action.weapon_size or DEFAULT_WEAPON_SIZE
    defender_size = defense.weapon_size or enemy.weapon_size or DEFAULT_WEAPON_SIZE

    needs_damage_roll = False
    if attack_degree in SUCCESSFUL:
        if defense_type == PARRY and defense_degree in SUCCESSFUL:
            if attack_degree == CRITICAL:
                needs_damage_roll = False
            else:
                needs_damage_roll = not parry_blocks_all(attacker_size, defender_size)
        elif defense_type == EVADE and defense_degree in SUCCESSFUL:
            needs_damage_roll = False
        else:
            needs_damage_roll = True

    effects: List[str] = []
    if defense_type == EVADE:
        effects.append("prone")

    if needs_damage_roll:
        pending_choice = PendingChoice("damage", [f"Roll {suggested} damage"])
    elif levels > 0:
        pending_choice = PendingChoice("special_effect")
    else:
        pending_choice = None

    resolution = AttackResolution(
        attacker_id=attacker_id,
        target_id=enemy.id,
        attack_roll=attack_roll,
        attack_skill=attack_skill,
        attack_degree=attack_degree,
        defense_roll=defense_roll,
        defense_skill=defense_skill,
        defense_type=defense_type,
        defense_degree=defense_degree,
        levels_of_success=levels,
        effects_awarded_to=awarded_to,
        needs_damage_roll=needs_damage_roll,
        effects=effects,
        weapon_size=attacker_size,
        enemy_weapon_size=defender_size,
        suggested_damage=suggested,
        pending_choice=pending_choice,
    )
    logger.debug(f"Resolution built: {resolution}")
    return resolution
