"""Encounter state management: the pending-action registry and enemy defaults."""

from typing import Dict, List, Optional
from .models import (
    AttackResultPending, ChooseSpecialEffectPending, Encounter, HitLocation,
    PendingAction, RollDamagePending, BOSS, COMBATANT, CRITICAL, DEFENDER, PARRY, SUCCESS,
)
from .tables import ARMOR_VALUES, DEFAULT_LOCATION_HP, HIT_LOCATION_KEYS, LOCATION_REGION, SPECIAL_EFFECTS


def has_pending(encounter: Encounter, user_id: str) -> Optional[PendingAction]:
    """The user's primary pending action: the attached one, else the first queued."""
    participant = encounter.participant(user_id)
    if participant and participant.pending_action:
        return participant.pending_action
    for action in encounter.pending_actions:
        if action.user_id == user_id:
            return action
    return None


def pending_for_user(encounter: Encounter, user_id: str) -> List[PendingAction]:
    """Every outstanding pending action owned by a user, attached one first."""
    actions: List[PendingAction] = []
    participant = encounter.participant(user_id)
    if participant and participant.pending_action:
        actions.append(participant.pending_action)
    actions.extend(a for a in encounter.pending_actions if a.user_id == user_id)
    return actions


def all_pending(encounter: Encounter) -> List[PendingAction]:
    """Queued pending actions followed by the ones attached to participants."""
    actions = list(encounter.pending_actions)
    actions.extend(p.pending_action for p in encounter.participants if p.pending_action)
    return actions


def add_pending(encounter: Encounter, action: PendingAction):
    """Attach a pending action to its owner, or queue it if the slot is taken."""
    participant = encounter.participant(action.user_id)
    if participant and participant.pending_action is None:
        participant.pending_action = action
    else:
        encounter.pending_actions.append(action)


def resolve_pending(encounter: Encounter, action_id: str) -> bool:
    """Remove a pending action by id from wherever it is stored."""
    for participant in encounter.participants:
        if participant.pending_action and participant.pending_action.id == action_id:
            participant.pending_action = None
            return True

    remaining = [a for a in encounter.pending_actions if a.id != action_id]
    removed = len(remaining) != len(encounter.pending_actions)
    encounter.pending_actions = remaining
    return removed


def generate_enemy_skills(enemy_type: str) -> Dict[str, int]:
    """Default skill table for an enemy tier."""
    if enemy_type == BOSS:
        base = 75
    elif enemy_type == COMBATANT:
        base = 60
    else:
        base = 50

    return {
        "parry": base,
        "evade": base - 10,
        "endurance": base,
        "willpower": base,
        "perception": base,
        "athletics": base - 5,
    }


def armor_values(armor_type: Optional[str]) -> Dict[str, int]:
    """Armor points per body region for an armor category."""
    return dict(ARMOR_VALUES.get(armor_type or "none", ARMOR_VALUES["none"]))


def initialize_hit_locations(
    armor_type: Optional[str],
    overrides: Optional[Dict[str, int]] = None,
) -> Dict[str, HitLocation]:
    """Seven fresh hit locations, with optional per-location max HP."""
    armor = armor_values(armor_type)
    overrides = overrides or {}
    locations = {}
    for key in HIT_LOCATION_KEYS:
        max_hp = overrides.get(key) or DEFAULT_LOCATION_HP[key]
        locations[key] = HitLocation(
            max_hp=max_hp,
            current_hp=max_hp,
            armor_points=armor[LOCATION_REGION[key]],
        )
    return locations


def _parry_outcome(defense_type: Optional[str], defense_degree: Optional[str], fully_blocked: bool) -> str:
    if defense_type == PARRY and defense_degree in (SUCCESS, CRITICAL):
        return f"\n   Parry outcome: {'fully blocked' if fully_blocked else 'partial block'}"
    return ""


def format_pending_action(action: PendingAction) -> str:
    """Human-readable prompt for a pending action."""
    if isinstance(action, AttackResultPending):
        text = "⚔️ Resolve attack"
        if action.want_damage:
            text += f"\n   Roll damage ({action.weapon_damage}, e.g. \"8 damage\")"
        if action.special_effect_count:
            text += f"\n   Choose {action.special_effect_count} special effect(s) (e.g. \"bleed, impale\")"
        text += _parry_outcome(action.defense_type, action.defense_degree, action.parry_fully_blocked)
        text += "\n   You can reply in one message (e.g. \"8 damage, bleed\")"
        return text

    if isinstance(action, RollDamagePending):
        return (
            f"⚔️ **Roll damage**: {action.weapon_damage or 'weapon damage'}\n"
            "   Use: `/act [damage]` (e.g. \"/act 8 damage\")"
        )

    if isinstance(action, ChooseSpecialEffectPending):
        pool = SPECIAL_EFFECTS["defensive" if action.awarded_to == DEFENDER else "offensive"]
        text = f"✨ **Choose {action.special_effect_count} special effect(s)**"
        text += _parry_outcome(action.defense_type, action.defense_degree, action.parry_fully_blocked)
        text += f"\n   Options include: {', '.join(pool)}"
        text += "\n   Describe the effects and any extra damage (e.g. \"Trip and 2 extra damage\")"
        return text

    return "❓ Pending action"
