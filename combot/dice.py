"""Percentile dice and degree-of-success calculations."""

import math
import random
from typing import Any, Optional, Tuple
from .config import DEFAULT_SKILL
from .models import CRITICAL, DEGREES, FAILURE, FUMBLE, SUCCESS, ATTACKER, DEFENDER


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values, as tabletop rounding does."""
    return int(math.floor(value + 0.5))


def normalize_percent(value: Any, fallback: int = DEFAULT_SKILL) -> int:
    """Coerce a skill percentage that may arrive as a fraction (0.65) into 65."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if math.isnan(value):
        return fallback
    if value > 1:
        return round_half_up(value)
    if value > 0:
        return round_half_up(value * 100)
    return fallback


def critical_threshold(skill: int) -> int:
    """Rolls at or under a tenth of the skill (rounded up) are criticals."""
    return max(1, math.ceil(skill / 10))


def classify_roll(roll: int, skill: int) -> str:
    """Degree of success of a d100 roll against a skill."""
    # Order matters at the top end of the skill range
    if roll == 100 and skill > 100:
        return FUMBLE
    if roll >= 99 and skill <= 100:
        return FUMBLE
    if roll <= critical_threshold(skill):
        return CRITICAL
    if roll <= skill:
        return SUCCESS
    return FAILURE


def degree_rank(degree: str) -> int:
    return DEGREES.index(degree)


def compare_degrees(attack_degree: str, defense_degree: str) -> Tuple[int, Optional[str]]:
    """Levels of success and who gets to pick special effects.

    A failed or fumbled attack never earns anyone effects. Otherwise the side
    with the better degree is awarded the ordinal difference; ties award nobody.
    """
    if attack_degree in (FAILURE, FUMBLE):
        return 0, None
    difference = degree_rank(attack_degree) - degree_rank(defense_degree)
    if difference > 0:
        return difference, ATTACKER
    if difference < 0:
        return -difference, DEFENDER
    return 0, None


def levels_of_success(attack_degree: str, defense_degree: str) -> int:
    return compare_degrees(attack_degree, defense_degree)[0]


def roll_d100(rng: Optional[random.Random] = None) -> int:
    return (rng or random).randint(1, 100)


def roll_d20(rng: Optional[random.Random] = None) -> int:
    return (rng or random).randint(1, 20)


def roll_d10(rng: Optional[random.Random] = None) -> int:
    return (rng or random).randint(1, 10)
