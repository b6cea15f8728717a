"""Static weapon, armor and hit location tables."""

from typing import Dict, List, Optional, Tuple
from .config import DEFAULT_WEAPON_SIZE

WEAPON_SIZE_ORDER = ["S", "M", "L", "XL"]

WEAPON_SIZES: Dict[str, str] = {
    # Melee
    "unarmed": "S",
    "knife": "S",
    "dagger": "S",
    "vibroblade": "S",
    "shoto": "M",
    "lightsaber": "L",
    "doublesaber": "L",
    "pike": "L",
    "electrostaff": "L",
    "greataxe": "XL",
    "rancor_claw": "XL",
    # Ranged (force of impact)
    "pistol": "M",
    "blaster_pistol": "M",
    "blaster_rifle": "M",
    "heavy_repeater": "L",
    "sniper_rifle": "L",
    "bowcaster": "L",
    "rocket": "XL",
}

WEAPON_DAMAGE_DICE: Dict[str, str] = {
    "lightsaber": "1d10",
    "blaster_rifle": "1d8",
    "blaster_pistol": "1d6",
    "vibroblade": "1d8",
    "knife": "1d4",
}
DEFAULT_DAMAGE_DICE = "1d8"

# Armor points by body region
ARMOR_VALUES: Dict[str, Dict[str, int]] = {
    "none": {"head": 0, "torso": 0, "limbs": 0},
    "common": {"head": 2, "torso": 3, "limbs": 2},
    "durasteel": {"head": 6, "torso": 6, "limbs": 2},
    "beskar": {"head": 8, "torso": 8, "limbs": 8},
}
ARMOR_TYPES = list(ARMOR_VALUES)

# (low, high, key, display name) for a d20
HIT_LOCATION_TABLE: List[Tuple[int, int, str, str]] = [
    (1, 3, "rightLeg", "Right Leg"),
    (4, 6, "leftLeg", "Left Leg"),
    (7, 9, "abdomen", "Abdomen"),
    (10, 12, "chest", "Chest"),
    (13, 15, "rightArm", "Right Arm"),
    (16, 18, "leftArm", "Left Arm"),
    (19, 20, "head", "Head"),
]
HIT_LOCATION_KEYS = [key for _, _, key, _ in HIT_LOCATION_TABLE]
HIT_LOCATION_NAMES = {key: name for _, _, key, name in HIT_LOCATION_TABLE}

DEFAULT_LOCATION_HP: Dict[str, int] = {
    "head": 6,
    "chest": 8,
    "abdomen": 7,
    "rightArm": 5,
    "leftArm": 5,
    "rightLeg": 6,
    "leftLeg": 6,
}

LOCATION_REGION: Dict[str, str] = {
    "head": "head",
    "chest": "torso",
    "abdomen": "torso",
    "rightArm": "limbs",
    "leftArm": "limbs",
    "rightLeg": "limbs",
    "leftLeg": "limbs",
}

VITAL_LOCATIONS = ("head", "chest", "abdomen")

SPECIAL_EFFECTS = {
    "offensive": [
        "Maximize Damage",
        "Bypass Armor",
        "Choose Location",
        "Disarm Opponent",
        "Trip Opponent",
        "Bleed",
        "Stun Location",
        "Compel Surrender",
    ],
    "defensive": ["Enhance Parry", "Ward Location", "Prepare Counter", "Withdraw"],
}


def weapon_size(weapon: Optional[str]) -> str:
    """Size class of a named weapon, medium if unknown."""
    if not weapon:
        return DEFAULT_WEAPON_SIZE
    return WEAPON_SIZES.get(weapon.strip().lower(), DEFAULT_WEAPON_SIZE)


def damage_dice(weapon: Optional[str]) -> str:
    """Advisory damage dice for a named weapon."""
    if not weapon:
        return DEFAULT_DAMAGE_DICE
    return WEAPON_DAMAGE_DICE.get(weapon.strip().lower(), DEFAULT_DAMAGE_DICE)


def size_index(size: Optional[str]) -> int:
    """Ordinal of a size class, -1 if unknown."""
    try:
        return WEAPON_SIZE_ORDER.index(size)
    except ValueError:
        return -1


def hit_location_for_roll(roll: int) -> Optional[str]:
    """Map a d20 roll to a hit location key."""
    for low, high, key, _ in HIT_LOCATION_TABLE:
        if low <= roll <= high:
            return key
    return None


def location_key(name: Optional[str]) -> str:
    """Normalize a location name like 'Right Leg' to its key, chest if unknown."""
    if not name:
        return "chest"
    if name in HIT_LOCATION_NAMES:
        return name
    wanted = name.strip().lower()
    for key, display in HIT_LOCATION_NAMES.items():
        if display.lower() == wanted or key.lower() == wanted:
            return key
    return "chest"
