"""Data models for the combat tracker."""

import json
from dataclasses import dataclass, field, fields, asdict
from typing import Any, ClassVar, Dict, List, Optional, Type

# Degrees of success, lowest first
FUMBLE = "fumble"
FAILURE = "failure"
SUCCESS = "success"
CRITICAL = "critical"
DEGREES = [FUMBLE, FAILURE, SUCCESS, CRITICAL]

# Enemy tiers
MOOK = "MOOK"
COMBATANT = "COMBATANT"
BOSS = "BOSS"
ENEMY_TYPES = [MOOK, COMBATANT, BOSS]

# Defense types and effect recipients
PARRY = "parry"
EVADE = "evade"
ATTACKER = "attacker"
DEFENDER = "defender"

# Pending action types
ROLL_DAMAGE = "roll_damage"
CHOOSE_SPECIAL_EFFECT = "choose_special_effect"
ATTACK_RESULT = "attack_result"


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys a dataclass does not declare."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class HitLocation:
    """Hit points and armor of one body region."""
    max_hp: int
    current_hp: int
    armor_points: int
    disabled: bool = False


@dataclass
class Enemy:
    """An enemy combatant controlled by the GM."""
    id: str
    name: str
    type: str  # MOOK, COMBATANT or BOSS
    weapon: str
    weapon_size: str
    armor_type: str
    action_points: int
    max_action_points: int
    skills: Dict[str, int]
    damage: int = 0
    afflictions: List[str] = field(default_factory=list)
    alive: bool = True
    hit_locations: Optional[Dict[str, HitLocation]] = None
    unconscious: Optional[bool] = None  # BOSS only

    @property
    def tracks_locations(self) -> bool:
        return bool(self.hit_locations)

    def add_affliction(self, affliction: str) -> bool:
        """Append an affliction unless already present."""
        if not affliction or affliction in self.afflictions:
            return False
        self.afflictions.append(affliction)
        return True

    def disabled_locations(self) -> List[str]:
        if not self.hit_locations:
            return []
        return [key for key, loc in self.hit_locations.items() if loc.disabled]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Enemy":
        data = _known_fields(cls, data)
        locations = data.get("hit_locations")
        if locations:
            data["hit_locations"] = {
                key: HitLocation(**_known_fields(HitLocation, loc))
                for key, loc in locations.items()
            }
        data["afflictions"] = list(data.get("afflictions") or [])
        data["skills"] = dict(data.get("skills") or {})
        return cls(**data)


@dataclass
class PendingAction:
    """Follow-up input a user (or the GM) still owes before an action is done."""
    id: str
    user_id: str
    target_id: Optional[str] = None
    expires_at: Optional[int] = None

    type: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type
        return data


@dataclass
class RollDamagePending(PendingAction):
    """The owner must supply a damage amount."""
    weapon_damage: str = "1d8"

    type: ClassVar[str] = ROLL_DAMAGE


@dataclass
class ChooseSpecialEffectPending(PendingAction):
    """The owner must pick special effects (and any extra damage)."""
    special_effect_count: int = 1
    awarded_to: str = ATTACKER
    attacker_id: Optional[str] = None  # Who defender-won effects land on
    defense_type: Optional[str] = None
    defense_degree: Optional[str] = None
    parry_fully_blocked: bool = False

    type: ClassVar[str] = CHOOSE_SPECIAL_EFFECT


@dataclass
class AttackResultPending(PendingAction):
    """Damage and special effects requested together in one reply."""
    special_effect_count: int = 0
    weapon_damage: str = "1d8"
    attack_roll: int = 0
    attack_degree: str = SUCCESS
    defense_roll: int = 0
    defense_type: str = PARRY
    defense_degree: str = FAILURE
    weapon_size: Optional[str] = None
    enemy_weapon_size: Optional[str] = None
    parry_fully_blocked: bool = False
    want_damage: bool = False

    type: ClassVar[str] = ATTACK_RESULT


PENDING_TYPES: Dict[str, Type[PendingAction]] = {
    ROLL_DAMAGE: RollDamagePending,
    CHOOSE_SPECIAL_EFFECT: ChooseSpecialEffectPending,
    ATTACK_RESULT: AttackResultPending,
}


def pending_from_dict(data: Dict[str, Any]) -> PendingAction:
    """Rebuild a pending action from its tagged dict form."""
    cls = PENDING_TYPES.get(data.get("type", ""))
    if cls is None:
        raise ValueError(f"Unknown pending action type: {data.get('type')!r}")
    return cls(**_known_fields(cls, data))


@dataclass
class Participant:
    """A player who has rolled initiative."""
    user_id: str
    name: str
    roll: int
    action_points: int
    max_action_points: int
    damage: int = 0
    afflictions: List[str] = field(default_factory=list)
    last_action: Optional[str] = None
    pending_action: Optional[PendingAction] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["pending_action"] = self.pending_action.to_dict() if self.pending_action else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Participant":
        data = _known_fields(cls, data)
        pending = data.get("pending_action")
        data["pending_action"] = pending_from_dict(pending) if pending else None
        data["afflictions"] = list(data.get("afflictions") or [])
        return cls(**data)


@dataclass
class Encounter:
    """The full combat state for one channel."""
    id: str
    channel_id: str
    round: int = 1
    current_turn: int = 0
    message_id: Optional[str] = None
    participants: List[Participant] = field(default_factory=list)
    enemies: List[Enemy] = field(default_factory=list)
    log: List[str] = field(default_factory=list)
    pending_actions: List[PendingAction] = field(default_factory=list)
    version: int = 0

    def participant(self, user_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def current_participant(self) -> Optional[Participant]:
        if not self.participants:
            return None
        if 0 <= self.current_turn < len(self.participants):
            return self.participants[self.current_turn]
        return None

    def living_enemies(self) -> List[Enemy]:
        return [enemy for enemy in self.enemies if enemy.alive]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "round": self.round,
            "current_turn": self.current_turn,
            "message_id": self.message_id,
            "participants": [p.to_dict() for p in self.participants],
            "enemies": [e.to_dict() for e in self.enemies],
            "log": list(self.log),
            "pending_actions": [p.to_dict() for p in self.pending_actions],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Encounter":
        return cls(
            id=data["id"],
            channel_id=data["channel_id"],
            round=data.get("round", 1),
            current_turn=data.get("current_turn", 0),
            message_id=data.get("message_id"),
            participants=[Participant.from_dict(p) for p in data.get("participants", [])],
            enemies=[Enemy.from_dict(e) for e in data.get("enemies", [])],
            log=list(data.get("log", [])),
            pending_actions=[pending_from_dict(p) for p in data.get("pending_actions", [])],
            version=data.get("version", 0),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "Encounter":
        return cls.from_dict(json.loads(raw))


@dataclass
class PendingChoice:
    """What the attacker still has to decide after a resolution."""
    type: str  # 'damage' or 'special_effect'
    options: List[str] = field(default_factory=list)


@dataclass
class AttackResolution:
    """Outcome of one attack against one target. Never persisted."""
    attacker_id: str
    target_id: str
    attack_roll: int
    attack_skill: int
    attack_degree: str
    defense_roll: int
    defense_skill: int
    defense_type: str
    defense_degree: str
    levels_of_success: int
    effects_awarded_to: Optional[str] = None
    base_damage: int = 0
    damage_blocked: int = 0
    final_damage: int = 0
    needs_damage_roll: bool = False
    hit_location: Optional[str] = None
    location_roll: Optional[int] = None
    effects: List[str] = field(default_factory=list)
    weapon_size: Optional[str] = None
    enemy_weapon_size: Optional[str] = None
    suggested_damage: str = "1d8"
    pending_choice: Optional[PendingChoice] = None


@dataclass
class DiceRolls:
    """Pre-rolled dice for one attack."""
    attack: int
    defense: List[int] = field(default_factory=list)


# Inbound structured records from the extraction service

@dataclass
class EnemyDefense:
    """How one targeted enemy can defend against the action."""
    enemy_id: str
    can_parry: bool = True
    must_evade: bool = False
    weapon_size: Optional[str] = None
    parry_skill: int = 50
    evade_skill: int = 50
    armor_by_location: Optional[Dict[str, int]] = None


@dataclass
class ParsedAction:
    """A combat action reduced to structured fields."""
    attacker_skill_name: str
    attacker_skill_value: int
    weapon_used: str
    weapon_size: str
    target_ids: List[str]
    enemy_defenses: List[EnemyDefense]
    is_ranged: bool = False
    is_energy: bool = False
    is_aoe: bool = False
    player_roll: Optional[int] = None


@dataclass
class EnemySpec:
    """One enemy as described by the enemy creation step."""
    name: str
    type: str
    weapon: str
    action_points: float = 2
    armor_type: Optional[str] = None
    skills: Optional[Dict[str, int]] = None
    hit_locations: Optional[Dict[str, int]] = None


@dataclass
class EnemyRoster:
    """Structured enemy creation result."""
    enemies: List[EnemySpec]


@dataclass
class PendingResolutionPayload:
    """A reply to a pending action."""
    damage: Optional[int] = None
    lasting_afflictions: List[str] = field(default_factory=list)
    extra_damage: Optional[int] = None
    bypass_armor: bool = False

    @property
    def is_empty(self) -> bool:
        return self.damage is None and not self.lasting_afflictions and self.extra_damage is None


@dataclass
class InvalidInput:
    """An inbound record that could not be used."""
    reason: str


@dataclass
class ActionResult:
    """Result of handling a combat command."""
    success: bool
    message: str
    public_message: Optional[str] = None
    encounter: Optional[Encounter] = None
    needs_follow_up: bool = False
    refresh_tracker: bool = False
