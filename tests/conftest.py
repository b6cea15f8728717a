"""
Pytest fixtures for the Combot test suite.

Provides scripted dice, encounter builders, a throwaway database and a fake
extraction service so combat flows can run without Discord or Gemini.
"""

import random
from typing import Any, List, Optional

import pytest

from combot.lifecycle import create_encounter, join_initiative
from combot.logic import CombatLogic
from combot.models import (
    EnemyDefense, EnemyRoster, EnemySpec, InvalidInput, ParsedAction, PendingResolutionPayload,
    BOSS, COMBATANT, MOOK,
)
from combot.storage import EncounterStorage


# =============================================================================
# DICE FIXTURES
# =============================================================================


class ScriptedRandom(random.Random):
    """A Random whose randint answers come from a queue, in order."""

    def __init__(self, values: Optional[List[int]] = None):
        super().__init__(0)
        self.values = list(values or [])

    def push(self, *values: int):
        self.values.extend(values)

    def randint(self, a, b):
        if not self.values:
            raise AssertionError(f"Unscripted randint({a}, {b})")
        value = self.values.pop(0)
        assert a <= value <= b, f"Scripted {value} outside {a}..{b}"
        return value


@pytest.fixture
def seeded_rng():
    """Provide a seeded Random for reproducible tests."""
    return random.Random(42)


@pytest.fixture
def scripted_rng():
    """Provide a Random that returns the values a test pushes onto it."""
    return ScriptedRandom()


# =============================================================================
# ENCOUNTER FIXTURES
# =============================================================================


def make_roster(*specs: EnemySpec) -> EnemyRoster:
    return EnemyRoster(enemies=list(specs))


@pytest.fixture
def mook_spec():
    return EnemySpec(name="Battle Droid", type=MOOK, weapon="blaster_rifle", action_points=2, armor_type="common")


@pytest.fixture
def boss_spec():
    return EnemySpec(name="Sith Apprentice", type=BOSS, weapon="lightsaber", action_points=3, armor_type="common")


@pytest.fixture
def encounter(mook_spec):
    """An encounter with two droids and one combatant, no players yet."""
    roster = make_roster(
        mook_spec,
        mook_spec,
        EnemySpec(name="Bounty Hunter", type=COMBATANT, weapon="blaster_pistol", action_points=2),
    )
    return create_encounter("chan-1", roster, encounter_id="enc-1")


@pytest.fixture
def boss_encounter(boss_spec):
    """An encounter against a single location-tracking boss."""
    return create_encounter("chan-2", make_roster(boss_spec), encounter_id="enc-2")


@pytest.fixture
def encounter_with_players(encounter):
    """The droid encounter with two players in initiative."""
    join_initiative(encounter, "u1", "Kira", 8)
    join_initiative(encounter, "u2", "Tal", 5)
    return encounter


def make_action(
    target: str = "enemy_0",
    skill: int = 60,
    weapon: str = "vibroblade",
    size: str = "M",
    must_evade: bool = False,
    player_roll: Optional[int] = None,
    is_aoe: bool = False,
    defenses: Optional[List[EnemyDefense]] = None,
) -> ParsedAction:
    """A parsed action against one target unless defenses are given."""
    if defenses is None:
        defenses = [EnemyDefense(enemy_id=target, must_evade=must_evade, can_parry=not must_evade)]
    return ParsedAction(
        attacker_skill_name="Combat Style",
        attacker_skill_value=skill,
        weapon_used=weapon,
        weapon_size=size,
        target_ids=[d.enemy_id for d in defenses],
        enemy_defenses=defenses,
        is_aoe=is_aoe,
        player_roll=player_roll,
    )


# =============================================================================
# STORAGE AND SERVICE FIXTURES
# =============================================================================


@pytest.fixture
async def storage(tmp_path):
    """Provide an initialized storage backed by a temporary database."""
    store = EncounterStorage(str(tmp_path / "combot-test.db"))
    await store.initialize()
    return store


class FakeExtractor:
    """Stands in for ActionExtractor, returning whatever the test queued."""

    def __init__(self):
        self.roster: Any = InvalidInput("no roster queued")
        self.actions: List[Any] = []
        self.replies: List[Any] = []
        self.action_texts: List[str] = []
        self.reply_texts: List[str] = []

    async def create_enemies(self, text: str):
        return self.roster

    async def parse_action(self, text: str, encounter, character=None):
        self.action_texts.append(text)
        if not self.actions:
            return InvalidInput("no action queued")
        return self.actions.pop(0)

    async def parse_pending_reply(self, pending, text: str):
        self.reply_texts.append(text)
        if not self.replies:
            return PendingResolutionPayload()
        return self.replies.pop(0)


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def make_logic(storage, extractor, scripted_rng):
    """Build a CombatLogic for a channel with scripted dice and no sheets."""
    async def no_sheet(url):
        return None

    def factory(channel_id: str = "chan-1", sheet_fetcher=None) -> CombatLogic:
        return CombatLogic(
            storage, extractor, channel_id,
            rng=scripted_rng,
            sheet_fetcher=sheet_fetcher or no_sheet,
        )
    return factory
