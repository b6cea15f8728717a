"""
Unit tests for the data models and their stored form.
"""

import pytest

from combot.applier import apply_damage
from combot.lifecycle import join_initiative
from combot.models import (
    AttackResultPending, ChooseSpecialEffectPending, Encounter, Enemy, PendingResolutionPayload,
    RollDamagePending, pending_from_dict, DEFENDER,
)
from combot.state import add_pending


class TestPendingSerialization:
    """Tests for the tagged pending action form."""

    def test_type_tag_is_written(self):
        """Test that every variant records its type."""
        assert RollDamagePending(id="a", user_id="u").to_dict()["type"] == "roll_damage"
        assert ChooseSpecialEffectPending(id="b", user_id="u").to_dict()["type"] == "choose_special_effect"
        assert AttackResultPending(id="c", user_id="u").to_dict()["type"] == "attack_result"

    def test_rebuilds_the_right_variant(self):
        """Test that the tag selects the class and unknown keys are ignored."""
        data = ChooseSpecialEffectPending(
            id="b", user_id="__GM__", awarded_to=DEFENDER, attacker_id="u1", special_effect_count=2,
        ).to_dict()
        data["legacy_field"] = "ignored"
        rebuilt = pending_from_dict(data)

        assert isinstance(rebuilt, ChooseSpecialEffectPending)
        assert rebuilt.awarded_to == DEFENDER
        assert rebuilt.attacker_id == "u1"
        assert rebuilt.special_effect_count == 2

    def test_unknown_type_is_rejected(self):
        """Test that an unknown tag raises."""
        with pytest.raises(ValueError):
            pending_from_dict({"type": "dance", "id": "x", "user_id": "u"})


class TestEncounterSerialization:
    """Tests for storing a whole encounter as JSON."""

    def test_json_keeps_everything(self, boss_encounter):
        """Test that participants, locations and both pending tiers survive."""
        join_initiative(boss_encounter, "u1", "Kira", 7)
        apply_damage(boss_encounter.enemies[0], 9, location="chest")
        add_pending(boss_encounter, AttackResultPending(id="p1", user_id="u1", target_id="enemy_0", want_damage=True))
        add_pending(boss_encounter, ChooseSpecialEffectPending(id="g1", user_id="__GM__"))
        boss_encounter.log.append("**Kira**: I slash")
        boss_encounter.version = 3

        restored = Encounter.from_json(boss_encounter.to_json())

        assert restored == boss_encounter
        assert isinstance(restored.participants[0].pending_action, AttackResultPending)
        assert restored.enemies[0].hit_locations["chest"].current_hp == 2

    def test_enemy_from_dict_tolerates_missing_lists(self):
        """Test that absent afflictions and skills become empty."""
        enemy = Enemy.from_dict({
            "id": "enemy_0", "name": "Droid", "type": "MOOK", "weapon": "blaster_rifle",
            "weapon_size": "M", "armor_type": "none", "action_points": 2, "max_action_points": 2,
            "skills": None, "afflictions": None,
        })
        assert enemy.afflictions == []
        assert enemy.skills == {}
        assert not enemy.tracks_locations


class TestEncounterHelpers:
    """Tests for encounter lookups."""

    def test_current_participant(self, encounter_with_players):
        """Test the turn holder and an out-of-range pointer."""
        assert encounter_with_players.current_participant().name == "Kira"
        encounter_with_players.current_turn = 5
        assert encounter_with_players.current_participant() is None

    def test_living_enemies(self, encounter):
        """Test that defeated enemies are left out."""
        encounter.enemies[1].alive = False
        assert [e.id for e in encounter.living_enemies()] == ["enemy_0", "enemy_2"]

    def test_empty_payload(self):
        """Test the empty reply check."""
        assert PendingResolutionPayload().is_empty
        assert not PendingResolutionPayload(extra_damage=2).is_empty
