"""
Tests for the Gemini client and the validators guarding its output.
"""

import json

import httpx
import pytest

from combot.character import CharacterData
from combot.errors import ExtractionError
from combot.extraction import (
    ACTION_SCHEMA, ActionExtractor, GeminiClient, reply_prompt, validate_enemy_roster, validate_parsed_action,
    validate_resolution_payload,
)
from combot.models import (
    ChooseSpecialEffectPending, EnemyRoster, InvalidInput, ParsedAction, PendingResolutionPayload,
    RollDamagePending, COMBATANT, MOOK,
)


def gemini_reply(payload) -> httpx.Response:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def make_client(handler, models=None, retries=1) -> GeminiClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiClient("test-key", models=models or ["model-a", "model-b"], retries=retries,
                        backoff_seconds=0, http_client=http_client)


class TestGeminiClient:
    """Tests for calling Gemini with retries and model fallback."""

    async def test_structured_reply(self):
        """Test that a schema reply is parsed and the key is sent."""
        seen = []

        def handler(request):
            seen.append(request)
            return gemini_reply({"ok": True})

        client = make_client(handler)
        result = await client.generate("prompt", ACTION_SCHEMA, "system")
        await client.close()

        assert result == {"ok": True}
        assert seen[0].headers["x-goog-api-key"] == "test-key"
        assert "model-a:generateContent" in str(seen[0].url)
        body = json.loads(seen[0].content)
        assert body["system_instruction"]["parts"][0]["text"] == "system"
        assert body["generationConfig"]["responseMimeType"] == "application/json"

    async def test_plain_text_reply(self):
        """Test that without a schema the text comes back as is."""
        client = make_client(lambda request: gemini_reply("just words"))
        assert await client.generate("prompt") == "just words"
        await client.close()

    async def test_falls_back_to_next_model(self):
        """Test that a failing model is retried and then skipped."""
        calls = []

        def handler(request):
            calls.append(request.url.path)
            if "model-a" in request.url.path:
                return httpx.Response(503, json={"error": "overloaded"})
            return gemini_reply({"model": "b"})

        client = make_client(handler, retries=1)
        assert await client.generate("prompt", {"type": "OBJECT"}) == {"model": "b"}
        await client.close()

        assert sum("model-a" in path for path in calls) == 2
        assert sum("model-b" in path for path in calls) == 1

    async def test_garbage_json_is_retried(self):
        """Test that unparseable structured output counts as a failure."""
        replies = [gemini_reply("not json"), gemini_reply({"fine": 1})]
        client = make_client(lambda request: replies.pop(0), models=["only"])
        assert await client.generate("prompt", {"type": "OBJECT"}) == {"fine": 1}
        await client.close()

    async def test_every_model_failing_raises(self):
        """Test that exhausting every model raises ExtractionError."""
        client = make_client(lambda request: httpx.Response(500), retries=0)
        with pytest.raises(ExtractionError):
            await client.generate("prompt", {"type": "OBJECT"})
        await client.close()


def raw_action(**overrides):
    raw = {
        "attackerSkillName": "Combat Style",
        "attackerSkillValue": 0.65,
        "weaponUsed": "lightsaber",
        "weaponSize": "L",
        "isRanged": False,
        "isEnergy": True,
        "targetIds": ["Battle Droid 2", "Bounty Hunter"],
        "enemyDefenses": [
            {"enemyId": "Bounty Hunter", "parrySkill": 60, "evadeSkill": 50},
            {"enemyId": "enemy_1", "mustEvade": True, "canParry": False, "evadeSkill": 40},
        ],
        "playerRoll": 0,
    }
    raw.update(overrides)
    return raw


class TestValidateParsedAction:
    """Tests for checking an extracted action."""

    def test_single_target_is_narrowed(self, encounter):
        """Test that a non-area action keeps the first matching target and its defense."""
        action = validate_parsed_action(raw_action(), encounter.enemies)

        assert isinstance(action, ParsedAction)
        assert action.target_ids == ["enemy_1"]
        assert [d.enemy_id for d in action.enemy_defenses] == ["enemy_1"]
        assert action.enemy_defenses[0].must_evade
        assert action.enemy_defenses[0].evade_skill == 40
        assert action.attacker_skill_value == 65
        assert action.player_roll == 100

    def test_area_action_keeps_everything(self, encounter):
        """Test that area actions keep every target."""
        action = validate_parsed_action(raw_action(isAoE=True), encounter.enemies)
        assert len(action.target_ids) == 2
        assert len(action.enemy_defenses) == 2

    @pytest.mark.parametrize("overrides,reason", [
        ({"weaponUsed": ""}, "missing weapon"),
        ({"attackerSkillName": None}, "missing attacker skill"),
        ({"targetIds": "Bounty Hunter"}, "targetIds is not a list"),
        ({"enemyDefenses": [{"enemyId": " "}, "junk"]}, "no enemy defenses"),
        ({"targetIds": []}, "no targets"),
        ({"targetIds": [" ", ""]}, "no targets"),
    ])
    def test_unusable_actions(self, encounter, overrides, reason):
        """Test each reason an action is rejected."""
        result = validate_parsed_action(raw_action(**overrides), encounter.enemies)
        assert result == InvalidInput(reason)

    def test_not_an_object(self, encounter):
        """Test that a list is rejected."""
        assert isinstance(validate_parsed_action([], encounter.enemies), InvalidInput)

    def test_repairs_size_and_roll(self, encounter):
        """Test fallbacks for a bad weapon size and an impossible roll."""
        action = validate_parsed_action(raw_action(weaponSize="huge", playerRoll=150), encounter.enemies)
        assert action.weapon_size == "L"
        assert action.player_roll is None

    def test_boolean_roll_is_ignored(self, encounter):
        """Test that a boolean is not a roll."""
        assert validate_parsed_action(raw_action(playerRoll=True), encounter.enemies).player_roll is None

    def test_fractional_roll_is_ignored(self, encounter):
        """Test that only a whole 0 counts as a roll of 00."""
        assert validate_parsed_action(raw_action(playerRoll=0.5), encounter.enemies).player_roll is None
        assert validate_parsed_action(raw_action(playerRoll=42.0), encounter.enemies).player_roll == 42


class TestValidateEnemyRoster:
    """Tests for checking extracted enemies."""

    def test_entries_are_cleaned(self):
        """Test type normalization, skill filtering and dropped entries."""
        roster = validate_enemy_roster({"enemies": [
            {
                "name": "Stormtrooper", "type": "combatant", "weapon": "blaster_rifle", "actionPoints": 2,
                "armorType": "durasteel", "skills": {"parry": 0.6, "evade": 55, "combat": "x"},
            },
            {"name": ""},
            {"name": "Thing", "type": "dragon"},
        ]})

        assert isinstance(roster, EnemyRoster)
        trooper, thing = roster.enemies
        assert trooper.type == COMBATANT
        assert trooper.armor_type == "durasteel"
        assert trooper.skills == {"parry": 60, "evade": 55}
        assert thing.type == MOOK
        assert thing.weapon == "blaster_rifle"
        assert thing.action_points == 2
        assert thing.armor_type is None

    def test_hit_locations_kept_when_positive(self):
        """Test that only real locations with positive HP are kept."""
        roster = validate_enemy_roster({"enemies": [
            {"name": "Boss", "type": "BOSS", "weapon": "lightsaber", "actionPoints": 3,
             "hitLocations": {"head": 7, "tail": 5, "chest": 0}},
        ]})
        assert roster.enemies[0].hit_locations == {"head": 7}

    @pytest.mark.parametrize("raw", [None, {}, {"enemies": []}, {"enemies": [{"type": "MOOK"}]}])
    def test_unusable_rosters(self, raw):
        """Test that nothing usable gives InvalidInput."""
        assert isinstance(validate_enemy_roster(raw), InvalidInput)


class TestValidateResolutionPayload:
    """Tests for checking extracted replies."""

    def test_cleans_fields(self):
        """Test affliction filtering, zero extra damage and strict bypass."""
        payload = validate_resolution_payload({
            "damage": 7, "lastingAfflictions": ["bleed", " ", 3], "extraDamage": 0, "bypassArmor": "yes",
        })
        assert payload == PendingResolutionPayload(damage=7, lasting_afflictions=["bleed"])

    def test_negative_damage_dropped(self):
        """Test that negative damage is not a value."""
        assert validate_resolution_payload({"damage": -3}).damage is None

    def test_empty_reply_is_a_payload(self):
        """Test that an empty object is allowed."""
        assert validate_resolution_payload({}).is_empty

    def test_not_an_object(self):
        """Test that a string is rejected."""
        assert isinstance(validate_resolution_payload("8 damage"), InvalidInput)


class TestReplyPrompt:
    """Tests for pending reply prompts."""

    def test_damage_prompt(self):
        """Test the damage-only prompt."""
        prompt, system = reply_prompt(RollDamagePending(id="p", user_id="u"), "8 damage")
        assert prompt == 'Extract just the damage value from: "8 damage"'
        assert "damage" in system

    def test_effect_prompt_mentions_count(self):
        """Test the effect prompt."""
        prompt, _ = reply_prompt(ChooseSpecialEffectPending(id="p", user_id="u", special_effect_count=2), "trip")
        assert "up to 2 special effects" in prompt


class RecordingClient:
    """Returns one canned reply and records what it was asked."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    async def generate(self, prompt, schema=None, system_prompt=None):
        self.calls.append((prompt, schema, system_prompt))
        return self.reply


class TestActionExtractor:
    """Tests for the extractor's prompts and validation."""

    async def test_parse_action_includes_context(self, encounter):
        """Test that enemies and sheet skills are given to the model."""
        client = RecordingClient(raw_action())
        character = CharacterData(name="Kira", skills=[{"name": "Combat Style", "value": 70}])
        action = await ActionExtractor(client).parse_action("I slash the droid", encounter, character)

        prompt = client.calls[0][0]
        assert isinstance(action, ParsedAction)
        assert "Battle Droid 1 [enemy_0]" in prompt
        assert '"Combat Style": 70%' in prompt
        assert '"I slash the droid"' in prompt

    async def test_create_enemies(self):
        """Test that the roster is validated."""
        client = RecordingClient({"enemies": [{"name": "Pirate", "type": "MOOK", "weapon": "blaster_pistol"}]})
        roster = await ActionExtractor(client).create_enemies("a pirate")
        assert roster.enemies[0].name == "Pirate"

    async def test_parse_pending_reply(self):
        """Test that replies are validated."""
        client = RecordingClient({"damage": 6})
        payload = await ActionExtractor(client).parse_pending_reply(RollDamagePending(id="p", user_id="u"), "6")
        assert payload.damage == 6
