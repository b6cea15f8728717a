"""
Tests for owner notification throttling.
"""

from datetime import timedelta

from discord import app_commands

from combot.errors import StaleEncounterError
from error_handler import ErrorHandler, utcnow


class TestShouldNotify:
    """Tests for the per-error-type notification cooldown."""

    def test_first_error_notifies(self):
        """Test that a new error type is reported."""
        handler = ErrorHandler(bot=None, owner_id=1)
        assert handler.should_notify("StorageError")
        assert handler.error_counts["StorageError"] == 1

    def test_repeat_within_cooldown_is_counted_not_sent(self):
        """Test that repeats inside the cooldown are only counted."""
        handler = ErrorHandler(bot=None, owner_id=1)
        start = utcnow()

        assert handler.should_notify("StorageError", start)
        assert not handler.should_notify("StorageError", start + timedelta(seconds=60))
        assert handler.error_counts["StorageError"] == 2

    def test_repeat_after_cooldown_notifies(self):
        """Test that the same error is reported again once the cooldown passes."""
        handler = ErrorHandler(bot=None, owner_id=1)
        start = utcnow()

        handler.should_notify("StorageError", start)
        assert handler.should_notify("StorageError", start + timedelta(seconds=301))

    def test_types_are_independent(self):
        """Test that each error type has its own cooldown."""
        handler = ErrorHandler(bot=None, owner_id=1)
        start = utcnow()

        handler.should_notify("StorageError", start)
        assert handler.should_notify("ExtractionError", start)


class TestNotifyOwner:
    """Tests for owner DMs."""

    async def test_no_owner_configured(self):
        """Test that nothing is sent without an owner."""
        handler = ErrorHandler(bot=None, owner_id=0)
        await handler.notify_owner("Something", "happened")
        await handler.send_startup_notification()


class FakeResponse:
    def __init__(self, done=False):
        self.done = done
        self.sent = []

    def is_done(self):
        return self.done

    async def send_message(self, embed=None, ephemeral=False):
        self.sent.append(embed)
        self.done = True


class FakeFollowup:
    def __init__(self):
        self.sent = []

    async def send(self, embed=None, ephemeral=False):
        self.sent.append(embed)


class FakeInteraction:
    def __init__(self, done=False):
        self.response = FakeResponse(done)
        self.followup = FakeFollowup()
        self.command = None
        self.channel_id = 7
        self.user = type("User", (), {"id": 5, "display_name": "Kira"})()


class TestHandleInteractionError:
    """Tests for the messages users see when a command fails."""

    async def test_stale_encounter_asks_for_retry(self):
        """Test that a conflicting write gets a retry message."""
        handler = ErrorHandler(bot=None, owner_id=0)
        interaction = FakeInteraction()
        await handler.handle_interaction_error(interaction, StaleEncounterError("chan-1", 3))

        assert "try again" in interaction.response.sent[0].description
        assert handler.error_counts["StaleEncounterError"] == 1

    async def test_answered_check_failure_is_quiet(self):
        """Test that a refused GM command is not reported twice."""
        handler = ErrorHandler(bot=None, owner_id=0)
        interaction = FakeInteraction(done=True)
        await handler.handle_interaction_error(interaction, app_commands.CheckFailure())

        assert interaction.followup.sent == []
        assert handler.error_counts == {}
