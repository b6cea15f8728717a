"""Infrastructure errors raised by the combat bot.

Rule and precondition failures are returned as ``ActionResult`` values; only
faults in the collaborators (database, extraction service) raise.
"""


class CombotError(Exception):
    """Base class for combat bot errors."""


class StorageError(CombotError):
    """A persistence read or write failed."""


class StaleEncounterError(StorageError):
    """The encounter was written by someone else since it was read."""

    def __init__(self, channel_id: str, expected_version: int):
        super().__init__(
            f"Encounter for channel {channel_id} changed since version {expected_version}"
        )
        self.channel_id = channel_id
        self.expected_version = expected_version


class ExtractionError(CombotError):
    """The text-understanding service could not be reached or answered garbage."""
