"""Error types shared by the store, the wizard and the handlers."""


class EntryValidationError(ValueError):
    """User input or an assembled entry failed validation.

    The message is meant to be shown to the user as-is.
    """


class StoreError(RuntimeError):
    """A spreadsheet call failed."""


class ReferenceListEmpty(StoreError):
    """A reference sheet that must be filled in is empty."""


class RemoteStatsError(RuntimeError):
    """The remote statistics endpoint returned something unusable."""
