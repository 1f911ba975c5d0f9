"""Error taxonomy for the catalog sync core.

Platform errors live with the connector (connectors/square.py) and retry
exhaustion with the retry executor (retry.py); everything the mirror and
the managers raise is defined here.
"""


class MirrorError(Exception):
    """The local mirror could not be read or written. No fallback exists below it."""


class StaleMirrorError(MirrorError):
    """Fallback refused: the mirror is older than the configured staleness bound."""

    def __init__(self, last_synced_at, max_age_hours: float):
        self.last_synced_at = last_synced_at
        self.max_age_hours = max_age_hours
        super().__init__(
            f"Mirror last synced at {last_synced_at} exceeds the {max_age_hours}h staleness bound"
        )


class MalformedRecordError(ValueError):
    """A platform record is missing required fields and was skipped."""

    def __init__(self, record_id: str | None, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Malformed catalog record {record_id or '<no id>'}: {reason}")


class ProductNotFoundError(LookupError):
    pass


class JobNotFoundError(KeyError):
    pass
