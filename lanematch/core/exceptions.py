"""
Exceptions
==========

Error taxonomy for the session engine. All custom exceptions live here to
avoid circular imports.
"""


class LaneMatchError(Exception):
    """Base class for engine errors."""


class LookupMiss(LaneMatchError):
    """A tapped or pruned entity no longer exists. Benign and ignored."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class InvariantViolation(LaneMatchError):
    """Session state contradicts the catalog, e.g. an unknown target emoji."""


class StorageError(LaneMatchError):
    """The best-time store could not be read or written."""


class ConfigError(LaneMatchError, ValueError):
    """Configuration file failed validation."""
