"""Error taxonomy for the matching engine.

Only :class:`ConfigurationError` (and a fully unavailable candidate index)
aborts a run.  Everything else is isolated to a field, a pair or an employee
and reported in the run summary.
"""

from __future__ import annotations


class MatchingError(Exception):
    """Base class for all matching engine errors."""


class NormalizationError(MatchingError):
    """An identifier is missing or malformed.

    Non-fatal: the identifier is marked absent and its weight is excluded
    from scoring.
    """

    def __init__(self, identifier: str, message: str) -> None:
        super().__init__(f"{identifier}: {message}")
        self.identifier = identifier


class CandidateLookupError(MatchingError):
    """The candidate index could not answer a lookup."""


class ConfigurationError(MatchingError):
    """Invalid weights, thresholds or salts. Raised before a run starts."""


class PersistenceConflict(MatchingError):
    """Two writers upserted the same canonical pair concurrently."""

    def __init__(self, employee1_id: str, employee2_id: str) -> None:
        super().__init__(f"concurrent upsert of pair ({employee1_id}, {employee2_id})")
        self.employee1_id = employee1_id
        self.employee2_id = employee2_id
