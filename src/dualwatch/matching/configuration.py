"""Matching configuration: weights, thresholds, grace periods and tuning.

A configuration is an explicit, immutable input to the scorers, the
aggregator and the anomaly filter.  It is validated once at run start; an
invalid configuration aborts the run instead of falling back to defaults.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import psycopg
import structlog

from dualwatch.db import execute_query
from dualwatch.errors import ConfigurationError
from dualwatch.models import ALL_IDENTIFIERS, EMPLOYEE_TYPES

logger = structlog.get_logger(__name__)

DEFAULT_WEIGHTS: dict[str, float] = {
    "ssn": 0.45,
    "email": 0.20,
    "phone": 0.15,
    "dob": 0.10,
    "name": 0.10,
}

# Contractors move between engagements quickly, so they get less slack.
DEFAULT_GRACE_PERIOD_DAYS: dict[str, int] = {
    "full_time": 14,
    "part_time": 21,
    "contract": 7,
    "intern": 10,
}


@dataclass(frozen=True)
class MatchingConfiguration:
    weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    enabled_identifiers: tuple[str, ...] = ALL_IDENTIFIERS
    required_identifiers: tuple[str, ...] = ()

    # Thresholds
    minimum_confidence: float = 0.5
    auto_reject_confidence: float = 0.6
    auto_confirm_confidence: float = 0.9

    grace_period_days: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_GRACE_PERIOD_DAYS)
    )

    # Candidate generation
    max_candidates: int = 500

    # Name scoring
    prefix_scale: float = 0.1
    phonetic_bonus: float = 0.05
    short_name_discount: float = 0.5
    nicknames: dict[str, list[str]] = field(default_factory=dict)

    # Anomaly filter
    single_signal_confidence: float = 0.8
    nontrivial_similarity: float = 0.5
    generic_identifier_company_limit: int = 25
    name_conflict_similarity: float = 0.95
    conflict_ceiling: float = 0.1

    company_id: str | None = None

    def weight_for(self, identifier: str) -> float:
        """Weight of *identifier*, or 0.0 when it is disabled."""
        if identifier not in self.enabled_identifiers:
            return 0.0
        return self.weights.get(identifier, 0.0)

    def grace_days_for(self, employee_type: str) -> int:
        return self.grace_period_days.get(employee_type, 0)

    def validate(self) -> MatchingConfiguration:
        """Check every weight and threshold, returning ``self`` when valid.

        Raises:
            ConfigurationError: On the first invalid setting found.
        """
        unknown = set(self.weights) - set(ALL_IDENTIFIERS)
        unknown |= set(self.enabled_identifiers) - set(ALL_IDENTIFIERS)
        unknown |= set(self.required_identifiers) - set(ALL_IDENTIFIERS)
        if unknown:
            msg = f"Unknown identifiers: {sorted(unknown)}"
            raise ConfigurationError(msg)

        for identifier, weight in self.weights.items():
            if weight < 0:
                msg = f"Weight for {identifier!r} must be non-negative, got {weight}"
                raise ConfigurationError(msg)
        if not any(self.weight_for(i) > 0 for i in self.enabled_identifiers):
            msg = "At least one enabled identifier needs a positive weight"
            raise ConfigurationError(msg)

        for name in (
            "minimum_confidence",
            "auto_reject_confidence",
            "auto_confirm_confidence",
            "single_signal_confidence",
            "nontrivial_similarity",
            "name_conflict_similarity",
            "conflict_ceiling",
            "phonetic_bonus",
            "short_name_discount",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                msg = f"{name} must be within [0, 1], got {value}"
                raise ConfigurationError(msg)

        if self.auto_reject_confidence >= self.auto_confirm_confidence:
            msg = "auto_reject_confidence must be below auto_confirm_confidence"
            raise ConfigurationError(msg)
        if self.minimum_confidence > self.auto_confirm_confidence:
            msg = "minimum_confidence must not exceed auto_confirm_confidence"
            raise ConfigurationError(msg)

        # Jaro-Winkler only stays within [0, 1] for a 4-char prefix up to 0.25.
        if not 0.0 <= self.prefix_scale <= 0.25:
            msg = f"prefix_scale must be within [0, 0.25], got {self.prefix_scale}"
            raise ConfigurationError(msg)

        unknown_types = set(self.grace_period_days) - set(EMPLOYEE_TYPES)
        if unknown_types:
            msg = f"Unknown employee types in grace periods: {sorted(unknown_types)}"
            raise ConfigurationError(msg)
        for employee_type, days in self.grace_period_days.items():
            if days < 0:
                msg = f"Grace period for {employee_type!r} must be non-negative, got {days}"
                raise ConfigurationError(msg)

        if self.max_candidates < 1:
            msg = f"max_candidates must be at least 1, got {self.max_candidates}"
            raise ConfigurationError(msg)
        if self.generic_identifier_company_limit < 2:
            msg = "generic_identifier_company_limit must be at least 2"
            raise ConfigurationError(msg)

        return self

    def with_overrides(self, overrides: dict[str, Any]) -> MatchingConfiguration:
        """Return a copy with *overrides* applied.

        Dict-valued settings (weights, grace periods, nicknames) are merged
        key by key rather than replaced.
        """
        changes = _coerce(overrides)
        for name in ("weights", "grace_period_days", "nicknames"):
            if name in changes:
                changes[name] = {**getattr(self, name), **changes[name]}
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MatchingConfiguration:
        return cls().with_overrides(data)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["enabled_identifiers"] = list(self.enabled_identifiers)
        data["required_identifiers"] = list(self.required_identifiers)
        return data


def _coerce(data: dict[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(MatchingConfiguration)}
    unknown = set(data) - known
    if unknown:
        msg = f"Unknown configuration keys: {sorted(unknown)}"
        raise ConfigurationError(msg)

    changes = dict(data)
    for name in ("enabled_identifiers", "required_identifiers"):
        if name in changes:
            changes[name] = tuple(changes[name])
    return changes


def load_configuration(path: Path | str | None = None) -> MatchingConfiguration:
    """Load and validate a configuration from a JSON file.

    The file holds a global section plus optional per-company overrides::

        {"global": {...}, "companies": {"acme": {...}}}

    A flat object is treated as the global section.  Without *path* the
    built-in defaults are returned.
    """
    if not path:
        return MatchingConfiguration().validate()

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    global_section = raw.get("global", raw if "companies" not in raw else {})
    config = MatchingConfiguration.from_dict(global_section)
    logger.info("matching_config_loaded", path=str(path))
    return config.validate()


def load_company_configuration(
    path: Path | str | None,
    company_id: str,
) -> MatchingConfiguration:
    """Load the configuration for *company_id* from a JSON file, merged over global."""
    base = load_configuration(path)
    if not path:
        return replace(base, company_id=company_id)

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    overrides = raw.get("companies", {}).get(company_id, {})
    return replace(base.with_overrides(overrides), company_id=company_id).validate()


def fetch_configuration(
    conn: psycopg.Connection,
    company_id: str | None = None,
) -> MatchingConfiguration:
    """Read the stored configuration, merging a company row over the global row.

    Rows live in ``matching_configurations`` with a JSONB ``settings``
    column; the global row has a NULL ``company_id``.
    """
    rows = execute_query(
        conn,
        """
        SELECT company_id, settings
        FROM matching_configurations
        WHERE company_id IS NULL OR company_id = %s
        ORDER BY company_id NULLS FIRST
        """,
        (company_id,),
    )

    config = MatchingConfiguration()
    for row in rows:
        settings = row["settings"]
        if isinstance(settings, str):
            settings = json.loads(settings)
        config = config.with_overrides(settings)

    return replace(config, company_id=company_id).validate()
