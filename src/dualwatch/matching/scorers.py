"""Per-identifier similarity scorers.

Hashed identifiers are compared by digest equality only.  Names are the one
field compared fuzzily, on the normalised (non-reversible) name tokens.

Every scorer is symmetric: ``score(a, b) == score(b, a)``.
"""

from __future__ import annotations

import hmac
from collections.abc import Iterable
from typing import Protocol

from rapidfuzz.distance import JaroWinkler, Levenshtein

from dualwatch.matching.configuration import MatchingConfiguration
from dualwatch.matching.nicknames import NicknameTable
from dualwatch.models import HASHED_IDENTIFIERS, FieldScore, HashedIdentifierSet

# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def exact_similarity(a: str | None, b: str | None) -> float | None:
    """1.0 for equal digests, 0.0 otherwise, None when either side is absent."""
    if not a or not b:
        return None
    return 1.0 if hmac.compare_digest(a, b) else 0.0


def levenshtein_similarity(a: str, b: str) -> float:
    """``1 - distance / max(len(a), len(b))``; 0.0 if either string is empty."""
    if not a or not b:
        return 0.0
    distance = Levenshtein.distance(a, b)
    return 1.0 - distance / max(len(a), len(b))


def jaro_winkler_similarity(a: str, b: str, prefix_scale: float = 0.1) -> float:
    """Jaro-Winkler similarity with up to 4 common-prefix characters boosted."""
    if not a or not b:
        return 0.0
    return JaroWinkler.similarity(a, b, prefix_weight=prefix_scale)


def string_similarity(a: str, b: str, prefix_scale: float = 0.1) -> float:
    """The better of Levenshtein and Jaro-Winkler for one name component."""
    return max(levenshtein_similarity(a, b), jaro_winkler_similarity(a, b, prefix_scale))


# ---------------------------------------------------------------------------
# Scorer interface
# ---------------------------------------------------------------------------


class SimilarityScorer(Protocol):
    """Anything that can compare one identifier of two identifier sets.

    Returning ``None`` means the identifier is absent on at least one side
    and must be excluded from the weighted confidence.
    """

    identifier: str

    def score(self, a: HashedIdentifierSet, b: HashedIdentifierSet) -> FieldScore | None: ...


class ExactHashScorer:
    """Byte-equality on one salted digest."""

    def __init__(self, identifier: str) -> None:
        if identifier not in HASHED_IDENTIFIERS:
            msg = f"Not a hashed identifier: {identifier!r}"
            raise ValueError(msg)
        self.identifier = identifier

    def score(self, a: HashedIdentifierSet, b: HashedIdentifierSet) -> FieldScore | None:
        similarity = exact_similarity(a.digest(self.identifier), b.digest(self.identifier))
        if similarity is None:
            return None
        return FieldScore(identifier=self.identifier, similarity=similarity, method="exact")


class NameScorer:
    """Fuzzy name comparison backed by a nickname table and Soundex.

    Order of evaluation:
      1. Identical normalised names → 1.0.
      2. Same last name and first names in one nickname group → 1.0.
      3. Mean of first- and last-name string similarity, plus a fixed
         bonus when the Soundex keys agree although the strings differ.
    A single-character first or last name on either side discounts the
    result and marks it low-confidence.
    """

    identifier = "name"

    def __init__(
        self,
        nicknames: NicknameTable | None = None,
        *,
        prefix_scale: float = 0.1,
        phonetic_bonus: float = 0.05,
        short_name_discount: float = 0.5,
    ) -> None:
        self.nicknames = nicknames or NicknameTable()
        self.prefix_scale = prefix_scale
        self.phonetic_bonus = phonetic_bonus
        self.short_name_discount = short_name_discount

    def score(self, a: HashedIdentifierSet, b: HashedIdentifierSet) -> FieldScore | None:
        return compare_names(
            a,
            b,
            self.nicknames,
            prefix_scale=self.prefix_scale,
            phonetic_bonus=self.phonetic_bonus,
            short_name_discount=self.short_name_discount,
        )


def compare_names(
    a: HashedIdentifierSet,
    b: HashedIdentifierSet,
    nicknames: NicknameTable,
    *,
    prefix_scale: float = 0.1,
    phonetic_bonus: float = 0.05,
    short_name_discount: float = 0.5,
) -> FieldScore | None:
    """Name evidence for two identifier sets; None when either has no name."""
    if not a.name_normalized or not b.name_normalized:
        return None

    first_a = a.first_name.split(" ")[0] if a.first_name else ""
    first_b = b.first_name.split(" ")[0] if b.first_name else ""
    phonetic_match = bool(a.name_soundex) and a.name_soundex == b.name_soundex
    details: dict[str, object] = {"phonetic_match": phonetic_match}

    if a.name_normalized == b.name_normalized:
        similarity, method = 1.0, "exact"
    elif a.last_name and a.last_name == b.last_name and nicknames.are_variants(first_a, first_b):
        similarity, method = 1.0, "nickname"
    else:
        components = []
        if first_a and first_b:
            if nicknames.are_variants(first_a, first_b):
                components.append(1.0)
            else:
                components.append(string_similarity(first_a, first_b, prefix_scale))
        if a.last_name and b.last_name:
            components.append(string_similarity(a.last_name, b.last_name, prefix_scale))
        if not components:
            components.append(
                string_similarity(a.name_normalized, b.name_normalized, prefix_scale)
            )
        similarity = sum(components) / len(components)
        method = "fuzzy"
        if phonetic_match:
            similarity = min(1.0, similarity + phonetic_bonus)
            method = "phonetic"

    low_confidence = any(len(part) == 1 for part in (first_a, first_b, a.last_name, b.last_name))
    if low_confidence:
        similarity *= short_name_discount
        details["short_name"] = True

    return FieldScore(
        identifier="name",
        similarity=similarity,
        method=method,
        low_confidence=low_confidence,
        details=details,
    )


def build_scorers(
    config: MatchingConfiguration,
    extra: Iterable[SimilarityScorer] = (),
) -> list[SimilarityScorer]:
    """Deterministic scorers for every enabled identifier, followed by *extra*.

    *extra* is the extension point for non-deterministic scorers (for example
    a trained classifier); they are weighted like any other identifier.
    """
    scorers: list[SimilarityScorer] = [
        ExactHashScorer(identifier)
        for identifier in HASHED_IDENTIFIERS
        if identifier in config.enabled_identifiers
    ]
    if "name" in config.enabled_identifiers:
        scorers.append(
            NameScorer(
                NicknameTable.with_overrides(config.nicknames),
                prefix_scale=config.prefix_scale,
                phonetic_bonus=config.phonetic_bonus,
                short_name_discount=config.short_name_discount,
            )
        )
    scorers.extend(extra)
    return scorers


def score_identifiers(
    scorers: Iterable[SimilarityScorer],
    a: HashedIdentifierSet,
    b: HashedIdentifierSet,
) -> list[FieldScore]:
    """Run every scorer, keeping only identifiers present on both sides."""
    factors = []
    for scorer in scorers:
        factor = scorer.score(a, b)
        if factor is not None:
            factors.append(factor)
    return factors
