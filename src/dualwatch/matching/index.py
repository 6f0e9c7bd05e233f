"""Candidate index over hashed identifiers and phonetic name keys.

Buckets are spread over a fixed number of lock stripes.  A mutation locks
only the stripes of the buckets it touches, so matching runs and ingestion
updates contend only when they hit the same bucket.  Reads take the stripe
lock just long enough to copy the bucket.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from dualwatch.errors import CandidateLookupError
from dualwatch.models import EmployeeKey, EmployeeProfile

logger = structlog.get_logger(__name__)

BucketKey = tuple[str, str]  # (identifier | "soundex", digest | code)

PHONETIC = "soundex"


@dataclass
class CandidateResult:
    """Candidates for one employee, with the evidence that produced them."""

    candidates: list[EmployeeKey] = field(default_factory=list)
    exact_hits: dict[EmployeeKey, list[str]] = field(default_factory=dict)
    dropped: int = 0

    def __len__(self) -> int:
        return len(self.candidates)


class _Stripe:
    __slots__ = ("buckets", "lock")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # bucket key -> {employee key: company id}
        self.buckets: dict[BucketKey, dict[EmployeeKey, str]] = {}


class _EntryStripe:
    __slots__ = ("entries", "lock")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # employee key -> bucket keys it is currently filed under
        self.entries: dict[EmployeeKey, list[BucketKey]] = {}


class CandidateIndex:
    """In-memory blocking index used to avoid exhaustive pairwise comparison."""

    def __init__(self, max_candidates: int = 500, stripes: int = 64) -> None:
        if stripes < 1:
            msg = "stripes must be at least 1"
            raise ValueError(msg)
        self.max_candidates = max_candidates
        self._stripes = [_Stripe() for _ in range(stripes)]
        self._entry_stripes = [_EntryStripe() for _ in range(stripes)]
        self._closed = False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stripe(self, key: BucketKey) -> _Stripe:
        return self._stripes[hash(key) % len(self._stripes)]

    def _entry_stripe(self, employee: EmployeeKey) -> _EntryStripe:
        return self._entry_stripes[hash(employee) % len(self._entry_stripes)]

    @staticmethod
    def _bucket_keys(profile: EmployeeProfile) -> list[BucketKey]:
        keys = list(profile.identifiers.exact_keys())
        if profile.identifiers.name_soundex:
            keys.append((PHONETIC, profile.identifiers.name_soundex))
        return keys

    def _check_open(self) -> None:
        if self._closed:
            msg = "candidate index is closed"
            raise CandidateLookupError(msg)

    def _swap_entry(
        self, employee: EmployeeKey, keys: list[BucketKey] | None
    ) -> list[BucketKey]:
        stripe = self._entry_stripe(employee)
        with stripe.lock:
            previous = stripe.entries.pop(employee, None)
            if keys is not None:
                stripe.entries[employee] = keys
        return previous or []

    def _remove_from_bucket(self, key: BucketKey, employee: EmployeeKey) -> None:
        stripe = self._stripe(key)
        with stripe.lock:
            bucket = stripe.buckets.get(key)
            if bucket is None:
                return
            bucket.pop(employee, None)
            if not bucket:
                del stripe.buckets[key]

    def _add_to_bucket(self, key: BucketKey, employee: EmployeeKey) -> None:
        stripe = self._stripe(key)
        with stripe.lock:
            stripe.buckets.setdefault(key, {})[employee] = employee[0]

    def _snapshot(self, key: BucketKey) -> dict[EmployeeKey, str]:
        stripe = self._stripe(key)
        with stripe.lock:
            return dict(stripe.buckets.get(key, {}))

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, profile: EmployeeProfile) -> None:
        """Add or replace *profile*; keys of a previous version are removed first."""
        self._check_open()
        keys = self._bucket_keys(profile)
        previous = self._swap_entry(profile.key, keys)
        for key in set(previous) - set(keys):
            self._remove_from_bucket(key, profile.key)
        for key in keys:
            self._add_to_bucket(key, profile.key)

    def remove(self, employee: EmployeeKey) -> bool:
        """Drop *employee* from every bucket. Returns False when it was not indexed."""
        self._check_open()
        previous = self._swap_entry(employee, None)
        for key in previous:
            self._remove_from_bucket(key, employee)
        return bool(previous)

    def rebuild(self, profiles: Iterable[EmployeeProfile]) -> int:
        """Clear the index and insert *profiles* (used after a salt rotation)."""
        for stripe in self._stripes:
            with stripe.lock:
                stripe.buckets.clear()
        for entry_stripe in self._entry_stripes:
            with entry_stripe.lock:
                entry_stripe.entries.clear()
        self._closed = False
        count = 0
        for profile in profiles:
            self.insert(profile)
            count += 1
        logger.info("candidate_index_rebuilt", employees=count)
        return count

    def close(self) -> None:
        """Mark the index unavailable; later lookups raise CandidateLookupError."""
        self._closed = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        total = 0
        for stripe in self._entry_stripes:
            with stripe.lock:
                total += len(stripe.entries)
        return total

    def __contains__(self, employee: object) -> bool:
        if not isinstance(employee, tuple):
            return False
        stripe = self._entry_stripe(employee)  # type: ignore[arg-type]
        with stripe.lock:
            return employee in stripe.entries

    def company_count(self, identifier: str, digest: str) -> int:
        """Number of distinct companies sharing an exact-hash bucket."""
        self._check_open()
        return len(set(self._snapshot((identifier, digest)).values()))

    def find_candidates(self, profile: EmployeeProfile) -> CandidateResult:
        """Employees from other companies sharing an exact or phonetic bucket.

        Exact-hash hits are ranked ahead of phonetic-only hits; anything past
        ``max_candidates`` is dropped, counted and logged.
        """
        self._check_open()
        source_company = profile.company_id
        exact_hits: dict[EmployeeKey, list[str]] = {}
        phonetic: set[EmployeeKey] = set()

        for identifier, digest in profile.identifiers.exact_keys():
            for employee, company in self._snapshot((identifier, digest)).items():
                if company != source_company:
                    exact_hits.setdefault(employee, []).append(identifier)

        if profile.identifiers.name_soundex:
            bucket = self._snapshot((PHONETIC, profile.identifiers.name_soundex))
            for employee, company in bucket.items():
                if company != source_company and employee not in exact_hits:
                    phonetic.add(employee)

        ranked = sorted(exact_hits, key=lambda e: (-len(exact_hits[e]), e)) + sorted(phonetic)
        dropped = max(0, len(ranked) - self.max_candidates)
        if dropped:
            logger.warning(
                "candidate_cap_exceeded",
                employee_id=profile.employee_id,
                company_id=profile.company_id,
                found=len(ranked),
                kept=self.max_candidates,
                dropped=dropped,
            )
            ranked = ranked[: self.max_candidates]

        kept = set(ranked)
        return CandidateResult(
            candidates=ranked,
            exact_hits={e: ids for e, ids in exact_hits.items() if e in kept},
            dropped=dropped,
        )
