"""Batch matching orchestrator.

Runs the full hash → index → candidates → score → aggregate → filter →
persist pipeline over a population of employees.

Scope is split into batches of ``batch_size``.  Within a batch, employees
are matched in parallel on a thread pool, and each employee's candidates are
scored sequentially by the worker that owns it.  Cancellation is checked
between batches; matches persisted before cancellation stay, since every
upsert is idempotent on the canonical pair.

Candidate lookups and persistence calls run with a timeout and a bounded
number of retries.  A pair or employee that still fails is recorded in the
:class:`~dualwatch.orchestration.metrics.RunSummary` and skipped.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, TypeVar

import psycopg
import structlog

from dualwatch.config import Settings
from dualwatch.errors import CandidateLookupError, PersistenceConflict
from dualwatch.identity.hashing import SaltSet, build_profile
from dualwatch.matching.aggregator import AggregateResult, aggregate, passes_minimum
from dualwatch.matching.anomaly import AnomalyFilter
from dualwatch.matching.configuration import MatchingConfiguration
from dualwatch.matching.index import CandidateIndex
from dualwatch.matching.nicknames import NicknameTable
from dualwatch.matching.scorers import SimilarityScorer, build_scorers, score_identifiers
from dualwatch.matching.temporal import TemporalResult, analyze_overlap
from dualwatch.models import (
    Employee,
    EmployeeKey,
    EmployeeProfile,
    FieldScore,
    Match,
    as_utc,
    canonical_pair,
)
from dualwatch.orchestration.cache import PairCache, pair_cache_key
from dualwatch.orchestration.metrics import RunSummary
from dualwatch.orchestration.store import InMemoryMatchStore, MatchStore, UpsertResult

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RUN_MODES = ("incremental", "full")


@dataclass(frozen=True)
class PairOutcome:
    """Scored pair in canonical order (``employee1 <= employee2``)."""

    employee1: EmployeeKey
    employee2: EmployeeKey
    result: AggregateResult
    temporal: TemporalResult

    @property
    def confidence(self) -> float:
        return self.result.confidence

    @property
    def risk_level(self) -> str:
        return self.result.risk_level

    def to_match(self) -> Match:
        return Match(
            company1_id=self.employee1[0],
            employee1_id=self.employee1[1],
            company2_id=self.employee2[0],
            employee2_id=self.employee2[1],
            confidence_score=self.result.confidence,
            match_factors=list(self.result.factors),
            temporal_overlap=self.temporal.temporal_overlap,
            overlap_days=self.temporal.overlap_days,
            risk_level=self.result.risk_level,
            status=self.result.initial_status,
        )


class _PairClaims:
    """Pairs already taken by a worker during the current run."""

    def __init__(self) -> None:
        self._seen: set[tuple[EmployeeKey, EmployeeKey]] = set()
        self._lock = threading.Lock()

    def claim(self, pair: tuple[EmployeeKey, EmployeeKey]) -> bool:
        with self._lock:
            if pair in self._seen:
                return False
            self._seen.add(pair)
            return True


def _changed_since(employee: Employee, since: datetime | int | None) -> bool:
    """Incremental scope test; ``since`` is a timestamp or a record version."""
    if since is None:
        return True
    if isinstance(since, int):
        return employee.version > since
    if employee.updated_at is None:
        return True
    return as_utc(employee.updated_at) > as_utc(since)


class MatchingEngine:
    """Long-lived matcher holding the index, the profiles and the pair cache."""

    def __init__(
        self,
        config: MatchingConfiguration,
        salts: SaltSet,
        *,
        index: CandidateIndex | None = None,
        store: MatchStore | None = None,
        extra_scorers: Iterable[SimilarityScorer] = (),
        batch_size: int = 200,
        max_workers: int = 4,
        call_timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        as_of: date | None = None,
    ) -> None:
        self.config = config
        self.salts = salts
        self.index = index or CandidateIndex(max_candidates=config.max_candidates)
        self.store: MatchStore = store if store is not None else InMemoryMatchStore()
        self.nicknames = NicknameTable.with_overrides(config.nicknames)
        self.scorers = build_scorers(config, extra_scorers)
        self.anomaly_filter = AnomalyFilter(config, self.index)
        self.cache: PairCache[tuple[FieldScore, ...]] = PairCache()
        self.batch_size = max(1, batch_size)
        self.max_workers = max(1, max_workers)
        self.call_timeout = call_timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self.as_of = as_of

        self.profiles: dict[EmployeeKey, EmployeeProfile] = {}
        self._profiles_lock = threading.Lock()
        self._io_pool = ThreadPoolExecutor(
            max_workers=self.max_workers * 2, thread_name_prefix="dualwatch-io"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        config: MatchingConfiguration,
        *,
        store: MatchStore | None = None,
    ) -> MatchingEngine:
        return cls(
            config,
            SaltSet.from_settings(settings),
            store=store,
            batch_size=settings.batch_size,
            max_workers=settings.max_workers,
            call_timeout=settings.call_timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_backoff=settings.retry_backoff_seconds,
        )

    def close(self) -> None:
        self._io_pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> MatchingEngine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Population management
    # ------------------------------------------------------------------

    def _build_profile(self, employee: Employee) -> EmployeeProfile:
        return build_profile(
            employee,
            self.salts,
            nicknames=self.nicknames,
            required=self.config.required_identifiers,
            today=self.as_of,
        )

    def ingest(self, employee: Employee) -> EmployeeProfile:
        """Hash *employee* and upsert it into the index.

        An employee already indexed at the same version and salt version is
        left untouched.
        """
        existing = self.profiles.get(employee.key)
        if (
            existing is not None
            and existing.version == employee.version
            and existing.identifiers.salt_version == self.salts.version
        ):
            return existing

        profile = self._build_profile(employee)
        with self._profiles_lock:
            self.profiles[profile.key] = profile
        self.index.insert(profile)
        return profile

    def remove(self, employee: EmployeeKey) -> None:
        with self._profiles_lock:
            self.profiles.pop(employee, None)
        self.index.remove(employee)

    def rebuild(self, employees: Iterable[Employee]) -> list[EmployeeProfile]:
        """Re-hash every employee and rebuild the index from scratch."""
        profiles = [self._build_profile(e) for e in employees]
        with self._profiles_lock:
            self.profiles = {p.key: p for p in profiles}
        self.index.rebuild(profiles)
        return profiles

    def rotate_salts(self, salts: SaltSet) -> None:
        """Switch to a new salt version.

        Digests of the old version are useless afterwards, so profiles, index
        and cache are cleared; the next ``full`` run re-hashes everyone.
        """
        logger.info(
            "salt_rotation",
            old_version=self.salts.version,
            new_version=salts.version,
        )
        self.salts = salts
        with self._profiles_lock:
            self.profiles = {}
        self.index.rebuild([])
        self.cache.clear()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _score(self, a: EmployeeProfile, b: EmployeeProfile) -> tuple[PairOutcome, bool]:
        """Score a pair; only the identity evidence is cached.

        Overlap depends on the evaluation date for ongoing employment, so the
        temporal analysis and the risk derived from it are redone on a hit.
        """
        first, second = (a, b) if a.key <= b.key else (b, a)
        key = pair_cache_key(a, b)
        factors = self.cache.get(key)
        hit = factors is not None
        if not hit:
            factors = tuple(
                score_identifiers(self.scorers, first.identifiers, second.identifiers)
            )
            self.cache.put(key, factors)

        temporal = analyze_overlap(first, second, self.config, as_of=self.as_of)
        outcome = PairOutcome(
            employee1=first.key,
            employee2=second.key,
            result=aggregate(list(factors), temporal, self.config),
            temporal=temporal,
        )
        return outcome, hit

    def score_pair(self, a: EmployeeProfile, b: EmployeeProfile) -> PairOutcome:
        """Score two profiles; the result does not depend on argument order."""
        outcome, _ = self._score(a, b)
        return outcome

    # ------------------------------------------------------------------
    # Timed, retried external calls
    # ------------------------------------------------------------------

    def _call_with_retry(
        self,
        what: str,
        fn: Callable[..., T],
        *args: Any,
        retry_on: tuple[type[BaseException], ...] = (),
    ) -> T:
        last_error: BaseException = TimeoutError(f"{what} was not attempted")
        for attempt in range(1, self.retry_attempts + 1):
            future = self._io_pool.submit(fn, *args)
            try:
                return future.result(timeout=self.call_timeout)
            except FutureTimeoutError:
                future.cancel()
                last_error = TimeoutError(f"{what} timed out after {self.call_timeout}s")
            except retry_on as e:
                last_error = e

            logger.warning("call_retry", call=what, attempt=attempt, error=str(last_error))
            if attempt < self.retry_attempts:
                time.sleep(self.retry_backoff * 2 ** (attempt - 1))

        raise last_error

    def _persist(self, match: Match) -> UpsertResult:
        """Upsert *match*, merging onto the stored row after a concurrent write."""
        for _ in range(self.retry_attempts):
            try:
                return self._call_with_retry(
                    "persist_match",
                    self.store.upsert,
                    match,
                    retry_on=(psycopg.OperationalError,),
                )
            except PersistenceConflict:
                existing = self.store.get(match.pair_key)
                if existing is not None:
                    match = replace(match, match_id=existing.match_id, status=existing.status)
                logger.info(
                    "persistence_conflict_merged",
                    employee1=match.employee1_id,
                    employee2=match.employee2_id,
                )
        raise PersistenceConflict(match.employee1_id, match.employee2_id)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _store_outcome(self, outcome: PairOutcome, summary: RunSummary) -> None:
        upserted = self._persist(outcome.to_match())
        summary.increment("matches_created" if upserted.created else "matches_updated")
        if upserted.should_notify:
            summary.notify(upserted.match.match_id)

    def _process_pair(
        self,
        a: EmployeeProfile,
        b: EmployeeProfile,
        summary: RunSummary,
        *,
        stored: bool = False,
    ) -> None:
        """Score one pair and persist it if it survives the filters.

        A pair that is already *stored* is rewritten with its fresh score even
        when it now falls below the minimum or is suppressed. The row itself
        is never deleted.
        """
        outcome, hit = self._score(a, b)
        summary.increment("cache_hits" if hit else "cache_misses")
        if not hit:
            summary.increment("pairs_scored")

        if not passes_minimum(outcome.confidence, self.config):
            summary.increment("below_minimum")
            reason = None
        else:
            first, second = (a, b) if a.key == outcome.employee1 else (b, a)
            reason = self.anomaly_filter.check(
                first.identifiers, second.identifiers, outcome.result
            )
            if reason is None:
                self._store_outcome(outcome, summary)
                summary.increment("matches_emitted")
                return
            summary.suppress(reason)

        if stored:
            self._store_outcome(outcome, summary)
            summary.increment("matches_downgraded")
            logger.info(
                "stored_match_downgraded",
                employee1=f"{outcome.employee1[0]}/{outcome.employee1[1]}",
                employee2=f"{outcome.employee2[0]}/{outcome.employee2[1]}",
                confidence=round(outcome.confidence, 4),
                reason=reason or "below_minimum",
            )

    def _stored_partners(self, profile: EmployeeProfile) -> list[EmployeeKey]:
        """Employees already paired with *profile* by a persisted Match."""
        try:
            matches = self._call_with_retry(
                "stored_matches",
                self.store.matches_for,
                profile.key,
                retry_on=(psycopg.OperationalError,),
            )
        except (psycopg.OperationalError, TimeoutError) as e:
            logger.warning(
                "stored_matches_unavailable",
                employee_id=profile.employee_id,
                company_id=profile.company_id,
                error=str(e),
            )
            return []
        partners = []
        for match in matches:
            first, second = match.pair_key
            partners.append(second if first == profile.key else first)
        return partners

    def _match_employee(
        self,
        profile: EmployeeProfile,
        summary: RunSummary,
        claims: _PairClaims,
    ) -> bool:
        """Match one employee against its candidates. False if the lookup failed."""
        try:
            found = self._call_with_retry(
                "candidate_lookup",
                self.index.find_candidates,
                profile,
                retry_on=(CandidateLookupError,),
            )
        except (CandidateLookupError, TimeoutError) as e:
            logger.error(
                "employee_skipped",
                employee_id=profile.employee_id,
                company_id=profile.company_id,
                error=str(e),
            )
            summary.skip_employee(profile.key, str(e))
            return False

        summary.increment("employees_processed")
        summary.increment("candidates_generated", len(found))
        if found.dropped:
            summary.record_dropped(profile.key, found.dropped)

        stored = set(self._stored_partners(profile))
        candidates = list(found.candidates)
        candidates += sorted(stored.difference(candidates))

        for candidate_key in candidates:
            pair = canonical_pair(profile.key, candidate_key)
            if not claims.claim(pair):
                continue
            candidate = self.profiles.get(candidate_key)
            if candidate is None:
                summary.fail_pair(pair, "candidate profile not loaded")
                continue
            try:
                self._process_pair(
                    profile, candidate, summary, stored=candidate_key in stored
                )
            except Exception as e:
                logger.warning(
                    "pair_failed",
                    employee1=f"{pair[0][0]}/{pair[0][1]}",
                    employee2=f"{pair[1][0]}/{pair[1][1]}",
                    error=str(e),
                )
                summary.fail_pair(pair, str(e))
        return True

    def _run_batch(
        self,
        batch: list[EmployeeProfile],
        summary: RunSummary,
        claims: _PairClaims,
    ) -> int:
        lookup_failures = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._match_employee, profile, summary, claims): profile
                for profile in batch
            }
            for future in as_completed(futures):
                if not future.result():
                    lookup_failures += 1
        return lookup_failures

    def run(
        self,
        job_id: str,
        mode: str,
        employees: Iterable[Employee],
        *,
        company_id: str | None = None,
        since: datetime | int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunSummary:
        """Run one matching job over *employees* (the whole known population).

        ``full`` re-hashes everyone, rebuilds the index, clears the pair cache
        and matches every in-scope employee.  ``incremental`` upserts changed
        records and matches only those changed after *since*.  *company_id*
        restricts which employees are matched, not who they can match.

        Raises:
            ConfigurationError: If the configuration is invalid; nothing runs.
            ValueError: On an unknown *mode*.
        """
        if mode not in RUN_MODES:
            msg = f"Unknown run mode: {mode!r}"
            raise ValueError(msg)
        self.config.validate()

        summary = RunSummary(job_id=job_id, mode=mode, company_id=company_id)
        employees = list(employees)
        logger.info(
            "matching_run_started",
            job_id=job_id,
            mode=mode,
            company_id=company_id,
            employees=len(employees),
        )

        if mode == "full":
            self.cache.clear()
            profiles = {p.key: p for p in self.rebuild(employees)}
        else:
            profiles = {e.key: self.ingest(e) for e in employees}

        scope: list[EmployeeProfile] = []
        for employee in employees:
            if company_id is not None and employee.company_id != company_id:
                continue
            if mode == "incremental" and not _changed_since(employee, since):
                continue
            profile = profiles[employee.key]
            summary.record_issues(profile.key, profile.identifiers.issues)
            scope.append(profile)
        summary.increment("employees_in_scope", len(scope))

        claims = _PairClaims()
        for batch_number, start in enumerate(range(0, len(scope), self.batch_size)):
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.warning(
                    "matching_run_cancelled",
                    job_id=job_id,
                    processed=summary["employees_processed"],
                    remaining=len(scope) - start,
                )
                break

            batch = scope[start : start + self.batch_size]
            started = time.monotonic()
            lookup_failures = self._run_batch(batch, summary, claims)
            latency = time.monotonic() - started
            summary.record_batch(latency)
            logger.info(
                "matching_batch_complete",
                job_id=job_id,
                batch=batch_number,
                size=len(batch),
                latency_s=round(latency, 3),
            )

            if lookup_failures == len(batch):
                summary.aborted = "candidate index unavailable"
                logger.error("matching_run_aborted", job_id=job_id, reason=summary.aborted)
                break

        summary.finish()
        logger.info(
            "matching_run_complete",
            job_id=job_id,
            pairs_scored=summary["pairs_scored"],
            matches_emitted=summary["matches_emitted"],
            matches_suppressed=summary["matches_suppressed"],
            cache_hit_rate=round(summary.cache_hit_rate, 4),
            cancelled=summary.cancelled,
        )
        return summary
