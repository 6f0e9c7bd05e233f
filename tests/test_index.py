"""Tests for the candidate index."""

import threading

import pytest

from conftest import make_employee
from dualwatch.errors import CandidateLookupError
from dualwatch.matching.index import CandidateIndex


class TestFindCandidates:
    def test_shared_ssn_across_companies(self, profile_for):
        a = profile_for(make_employee("1", "acme", ssn="123-45-6789"))
        b = profile_for(
            make_employee("9", "globex", first_name="Zed", last_name="Quinn", ssn="123456789")
        )
        index = CandidateIndex()
        index.insert(a)
        index.insert(b)

        result = index.find_candidates(a)
        assert result.candidates == [("globex", "9")]
        assert result.exact_hits == {("globex", "9"): ["ssn"]}
        assert result.dropped == 0

    def test_same_company_excluded(self, profile_for):
        a = profile_for(make_employee("1", "acme", ssn="123-45-6789"))
        b = profile_for(make_employee("2", "acme", ssn="123-45-6789"))
        index = CandidateIndex()
        index.insert(a)
        index.insert(b)
        assert index.find_candidates(a).candidates == []

    def test_phonetic_only_candidate(self, profile_for):
        a = profile_for(make_employee("1", "acme", first_name="Robert", last_name="Smith"))
        b = profile_for(make_employee("9", "globex", first_name="Bob", last_name="Smyth"))
        index = CandidateIndex()
        index.insert(a)
        index.insert(b)

        result = index.find_candidates(a)
        assert result.candidates == [("globex", "9")]
        assert result.exact_hits == {}

    def test_exact_hits_ranked_first(self, profile_for):
        source = profile_for(
            make_employee("1", "acme", ssn="123-45-6789", email="bob@example.com")
        )
        both = profile_for(
            make_employee(
                "3", "initech", first_name="Zed", last_name="Quinn",
                ssn="123-45-6789", email="bob@example.com",
            )
        )
        one = profile_for(
            make_employee("2", "globex", first_name="Zed", last_name="Quinn", ssn="123-45-6789")
        )
        phonetic = profile_for(make_employee("0", "hooli"))
        index = CandidateIndex()
        for profile in (source, both, one, phonetic):
            index.insert(profile)

        result = index.find_candidates(source)
        assert result.candidates == [("initech", "3"), ("globex", "2"), ("hooli", "0")]

    def test_cap_drops_and_counts(self, profile_for):
        index = CandidateIndex(max_candidates=2)
        source = profile_for(make_employee("1", "acme", ssn="123-45-6789"))
        index.insert(source)
        for n in range(4):
            index.insert(profile_for(make_employee("1", f"company-{n}", ssn="123-45-6789")))

        result = index.find_candidates(source)
        assert len(result) == 2
        assert result.dropped == 2
        assert set(result.exact_hits) == set(result.candidates)


class TestMutation:
    def test_upsert_moves_buckets(self, profile_for):
        index = CandidateIndex()
        other = profile_for(
            make_employee("9", "globex", first_name="Zed", last_name="Quinn", ssn="123-45-6789")
        )
        index.insert(other)
        index.insert(
            profile_for(
                make_employee("1", "acme", first_name="Ann", last_name="Lee", ssn="123-45-6789")
            )
        )
        updated = profile_for(
            make_employee(
                "1", "acme", first_name="Ann", last_name="Lee", ssn="987-65-4321", version=2
            )
        )
        index.insert(updated)

        assert len(index) == 2
        assert index.find_candidates(other).candidates == []
        assert index.company_count("ssn", other.identifiers.ssn_hash) == 1

    def test_remove(self, profile_for):
        index = CandidateIndex()
        a = profile_for(make_employee("1", "acme"))
        index.insert(a)
        assert ("acme", "1") in index
        assert index.remove(("acme", "1")) is True
        assert ("acme", "1") not in index
        assert index.remove(("acme", "1")) is False

    def test_rebuild_replaces_contents(self, profile_for):
        index = CandidateIndex()
        index.insert(profile_for(make_employee("1", "acme")))
        count = index.rebuild([profile_for(make_employee("2", "globex"))])
        assert count == 1
        assert ("acme", "1") not in index
        assert ("globex", "2") in index

    def test_company_count(self, profile_for):
        index = CandidateIndex()
        for company in ("acme", "globex", "initech"):
            index.insert(profile_for(make_employee("1", company, ssn="123-45-6789")))
        index.insert(profile_for(make_employee("2", "acme", ssn="123-45-6789")))
        digest = profile_for(make_employee("1", "acme", ssn="123-45-6789")).identifiers.ssn_hash
        assert index.company_count("ssn", digest) == 3

    def test_closed_index_raises(self, profile_for):
        index = CandidateIndex()
        a = profile_for(make_employee("1", "acme"))
        index.insert(a)
        index.close()
        with pytest.raises(CandidateLookupError):
            index.find_candidates(a)

    def test_concurrent_inserts(self, profile_for):
        index = CandidateIndex(stripes=4)
        profiles = [
            profile_for(make_employee(str(n), f"company-{n % 7}", ssn="123-45-6789"))
            for n in range(200)
        ]

        def insert_all(chunk):
            for profile in chunk:
                index.insert(profile)

        threads = [threading.Thread(target=insert_all, args=(profiles[i::4],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(index) == 200
        assert index.company_count("ssn", profiles[0].identifiers.ssn_hash) == 7
