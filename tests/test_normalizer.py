"""Tests for identifier normalisation."""

from datetime import date

import pytest

from dualwatch.errors import NormalizationError
from dualwatch.identity.normalizer import (
    normalize_dob,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_ssn,
    soundex_key,
)
from dualwatch.matching.nicknames import NicknameTable


class TestNormalizeName:
    def test_lowercase_and_strip(self):
        assert normalize_name("  Robert  SMITH ") == "robert smith"

    def test_transliterates_accents(self):
        assert normalize_name("José Núñez") == "jose nunez"

    def test_strips_generational_suffix(self):
        assert normalize_name("Martin Luther King Jr.") == "martin luther king"

    def test_strips_stacked_suffixes(self):
        assert normalize_name("Smith, Jr. PhD") == "smith"

    def test_hyphen_becomes_space(self):
        assert normalize_name("García-López") == "garcia lopez"

    def test_apostrophe_removed(self):
        assert normalize_name("O'Brien") == "obrien"

    def test_empty_and_none(self):
        assert normalize_name("") == ""
        assert normalize_name(None) == ""


class TestSoundexKey:
    def test_nickname_shares_bucket(self):
        table = NicknameTable()
        assert soundex_key("bob", "smith", table) == soundex_key("robert", "smith", table)

    def test_spelling_variant_shares_bucket(self):
        table = NicknameTable()
        assert soundex_key("robert", "smyth", table) == soundex_key("robert", "smith", table)

    def test_format(self):
        assert soundex_key("robert", "smith", NicknameTable()) == "R163-S530"

    def test_empty_names(self):
        assert soundex_key("", "", NicknameTable()) == ""


class TestNormalizeEmail:
    def test_lowercases(self):
        assert normalize_email(" Jane.Doe@Example.COM ") == "jane.doe@example.com"

    def test_malformed(self):
        with pytest.raises(NormalizationError) as exc:
            normalize_email("not-an-email")
        assert exc.value.identifier == "email"

    def test_missing(self):
        with pytest.raises(NormalizationError):
            normalize_email(None)


class TestNormalizePhone:
    def test_strips_formatting(self):
        assert normalize_phone("(555) 123-4567") == "5551234567"

    def test_drops_us_country_code(self):
        assert normalize_phone("+1 555 123 4567") == "5551234567"

    def test_too_short(self):
        with pytest.raises(NormalizationError):
            normalize_phone("12-34")


class TestNormalizeSsn:
    def test_dashes_removed(self):
        assert normalize_ssn("123-45-6789") == "123456789"

    def test_wrong_length(self):
        with pytest.raises(NormalizationError):
            normalize_ssn("12345")

    @pytest.mark.parametrize("ssn", ["000-12-3456", "123-00-4567", "123-45-0000"])
    def test_zero_groups_rejected(self, ssn):
        with pytest.raises(NormalizationError):
            normalize_ssn(ssn)


class TestNormalizeDob:
    def test_iso_format(self):
        assert normalize_dob(date(1985, 3, 7), today=date(2024, 1, 1)) == "1985-03-07"

    def test_future_date(self):
        with pytest.raises(NormalizationError):
            normalize_dob(date(2030, 1, 1), today=date(2024, 1, 1))

    def test_before_1900(self):
        with pytest.raises(NormalizationError):
            normalize_dob(date(1899, 12, 31), today=date(2024, 1, 1))
