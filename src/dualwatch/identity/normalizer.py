"""Identifier normalisation.

Each ``normalize_*`` function returns the canonical string that is fed to the
hasher, or raises :class:`~dualwatch.errors.NormalizationError` when the raw
value is missing or malformed.
"""

from __future__ import annotations

import re
from datetime import date

import jellyfish
from unidecode import unidecode

from dualwatch.errors import NormalizationError
from dualwatch.matching.nicknames import NicknameTable

# ---------------------------------------------------------------------------
# Name normalisation
# ---------------------------------------------------------------------------

_SUFFIX_PATTERN = re.compile(
    r"\b(jr|sr|ii|iii|iv|phd|md|esq)\.?\s*$",
    re.IGNORECASE,
)

_NON_DIGIT = re.compile(r"\D")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_name(name: str | None) -> str:
    """Normalise a personal name for fuzzy comparison.

    Steps:
      1. Transliterate Unicode to ASCII (e.g. José → Jose).
      2. Lowercase.
      3. Strip generational / honorific suffixes (Jr, Sr, III, PhD).
      4. Hyphens become spaces; other punctuation is removed.
      5. Collapse whitespace and strip leading/trailing spaces.
    """
    if not name:
        return ""

    text = unidecode(name).lower()
    text = text.replace(",", " ")

    # Suffixes may be stacked ("Smith Jr. PhD")
    previous = None
    while previous != text:
        previous = text
        text = _SUFFIX_PATTERN.sub("", text).strip()

    text = text.replace("-", " ")
    text = re.sub(r"[^a-z\s]", "", text)
    text = re.sub(r"\s+", " ", text).strip()

    return text


def soundex_key(first_name: str, last_name: str, nicknames: NicknameTable) -> str:
    """Phonetic bucket key ``<first>-<last>`` from already-normalised names.

    The first name is resolved through the nickname table before encoding so
    that "Bob Smith" and "Robert Smith" share a bucket.
    """
    first_token = first_name.split(" ")[0] if first_name else ""
    last_compact = last_name.replace(" ", "")
    if not first_token and not last_compact:
        return ""

    first_code = jellyfish.soundex(nicknames.canonical(first_token)) if first_token else ""
    last_code = jellyfish.soundex(last_compact) if last_compact else ""
    return f"{first_code}-{last_code}"


# ---------------------------------------------------------------------------
# Exact identifiers
# ---------------------------------------------------------------------------

def normalize_email(email: str | None) -> str:
    if email is None or not email.strip():
        raise NormalizationError("email", "missing")
    value = email.strip().lower()
    if not _EMAIL_PATTERN.match(value):
        raise NormalizationError("email", "malformed address")
    return value


def normalize_phone(phone: str | None) -> str:
    """Digits only; a leading ``1`` country code on 11-digit numbers is dropped."""
    if phone is None or not phone.strip():
        raise NormalizationError("phone", "missing")
    digits = _NON_DIGIT.sub("", phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) < 7:
        raise NormalizationError("phone", f"too few digits ({len(digits)})")
    return digits


def normalize_ssn(ssn: str | None) -> str:
    if ssn is None or not ssn.strip():
        raise NormalizationError("ssn", "missing")
    digits = _NON_DIGIT.sub("", ssn)
    if len(digits) != 9:
        raise NormalizationError("ssn", f"expected 9 digits, got {len(digits)}")
    # Area, group and serial numbers of all zeros are never issued.
    if digits[:3] == "000" or digits[3:5] == "00" or digits[5:] == "0000":
        raise NormalizationError("ssn", "invalid zero group")
    return digits


def normalize_dob(dob: date | None, *, today: date | None = None) -> str:
    if dob is None:
        raise NormalizationError("dob", "missing")
    today = today or date.today()
    if dob.year < 1900 or dob > today:
        raise NormalizationError("dob", f"implausible date {dob.isoformat()}")
    return dob.isoformat()
