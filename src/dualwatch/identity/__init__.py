"""Identifier normalisation and salted hashing."""

from __future__ import annotations

from dualwatch.identity.hashing import (
    SaltSet,
    build_profile,
    digests_equal,
    hash_identifier,
    hash_identifiers,
)
from dualwatch.identity.normalizer import (
    normalize_dob,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_ssn,
    soundex_key,
)

__all__ = [
    "SaltSet",
    "build_profile",
    "digests_equal",
    "hash_identifier",
    "hash_identifiers",
    "normalize_dob",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "normalize_ssn",
    "soundex_key",
]
