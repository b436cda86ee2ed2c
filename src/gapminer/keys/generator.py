# API key secret generation.
# Created: 2026-10-12
#
# Keys use the format gm_<32 alphanumeric chars> so they are easy to spot in
# logs and config files. Only the sha256 hex digest is stored; the first 11
# chars (prefix + 8) are kept for display.

from __future__ import annotations

import hashlib
import secrets
import string
from typing import NamedTuple

KEY_PREFIX = "gm_"
_SECRET_LENGTH = 32
_ALPHABET = string.ascii_letters + string.digits
_DISPLAY_LENGTH = len(KEY_PREFIX) + 8


class GeneratedSecret(NamedTuple):
    plaintext: str
    digest: str
    display_prefix: str


def hash_secret(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode()).hexdigest()


def looks_like_key(value: str) -> bool:
    """Cheap shape check done before hashing."""
    return isinstance(value, str) and value.startswith(KEY_PREFIX)


def generate_secret() -> GeneratedSecret:
    """Create a new key from the OS CSPRNG.

    Returns (plaintext, digest, display_prefix). The plaintext must be handed
    to the owner and then discarded.
    """
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(_SECRET_LENGTH))
    plaintext = f"{KEY_PREFIX}{random_part}"
    return GeneratedSecret(plaintext, hash_secret(plaintext), plaintext[:_DISPLAY_LENGTH])
