from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

STATE_LENGTH = 43
CODE_VERIFIER_LENGTH = 128


@dataclass(frozen=True)
class PKCEPair:
    code_verifier: str
    code_challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_random_string(length: int = STATE_LENGTH) -> str:
    """Return exactly ``length`` URL-safe characters from a CSPRNG.

    ``length`` random bytes always encode to at least ``length`` base64
    characters, so truncation never comes up short.
    """
    if length <= 0:
        raise ValueError("length must be a positive integer.")
    return _b64url(secrets.token_bytes(length))[:length]


def generate_code_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def derive_pkce(code_verifier: str) -> PKCEPair:
    return PKCEPair(
        code_verifier=code_verifier,
        code_challenge=generate_code_challenge(code_verifier),
    )
