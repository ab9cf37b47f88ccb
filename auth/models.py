from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING_CALLBACK = "pending_callback"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


@dataclass(frozen=True)
class AuthSession:
    state: str
    code_verifier: str


@dataclass(frozen=True)
class TokenRecord:
    access_token: str
    expires_at: float
    refresh_token: str | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def needs_refresh(self, now: float, skew_seconds: float) -> bool:
        return now >= self.expires_at - skew_seconds
