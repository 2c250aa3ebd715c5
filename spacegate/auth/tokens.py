"""Opaque bearer tokens for sessions and invitations."""

from __future__ import annotations

import hashlib
import hmac
import secrets

# 256 bits of entropy for both invitation and session tokens
TOKEN_BYTES = 32


def generate_token() -> str:
    """Return a URL-safe random token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """SHA-256 of a token, the only form that is persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenSigner:
    """HMAC-signs session tokens so tampered values fail before any store lookup."""

    def __init__(self, secret_key: str) -> None:
        self._secret = secret_key.encode()

    def issue(self) -> tuple[str, str]:
        """Return ``(signed_token, session_id)``."""
        raw = generate_token()
        return f"{raw}.{self._sign(raw)}", hash_token(raw)

    def verify(self, token: str) -> str | None:
        """Return the session id for a well-signed token, else None."""
        if not token or "." not in token:
            return None
        raw, signature = token.rsplit(".", 1)
        if not hmac.compare_digest(signature, self._sign(raw)):
            return None
        return hash_token(raw)

    def _sign(self, data: str) -> str:
        return hmac.new(self._secret, data.encode(), hashlib.sha256).hexdigest()[:32]
