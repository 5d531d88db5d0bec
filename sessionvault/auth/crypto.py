"""Token generation, fingerprinting and hashing.

The refresh token has two derived values. The fingerprint is a fast SHA-256
digest used as the indexed lookup key. The hash is a slow salted argon2id
digest and is the actual authentication factor, so a leaked table cannot be
cheaply reversed.
"""

import asyncio
import hashlib
import secrets
from functools import lru_cache

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from sessionvault.config import get_settings

TOKEN_BYTE_LENGTH = 64


def new_opaque_token() -> str:
    """Generate a URL-safe refresh token secret (512 bits of entropy)."""
    return secrets.token_urlsafe(TOKEN_BYTE_LENGTH)


def fingerprint_token(token: str) -> str:
    """Deterministic, non-secret lookup key for a token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def hash_client_hint(value: str | None) -> str | None:
    """One-way hash of an IP address or user agent; None when absent."""
    if not value:
        return None
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class TokenHasher:
    """argon2id hashing for refresh-token secrets."""

    def __init__(self, time_cost: int, memory_cost: int, parallelism: int):
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    def hash(self, token: str) -> str:
        return self._hasher.hash(token)

    def verify(self, token: str, token_hash: str) -> bool:
        try:
            return self._hasher.verify(token_hash, token)
        except (VerificationError, InvalidHashError):
            return False

    async def hash_async(self, token: str) -> str:
        return await asyncio.to_thread(self.hash, token)

    async def verify_async(self, token: str, token_hash: str) -> bool:
        return await asyncio.to_thread(self.verify, token, token_hash)


@lru_cache
def get_token_hasher() -> TokenHasher:
    settings = get_settings()
    return TokenHasher(
        time_cost=settings.TOKEN_HASH_TIME_COST,
        memory_cost=settings.TOKEN_HASH_MEMORY_COST,
        parallelism=settings.TOKEN_HASH_PARALLELISM,
    )


def hash_token(token: str) -> str:
    return get_token_hasher().hash(token)


def verify_token_hash(token: str, token_hash: str) -> bool:
    return get_token_hasher().verify(token, token_hash)
