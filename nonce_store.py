"""Short-lived, single-use nonces for wallet login.

Entries live in process memory, so the store is only exclusive within one
process. Running several API instances needs a shared backend instead.
"""
from __future__ import annotations

import secrets
import string
import threading
import time
from functools import lru_cache
from typing import Callable, Dict

import structlog

from settings import get_settings

logger = structlog.get_logger(__name__)

NONCE_ALPHABET = string.ascii_letters + string.digits


def generate_nonce(length: int = 16) -> str:
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


class NonceStore:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._expires_at: Dict[str, float] = {}
        self._lock = threading.Lock()

    def issue(self) -> str:
        nonce = generate_nonce()
        with self._lock:
            self._sweep()
            self._expires_at[nonce] = self._clock() + self.ttl_seconds
        return nonce

    def consume(self, nonce: str) -> bool:
        """Remove ``nonce`` and report whether it was known and still fresh."""
        with self._lock:
            expires_at = self._expires_at.pop(nonce, None)
        if expires_at is None:
            return False
        if self._clock() > expires_at:
            logger.info("Rejected expired nonce")
            return False
        return True

    def _sweep(self) -> None:
        now = self._clock()
        expired = [nonce for nonce, expires_at in self._expires_at.items() if expires_at < now]
        for nonce in expired:
            del self._expires_at[nonce]

    def __len__(self) -> int:
        return len(self._expires_at)


@lru_cache()
def get_nonce_store() -> NonceStore:
    return NonceStore(ttl_seconds=get_settings().nonce_ttl_seconds)
