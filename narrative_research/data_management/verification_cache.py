"""Verification verdict cache keyed by normalized claim text.

Mirrors the verification_cache table of the hosted deployment:
- claim_hash: SHA-256 of lower-cased, whitespace-collapsed claim text
- entries expire after a TTL (default 7 days)
- hit counter incremented on every cache hit

Only terminal, conclusive verdicts are cached; UNABLE_TO_VERIFY means the
upstream could not answer and must be retried on the next request.

Usage:
    from narrative_research.data_management.verification_cache import VerificationCache

    cache = VerificationCache(ttl_days=7)
    await cache.put(claim.text, verification)
    cached = await cache.get(claim.text)
"""

import asyncio
import hashlib
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from narrative_research.data_management.schemas import (
    ClaimVerification,
    VerificationStatus,
    utc_now,
)


def hash_claim(text: str) -> str:
    """SHA-256 of the normalized claim text."""
    normalized = " ".join(text.lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class CachedVerification(BaseModel):
    """One cache row."""

    claim_hash: str
    claim_text: str
    verification: ClaimVerification
    cached_at: datetime = Field(default_factory=utc_now)
    hits: int = 0


class VerificationCache:
    """In-memory verdict cache with TTL, hit counting and optional JSON persistence."""

    def __init__(
        self,
        ttl_days: int = 7,
        persistence_path: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize VerificationCache.

        Args:
            ttl_days: Days an entry stays valid.
            persistence_path: Optional path to JSON file for persistence.
            clock: Source of "now" (overridable in tests).
        """
        self._entries: dict[str, CachedVerification] = {}
        self._lock = asyncio.Lock()
        self._ttl = timedelta(days=ttl_days)
        self._clock = clock
        self._persistence_path = Path(persistence_path) if persistence_path else None
        self._logger = structlog.get_logger().bind(component="VerificationCache")

        if self._persistence_path and self._persistence_path.exists():
            self._load_from_file()

    async def get(self, claim_text: str) -> Optional[ClaimVerification]:
        """Return a fresh cached verification, or None on miss or expiry."""
        key = hash_claim(claim_text)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry):
                del self._entries[key]
                self._logger.debug("cache_expired", claim_hash=key[:12])
                return None

            entry.hits += 1
            self._logger.debug("cache_hit", claim_hash=key[:12], hits=entry.hits)
            return entry.verification.model_copy(deep=True)

    async def put(self, claim_text: str, verification: ClaimVerification) -> bool:
        """Cache a conclusive verification. Returns False if it was not cacheable."""
        if not verification.is_terminal or (
            verification.status == VerificationStatus.UNABLE_TO_VERIFY
        ):
            return False

        key = hash_claim(claim_text)
        async with self._lock:
            self._entries[key] = CachedVerification(
                claim_hash=key,
                claim_text=claim_text,
                verification=verification.model_copy(deep=True),
                cached_at=self._clock(),
            )
            if self._persistence_path:
                self._save_to_file()
        return True

    async def purge_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        async with self._lock:
            expired = [k for k, e in self._entries.items() if self._is_expired(e)]
            for key in expired:
                del self._entries[key]
            if expired and self._persistence_path:
                self._save_to_file()

        if expired:
            self._logger.info("cache_purged", removed=len(expired))
        return len(expired)

    async def get_stats(self) -> dict[str, Any]:
        async with self._lock:
            return {
                "entries": len(self._entries),
                "total_hits": sum(e.hits for e in self._entries.values()),
            }

    def _is_expired(self, entry: CachedVerification) -> bool:
        return self._clock() - entry.cached_at > self._ttl

    def _save_to_file(self) -> None:
        """Save to JSON file (synchronous)."""
        try:
            self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
            data = {k: e.model_dump(mode="json") for k, e in self._entries.items()}
            with open(self._persistence_path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            self._logger.error("persistence_failed", error=str(e))

    def _load_from_file(self) -> None:
        try:
            with open(self._persistence_path) as f:
                data = json.load(f)
            for key, raw in data.items():
                self._entries[key] = CachedVerification.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self._logger.error("load_failed", error=str(e))
