"""
Process-wide cache of verified integration credentials.

Keyed by (organization_id, integration_key). Each key carries a generation
counter: ``invalidate`` bumps it, and ``mark_verified`` only succeeds for the
generation read by ``begin`` before the handshake started. A connection test
that races with a credential change therefore can never publish a Verified
entry after the change's invalidation.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from pms_api.db.enums import IntegrationKey

CacheKey = tuple[UUID, IntegrationKey]


@dataclass(frozen=True)
class VerifiedEntry:
    values: dict[str, str]
    generation: int
    verified_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class VerificationCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generations: dict[CacheKey, int] = {}
        self._entries: dict[CacheKey, VerifiedEntry] = {}

    @staticmethod
    def _key(org_id: UUID, key: IntegrationKey) -> CacheKey:
        return (org_id, IntegrationKey(key))

    def begin(self, org_id: UUID, key: IntegrationKey) -> int:
        """Current generation; read before loading the credentials to test."""
        with self._lock:
            return self._generations.get(self._key(org_id, key), 0)

    def mark_verified(
        self, org_id: UUID, key: IntegrationKey, generation: int, values: dict[str, str]
    ) -> bool:
        """Publish a verified entry unless the key was invalidated since ``begin``."""
        cache_key = self._key(org_id, key)
        with self._lock:
            if self._generations.get(cache_key, 0) != generation:
                return False
            self._entries[cache_key] = VerifiedEntry(values=dict(values), generation=generation)
            return True

    def discard(self, org_id: UUID, key: IntegrationKey, generation: int) -> None:
        """Drop the entry after a failed or abandoned test of ``generation``."""
        cache_key = self._key(org_id, key)
        with self._lock:
            if self._generations.get(cache_key, 0) == generation:
                self._entries.pop(cache_key, None)

    def invalidate(self, org_id: UUID, key: IntegrationKey) -> None:
        """Credentials changed: forget the entry and fence off in-flight tests."""
        cache_key = self._key(org_id, key)
        with self._lock:
            self._generations[cache_key] = self._generations.get(cache_key, 0) + 1
            self._entries.pop(cache_key, None)

    def get(self, org_id: UUID, key: IntegrationKey) -> VerifiedEntry | None:
        with self._lock:
            return self._entries.get(self._key(org_id, key))

    def get_verified(self, org_id: UUID, key: IntegrationKey) -> dict[str, str] | None:
        entry = self.get(org_id, key)
        return dict(entry.values) if entry else None

    def is_verified(self, org_id: UUID, key: IntegrationKey) -> bool:
        return self.get(org_id, key) is not None

    def clear(self) -> None:
        with self._lock:
            self._generations.clear()
            self._entries.clear()


verification_cache = VerificationCache()
