"""
In-process cache of effective permission sets.

Entries are keyed by (user_id, organization_id) and indexed by organization
so a change to an organization's flags or types can drop every cached
principal in it. Every invalidation bumps a version; a put made with a
version read before that invalidation is discarded, so a read that raced a
write cannot put a stale set back.

Expired entries are dropped when read, and put() sweeps out the rest once
per ttl so principals that never come back do not pile up.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from app.core import config
from app.features.permissions.types import Principal
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class _Entry:
    codes: frozenset[str]
    expires_at: float


class PermissionCache:
    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], _Entry] = {}
        self._by_organization: dict[str, set[str]] = {}
        self._version = 0
        self._next_sweep = 0.0

    @staticmethod
    def _key(principal: Principal) -> Optional[tuple[str, str]]:
        # admins and org-less principals are decided without store reads
        if principal.is_platform_admin or principal.organization_id is None:
            return None
        return principal.user_id, principal.organization_id

    def version(self) -> int:
        with self._lock:
            return self._version

    def get(self, principal: Principal) -> Optional[frozenset[str]]:
        key = self._key(principal)
        if key is None:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                self._drop(key)
                return None
            return entry.codes

    def put(
        self,
        principal: Principal,
        codes: frozenset[str],
        ttl: Optional[float] = None,
        version: Optional[int] = None,
    ) -> bool:
        """Store a set. Returns False when caching is off or the set is stale."""
        key = self._key(principal)
        ttl = self.ttl if ttl is None else ttl
        if key is None or ttl <= 0:
            return False
        with self._lock:
            if version is not None and version != self._version:
                log.debug(f"Discarding stale permission set for {key}")
                return False
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._entries[key] = _Entry(frozenset(codes), now + ttl)
            self._by_organization.setdefault(key[1], set()).add(key[0])
            return True

    def invalidate(self, user_id: str, organization_id: str) -> None:
        with self._lock:
            self._version += 1
            self._drop((user_id, organization_id))

    def invalidate_organization(self, organization_id: str) -> None:
        with self._lock:
            self._version += 1
            for user_id in self._by_organization.pop(organization_id, set()):
                self._entries.pop((user_id, organization_id), None)

    def clear(self) -> None:
        with self._lock:
            self._version += 1
            self._entries.clear()
            self._by_organization.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep(self, now: float) -> None:
        # caller holds the lock; runs at most once per ttl from put()
        for key in [key for key, entry in self._entries.items() if entry.expires_at <= now]:
            self._drop(key)
        self._next_sweep = now + self.ttl

    def _drop(self, key: tuple[str, str]) -> None:
        # caller holds the lock
        self._entries.pop(key, None)
        users = self._by_organization.get(key[1])
        if users is not None:
            users.discard(key[0])
            if not users:
                del self._by_organization[key[1]]


_cache: Optional[PermissionCache] = None
_cache_lock = threading.Lock()


def get_permission_cache() -> PermissionCache:
    """Process-wide cache shared by every request."""
    global _cache
    with _cache_lock:
        if _cache is None:
            _cache = PermissionCache(ttl=config.PERMISSION_CACHE_TTL)
        return _cache
