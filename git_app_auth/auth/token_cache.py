"""In-memory cache of installation access tokens.

Installation tokens live for an hour; exchanging an assertion for one costs
a network round trip. The cache keeps each token until shortly before the
host would reject it, so repeated git operations in one process reuse a
single exchange.

Expiry Policy:
    On put, ``expires_at = host_expiry - SAFETY_MARGIN``, but never earlier
    than the moment the entry is created. A get at or after ``expires_at``
    is a miss. A served token therefore always has at least the safety
    margin left on the host's clock.

Thread Safety:
    All operations hold one asyncio.Lock. Entries are replaced whole, never
    updated in place, so a reader sees either the previous or the new token
    together with its own expiry.

Memory Hygiene:
    Token bytes are held in a bytearray and zeroed when an entry is
    evicted, superseded or cleared. Nothing is ever written to disk.

Example:
    >>> async with TokenCache() as cache:
    ...     await cache.put(key, token, host_expiry)
    ...     token = await cache.get(key)
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog

from git_app_auth.auth.assertion import Clock, utc_now
from git_app_auth.enums import IdentityKind
from git_app_auth.utils.secrets import wipe

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheKey:
    """Identifies a cached credential by identity kind and numeric ids."""

    kind: IdentityKind
    app_id: int
    installation_id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.app_id}:{self.installation_id}"


@dataclass(frozen=True)
class CachedToken:
    """A cached token with its lifetime.

    Attributes:
        secret: Token bytes, zeroed on eviction
        created_at: When the entry was stored
        expires_at: When the entry stops being served
    """

    secret: bytearray = field(repr=False)
    created_at: datetime
    expires_at: datetime

    @property
    def token(self) -> str:
        return self.secret.decode("utf-8")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class TokenCache:
    """Maps cache keys to installation tokens until shortly before expiry.

    Attributes:
        safety_margin: Time subtracted from the host-declared expiry
        sweep_interval: Seconds between background sweeps
    """

    SAFETY_MARGIN = timedelta(minutes=5)
    SWEEP_INTERVAL = 60.0

    def __init__(
        self,
        clock: Clock | None = None,
        safety_margin: timedelta = SAFETY_MARGIN,
        sweep_interval: float = SWEEP_INTERVAL,
    ) -> None:
        """Initialize the cache.

        The background sweep is not running until start() is called or the
        cache is entered as an async context manager.

        Args:
            clock: Returns the current UTC time (default: datetime.now(UTC))
            safety_margin: Subtracted from host expiry on put
            sweep_interval: Seconds between background sweeps
        """
        self.clock = clock or utc_now
        self.safety_margin = safety_margin
        self.sweep_interval = sweep_interval
        self._entries: dict[CacheKey, CachedToken] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    async def __aenter__(self) -> "TokenCache":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start(self) -> None:
        """Launch the periodic sweep on the running event loop."""
        if self.running:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="token-cache-sweep")
        log.debug("cache_sweeper_started", interval=self.sweep_interval)

    async def stop(self) -> None:
        """Cancel the sweep and wipe every entry."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep()

    async def get(self, key: CacheKey) -> str | None:
        """Return the cached token, or None on a miss.

        Expired entries are removed and wiped on access.
        """
        entry = await self.get_entry(key)
        return entry[0] if entry else None

    async def get_entry(self, key: CacheKey) -> tuple[str, datetime] | None:
        """Return the cached token together with its expiry, read atomically."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                log.debug("cache_miss", key=str(key))
                return None

            if entry.is_expired(self.clock()):
                del self._entries[key]
                wipe(entry.secret)
                log.debug("cache_expired", key=str(key))
                return None

            log.debug("cache_hit", key=str(key), expires_at=entry.expires_at.isoformat())
            return entry.token, entry.expires_at

    async def put(self, key: CacheKey, token: str, host_expiry: datetime) -> CachedToken:
        """Cache a token, replacing any previous entry for the key.

        Args:
            key: Cache key
            token: Access token
            host_expiry: Expiry declared by the host

        Returns:
            The stored entry
        """
        if not token:
            raise ValueError("Refusing to cache an empty token")
        if host_expiry.tzinfo is None:
            host_expiry = host_expiry.replace(tzinfo=UTC)

        async with self._lock:
            created_at = self.clock()
            expires_at = max(host_expiry - self.safety_margin, created_at)
            entry = CachedToken(secret=bytearray(token.encode("utf-8")), created_at=created_at, expires_at=expires_at)

            previous = self._entries.get(key)
            self._entries[key] = entry
            if previous is not None:
                wipe(previous.secret)

        log.debug("cache_set", key=str(key), expires_at=expires_at.isoformat())
        return entry

    async def invalidate(self, key: CacheKey) -> bool:
        """Drop one entry.

        Returns:
            True if an entry was removed
        """
        async with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return False
        wipe(entry.secret)
        log.debug("cache_invalidated", key=str(key))
        return True

    async def invalidate_app(self, app_id: int) -> int:
        """Drop every entry belonging to an App, across installations.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            keys = [key for key in self._entries if key.kind == IdentityKind.APP and key.app_id == app_id]
            evicted = [self._entries.pop(key) for key in keys]
        for entry in evicted:
            wipe(entry.secret)
        if evicted:
            log.debug("cache_invalidated_app", app_id=app_id, entries=len(evicted))
        return len(evicted)

    async def sweep(self) -> int:
        """Remove and wipe all expired entries.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self.clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            evicted = [self._entries.pop(key) for key in expired]
        for entry in evicted:
            wipe(entry.secret)
        if evicted:
            log.debug("cache_swept", entries_removed=len(evicted))
        return len(evicted)

    async def clear(self) -> None:
        """Remove and wipe every entry."""
        async with self._lock:
            evicted = list(self._entries.values())
            self._entries.clear()
        for entry in evicted:
            wipe(entry.secret)
        if evicted:
            log.debug("cache_cleared", entries_cleared=len(evicted))
