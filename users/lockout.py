"""
Login lockout and per-address attempt throttling.

The guard keeps two kinds of state in an injectable store:

* per account: consecutive failed logins and, once the threshold is reached,
  the instant the temporary lock ends;
* per client address: the timestamps of login attempts inside a sliding
  window.

Every read-modify-write happens under the store's per-key lock so concurrent
failures for the same account are never lost.
"""

from __future__ import annotations

import contextlib
import datetime
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Protocol

from django.conf import settings
from django.core.cache import caches
from django.utils.module_loading import import_string

from recognition.clock import Clock, SystemClock
from recognition.errors import AccountLocked, RateLimited

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LockoutState:
    """Failed-login bookkeeping for one account."""

    failure_count: int = 0
    last_failure_at: Optional[datetime.datetime] = None
    locked_until: Optional[datetime.datetime] = None

    def is_locked(self, now: datetime.datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def lock_expired(self, now: datetime.datetime) -> bool:
        return self.locked_until is not None and self.locked_until <= now


@dataclass(frozen=True)
class LockoutDecision:
    """Outcome of one recorded login failure."""

    locked: bool
    failure_count: int
    locked_until: Optional[datetime.datetime]
    remaining_attempts: int


class LockoutStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:  # pragma: no cover - protocol
        ...

    def set(self, key: str, value: Any, timeout: Optional[float] = None) -> None:  # pragma: no cover
        ...

    def delete(self, key: str) -> None:  # pragma: no cover - protocol
        ...

    def lock(self, key: str) -> contextlib.AbstractContextManager:  # pragma: no cover - protocol
        ...


class InMemoryLockoutStore:
    """Process-local store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._values: dict[str, tuple[Any, Optional[float]]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._guard:
            entry = self._values.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._values[key]
                return default
            return value

    def set(self, key: str, value: Any, timeout: Optional[float] = None) -> None:
        expires_at = time.monotonic() + timeout if timeout is not None else None
        with self._guard:
            self._values[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._guard:
            self._values.pop(key, None)

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
        with key_lock:
            yield


class CacheLockoutStore:
    """
    Store backed by a Django cache so every worker sees the same counters.

    The per-key lock is a short-lived mutex entry created with ``cache.add``,
    which is atomic on the Redis and local-memory backends.
    """

    mutex_timeout = 5
    acquire_timeout = 2.0
    poll_interval = 0.01

    def __init__(self, alias: str = "default") -> None:
        self.alias = alias

    @property
    def cache(self):
        return caches[self.alias]

    def get(self, key: str, default: Any = None) -> Any:
        return self.cache.get(key, default)

    def set(self, key: str, value: Any, timeout: Optional[float] = None) -> None:
        self.cache.set(key, value, timeout=timeout)

    def delete(self, key: str) -> None:
        self.cache.delete(key)

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        mutex_key = f"{key}:mutex"
        deadline = time.monotonic() + self.acquire_timeout
        acquired = self.cache.add(mutex_key, 1, timeout=self.mutex_timeout)
        while not acquired:
            if time.monotonic() >= deadline:
                # A crashed holder leaves the mutex until it times out.
                logger.warning("Lockout mutex %s still held after %.1fs", mutex_key, self.acquire_timeout)
                break
            time.sleep(self.poll_interval)
            acquired = self.cache.add(mutex_key, 1, timeout=self.mutex_timeout)
        try:
            yield
        finally:
            if acquired:
                self.cache.delete(mutex_key)


def build_store(path: Optional[str] = None) -> LockoutStore:
    """Instantiate the store class named by ``LOGIN_LOCKOUT_STORE``."""

    store_class = import_string(path or settings.LOGIN_LOCKOUT_STORE)
    return store_class()


class LockoutGuard:
    """Counts failed logins per account and throttles attempts per address."""

    def __init__(
        self,
        store: Optional[LockoutStore] = None,
        *,
        clock: Optional[Clock] = None,
        threshold: int = 5,
        lock_duration: datetime.timedelta = datetime.timedelta(hours=2),
        max_attempts: int = 5,
        attempt_window: datetime.timedelta = datetime.timedelta(minutes=15),
    ) -> None:
        self.store = store if store is not None else InMemoryLockoutStore()
        self.clock = clock or SystemClock()
        self.threshold = threshold
        self.lock_duration = lock_duration
        self.max_attempts = max_attempts
        self.attempt_window = attempt_window

    @classmethod
    def from_settings(
        cls,
        *,
        store: Optional[LockoutStore] = None,
        clock: Optional[Clock] = None,
    ) -> "LockoutGuard":
        return cls(
            store if store is not None else build_store(),
            clock=clock,
            threshold=settings.LOGIN_LOCKOUT_THRESHOLD,
            lock_duration=datetime.timedelta(seconds=settings.LOGIN_LOCKOUT_DURATION_SECONDS),
            max_attempts=settings.LOGIN_IP_RATE_LIMIT_ATTEMPTS,
            attempt_window=datetime.timedelta(seconds=settings.LOGIN_IP_RATE_LIMIT_WINDOW_SECONDS),
        )

    @staticmethod
    def _account_key(user: Any) -> str:
        return f"lockout:account:{getattr(user, 'pk', user)}"

    @staticmethod
    def _address_key(address: str) -> str:
        return f"lockout:address:{address}"

    def state(self, user: Any) -> LockoutState:
        return self.store.get(self._account_key(user)) or LockoutState()

    def _decision(self, state: LockoutState, now: datetime.datetime) -> LockoutDecision:
        locked = state.is_locked(now)
        return LockoutDecision(
            locked=locked,
            failure_count=state.failure_count,
            locked_until=state.locked_until if locked else None,
            remaining_attempts=0 if locked else max(0, self.threshold - state.failure_count),
        )

    def record_failure(self, user: Any) -> LockoutDecision:
        """
        Count one failed login for ``user`` and lock the account at the threshold.

        A failure after an expired lock starts a fresh count at one. Failures
        while the lock is active are not counted.
        """

        key = self._account_key(user)
        now = self.clock.now()
        with self.store.lock(key):
            current = self.store.get(key) or LockoutState()
            if current.is_locked(now):
                return self._decision(current, now)
            count = 1 if current.lock_expired(now) else current.failure_count + 1
            updated = LockoutState(failure_count=count, last_failure_at=now)
            if count >= self.threshold:
                updated.locked_until = now + self.lock_duration
                logger.warning(
                    "Locking account %s until %s after %d failed logins",
                    getattr(user, "pk", user),
                    updated.locked_until.isoformat(),
                    count,
                )
            self.store.set(key, updated, timeout=None)
        return self._decision(updated, now)

    def record_success(self, user: Any) -> None:
        key = self._account_key(user)
        with self.store.lock(key):
            self.store.delete(key)

    def is_locked(self, user: Any) -> bool:
        return self.state(user).is_locked(self.clock.now())

    def ensure_not_locked(self, user: Any) -> None:
        now = self.clock.now()
        current = self.state(user)
        if current.is_locked(now):
            raise AccountLocked(retry_after=current.locked_until - now)

    def register_attempt(self, address: str) -> int:
        """
        Record a login attempt from ``address`` inside the sliding window.

        Raises :class:`RateLimited` once ``max_attempts`` attempts already fall
        inside the window; the rejected attempt is not recorded. Returns the
        number of attempts in the window including this one.
        """

        key = self._address_key(address)
        now = self.clock.now()
        window_start = now - self.attempt_window
        with self.store.lock(key):
            attempts: List[datetime.datetime] = [
                moment for moment in self.store.get(key, []) if moment > window_start
            ]
            if len(attempts) >= self.max_attempts:
                retry_after = attempts[0] + self.attempt_window - now
                logger.info("Login attempts from %s throttled", address)
                raise RateLimited(retry_after=retry_after)
            attempts.append(now)
            self.store.set(key, attempts, timeout=self.attempt_window.total_seconds())
        return len(attempts)
