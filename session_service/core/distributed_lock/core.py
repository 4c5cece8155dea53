"""Per-key lock registry.

Provides mutual exclusion for read-modify-write cycles on a single aggregate:
- Lazily created asyncio locks keyed by id
- Fencing tokens per acquisition
- Context manager releasing on every exit path
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from session_service.core.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class LockStatus(Enum):
    """Status of a lock handle."""
    ACQUIRED = "acquired"
    RELEASED = "released"


class FencingTokenGenerator:
    """Generates monotonically increasing fencing tokens."""

    def __init__(self, initial: int = 0):
        self._counter = initial

    def next(self) -> int:
        self._counter += 1
        return self._counter


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # holder + waiters; the entry is evicted when this drops to zero
    refs: int = 0


class LockHandle:
    """Release handle returned by ``LockRegistry.acquire``."""

    def __init__(self, registry: "LockRegistry", key: str, fencing_token: int):
        self._registry = registry
        self.key = key
        self.fencing_token = fencing_token
        self.status = LockStatus.ACQUIRED

    @property
    def is_released(self) -> bool:
        return self.status == LockStatus.RELEASED

    def release(self) -> None:
        """Release the lock. Calling it more than once is a no-op."""
        if self.is_released:
            return
        self.status = LockStatus.RELEASED
        self._registry._release(self.key)


class LockRegistry:
    """Mutual exclusion keyed by aggregate id.

    Distinct keys never block each other. Acquisitions of the same key are
    granted in FIFO order.
    """

    def __init__(self, wait_timeout: Optional[float] = None):
        self._entries: Dict[str, _LockEntry] = {}
        self._token_generator = FencingTokenGenerator()
        self._wait_timeout = wait_timeout

    async def acquire(self, key: str, wait_timeout: Optional[float] = None) -> LockHandle:
        """Suspend until ``key`` is free, then take it.

        Args:
            key: Lock key (usually an aggregate id).
            wait_timeout: Max seconds to wait; falls back to the registry default.

        Raises:
            LockTimeoutError: If the wait exceeds the timeout.
        """
        timeout = wait_timeout if wait_timeout is not None else self._wait_timeout
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry
        entry.refs += 1

        try:
            if timeout is None:
                await entry.lock.acquire()
            else:
                await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            self._drop_ref(key, entry)
            raise LockTimeoutError(key, timeout) from None
        except BaseException:
            self._drop_ref(key, entry)
            raise

        handle = LockHandle(self, key, self._token_generator.next())
        logger.debug(
            f"Lock '{key}' acquired",
            extra={"lock_key": key, "fencing_token": handle.fencing_token},
        )
        return handle

    def hold(self, key: str, wait_timeout: Optional[float] = None) -> "LockContext":
        """Context manager form of ``acquire``."""
        return LockContext(self, key, wait_timeout)

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @property
    def active_keys(self) -> List[str]:
        return list(self._entries.keys())

    def _release(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.lock.release()
        self._drop_ref(key, entry)
        logger.debug(f"Lock '{key}' released", extra={"lock_key": key})

    def _drop_ref(self, key: str, entry: _LockEntry) -> None:
        entry.refs -= 1
        if entry.refs <= 0 and self._entries.get(key) is entry:
            del self._entries[key]


class LockContext:
    """Async context manager for a registry lock."""

    def __init__(
        self,
        registry: LockRegistry,
        key: str,
        wait_timeout: Optional[float] = None,
    ):
        self._registry = registry
        self._key = key
        self._wait_timeout = wait_timeout
        self._handle: Optional[LockHandle] = None

    async def __aenter__(self) -> LockHandle:
        self._handle = await self._registry.acquire(self._key, self._wait_timeout)
        return self._handle

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._handle:
            self._handle.release()
