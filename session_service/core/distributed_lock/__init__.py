"""Lock Module.

Provides per-aggregate locking for the write side:
- Lock registry with lazily created per-key locks
- Release handles with fencing tokens
- Async context manager
"""

from session_service.core.distributed_lock.core import (
    FencingTokenGenerator,
    LockContext,
    LockHandle,
    LockRegistry,
    LockStatus,
)

__all__ = [
    "FencingTokenGenerator",
    "LockContext",
    "LockHandle",
    "LockRegistry",
    "LockStatus",
]
