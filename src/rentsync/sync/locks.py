"""Per-entity lease keyed by (entity kind, platform id).

Serializes the create-or-skip decision for one entity so two concurrent
notifications for the same id can never both reach the remote create call.
Contending callers wait at most ``timeout`` seconds; a caller that times
out gets LockTimeoutError and the entity is left for the reconciliation
sweep. Keys are dropped from the registry once nobody holds or awaits them.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from src.rentsync.core.exceptions import LockTimeoutError

logger = structlog.get_logger(__name__)


class _Lease:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLock:
    """Registry of asyncio locks, one per (kind, id) key.

    Args:
        timeout: Default maximum wait in seconds for a contended key.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout
        self._leases: dict[tuple[str, str], _Lease] = {}

    def is_locked(self, kind: str, external_id: Any) -> bool:
        lease = self._leases.get((kind, str(external_id)))
        return bool(lease and lease.lock.locked())

    def __len__(self) -> int:
        return len(self._leases)

    @asynccontextmanager
    async def acquire(
        self, kind: str, external_id: Any, timeout: float | None = None
    ) -> AsyncIterator[None]:
        """Hold the lease for ``(kind, external_id)`` for the block's duration.

        Raises:
            LockTimeoutError: The lease was not obtained within the timeout.
        """
        key = (kind, str(external_id))
        wait = self._timeout if timeout is None else timeout
        lease = self._leases.setdefault(key, _Lease())
        lease.users += 1
        try:
            if lease.lock.locked():
                logger.info("entity_lock.waiting", kind=kind, external_id=key[1])
            try:
                async with asyncio.timeout(wait):
                    await lease.lock.acquire()
            except TimeoutError:
                logger.warning(
                    "entity_lock.timeout", kind=kind, external_id=key[1], timeout=wait
                )
                raise LockTimeoutError(kind, key[1], wait) from None
            try:
                yield
            finally:
                lease.lock.release()
        finally:
            lease.users -= 1
            if lease.users == 0:
                self._leases.pop(key, None)
