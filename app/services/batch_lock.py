"""Per-domain batch lock kept in the database.

The API worker, the Celery worker and the CLI all run batches, each in its
own process. A row in ``domain_batch_locks`` marks the domain as taken; the
primary key makes the insert the arbitration point. Locks carry an expiry
so a crashed process cannot block a domain forever, and the holder pushes
the expiry forward after every prompt.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import BatchInProgressError
from app.models.batch_lock import DomainBatchLock

logger = logging.getLogger(__name__)


def default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


async def get_active_lock(session: AsyncSession, domain_id: str) -> DomainBatchLock | None:
    """The unexpired lock on a domain, if any."""
    stmt = select(DomainBatchLock).where(
        DomainBatchLock.domain_id == domain_id,
        DomainBatchLock.expires_at > datetime.now(timezone.utc),
    )
    return (await session.execute(stmt)).scalar_one_or_none()


class DomainBatchLocks:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], ttl_seconds: float = 900.0):
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)

    async def acquire(self, domain_id: str, holder: str) -> None:
        """Take the lock or raise BatchInProgressError. An expired lock is taken over."""
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            await session.execute(
                delete(DomainBatchLock).where(
                    DomainBatchLock.domain_id == domain_id,
                    DomainBatchLock.expires_at <= now,
                )
            )
            session.add(DomainBatchLock(domain_id=domain_id, holder=holder, acquired_at=now, expires_at=now + self.ttl))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                current = await session.get(DomainBatchLock, domain_id)
                owner = current.holder if current is not None else "unknown"
                logger.info("Domain %s is locked by %s", domain_id, owner)
                raise BatchInProgressError(domain_id, owner) from None
        logger.debug("Lock on domain %s taken by %s", domain_id, holder)

    async def refresh(self, domain_id: str, holder: str) -> bool:
        """Push the expiry forward. False when the lock is no longer ours."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(DomainBatchLock)
                .where(DomainBatchLock.domain_id == domain_id, DomainBatchLock.holder == holder)
                .values(expires_at=datetime.now(timezone.utc) + self.ttl)
            )
            await session.commit()
        if result.rowcount == 0:
            logger.warning("Lock on domain %s lost by %s", domain_id, holder)
            return False
        return True

    async def release(self, domain_id: str, holder: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(DomainBatchLock).where(
                    DomainBatchLock.domain_id == domain_id,
                    DomainBatchLock.holder == holder,
                )
            )
            await session.commit()

    @asynccontextmanager
    async def hold(self, domain_id: str, holder: str) -> AsyncIterator[str]:
        await self.acquire(domain_id, holder)
        try:
            yield holder
        finally:
            await self.release(domain_id, holder)
