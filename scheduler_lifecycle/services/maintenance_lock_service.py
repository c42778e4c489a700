"""
Maintenance Lock Service

Single-flight guard for maintenance runs across every process that shares the
database. The lock is a lease row in maintenance_locks keyed by lock_name:

- acquire: drop the lease if it has expired, then insert a new one. The primary
  key makes a second insert fail, which means another holder owns the lease.
- renew: push expires_at out by another TTL, but only if this holder still owns it.
- release: delete the lease row, but only if this holder still owns it.

Leases expire after MAINTENANCE_LOCK_TTL_MINUTES so a crashed holder cannot
block maintenance forever. A live run renews its lease between steps, so a run
that takes longer than one TTL keeps the lease.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.services.database import db_service

logger = logging.getLogger(__name__)

MAINTENANCE_LOCK_NAME = "data_maintenance"


class MaintenanceLease:
    """
    Handle for one acquisition attempt.

    Truthy when the lease is held, so `if lease:` reads the same as checking
    a plain acquired flag.
    """

    def __init__(self, service: "MaintenanceLockService", lock_name: str, holder_id: str):
        self.service = service
        self.lock_name = lock_name
        self.holder_id = holder_id
        self.acquired = False
        self.expires_at: Optional[datetime] = None

    def __bool__(self) -> bool:
        return self.acquired

    async def renew(self) -> bool:
        """
        Extend the lease by another TTL.

        Returns:
            False once the lease has been lost (taken over, or expired while
            the store could not be reached), True otherwise
        """
        if not self.acquired:
            return False

        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(minutes=self.service.ttl_minutes)

        try:
            renewed = await db_service.extend_maintenance_lock(
                self.lock_name, self.holder_id, expires_at.isoformat()
            )
        except Exception as e:
            logger.error(f"Error renewing maintenance lease {self.lock_name}: {str(e)}")
            return self.expires_at is not None and now < self.expires_at

        if not renewed:
            logger.warning(f"Maintenance lease {self.lock_name} is no longer held by {self.holder_id}")
            self.acquired = False
            return False

        self.expires_at = expires_at
        logger.debug(f"Maintenance lease {self.lock_name} renewed until {expires_at.isoformat()}")
        return True


class MaintenanceLockService:
    """Lease-based lock for the maintenance orchestrator"""

    def __init__(self, ttl_minutes: Optional[int] = None):
        self.ttl_minutes = ttl_minutes or settings.MAINTENANCE_LOCK_TTL_MINUTES

    async def _acquire_lock(self, lease: MaintenanceLease) -> bool:
        """
        Try once to take the lease.

        Returns:
            True if the lease row was inserted, False if it is held elsewhere
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(minutes=self.ttl_minutes)

        try:
            removed = await db_service.delete_expired_maintenance_lock(lease.lock_name, now.isoformat())
            if removed:
                logger.warning(f"Removed expired maintenance lease {lease.lock_name}")
        except Exception as e:
            logger.error(f"Error clearing expired lease {lease.lock_name}: {str(e)}")

        try:
            await db_service.insert_maintenance_lock({
                "lock_name": lease.lock_name,
                "holder_id": lease.holder_id,
                "acquired_at": now.isoformat(),
                "expires_at": expires_at.isoformat(),
            })
        except Exception as e:
            logger.info(f"Maintenance lease {lease.lock_name} not acquired: {str(e)}")
            return False

        lease.expires_at = expires_at
        return True

    async def _release_lock(self, lease: MaintenanceLease) -> bool:
        try:
            released = await db_service.delete_maintenance_lock(lease.lock_name, lease.holder_id)
            if not released:
                logger.warning(f"Maintenance lease {lease.lock_name} was no longer held by {lease.holder_id}")
            return released
        except Exception as e:
            logger.error(f"Error releasing maintenance lease {lease.lock_name}: {str(e)}")
            return False

    @asynccontextmanager
    async def acquire_maintenance_lock(
        self,
        lock_name: str = MAINTENANCE_LOCK_NAME
    ) -> AsyncIterator[MaintenanceLease]:
        """
        Context manager for the maintenance lease.

        Usage:
            async with maintenance_lock_service.acquire_maintenance_lock() as lease:
                if not lease:
                    return  # another run is in progress
                ...
                if not await lease.renew():
                    return  # lease lost mid-run

        Yields:
            MaintenanceLease: truthy if the lease was acquired
        """
        lease = MaintenanceLease(self, lock_name, str(uuid.uuid4()))
        lock_acquired = False

        try:
            lock_acquired = await self._acquire_lock(lease)
            lease.acquired = lock_acquired
            if lock_acquired:
                logger.info(f"Maintenance lease {lock_name} acquired (holder={lease.holder_id})")
            else:
                logger.warning(f"Maintenance lease {lock_name} is held by another run")

            yield lease

        finally:
            if lock_acquired:
                if await self._release_lock(lease):
                    logger.info(f"Maintenance lease {lock_name} released (holder={lease.holder_id})")
            lease.acquired = False


maintenance_lock_service = MaintenanceLockService()
