"""Guarded in-memory copy of the persisted reconciliation configuration."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database.repository import ConfigRepository
from .cron import build_cron_trigger
from .models import ReconciliationSettings

logger = logging.getLogger(__name__)


class SettingsManager:
    """Single source of truth for reconciliation settings.

    Readers get a copy via ``snapshot()``. Writers hold ``lock``, persist
    the new values, then swap the in-memory copy.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._settings = ReconciliationSettings()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def snapshot(self) -> ReconciliationSettings:
        """Return a copy of the current settings."""
        return self._settings.model_copy()

    async def load(self) -> ReconciliationSettings:
        """Load the persisted configuration, creating the defaults on first use.

        Raises:
            StoreError: If the configuration cannot be read or created.
        """
        async with self._lock:
            async with self._session_factory() as session:
                repo = ConfigRepository(session)
                row = await repo.get()
                if row is None:
                    await repo.create(ReconciliationSettings().model_dump(exclude={"updated_at"}))
                    row = await repo.get()
            self._settings = ReconciliationSettings.model_validate(row)
        logger.info(
            f"Loaded reconciliation settings: schedule={self._settings.schedule!r} "
            f"auto_fix={self._settings.auto_fix_enabled} threshold={self._settings.auto_fix_severity}"
        )
        return self.snapshot()

    async def update(self, **changes: Any) -> ReconciliationSettings:
        """Validate, persist and apply a partial settings change.

        Raises:
            ValueError: If a value is invalid; nothing is persisted.
            StoreError: If persisting fails; the in-memory copy is unchanged.
        """
        async with self._lock:
            return await self.apply_locked(changes)

    async def apply_locked(self, changes: Dict[str, Any]) -> ReconciliationSettings:
        """Apply a change while the caller already holds ``lock``."""
        if "schedule" in changes:
            build_cron_trigger(changes["schedule"])

        now = datetime.utcnow()
        try:
            updated = ReconciliationSettings.model_validate(
                {**self._settings.model_dump(), **changes, "updated_at": now}
            )
        except ValidationError as e:
            raise ValueError(f"Invalid reconciliation settings: {e}") from e

        values = updated.model_dump(include=set(changes) | {"updated_at"})
        async with self._session_factory() as session:
            await ConfigRepository(session).update(values)

        self._settings = updated
        logger.info(f"Updated reconciliation settings: {sorted(changes)}")
        return self.snapshot()
