"""Fire-and-forget sink for audit entries.

Callers hand an entry to `audit_dispatcher.emit(...)` and move on.  Each
entry is written by its own asyncio task on its own session, so a slow
or failing audit write can never delay, fail, or roll back the request
that produced it.  Failures are logged here and go no further.

On shutdown the app lifespan awaits `audit_dispatcher.drain()` so queued
entries are not lost.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from equiploan.database import async_session
from equiploan.models.audit_log import AuditLog

logger = logging.getLogger("equiploan.audit")


class AuditDispatcher:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        # Resolved at write time so tests can point it at their own database
        self.session_factory = session_factory or async_session
        self._pending: set[asyncio.Task] = set()

    def emit(self, **fields) -> None:
        """Schedule one AuditLog row; never raises, never blocks."""
        try:
            task = asyncio.get_running_loop().create_task(self._write(fields))
        except RuntimeError:
            logger.error(
                "No running event loop; dropped audit entry %s/%s",
                fields.get("action"), fields.get("entity_type"),
            )
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, fields: dict) -> None:
        try:
            async with self.session_factory() as db:
                db.add(AuditLog(**fields))
                await db.commit()
        except Exception:
            logger.exception(
                "Failed to write audit entry %s/%s",
                fields.get("action"), fields.get("entity_type"),
            )

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)


audit_dispatcher = AuditDispatcher()
