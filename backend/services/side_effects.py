"""
Activity log + notification delivery.

Writes are queued and performed by a background worker in their own session,
retried with exponential backoff. Enqueueing never raises, and a delivery that
keeps failing is logged and dropped, so the ledger mutation that produced it
is never affected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from uuid import UUID

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from core.config import settings
from db.activity import ActivityLog, Notification, NotificationSeverity
from db.database import async_session_maker
from db.users import Role, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityJob:
    actor_id: Optional[UUID]
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    before: Any = None
    after: Any = None


@dataclass(frozen=True)
class NotificationJob:
    user_id: UUID
    title: str
    body: str
    severity: str = NotificationSeverity.INFO.value


@dataclass(frozen=True)
class AdminBroadcastJob:
    title: str
    body: str
    severity: str = NotificationSeverity.INFO.value
    exclude_user_ids: tuple = field(default_factory=tuple)


Job = Union[ActivityJob, NotificationJob, AdminBroadcastJob]


class SideEffectQueue:
    def __init__(
        self,
        session_maker: async_sessionmaker = async_session_maker,
        max_attempts: int = settings.side_effect_max_attempts,
        backoff_max: float = settings.side_effect_backoff_max,
    ):
        self._session_maker = session_maker
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_max = float(backoff_max)
        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    # -- producers -----------------------------------------------------------

    def log_activity(
        self,
        actor_id: Optional[UUID],
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Any = None,
        before: Any = None,
        after: Any = None,
    ) -> None:
        self._enqueue(
            ActivityJob(
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                before=jsonable_encoder(before) if before is not None else None,
                after=jsonable_encoder(after) if after is not None else None,
            )
        )

    def notify(self, user_id: UUID, title: str, body: str, severity: str = NotificationSeverity.INFO.value) -> None:
        self._enqueue(NotificationJob(user_id=user_id, title=title, body=body, severity=severity))

    def notify_admins(
        self,
        title: str,
        body: str,
        severity: str = NotificationSeverity.INFO.value,
        exclude_user_ids: tuple = (),
    ) -> None:
        self._enqueue(AdminBroadcastJob(title=title, body=body, severity=severity, exclude_user_ids=tuple(exclude_user_ids)))

    def _enqueue(self, job: Job) -> None:
        try:
            self._queue.put_nowait(job)
        except Exception:
            logger.exception("Could not enqueue side effect %r", job)

    # -- worker --------------------------------------------------------------

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="side-effects-worker")

    async def stop(self) -> None:
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def flush(self) -> None:
        """Deliver everything queued so far in the calling task."""
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    async def _process(self, job: Job) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.1, max=self._backoff_max),
                reraise=True,
            ):
                with attempt:
                    await self._deliver(job)
        except Exception:
            logger.exception("Dropping side effect after %s attempts: %r", self._max_attempts, job)

    async def _deliver(self, job: Job) -> None:
        async with self._session_maker() as db:
            if isinstance(job, ActivityJob):
                db.add(
                    ActivityLog(
                        user_id=job.actor_id,
                        action=job.action,
                        entity_type=job.entity_type,
                        entity_id=job.entity_id,
                        old_values=job.before,
                        new_values=job.after,
                    )
                )
            elif isinstance(job, NotificationJob):
                db.add(Notification(user_id=job.user_id, title=job.title, message=job.body, severity=job.severity))
            elif isinstance(job, AdminBroadcastJob):
                for admin_id in await _active_admin_ids(db):
                    if admin_id in job.exclude_user_ids:
                        continue
                    db.add(Notification(user_id=admin_id, title=job.title, message=job.body, severity=job.severity))
            else:
                raise TypeError(f"Unknown side effect {job!r}")
            await db.commit()


async def _active_admin_ids(db: AsyncSession) -> list[UUID]:
    res = await db.execute(
        select(User.id).where(User.role == Role.ADMIN).where(User.is_active == True)  # noqa: E712
    )
    return list(res.scalars().all())


def get_side_effects(request: Request) -> SideEffectQueue:
    return request.app.state.side_effects
