"""Due-date reminders for assigned tasks, run periodically through the queue."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from redis import Redis
from rq_scheduler import Scheduler  # type: ignore[import-untyped]
from sqlmodel import col

from worknest.core.config import settings
from worknest.core.logging import get_logger
from worknest.core.time import utcnow
from worknest.db.session import async_session_maker
from worknest.models.tasks import Task
from worknest.services.notifications import notify_task_due_soon
from worknest.services.queue import enqueue_task, new_task
from worknest.services.side_effects import best_effort

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.services.queue import QueuedTask

logger = get_logger(__name__)
TASK_TYPE = "due_date_reminders"


def reminder_window(now: datetime) -> tuple[datetime, datetime]:
    """Start of today through the end of tomorrow, as a half-open range."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=2)


async def send_due_soon_reminders(session: AsyncSession, now: datetime | None = None) -> int:
    """Notify assignees of open tasks due today or tomorrow; each task is reminded once."""
    start, end = reminder_window(now or utcnow())
    tasks = await Task.objects.filter(
        col(Task.due_date) >= start,
        col(Task.due_date) < end,
        col(Task.status) != "done",
        col(Task.assignee_id).is_not(None),
        col(Task.reminder_sent).is_(False),
    ).all(session)
    # A failed notification rolls the session back and expires loaded rows,
    # so each task is re-read by id.
    task_ids = [task.id for task in tasks]
    sent = 0
    for task_id in task_ids:
        async with best_effort("reminder.notify", session=session, task_id=task_id):
            task = await Task.objects.by_id(task_id).first(session)
            if task is None:
                continue
            await notify_task_due_soon(session, task=task)
            task.reminder_sent = True
            session.add(task)
            await session.commit()
            sent += 1
    logger.info("reminders.batch_complete", extra={"candidates": len(tasks), "sent": sent})
    return sent


async def process_reminder_queue_task(task: QueuedTask) -> None:
    async with async_session_maker() as session:
        await send_due_soon_reminders(session)


def requeue_reminder_queue_task(task: QueuedTask, delay_seconds: float = 0) -> bool:
    # The next scheduled run covers anything this one missed.
    return False


def enqueue_due_date_reminders() -> bool:
    """rq-scheduler entrypoint: hand one reminder sweep to the queue worker."""
    return enqueue_task(new_task(TASK_TYPE, {}), settings.rq_queue_name)


def bootstrap_reminder_schedule(interval_seconds: int | None = None) -> None:
    """Register the recurring reminder sweep, replacing any earlier registration."""
    connection = Redis.from_url(settings.redis_url)
    scheduler = Scheduler(queue_name=settings.rq_queue_name, connection=connection)
    for job in scheduler.get_jobs():
        if job.id == settings.reminder_schedule_id:
            scheduler.cancel(job)
    scheduler.schedule(
        datetime.now(tz=timezone.utc) + timedelta(seconds=5),
        func=enqueue_due_date_reminders,
        interval=interval_seconds or settings.reminder_schedule_interval_seconds,
        repeat=None,
        id=settings.reminder_schedule_id,
        queue_name=settings.rq_queue_name,
    )
    logger.info("reminders.schedule.registered", extra={"job_id": settings.reminder_schedule_id})
