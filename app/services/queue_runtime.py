"""Durable job queue runtime.

At-least-once, priority + delay job queue backed by the ``jobs`` table.
Producers call ``add``; workers register handlers with ``process`` and the
runtime drives them either one pass at a time (``run_pending``) or as a
long-running loop (``start`` / ``stop``).

Failed jobs are retried with backoff until their attempt budget runs out;
validation and permanent recipient errors fail immediately.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import async_session, utcnow
from app.core.exceptions import InvalidJobPayload, JobStalled, NON_RETRYABLE_ERRORS
from app.models.job import Job, JobStatus
from app.schemas.jobs import JOB_SCHEMAS, JOB_QUEUES, JobPayload, JobPriority

logger = logging.getLogger(__name__)

# Handler concurrency per job type
DEFAULT_CONCURRENCY = {
    "send_single_email": 5,
    "send_email_campaign": 1,
    "process_email_bounce": 10,
    "process_email_status": 10,
    "send_single_sms": 3,
    "send_sms_campaign": 1,
    "process_sms_status": 10,
    "calculate_lead_score": 3,
    "assign_lead": 2,
    "update_lead_score": 5,
    "follow_up_reminder": 3,
}

# Queues report unhealthy once this many jobs have failed
UNHEALTHY_FAILED_COUNT = 10


@dataclass(frozen=True)
class QueueOptions:
    attempts: int
    backoff_type: str  # exponential, fixed
    backoff_delay_ms: int


QUEUE_DEFAULTS = {
    "email": QueueOptions(attempts=5, backoff_type="exponential", backoff_delay_ms=5000),
    "sms": QueueOptions(attempts=3, backoff_type="exponential", backoff_delay_ms=3000),
    "lead": QueueOptions(attempts=2, backoff_type="fixed", backoff_delay_ms=5000),
}

Handler = Callable[[Job, JobPayload], Awaitable[Any]]


@dataclass
class _Registration:
    handler: Handler
    concurrency: int
    semaphore: asyncio.Semaphore = field(init=False)

    def __post_init__(self):
        self.semaphore = asyncio.Semaphore(self.concurrency)


def backoff_seconds(job: Job, max_backoff: float) -> float:
    """Delay before the next attempt of ``job`` (attempts already incremented)."""
    base = job.backoff_delay_ms / 1000
    if job.backoff_type == "fixed":
        return base
    return min(base * 2 ** max(job.attempts - 1, 0), max_backoff)


class QueueRuntime:
    """Job queue handle passed explicitly to every producer and worker."""

    def __init__(
        self,
        session_factory=async_session,
        clock: Callable[[], datetime] = utcnow,
        queue_defaults: Optional[dict[str, QueueOptions]] = None,
        poll_interval: float | None = None,
        max_backoff: float | None = None,
        stalled_after: float | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.queue_defaults = queue_defaults or QUEUE_DEFAULTS
        self.poll_interval = poll_interval if poll_interval is not None else settings.QUEUE_POLL_INTERVAL_SECONDS
        self.max_backoff = max_backoff if max_backoff is not None else settings.QUEUE_MAX_BACKOFF_SECONDS
        self.stalled_after = stalled_after if stalled_after is not None else settings.QUEUE_STALLED_AFTER_SECONDS
        self._handlers: dict[str, _Registration] = {}
        self._listeners: dict[str, list[Callable]] = {"completed": [], "failed": []}
        self._running = False
        self._pollers: list[asyncio.Task] = []
        self._inflight: set[asyncio.Task] = set()

        self.on("completed", self._log_completed)
        self.on("failed", self._log_failed)

    # ------------------------------------------------------------------
    # Producing
    # ------------------------------------------------------------------

    async def add(
        self,
        job_type: str,
        data: dict | JobPayload,
        *,
        priority: int | None = None,
        delay: float = 0,
        attempts: int | None = None,
        dedupe_key: str | None = None,
        db: AsyncSession | None = None,
    ) -> Job:
        """Enqueue a job.

        Args:
            job_type: One of the registered job type names
            data: Payload dict (camelCase or snake_case keys) or payload model
            priority: Lower runs first; defaults to NORMAL
            delay: Seconds before the job becomes runnable
            attempts: Override the queue's attempt budget
            dedupe_key: When set, an existing job with the same key is returned instead
            db: Join the caller's transaction instead of committing on our own
        """
        queue_name = JOB_QUEUES.get(job_type)
        if queue_name is None:
            raise InvalidJobPayload(f"Unknown job type: {job_type}")

        payload = self.validate(job_type, data)

        if db is not None:
            return await self._insert(db, queue_name, job_type, payload, priority, delay, attempts, dedupe_key)

        async with self.session_factory() as session:
            job = await self._insert(session, queue_name, job_type, payload, priority, delay, attempts, dedupe_key)
            await session.commit()
            return job

    @staticmethod
    def validate(job_type: str, data: dict | JobPayload) -> JobPayload:
        schema = JOB_SCHEMAS[job_type]
        if isinstance(data, schema):
            return data
        if isinstance(data, JobPayload):
            data = data.model_dump(by_alias=True)
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise InvalidJobPayload(f"Invalid {job_type} payload: {e}") from e

    @staticmethod
    async def find(db: AsyncSession, dedupe_key: str) -> Job | None:
        return await db.scalar(select(Job).where(Job.dedupe_key == dedupe_key))

    async def _insert(
        self,
        db: AsyncSession,
        queue_name: str,
        job_type: str,
        payload: JobPayload,
        priority: int | None,
        delay: float,
        attempts: int | None,
        dedupe_key: str | None,
    ) -> Job:
        if dedupe_key:
            existing = await self.find(db, dedupe_key)
            if existing is not None:
                logger.info("Duplicate job suppressed: type=%s, dedupe_key=%s", job_type, dedupe_key)
                return existing

        options = self.queue_defaults[queue_name]
        job = Job(
            queue=queue_name,
            job_type=job_type,
            payload=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
            priority=priority if priority is not None else JobPriority.NORMAL.value,
            run_at=self.clock() + timedelta(seconds=delay or 0),
            attempts=0,
            max_attempts=attempts or options.attempts,
            backoff_type=options.backoff_type,
            backoff_delay_ms=options.backoff_delay_ms,
            status=JobStatus.WAITING,
            dedupe_key=dedupe_key,
        )
        db.add(job)
        await db.flush()
        logger.debug("Queued %s job %s (priority=%s, delay=%ss)", job_type, job.id, job.priority, delay)
        return job

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    def process(self, job_type: str, handler: Handler, concurrency: int | None = None) -> None:
        """Register ``handler`` for ``job_type``."""
        if job_type not in JOB_SCHEMAS:
            raise ValueError(f"Unknown job type: {job_type}")
        limit = concurrency or DEFAULT_CONCURRENCY.get(job_type, 1)
        self._handlers[job_type] = _Registration(handler=handler, concurrency=limit)

    def on(self, event: str, listener: Callable) -> None:
        """Subscribe to ``completed`` or ``failed`` job events."""
        if event not in self._listeners:
            raise ValueError(f"Unknown queue event: {event}")
        self._listeners[event].append(listener)

    async def run_pending(
        self,
        now: datetime | None = None,
        job_types: list[str] | None = None,
        max_jobs: int | None = None,
    ) -> int:
        """Run every ready job one at a time. Returns the number of jobs run."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            current = now or self.clock()
            job = await self._claim_next(current, job_types)
            if job is None:
                break
            await self._execute(job, current)
            processed += 1
        return processed

    async def _claim_next(self, now: datetime, job_types: list[str] | None) -> Job | None:
        types = [t for t in (job_types or self._handlers) if t in self._handlers]
        if not types:
            return None

        async with self.session_factory() as session:
            while True:
                candidate = await session.scalar(
                    select(Job.id)
                    .where(
                        Job.status == JobStatus.WAITING,
                        Job.job_type.in_(types),
                        Job.run_at <= now,
                    )
                    .order_by(Job.priority, Job.run_at, Job.created_at)
                    .limit(1)
                )
                if candidate is None:
                    return None

                claimed = await session.execute(
                    update(Job)
                    .where(Job.id == candidate, Job.status == JobStatus.WAITING)
                    .values(status=JobStatus.ACTIVE, started_at=now, attempts=Job.attempts + 1)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if claimed.rowcount == 1:
                    return await session.get(Job, candidate, populate_existing=True)
                # another worker won the race; look again

    async def _execute(self, job: Job, now: datetime | None = None) -> None:
        registration = self._handlers[job.job_type]
        try:
            payload = self.validate(job.job_type, job.payload)
            result = await registration.handler(job, payload)
        except Exception as e:
            await self._fail(job, e, now or self.clock())
        else:
            await self._complete(job, result, now or self.clock())

    async def _complete(self, job: Job, result: Any, now: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Job)
                .where(Job.id == job.id)
                .values(status=JobStatus.COMPLETED, result=jsonable_encoder(result), finished_at=now, last_error=None)
            )
            await session.commit()
        job.status = JobStatus.COMPLETED
        await self._emit("completed", job, result)

    async def _fail(self, job: Job, error: Exception, now: datetime) -> None:
        message = str(error) or error.__class__.__name__
        retryable = not isinstance(error, NON_RETRYABLE_ERRORS) and job.attempts < job.max_attempts

        if retryable:
            delay = backoff_seconds(job, self.max_backoff)
            values = {
                "status": JobStatus.WAITING,
                "run_at": now + timedelta(seconds=delay),
                "last_error": message,
            }
            logger.warning(
                "Job %s (%s) failed (attempt %d/%d), will retry in %.0fs: %s",
                job.id,
                job.job_type,
                job.attempts,
                job.max_attempts,
                delay,
                message[:200],
            )
        else:
            values = {"status": JobStatus.FAILED, "finished_at": now, "last_error": message}

        async with self.session_factory() as session:
            await session.execute(update(Job).where(Job.id == job.id).values(**values))
            await session.commit()
        job.status = values["status"]
        job.last_error = message

        if not retryable:
            await self._emit("failed", job, error)

    async def _emit(self, event: str, job: Job, detail: Any) -> None:
        for listener in self._listeners[event]:
            try:
                outcome = listener(job, detail)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error("Queue %s listener error for job %s: %s", event, job.id, e)

    @staticmethod
    def _log_completed(job: Job, result: Any) -> None:
        logger.info("Job %s (%s) completed", job.id, job.job_type)

    @staticmethod
    def _log_failed(job: Job, error: Exception) -> None:
        logger.error(
            "Job %s (%s) failed permanently after %d attempt(s): %s",
            job.id,
            job.job_type,
            job.attempts,
            str(error)[:200],
        )

    # ------------------------------------------------------------------
    # Long-running worker loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start one poller per registered job type plus the stalled-job reaper."""
        if self._running:
            return
        self._running = True
        for job_type in self._handlers:
            self._pollers.append(asyncio.create_task(self._poll(job_type)))
        self._pollers.append(asyncio.create_task(self._reap_stalled()))
        logger.info("Queue runtime started: %s", ", ".join(sorted(self._handlers)))

    async def stop(self) -> None:
        """Stop polling and wait for in-flight jobs to finish."""
        self._running = False
        for task in self._pollers:
            task.cancel()
        await asyncio.gather(*self._pollers, return_exceptions=True)
        self._pollers.clear()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Queue runtime stopped")

    async def _poll(self, job_type: str) -> None:
        registration = self._handlers[job_type]
        while self._running:
            await registration.semaphore.acquire()
            try:
                job = await self._claim_next(self.clock(), [job_type])
            except Exception as e:
                registration.semaphore.release()
                logger.error("Queue poll error for %s: %s", job_type, e)
                await asyncio.sleep(self.poll_interval)
                continue

            if job is None:
                registration.semaphore.release()
                await asyncio.sleep(self.poll_interval)
                continue

            task = asyncio.create_task(self._execute(job))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            task.add_done_callback(lambda _t: registration.semaphore.release())

    async def _reap_stalled(self) -> None:
        while self._running:
            try:
                await self.requeue_stalled()
            except Exception as e:
                logger.error("Stalled job check failed: %s", e)
            await asyncio.sleep(max(self.poll_interval, 1.0) * 30)

    async def requeue_stalled(self, now: datetime | None = None) -> int:
        """Return ACTIVE jobs whose worker vanished to WAITING. Returns the count.

        A stalled job counts as a spent attempt: jobs with no attempts left
        (including single-attempt campaign batches) are failed instead.
        """
        now = now or self.clock()
        cutoff = now - timedelta(seconds=self.stalled_after)
        stalled = (Job.status == JobStatus.ACTIVE, Job.started_at < cutoff)
        async with self.session_factory() as session:
            requeued = await session.execute(
                update(Job)
                .where(*stalled, Job.attempts < Job.max_attempts)
                .values(status=JobStatus.WAITING, run_at=now)
            )
            exhausted = (await session.execute(
                select(Job).where(*stalled, Job.attempts >= Job.max_attempts)
            )).scalars().all()
            failed = []
            for job in exhausted:
                moved = await session.execute(
                    update(Job)
                    .where(Job.id == job.id, Job.status == JobStatus.ACTIVE)
                    .values(status=JobStatus.FAILED, finished_at=now, last_error="stalled")
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount == 1:
                    job.status = JobStatus.FAILED
                    job.last_error = "stalled"
                    failed.append(job)
            await session.commit()

        if requeued.rowcount:
            logger.warning("Requeued %d stalled job(s)", requeued.rowcount)
        for job in failed:
            await self._emit(
                "failed", job, JobStalled(f"Job stalled after {job.attempts} of {job.max_attempts} attempt(s)")
            )
        return requeued.rowcount

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get_health(self) -> dict:
        """Job counts per queue and status."""
        async with self.session_factory() as session:
            rows = await session.execute(
                select(Job.queue, Job.status, func.count(Job.id)).group_by(Job.queue, Job.status)
            )
            counts = {
                name: {status.value: 0 for status in JobStatus}
                for name in self.queue_defaults
            }
            for queue_name, status, count in rows.all():
                counts.setdefault(queue_name, {s.value: 0 for s in JobStatus})[JobStatus(status).value] = count

        return {
            name: {**by_status, "is_healthy": by_status[JobStatus.FAILED.value] < UNHEALTHY_FAILED_COUNT}
            for name, by_status in counts.items()
        }
