"""In-process handoff for conversion work.

``enqueue_job`` returns immediately; a single worker task drains the queue
and runs each handler on a thread. The export row in the database is the
only record of the outcome, so nothing here is durable: work still queued
at shutdown stays ``queued`` in the database and is picked up again by the
cron endpoint or a manual retry.

``run_with_deadline`` backs the bounded-wait mode. The handler runs in a
tracked background task; the caller stops waiting at the deadline but the
task keeps running to completion.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import uuid
from typing import Any, Callable

from app.core.request_context import reset_request_id, set_request_id


logger = logging.getLogger(__name__)

JobHandler = Callable[["QueuedJob"], Any]


@dataclass
class QueuedJob:
    job_id: uuid.UUID
    job_type: str
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    handler: JobHandler | None = None


_queue: asyncio.Queue[QueuedJob] | None = None
_worker_task: asyncio.Task | None = None
_loop: asyncio.AbstractEventLoop | None = None
_background: set[asyncio.Task] = set()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_running() -> bool:
    return _worker_task is not None and not _worker_task.done()


def enqueue_job(
    job_type: str,
    payload: dict[str, Any],
    handler: JobHandler,
    *,
    request_id: str | None = None,
) -> QueuedJob:
    """Hand a job to the worker. Safe to call from the event loop or a thread."""
    if _queue is None or _loop is None or not is_running():
        raise RuntimeError("job queue is not running")

    job = QueuedJob(
        job_id=uuid.uuid4(),
        job_type=job_type,
        created_at=_utcnow(),
        payload=payload,
        request_id=request_id,
        handler=handler,
    )
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is _loop:
        _queue.put_nowait(job)
    else:
        _loop.call_soon_threadsafe(_queue.put_nowait, job)
    return job


async def _run_job(job: QueuedJob) -> None:
    token = set_request_id(job.request_id or f"job-{job.job_id}")
    try:
        if job.handler is None:
            raise RuntimeError("job handler missing")
        await asyncio.to_thread(job.handler, job)
    finally:
        reset_request_id(token)


async def _worker_loop() -> None:
    assert _queue is not None
    while True:
        job = await _queue.get()
        try:
            await _run_job(job)
        except Exception:  # noqa: BLE001
            logger.exception("job_failed", extra={"job_id": str(job.job_id), "job_type": job.job_type})
        finally:
            _queue.task_done()


async def run_with_deadline(handler: Callable[[], Any], timeout: float) -> tuple[bool, Any]:
    """Run ``handler`` on a thread and wait at most ``timeout`` seconds.

    Returns ``(True, result)`` when it finished in time and ``(False, None)``
    otherwise. A timed-out handler is not cancelled.
    """
    task = asyncio.create_task(asyncio.to_thread(handler))
    _background.add(task)
    task.add_done_callback(_finish_background)
    done, _ = await asyncio.wait({task}, timeout=max(timeout, 0.0))
    if task in done:
        return True, task.result()
    return False, None


def _finish_background(task: asyncio.Task) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background_job_failed", exc_info=exc)


async def wait_idle() -> None:
    """Wait until queued jobs and deadline-bounded background work have finished."""
    if _queue is not None:
        await _queue.join()
    if _background:
        await asyncio.gather(*list(_background), return_exceptions=True)


async def start_worker() -> None:
    global _queue, _worker_task, _loop
    if _worker_task is not None:
        return
    _loop = asyncio.get_running_loop()
    _queue = asyncio.Queue()
    _worker_task = asyncio.create_task(_worker_loop())


async def stop_worker() -> None:
    global _worker_task, _queue, _loop
    if _worker_task is None:
        return
    if _background:
        await asyncio.gather(*list(_background), return_exceptions=True)
    if _queue is not None and not _queue.empty():
        logger.warning("job_queue_stopped_with_pending_jobs", extra={"pending": _queue.qsize()})
    _worker_task.cancel()
    try:
        await _worker_task
    except asyncio.CancelledError:
        pass
    _worker_task = None
    _queue = None
    _loop = None
