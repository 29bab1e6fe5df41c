"""In-process background task queue.

Tasks run one at a time on the event loop that enqueued them. ``enqueue``
returns immediately; a worker coroutine is started when none is active and
exits once no pending task remains.

State lives in memory only. A restart loses queued work, which is fine:
every job is re-derivable from ``processed_for_vector`` flags and null
summaries in the store.

Reads (``get_task_status`` and the progress getters) return copies taken
under a lock, so they can be called while the worker mutates state.
"""

from __future__ import annotations

import asyncio
import contextlib
import math
import threading
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from client_reports.config import Settings
from client_reports.embeddings.pipeline import EmbeddingPipeline
from client_reports.exceptions import InvalidInputError, TaskStateError
from client_reports.matching.relevance import MatchCriteria, RelevanceMatcher
from client_reports.models import (
    ALLOWED_TRANSITIONS,
    DateRange,
    GenerateEmbeddingsParams,
    Message,
    ProcessClientEmailsParams,
    ProcessNewEmailsParams,
    SummarizeEmailsParams,
    Task,
    TaskProgress,
    TaskStatus,
    TaskType,
    task_params_adapter,
)
from client_reports.providers import MailProvider
from client_reports.retrieval.sources import collect_provider_messages
from client_reports.store.repository import MessageRepository
from client_reports.summaries import SummaryPipeline

logger = structlog.get_logger()

ProgressListener = Callable[[TaskProgress], None]

_CLIENT_FETCH_PROGRESS = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskQueue:
    """FIFO queue of enrichment tasks with a single worker."""

    def __init__(
        self,
        store: MessageRepository,
        embeddings: EmbeddingPipeline,
        summaries: SummaryPipeline,
        mail_provider: MailProvider | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        """Create a queue.

        Args:
            store: Message store.
            embeddings: Embedding pipeline used by embedding tasks.
            summaries: Summary pipeline used by summary tasks.
            mail_provider: Source for per-client tasks. Without one, per-client
                tasks work on messages already in the store.
            settings: Application settings. If None, uses default settings.
            clock: Source of "now"; replaced in tests.
        """
        from client_reports.config import get_settings

        self.settings = settings or get_settings()
        self._store = store
        self._embeddings = embeddings
        self._summaries = summaries
        self._mail_provider = mail_provider
        self._matcher = RelevanceMatcher(store)
        self._clock = clock

        self._tasks: dict[str, Task] = {}
        self._progress: dict[str, TaskProgress] = {}
        self._lock = threading.Lock()
        self._listeners: list[ProgressListener] = []
        self._worker: asyncio.Task[None] | None = None
        self._periodic: asyncio.Task[None] | None = None

    # Public API

    def enqueue(
        self,
        task_type: TaskType | str,
        params: Mapping[str, Any] | BaseModel | None = None,
    ) -> str:
        """Queue a task and return its id without waiting for it to run.

        Args:
            task_type: One of :class:`TaskType`.
            params: Parameters for that task type (mapping or params model).

        Returns:
            The new task id.

        Raises:
            InvalidInputError: Unknown task type or invalid parameters.
        """

        try:
            kind = TaskType(task_type)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown task type: {task_type}") from exc

        raw = params.model_dump() if isinstance(params, BaseModel) else dict(params or {})
        raw["type"] = kind.value
        try:
            typed = task_params_adapter.validate_python(raw)
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid parameters for {kind.value}: {exc}") from exc

        now = self._clock()
        task = Task(
            id=str(uuid.uuid4()),
            type=kind,
            params=typed,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._tasks[task.id] = task

        logger.info("task_queued", task_id=task.id, task_type=kind.value)
        self._ensure_worker()
        return task.id

    def get_task_status(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        """Known tasks in the order they were queued."""

        with self._lock:
            return [
                task.model_copy(deep=True)
                for task in self._tasks.values()
                if status is None or task.status is status
            ]

    def get_client_processing_status(self, task_id: str) -> TaskProgress | None:
        with self._lock:
            progress = self._progress.get(task_id)
            return progress.model_copy() if progress is not None else None

    def get_latest_client_processing_status(self, client_id: str) -> TaskProgress | None:
        """Most recently updated progress record for a client."""

        with self._lock:
            records = [p for p in self._progress.values() if p.client_id == client_id]
            if not records:
                return None
            # Ties go to the most recently queued task.
            return max(reversed(records), key=lambda p: p.updated_at).model_copy()

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a callback for every progress update.

        Returns:
            A function that removes the listener.
        """

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for t in self._tasks.values() if t.status is TaskStatus.PENDING)

    async def run_until_idle(self) -> None:
        """Wait until every queued task has finished.

        Also drives tasks that were queued while no event loop was running.
        """

        while self.pending_count() or self.is_running:
            self._ensure_worker()
            if self._worker is not None:
                await self._worker

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop finished tasks older than the retention window.

        Client handlers settle their progress record before the task itself
        becomes terminal, so a purged task never has active progress.

        Returns:
            Number of tasks removed.
        """

        cutoff = (now or self._clock()) - timedelta(minutes=self.settings.task_retention_minutes)
        with self._lock:
            expired = [
                task_id
                for task_id, task in self._tasks.items()
                if task.status.is_terminal and task.updated_at < cutoff
            ]
            for task_id in expired:
                del self._tasks[task_id]
                self._progress.pop(task_id, None)

        if expired:
            logger.debug("tasks_purged", count=len(expired))
        return len(expired)

    def start_periodic(self, interval_seconds: float | None = None) -> None:
        """Queue a process-new-emails task now and then every interval."""

        if self._periodic is not None and not self._periodic.done():
            return
        interval = interval_seconds or self.settings.poll_interval_seconds
        self._periodic = asyncio.get_running_loop().create_task(self._periodic_loop(interval))
        logger.info("periodic_processing_started", interval_seconds=interval)

    async def stop(self) -> None:
        """Stop periodic scheduling and let the current worker finish."""

        if self._periodic is not None:
            self._periodic.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._periodic
            self._periodic = None
        if self._worker is not None and not self._worker.done():
            await self._worker

    # Worker

    def _ensure_worker(self) -> None:
        if self.is_running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("task_worker_deferred", reason="no running event loop")
            return
        self._worker = loop.create_task(self._run())

    async def _run(self) -> None:
        while True:
            claimed = self._claim_next()
            if claimed is None:
                break
            await self._execute(claimed)
            self.purge_expired()

    def _claim_next(self) -> Task | None:
        with self._lock:
            for task in self._tasks.values():
                if task.status is TaskStatus.PENDING:
                    self._transition_locked(task, TaskStatus.PROCESSING)
                    return task.model_copy()
        return None

    async def _execute(self, task: Task) -> None:
        logger.info("task_started", task_id=task.id, task_type=task.type.value)
        try:
            result = await self._dispatch(task)
        except Exception as exc:  # noqa: BLE001
            logger.exception("task_failed", task_id=task.id, task_type=task.type.value)
            self._finish(task.id, TaskStatus.FAILED, error=str(exc) or type(exc).__name__)
            return

        self._finish(task.id, TaskStatus.COMPLETED, result=result)
        logger.info("task_completed", task_id=task.id, task_type=task.type.value)

    async def _dispatch(self, task: Task) -> dict[str, Any]:
        params = task.params
        if isinstance(params, GenerateEmbeddingsParams):
            result = await self._embeddings.generate_embeddings(params.limit)
            return result.model_dump()
        if isinstance(params, SummarizeEmailsParams):
            result = await self._summaries.process_pending(params.limit)
            return result.model_dump()
        if isinstance(params, ProcessNewEmailsParams):
            limit = params.limit or self.settings.new_emails_task_limit
            summaries = await self._summaries.process_pending(limit)
            embeddings = await self._embeddings.generate_embeddings(limit)
            return {"summaries": summaries.model_dump(), "embeddings": embeddings.model_dump()}
        if isinstance(params, ProcessClientEmailsParams):
            return await self._process_client_emails(task.id, params)
        raise InvalidInputError(f"Unknown task type: {task.type}")

    def _finish(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            task = self._tasks[task_id]
            self._transition_locked(task, status)
            task.result = result
            task.error = error

    def _transition_locked(self, task: Task, status: TaskStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[task.status]:
            raise TaskStateError(
                f"Task {task.id} cannot move from {task.status.value} to {status.value}"
            )
        task.status = status
        task.updated_at = self._clock()

    # Per-client processing

    async def _process_client_emails(
        self,
        task_id: str,
        params: ProcessClientEmailsParams,
    ) -> dict[str, Any]:
        now = self._clock()
        self._put_progress(
            TaskProgress(
                task_id=task_id,
                client_id=params.client_id,
                client_name=params.client_name,
                status=TaskStatus.PROCESSING,
                started_at=now,
                updated_at=now,
            )
        )

        processed = 0
        failed_batches = 0
        try:
            criteria = MatchCriteria.build(params.domains, params.emails, self.settings.user_email)
            date_range = DateRange(start=params.start, end=params.end)
            max_results = params.max_results or self.settings.client_task_max_results
            messages = await self._load_client_messages(criteria, date_range, max_results)

            total = len(messages)
            self._update_progress(task_id, progress=_CLIENT_FETCH_PROGRESS, total_emails=total)

            batch_size = max(1, self.settings.client_batch_size)
            total_batches = math.ceil(total / batch_size)
            for number in range(total_batches):
                batch = messages[number * batch_size : (number + 1) * batch_size]
                try:
                    await self._process_client_batch(batch)
                except Exception:  # noqa: BLE001
                    failed_batches += 1
                    logger.exception(
                        "client_batch_failed",
                        task_id=task_id,
                        client_id=params.client_id,
                        batch=number + 1,
                    )

                processed += len(batch)
                done_share = (100 - _CLIENT_FETCH_PROGRESS) * (number + 1) / total_batches
                self._update_progress(
                    task_id,
                    processed_emails=processed,
                    progress=_CLIENT_FETCH_PROGRESS + int(done_share),
                )

                if number + 1 < total_batches and self.settings.client_batch_delay_seconds > 0:
                    await asyncio.sleep(self.settings.client_batch_delay_seconds)
        except Exception as exc:
            self._update_progress(task_id, status=TaskStatus.FAILED, error=str(exc))
            raise

        self._update_progress(task_id, status=TaskStatus.COMPLETED, progress=100)
        logger.info(
            "client_processing_completed",
            task_id=task_id,
            client_id=params.client_id,
            total=total,
            failed_batches=failed_batches,
        )
        return {
            "client_id": params.client_id,
            "total": total,
            "processed": processed,
            "failed_batches": failed_batches,
        }

    async def _load_client_messages(
        self,
        criteria: MatchCriteria,
        date_range: DateRange,
        max_results: int,
    ) -> list[Message]:
        if self._mail_provider is None:
            return await self._matcher.find(criteria, date_range, limit=max_results)
        return await collect_provider_messages(
            self._mail_provider,
            criteria,
            date_range,
            page_size=self.settings.gmail_page_size,
            max_results=max_results,
            timeout=self.settings.mail_timeout,
        )

    async def _process_client_batch(self, batch: list[Message]) -> None:
        await asyncio.to_thread(self._store.insert_if_absent, batch)
        stored = {
            m.id: m for m in await asyncio.to_thread(self._store.get_many, [m.id for m in batch])
        }
        current = [stored.get(m.id, m) for m in batch]
        await self._summaries.summarize_messages(current)
        await self._embeddings.embed_messages(current)

    def _put_progress(self, progress: TaskProgress) -> None:
        with self._lock:
            self._progress[progress.task_id] = progress
        self._notify(progress.model_copy())

    def _update_progress(self, task_id: str, **changes: Any) -> None:
        with self._lock:
            current = self._progress[task_id]
            if current.status.is_terminal:
                return
            if "progress" in changes:
                changes["progress"] = max(current.progress, min(100, changes["progress"]))
            changes["updated_at"] = self._clock()
            updated = current.model_copy(update=changes)
            self._progress[task_id] = updated
            snapshot = updated.model_copy()
        self._notify(snapshot)

    def _notify(self, snapshot: TaskProgress) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:  # noqa: BLE001
                logger.warning("progress_listener_failed", task_id=snapshot.task_id, error=str(exc))

    async def _periodic_loop(self, interval: float) -> None:
        while True:
            self.enqueue(TaskType.PROCESS_NEW_EMAILS, {"limit": self.settings.periodic_task_limit})
            self.purge_expired()
            await asyncio.sleep(interval)
