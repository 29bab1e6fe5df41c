"""Background task models.

Each task type carries its own parameter model; the ``type`` field is the
discriminator used to validate raw parameters and to dispatch handlers.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class TaskType(str, Enum):
    """Kinds of background work."""

    GENERATE_EMBEDDINGS = "generate_embeddings"
    SUMMARIZE_EMAILS = "summarize_emails"
    PROCESS_NEW_EMAILS = "process_new_emails"
    PROCESS_CLIENT_EMAILS = "process_client_emails"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class GenerateEmbeddingsParams(BaseModel):
    type: Literal["generate_embeddings"] = "generate_embeddings"
    limit: int | None = Field(default=None, gt=0, description="Max messages to embed")


class SummarizeEmailsParams(BaseModel):
    type: Literal["summarize_emails"] = "summarize_emails"
    limit: int | None = Field(default=None, gt=0, description="Max messages to summarize")


class ProcessNewEmailsParams(BaseModel):
    type: Literal["process_new_emails"] = "process_new_emails"
    limit: int | None = Field(default=None, gt=0, description="Max messages per enrichment step")


class ProcessClientEmailsParams(BaseModel):
    type: Literal["process_client_emails"] = "process_client_emails"
    client_id: str
    client_name: str = ""
    domains: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)
    start: datetime
    end: datetime
    max_results: int | None = Field(default=None, gt=0)


TaskParams = Annotated[
    Union[
        GenerateEmbeddingsParams,
        SummarizeEmailsParams,
        ProcessNewEmailsParams,
        ProcessClientEmailsParams,
    ],
    Field(discriminator="type"),
]

task_params_adapter: TypeAdapter[Any] = TypeAdapter(TaskParams)


class Task(BaseModel):
    """One unit of asynchronous work."""

    id: str
    type: TaskType
    params: TaskParams
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime
    updated_at: datetime
    result: dict[str, Any] | None = None
    error: str | None = None


class TaskProgress(BaseModel):
    """Fine-grained progress of a ``process_client_emails`` task."""

    task_id: str
    client_id: str
    client_name: str = ""
    status: TaskStatus = TaskStatus.PROCESSING
    progress: int = Field(default=0, ge=0, le=100)
    total_emails: int = 0
    processed_emails: int = 0
    started_at: datetime
    updated_at: datetime
    error: str | None = None


class EnrichmentResult(BaseModel):
    """Outcome of one embedding or summary run."""

    candidates: int = 0
    processed: int = 0
    failed: int = 0
