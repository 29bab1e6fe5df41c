"""Data models for Client Reports.

This module contains Pydantic models for data validation and serialization.
"""

from client_reports.models.message import (
    AddressFilter,
    Client,
    DateRange,
    MatchKind,
    Message,
    as_utc,
)
from client_reports.models.task import (
    ALLOWED_TRANSITIONS,
    EnrichmentResult,
    GenerateEmbeddingsParams,
    ProcessClientEmailsParams,
    ProcessNewEmailsParams,
    SummarizeEmailsParams,
    Task,
    TaskParams,
    TaskProgress,
    TaskStatus,
    TaskType,
    task_params_adapter,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AddressFilter",
    "Client",
    "DateRange",
    "EnrichmentResult",
    "GenerateEmbeddingsParams",
    "MatchKind",
    "Message",
    "ProcessClientEmailsParams",
    "ProcessNewEmailsParams",
    "SummarizeEmailsParams",
    "Task",
    "TaskParams",
    "TaskProgress",
    "TaskStatus",
    "TaskType",
    "as_utc",
    "task_params_adapter",
]
