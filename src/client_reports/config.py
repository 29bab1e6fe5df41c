"""Configuration management for Client Reports.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the CLIENT_REPORTS_ prefix (e.g., CLIENT_REPORTS_OLLAMA_HOST).
    """

    model_config = SettingsConfigDict(
        env_prefix="CLIENT_REPORTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Local store
    db_path: Path = Field(
        default=Path("client_reports.sqlite3"),
        description="Path to the SQLite database holding messages and clients",
    )
    user_email: str | None = Field(
        default=None,
        description="The local user's own address, used for inbound/outbound classification",
    )

    # Ollama Configuration
    ollama_host: str = Field(
        default="http://localhost:11434",
        description="Ollama API host URL",
    )
    ollama_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model used for message summaries",
    )
    ollama_embedding_model: str = Field(
        default="all-minilm",
        description="Ollama model used for message embeddings",
    )
    ollama_timeout: int = Field(
        default=30,
        description="Timeout for Ollama API requests in seconds",
    )

    # Embeddings
    embedding_dimension: int | None = Field(
        default=None,
        description="Expected embedding size; vectors of any other size are rejected when set",
    )
    embedding_batch_size: int = Field(
        default=10,
        description="Number of messages embedded concurrently per batch",
    )
    embedding_batch_delay_seconds: float = Field(
        default=1.0,
        description="Pause between embedding batches to respect provider rate limits",
    )
    embedding_max_chars: int = Field(
        default=6000,
        description="Character budget for the text sent to the embedding provider",
    )

    # Summaries
    summary_max_body_chars: int = Field(
        default=4000,
        description="Body characters passed to the summary provider",
    )
    summary_delay_seconds: float = Field(
        default=0.5,
        description="Pause between consecutive summary requests",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API credentials file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access",
    )
    gmail_page_size: int = Field(
        default=100,
        description="Number of messages requested per Gmail list page",
    )
    mail_timeout: int = Field(
        default=30,
        description="Timeout for a complete mail provider fetch in seconds",
    )

    # Retrieval
    default_max_results: int = Field(
        default=100,
        description="Result cap used when a fetch does not specify one",
    )

    # Background tasks
    embedding_task_limit: int = Field(default=50, description="Default limit for embedding tasks")
    summary_task_limit: int = Field(default=20, description="Default limit for summary tasks")
    new_emails_task_limit: int = Field(
        default=20,
        description="Default limit for process-new-emails tasks",
    )
    client_task_max_results: int = Field(
        default=1000,
        description="Maximum provider messages fetched by a per-client processing task",
    )
    client_batch_size: int = Field(
        default=20,
        description="Messages processed per batch in per-client processing tasks",
    )
    client_batch_delay_seconds: float = Field(
        default=1.0,
        description="Pause between per-client processing batches",
    )
    task_retention_minutes: int = Field(
        default=30,
        description="Minutes a finished task stays queryable before it is purged",
    )
    poll_interval_seconds: int = Field(
        default=300,
        description="Interval between periodic process-new-emails runs",
    )
    periodic_task_limit: int = Field(
        default=50,
        description="Limit passed to the periodic process-new-emails task",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    max_retries: int = Field(
        default=3,
        description="Maximum number of retries for transient Gmail API failures",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
