"""Gmail API mail provider.

Notes:
    The Google API client is synchronous. This project wraps those calls using
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import structlog

from client_reports.config import Settings
from client_reports.exceptions import AuthenticationError, ConfigurationError, GmailAPIError
from client_reports.gmail.parsing import gmail_to_message
from client_reports.models import AddressFilter, DateRange, Message
from client_reports.utils import retry_on_failure

logger = structlog.get_logger()

_TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})

_ADDRESS_ROLES = ("from", "to", "cc", "bcc")


def is_transient_error(exc: Exception) -> bool:
    """True for rate limits, server errors and network failures."""

    status = getattr(getattr(exc, "resp", None), "status", None)
    if status is not None:
        try:
            return int(status) in _TRANSIENT_STATUSES
        except (TypeError, ValueError):
            return False
    return isinstance(exc, (OSError, TimeoutError))


def build_search_query(address_filter: AddressFilter, date_range: DateRange) -> str:
    """Build a Gmail search query for a client and date range.

    ``after:``/``before:`` take epoch seconds; ``before:`` is exclusive, so the
    end bound is pushed one second past the range end.
    """

    after = int(date_range.start.timestamp())
    before = int(date_range.end.timestamp()) + 1
    parts = [f"after:{after}", f"before:{before}"]

    terms: list[str] = []
    for value in [*address_filter.domains, *address_filter.emails]:
        terms.extend(f"{role}:{value}" for role in _ADDRESS_ROLES)
    if terms:
        parts.append("{" + " ".join(terms) + "}")

    return " ".join(parts)


class GmailClient:
    """Gmail API client used as the mail provider.

    Handles authentication, paginated search and full-message retrieval.
    """

    def __init__(self, settings: Settings | None = None, service: Any | None = None) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
            service: Pre-built Gmail API service, mainly for tests.
        """
        from client_reports.config import get_settings

        self.settings = settings or get_settings()
        self._service: Any | None = service
        logger.info("gmail_client_initialized")

    async def authenticate(self) -> None:
        """Authenticate with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If the credentials file is missing.
            AuthenticationError: If authentication fails.
        """

        if self._service is not None:
            return

        credentials_path = Path(self.settings.gmail_credentials_path)
        token_path = Path(self.settings.gmail_token_path)
        scope = self.settings.gmail_scope

        if not credentials_path.exists():
            raise ConfigurationError(f"Gmail credentials file not found: {credentials_path}.")

        logger.info(
            "gmail_authentication_started",
            credentials_path=str(credentials_path),
            token_path=str(token_path),
            scope=scope,
        )

        try:
            self._service = await asyncio.to_thread(
                self._build_service,
                credentials_path,
                token_path,
                scope,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_authentication_failed", error=str(exc))
            raise AuthenticationError(str(exc)) from exc

        logger.info("gmail_authentication_completed")

    async def fetch_messages(
        self,
        address_filter: AddressFilter,
        date_range: DateRange,
        page_size: int,
    ) -> AsyncIterator[list[Message]]:
        """Yield pages of parsed messages matching a client and date range.

        Raises:
            GmailAPIError: If listing or retrieval fails after retries, or
                authentication is not possible.
        """

        try:
            await self.authenticate()
        except (ConfigurationError, AuthenticationError) as exc:
            raise GmailAPIError(f"Gmail is not available: {exc}") from exc

        query = build_search_query(address_filter, date_range)
        logger.info("gmail_search_started", query=query, page_size=page_size)

        page_token: str | None = None
        page_number = 0
        while True:
            response = await self._call(self._list_page_sync, query, page_size, page_token)
            refs = response.get("messages", []) or []
            page_number += 1

            messages: list[Message] = []
            for ref in refs:
                raw = await self._call(self._get_message_sync, ref["id"])
                parsed = gmail_to_message(raw)
                if parsed is None:
                    logger.warning("gmail_message_unparseable", message_id=ref.get("id"))
                    continue
                messages.append(parsed)

            logger.info("gmail_page_fetched", page=page_number, listed=len(refs), parsed=len(messages))
            if messages:
                yield messages

            page_token = response.get("nextPageToken")
            if not page_token:
                break

    async def _call(self, func: Any, *args: Any) -> dict[str, Any]:
        retrying = retry_on_failure(
            max_retries=self.settings.max_retries,
            should_retry=is_transient_error,
        )(func)
        try:
            return await asyncio.to_thread(retrying, *args)
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_request_failed", function=func.__name__, error=str(exc))
            raise GmailAPIError(str(exc)) from exc

    def _build_service(self, credentials_path: Path, token_path: Path, scope: str) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        creds: Credentials | None = None
        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])

        if creds is not None and creds.expired and creds.refresh_token:
            creds.refresh(Request())

        if creds is None or not creds.valid:
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
            creds = flow.run_local_server(port=0)
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json(), encoding="utf-8")

        # cache_discovery=False prevents writing discovery docs to disk.
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def _list_page_sync(self, query: str, page_size: int, page_token: str | None) -> dict[str, Any]:
        assert self._service is not None
        request = (
            self._service.users()
            .messages()
            .list(userId="me", maxResults=min(500, page_size), q=query, pageToken=page_token)
        )
        return request.execute()

    def _get_message_sync(self, message_id: str) -> dict[str, Any]:
        assert self._service is not None
        request = self._service.users().messages().get(userId="me", id=message_id, format="full")
        return request.execute()
