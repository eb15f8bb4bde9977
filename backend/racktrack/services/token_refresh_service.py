# Overview: Proactive and on-demand refresh of QuickBooks OAuth tokens.

"""
QuickBooks Token Refresh

SWEEP (refresh_expiring_tokens), triggered externally (cron endpoint or CLI):
    - Only active connections are considered
    - Tokens expiring after now + window are skipped with no network call
    - The rest are refreshed; network calls may overlap in a thread pool,
      database writes happen afterwards on the caller's session, one
      connection at a time
    - A failure on one connection is recorded on that row (error_count + 1,
      last_error) and never stops the others. The sweep itself never raises

ON DEMAND (ensure_access_token):
    Used right before an API call. Refreshes synchronously when the token is
    expired or inside the buffer, persists the new pair, returns the access
    token to use.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..errors import RackTrackError
from ..models import QBConnection
from ..time_utils import expires_within, utcnow
from .connection_store import ConnectionStore
from .quickbooks_client import QuickBooksClient, TokenSet


logger = logging.getLogger(__name__)

DEFAULT_REFRESH_WINDOW = timedelta(minutes=30)
DEFAULT_EXPIRY_BUFFER = timedelta(minutes=5)

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"


@dataclass
class RefreshOutcome:
    connection_id: int
    company_id: str
    status: str
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "company_id": self.company_id,
            "status": self.status,
            "message": self.message,
        }


@dataclass
class RefreshReport:
    results: list[RefreshOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def refreshed(self) -> int:
        return self._count(STATUS_SUCCESS)

    @property
    def skipped(self) -> int:
        return self._count(STATUS_SKIPPED)

    @property
    def errors(self) -> int:
        return self._count(STATUS_ERROR)

    def to_dict(self) -> dict:
        return {
            "total": len(self.results),
            "success": self.refreshed,
            "skipped": self.skipped,
            "errors": self.errors,
            "results": [r.to_dict() for r in self.results],
        }


def _refresh_call(client: QuickBooksClient, refresh_token: str):
    """Network half of a refresh; returns TokenSet or the exception raised."""
    try:
        return client.refresh(refresh_token)
    except Exception as exc:  # reported per connection by the caller
        return exc


def refresh_expiring_tokens(
    store: ConnectionStore,
    client: QuickBooksClient,
    *,
    now: Optional[datetime] = None,
    window: timedelta = DEFAULT_REFRESH_WINDOW,
    max_workers: int = 4,
) -> RefreshReport:
    now = now or utcnow()
    report = RefreshReport()
    due: list[QBConnection] = []

    for conn in store.list_active():
        if expires_within(conn.token_expires_at, window, now=now):
            due.append(conn)
        else:
            report.results.append(
                RefreshOutcome(conn.id, conn.company_id, STATUS_SKIPPED, "Token not expiring soon")
            )

    if not due:
        return report

    # Plain strings go to the workers; ORM instances stay on this thread
    jobs = [(conn, conn.refresh_token) for conn in due]
    workers = max(1, min(int(max_workers or 1), len(jobs)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [(conn, pool.submit(_refresh_call, client, token)) for conn, token in jobs]
        answers = [(conn, future.result()) for conn, future in futures]

    for conn, answer in answers:
        report.results.append(_apply_refresh(store, conn, answer))

    logger.info(
        "Token refresh sweep: %d refreshed, %d skipped, %d errors",
        report.refreshed, report.skipped, report.errors,
    )
    return report


def _apply_refresh(store: ConnectionStore, conn: QBConnection, answer) -> RefreshOutcome:
    conn_id, company_id = conn.id, conn.company_id

    if isinstance(answer, TokenSet):
        try:
            store.save_refreshed_tokens(conn, answer)
        except RackTrackError as exc:
            logger.error("Refreshed tokens for connection %s could not be stored", conn_id, exc_info=True)
            return _record_failure(store, conn_id, company_id, exc.message)
        logger.info("Refreshed QuickBooks token for connection %s", conn_id)
        return RefreshOutcome(conn_id, company_id, STATUS_SUCCESS, "Token refreshed")

    message = answer.message if isinstance(answer, RackTrackError) else f"{answer.__class__.__name__}: {answer}"
    if not isinstance(answer, RackTrackError):
        logger.error("Unexpected error refreshing connection %s", conn_id, exc_info=answer)
    else:
        logger.warning("Token refresh failed for connection %s: %s", conn_id, message)
    return _record_failure(store, conn_id, company_id, message)


def _record_failure(store: ConnectionStore, conn_id: int, company_id: str, message: str) -> RefreshOutcome:
    conn = store.get(conn_id)
    if conn is not None:
        try:
            store.record_error(conn, message)
        except RackTrackError:
            logger.error("Could not record refresh error on connection %s", conn_id, exc_info=True)
    return RefreshOutcome(conn_id, company_id, STATUS_ERROR, message)


def ensure_access_token(
    store: ConnectionStore,
    client: QuickBooksClient,
    connection: QBConnection,
    *,
    now: Optional[datetime] = None,
    buffer: Optional[timedelta] = None,
) -> str:
    """
    Return a usable access token for `connection`, refreshing first if needed.

    Raises:
        OAuthExchangeFailed / NetworkTimeout: refresh failed (also recorded on
            the connection)
        PersistenceFailure: new tokens could not be stored
    """
    if buffer is None:
        buffer = DEFAULT_EXPIRY_BUFFER
    if not expires_within(connection.token_expires_at, buffer, now=now):
        return connection.access_token

    conn_id = connection.id
    logger.info("Access token for connection %s is near expiry; refreshing", conn_id)
    try:
        tokens = client.refresh(connection.refresh_token)
    except RackTrackError as exc:
        try:
            store.record_error(connection, exc.message)
        except RackTrackError:
            # Raise the refresh error, not the bookkeeping one
            logger.error("Could not record refresh error on connection %s", conn_id, exc_info=True)
        raise exc
    store.save_refreshed_tokens(connection, tokens)
    return tokens.access_token
