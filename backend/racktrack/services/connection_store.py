# Overview: Persistence for QuickBooks OAuth connections; the only code that writes qb_connections.

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import NotFound, PersistenceFailure, ValidationError
from ..models import QBConnection
from ..time_utils import utcnow
from .quickbooks_client import TokenSet


logger = logging.getLogger(__name__)

# last_error is free text from Intuit; keep it bounded
MAX_ERROR_LENGTH = 1000


class ConnectionStore:
    """
    QBConnection storage bound to one SQLAlchemy session.

    Every write commits immediately and rolls the session back on failure, so
    a caller never sees a half-applied token update.
    """

    def __init__(self, session):
        self.session = session

    # ------------------------------------------------------------------ reads

    def get(self, connection_id: int) -> Optional[QBConnection]:
        return self.session.get(QBConnection, connection_id)

    def get_by_company_id(self, company_id: str) -> Optional[QBConnection]:
        return self.session.query(QBConnection).filter(QBConnection.company_id == company_id).one_or_none()

    def list_all(self) -> list[QBConnection]:
        return self.session.query(QBConnection).order_by(QBConnection.id.asc()).all()

    def list_active(self) -> list[QBConnection]:
        return (
            self.session.query(QBConnection)
            .filter(QBConnection.is_active.is_(True))
            .order_by(QBConnection.token_expires_at.asc(), QBConnection.id.asc())
            .all()
        )

    def resolve(self, connection_id: Optional[int] = None) -> QBConnection:
        """
        Pick the connection a sync or push should use.

        With an id: that connection, which must be active. Without: the single
        active connection; zero is NotFound, several is a ValidationError
        asking the caller to name one.
        """
        if connection_id is not None:
            conn = self.get(connection_id)
            if conn is None or not conn.is_active:
                raise NotFound(f"Active QuickBooks connection {connection_id} not found", connection_id=connection_id)
            return conn

        active = self.list_active()
        if not active:
            raise NotFound("No active QuickBooks connection")
        if len(active) > 1:
            raise ValidationError(
                "Several QuickBooks connections are active; pass connection_id",
                connection_ids=[c.id for c in active],
            )
        return active[0]

    # ----------------------------------------------------------------- writes

    def upsert_authorized(
        self,
        *,
        company_id: str,
        company_name: Optional[str],
        realm_id: str,
        tokens: TokenSet,
        base_url: str,
    ) -> tuple[QBConnection, bool]:
        """
        Create or update the connection for `company_id` after a successful
        OAuth exchange. Returns (connection, created).

        Re-authorizing an existing company overwrites its tokens, reactivates
        it and clears its error state.
        """
        conn = self.get_by_company_id(company_id)
        created = conn is None
        if created:
            conn = QBConnection(company_id=company_id)
            self.session.add(conn)

        conn.company_name = company_name
        conn.realm_id = realm_id
        conn.base_url = base_url
        conn.access_token = tokens.access_token
        conn.refresh_token = tokens.refresh_token
        conn.token_expires_at = tokens.expires_at
        conn.is_active = True
        conn.last_error = None
        conn.error_count = 0

        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            operation = "create" if created else "update"
            raise PersistenceFailure(
                f"Failed to {operation} QuickBooks connection for company {company_id}",
                operation=operation,
                cause=exc,
                company_id=company_id,
            )
        return conn, created

    def save_refreshed_tokens(self, connection: QBConnection, tokens: TokenSet) -> QBConnection:
        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token
        connection.token_expires_at = tokens.expires_at
        connection.last_error = None
        connection.error_count = 0
        self._commit("refresh", connection)
        return connection

    def record_error(self, connection: QBConnection, message: str) -> QBConnection:
        connection.last_error = (message or "")[:MAX_ERROR_LENGTH]
        connection.error_count = (connection.error_count or 0) + 1
        self._commit("update", connection)
        return connection

    def mark_synced(self, connection: QBConnection) -> QBConnection:
        connection.last_sync_at = utcnow()
        self._commit("update", connection)
        return connection

    def delete(self, connection_id: int) -> None:
        """Hard delete. Tokens are not revoked at Intuit."""
        conn = self.get(connection_id)
        if conn is None:
            raise NotFound(f"QuickBooks connection {connection_id} not found", connection_id=connection_id)
        self.session.delete(conn)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(
                f"Failed to delete QuickBooks connection {connection_id}",
                operation="delete",
                cause=exc,
                connection_id=connection_id,
            )
        logger.info("Deleted QuickBooks connection %s", connection_id)

    def _commit(self, operation: str, connection: QBConnection) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(
                f"Failed to {operation} QuickBooks connection {connection.id}",
                operation=operation,
                cause=exc,
                connection_id=connection.id,
            )
