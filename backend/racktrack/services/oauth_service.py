# Overview: QuickBooks OAuth 2.0 handshake; issues CSRF state and turns a callback into a stored connection.

"""
QuickBooks OAuth Handshake

BEGIN (begin_authorization):
    Generate a random state, build Intuit's consent URL around it. The route
    stores the state in a short-lived HttpOnly cookie. No connection row is
    touched.

COMPLETE (complete_authorization), strictly in this order:
    1. verify_state: presented state must equal the issued one
       (CsrfValidationFailed). Nothing is exchanged on a mismatch.
    2. Exchange code for tokens (OAuthExchangeFailed / NetworkTimeout)
    3. Read CompanyInfo with the new access token (MetadataFetchFailed /
       NetworkTimeout)
    4. Upsert connection keyed by company id (PersistenceFailure)

    If step 4 fails the grant issued in step 2 is orphaned at Intuit. It is
    logged by company and realm id (never the token) and the user has to
    authorize again.

DISCONNECT (disconnect):
    Hard delete of the local row; tokens are not revoked at Intuit.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from ..errors import CsrfValidationFailed, PersistenceFailure
from ..models import QBConnection
from .connection_store import ConnectionStore
from .quickbooks_client import QuickBooksClient


logger = logging.getLogger(__name__)

STATE_BYTES = 32


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str


def generate_state() -> str:
    return secrets.token_urlsafe(STATE_BYTES)


def begin_authorization(client: QuickBooksClient) -> AuthorizationRequest:
    state = generate_state()
    return AuthorizationRequest(url=client.authorization_url(state), state=state)


def verify_state(presented: Optional[str], issued: Optional[str]) -> None:
    """Constant-time comparison of the callback state against the issued one."""
    if not presented or not issued:
        raise CsrfValidationFailed("OAuth state is missing")
    if not hmac.compare_digest(presented.encode("utf-8"), issued.encode("utf-8")):
        raise CsrfValidationFailed("OAuth state does not match the issued state")


def complete_authorization(
    store: ConnectionStore,
    client: QuickBooksClient,
    *,
    code: str,
    state: Optional[str],
    issued_state: Optional[str],
    realm_id: str,
) -> tuple[QBConnection, bool]:
    """
    Finish the handshake and persist the connection.

    Returns:
        (connection, created)
    """
    verify_state(state, issued_state)

    tokens = client.exchange_code(code, realm_id)
    info = client.get_company_info(tokens.access_token, realm_id)

    company_id = str(info["Id"])
    company_name = info.get("CompanyName") or info.get("LegalName")

    try:
        conn, created = store.upsert_authorized(
            company_id=company_id,
            company_name=company_name,
            realm_id=realm_id,
            tokens=tokens,
            base_url=client.base_url,
        )
    except PersistenceFailure:
        logger.error(
            "QuickBooks grant for company %s (realm %s) was issued but could not be stored; "
            "re-authorization is required",
            company_id, realm_id, exc_info=True,
        )
        raise

    logger.info(
        "%s QuickBooks connection %s for company %s",
        "Created" if created else "Updated", conn.id, company_id,
    )
    return conn, created


def disconnect(store: ConnectionStore, connection_id: int) -> None:
    store.delete(connection_id)
