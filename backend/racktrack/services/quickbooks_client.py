"""QuickBooks Online OAuth 2.0 and Accounting API client.

Intuit reference:
- OAuth 2.0: https://developer.intuit.com/app/developer/qbo/docs/develop/authentication-and-authorization/oauth-2.0
- Query API: https://developer.intuit.com/app/developer/qbo/docs/learn/explore-the-quickbooks-online-api/data-queries

Every request is bounded by `timeout`; an expired timeout surfaces as
NetworkTimeout, never as a hang.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from ..errors import MetadataFetchFailed, NetworkTimeout, OAuthExchangeFailed, RemoteApiError
from ..time_utils import expires_at_from_seconds

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_ENDPOINT = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
PRODUCTION_BASE_URL = "https://quickbooks.api.intuit.com"
SANDBOX_BASE_URL = "https://sandbox-quickbooks.api.intuit.com"

# Intuit caps a single query page at 1000 rows
MAX_QUERY_RESULTS = 1000


@dataclass(frozen=True)
class TokenSet:
    """Token pair returned by a code exchange or a refresh."""
    access_token: str
    refresh_token: str
    expires_at: datetime

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return f"TokenSet(expires_at={self.expires_at.isoformat()})"


class QuickBooksClient:
    """Thin synchronous client over Intuit's OAuth and v3 Accounting endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        scope: str = "com.intuit.quickbooks.accounting",
        sandbox: bool = False,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not timeout or timeout <= 0:
            raise ValueError("timeout must be a positive number of seconds")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.sandbox = sandbox
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config, **kwargs) -> "QuickBooksClient":
        return cls(
            config.get("QB_CLIENT_ID", ""),
            config.get("QB_CLIENT_SECRET", ""),
            config.get("QB_REDIRECT_URI", ""),
            scope=config.get("QB_SCOPE", "com.intuit.quickbooks.accounting"),
            sandbox=bool(config.get("QUICKBOOKS_SANDBOX", False)),
            timeout=float(config.get("QB_HTTP_TIMEOUT_SECONDS", 15)),
            **kwargs,
        )

    @property
    def base_url(self) -> str:
        return SANDBOX_BASE_URL if self.sandbox else PRODUCTION_BASE_URL

    # ------------------------------------------------------------------ OAuth

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "scope": self.scope,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"

    def exchange_code(self, code: str, realm_id: str) -> TokenSet:
        """
        Exchange an authorization code for a token pair.

        Raises:
            OAuthExchangeFailed: Intuit rejected the code or the call failed
            NetworkTimeout: no answer within `timeout`
        """
        logger.info("Exchanging QuickBooks authorization code for realm %s", realm_id)
        return self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self.redirect_uri},
            what="Token exchange",
        )

    def refresh(self, refresh_token: str) -> TokenSet:
        """
        Trade a refresh token for a new token pair.

        Raises:
            OAuthExchangeFailed: refresh token rejected (expired, revoked) or call failed
            NetworkTimeout: no answer within `timeout`
        """
        return self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            what="Token refresh",
        )

    def _token_request(self, form: dict, *, what: str) -> TokenSet:
        response = self._send(
            "POST",
            TOKEN_ENDPOINT,
            error_cls=OAuthExchangeFailed,
            what=what,
            data=form,
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )
        try:
            body = response.json()
            return TokenSet(
                access_token=body["access_token"],
                refresh_token=body["refresh_token"],
                expires_at=expires_at_from_seconds(body["expires_in"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise OAuthExchangeFailed(f"{what} failed: malformed token response") from exc

    # ------------------------------------------------------------ Accounting

    def get_company_info(self, access_token: str, realm_id: str) -> dict:
        """
        Read CompanyInfo for the realm.

        Raises:
            MetadataFetchFailed: non-2xx or malformed body
            NetworkTimeout: no answer within `timeout`
        """
        url = f"{self.base_url}/v3/company/{realm_id}/companyinfo/{realm_id}"
        response = self._send("GET", url, error_cls=MetadataFetchFailed, what="Company info", headers=self._bearer(access_token))
        try:
            info = response.json()["CompanyInfo"]
        except (ValueError, KeyError, TypeError) as exc:
            raise MetadataFetchFailed("Company info response was malformed") from exc
        if not info.get("Id"):
            raise MetadataFetchFailed("Company info response has no Id")
        return info

    def query(
        self,
        access_token: str,
        realm_id: str,
        entity: str,
        *,
        start_position: int = 1,
        max_results: int = 20,
    ) -> list[dict]:
        """Run `select * from <entity>` for one page and return its rows."""
        max_results = max(1, min(int(max_results), MAX_QUERY_RESULTS))
        statement = f"select * from {entity} startposition {int(start_position)} maxresults {max_results}"
        url = f"{self.base_url}/v3/company/{realm_id}/query"
        response = self._send(
            "GET",
            url,
            error_cls=RemoteApiError,
            what=f"{entity} query",
            params={"query": statement},
            headers=self._bearer(access_token),
        )
        try:
            return response.json().get("QueryResponse", {}).get(entity, [])
        except (ValueError, AttributeError) as exc:
            raise RemoteApiError(f"{entity} query response was malformed") from exc

    def get_estimate(self, access_token: str, realm_id: str, estimate_id: str) -> dict:
        url = f"{self.base_url}/v3/company/{realm_id}/estimate/{estimate_id}"
        response = self._send("GET", url, error_cls=RemoteApiError, what="Estimate read", headers=self._bearer(access_token))
        return self._estimate(response, "Estimate read")

    def save_estimate(self, access_token: str, realm_id: str, payload: dict) -> dict:
        """Create (no Id) or sparse-update (Id + SyncToken) an Estimate."""
        url = f"{self.base_url}/v3/company/{realm_id}/estimate"
        headers = self._bearer(access_token)
        headers["Content-Type"] = "application/json"
        response = self._send("POST", url, error_cls=RemoteApiError, what="Estimate save", json=payload, headers=headers)
        return self._estimate(response, "Estimate save")

    # --------------------------------------------------------------- helpers

    @staticmethod
    def _bearer(access_token: str) -> dict:
        return {"Accept": "application/json", "Authorization": f"Bearer {access_token}"}

    @staticmethod
    def _estimate(response: httpx.Response, what: str) -> dict:
        try:
            estimate = response.json()["Estimate"]
        except (ValueError, KeyError, TypeError) as exc:
            raise RemoteApiError(f"{what} response was malformed") from exc
        if not isinstance(estimate, dict):
            raise RemoteApiError(f"{what} response was malformed")
        return estimate

    def _send(self, method: str, url: str, *, error_cls, what: str, **kwargs: Any) -> httpx.Response:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(f"{what} timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{what} failed: {exc.__class__.__name__}") from exc

        if response.is_error:
            detail = response.text[:500]
            logger.warning("%s returned HTTP %s", what, response.status_code)
            raise error_cls(f"{what} failed: {detail}", status_code=response.status_code)
        return response


def client_for_app(app) -> QuickBooksClient:
    """Client injected at app.extensions["quickbooks_client"], else one built from config."""
    client = app.extensions.get("quickbooks_client")
    if client is not None:
        return client
    return QuickBooksClient.from_config(app.config)
