"""
QuickBooks HTTP routes: connect/callback redirects, cron refresh trigger, sync, listing.
"""

from datetime import timedelta

import pytest

from racktrack.errors import OAuthExchangeFailed
from racktrack.extensions import db
from racktrack.models import Product, QBConnection


BASE = "/api/quickbooks"
CRON_HEADERS = {"Authorization": "Bearer cron-test-secret"}


def _callback(client, state="s-123", cookie_state="s-123", **params):
    if cookie_state is not None:
        client.set_cookie("qb_oauth_state", cookie_state)
    query = {"code": "auth-code", "state": state, "realmId": "9130"}
    query.update(params)
    query = {k: v for k, v in query.items() if v is not None}
    return client.get(f"{BASE}/callback", query_string=query)


class TestConnect:
    def test_redirects_to_intuit_with_state_cookie(self, client, fake_qb, admin_headers):
        response = client.get(f"{BASE}/connect", headers=admin_headers)

        assert response.status_code == 302
        assert response.headers["Location"].startswith("https://appcenter.intuit.com/connect/oauth2")
        cookie = response.headers["Set-Cookie"]
        assert cookie.startswith("qb_oauth_state=")
        assert "HttpOnly" in cookie
        assert "SameSite=Lax" in cookie
        assert "Max-Age=600" in cookie

        state = fake_qb.calls[0][1]
        assert f"qb_oauth_state={state}" in cookie

    def test_requires_admin(self, client, fake_qb, staff_headers):
        response = client.get(f"{BASE}/connect", headers=staff_headers)
        assert response.status_code == 403
        assert fake_qb.calls == []

    def test_requires_auth(self, client, db_session):
        assert client.get(f"{BASE}/connect").status_code == 401


class TestCallback:
    def _location(self, response):
        assert response.status_code == 302
        return response.headers["Location"]

    def test_success(self, client, fake_qb, admin_token, db_session):
        client.set_cookie("rt_session", admin_token)
        response = _callback(client)

        assert self._location(response).endswith("/admin/quickbooks?success=connected")
        conn = db.session.query(QBConnection).one()
        assert conn.company_id == "9130"
        assert conn.company_name == "Acme Racks"

    def test_provider_error(self, client, fake_qb, db_session):
        response = client.get(f"{BASE}/callback", query_string={"error": "access_denied"})
        assert self._location(response).endswith("?error=oauth_error")

    @pytest.mark.parametrize("missing", ["code", "state", "realmId"])
    def test_missing_params(self, client, fake_qb, db_session, missing):
        response = _callback(client, **{missing: None})
        assert self._location(response).endswith("?error=missing_params")

    def test_state_mismatch(self, client, fake_qb, admin_token, db_session):
        client.set_cookie("rt_session", admin_token)
        response = _callback(client, state="forged", cookie_state="real")

        assert self._location(response).endswith("?error=invalid_state")
        assert fake_qb.calls == []
        assert db.session.query(QBConnection).count() == 0

    def test_state_cookie_absent(self, client, fake_qb, admin_token, db_session):
        client.set_cookie("rt_session", admin_token)
        response = _callback(client, cookie_state=None)
        assert self._location(response).endswith("?error=invalid_state")

    def test_state_cookie_is_cleared(self, client, fake_qb, db_session):
        response = _callback(client, state="forged", cookie_state="real")
        assert "qb_oauth_state=;" in response.headers["Set-Cookie"]

    def test_unauthenticated_user(self, client, fake_qb, db_session):
        response = _callback(client)
        assert self._location(response).endswith("?error=unauthorized")
        assert fake_qb.calls == []

    def test_exchange_failure(self, client, fake_qb, admin_token, db_session):
        fake_qb.exchange_error = OAuthExchangeFailed("Token exchange failed: invalid_grant", status_code=400)
        client.set_cookie("rt_session", admin_token)

        response = _callback(client)

        assert self._location(response).endswith("?error=callback_error")
        assert db.session.query(QBConnection).count() == 0


class TestRefreshTrigger:
    def test_requires_cron_secret(self, client, fake_qb, connection):
        assert client.post(f"{BASE}/refresh-token").status_code == 401
        assert client.post(f"{BASE}/refresh-token", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert fake_qb.calls == []

    def test_fails_closed_without_configured_secret(self, app, client, fake_qb, connection):
        app.config["CRON_SECRET"] = ""
        try:
            response = client.post(f"{BASE}/refresh-token", headers={"Authorization": "Bearer "})
        finally:
            app.config["CRON_SECRET"] = "cron-test-secret"
        assert response.status_code == 401

    def test_sweep(self, client, fake_qb, make_connection):
        make_connection(company_id="1", expires_in=timedelta(hours=1))
        make_connection(company_id="2", expires_in=timedelta(minutes=10))

        response = client.post(f"{BASE}/refresh-token", headers=CRON_HEADERS)

        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == "Token refresh completed"
        statuses = {r["company_id"]: r["status"] for r in body["results"]}
        assert statuses == {"1": "skipped", "2": "success"}
        assert body["success"] == 1 and body["skipped"] == 1
        assert "refresh-for-2" not in response.get_data(as_text=True)

    def test_no_connections(self, client, fake_qb, db_session):
        response = client.post(f"{BASE}/refresh-token", headers=CRON_HEADERS)
        assert response.get_json() == {"message": "No active connections found", "results": []}

    def test_get_describes_endpoint(self, client):
        body = client.get(f"{BASE}/refresh-token").get_json()
        assert body["usage"] == "Send POST request to refresh tokens"


class TestSync:
    def test_sync_items(self, client, fake_qb, connection, admin_headers):
        fake_qb.items = [
            {"Id": "1", "Name": "Upright 12ft", "Type": "Inventory", "UnitPrice": 189.5, "Active": True},
            {"Id": "2", "Name": "Install", "Type": "Service"},
        ]

        response = client.post(f"{BASE}/sync/items", headers=admin_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["total"] == 2
        assert body["synced"] == 1
        assert body["created"] == 1
        assert "errors" not in body
        assert db.session.query(Product).filter_by(qb_item_id="1").one().sell_price_cents == 18950

    def test_sync_requires_admin(self, client, fake_qb, connection, staff_headers):
        assert client.post(f"{BASE}/sync/items", headers=staff_headers).status_code == 403

    def test_sync_disabled_connection(self, client, fake_qb, make_connection, admin_headers):
        make_connection(sync_enabled=False)

        response = client.post(f"{BASE}/sync/items", headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json()["kind"] == "validation_error"
        assert fake_qb.calls == []

    def test_sync_without_connection(self, client, fake_qb, admin_headers):
        response = client.post(f"{BASE}/sync/customers", headers=admin_headers)
        assert response.status_code == 404

    def test_sync_with_several_connections_needs_id(self, client, fake_qb, make_connection, admin_headers):
        make_connection(company_id="1")
        second = make_connection(company_id="2")

        ambiguous = client.post(f"{BASE}/sync/customers", headers=admin_headers)
        assert ambiguous.status_code == 400

        fake_qb.customers = [{"Id": "7", "DisplayName": "Harbor Freight Depot"}]
        chosen = client.post(f"{BASE}/sync/customers", headers=admin_headers, json={"connection_id": second.id})
        assert chosen.status_code == 200
        assert chosen.get_json()["synced"] == 1


class TestConnections:
    def test_list_omits_tokens(self, client, fake_qb, connection, admin_headers):
        response = client.get(f"{BASE}/connections", headers=admin_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body[0]["company_id"] == "9130"
        text = response.get_data(as_text=True)
        assert "access_token" not in text
        assert "refresh-for-9130" not in text

    def test_disconnect(self, client, fake_qb, connection, admin_headers):
        response = client.post(f"{BASE}/disconnect", headers=admin_headers, json={"connection_id": connection.id})

        assert response.get_json() == {"success": True}
        assert db.session.query(QBConnection).count() == 0
