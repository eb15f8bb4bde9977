# backend/racktrack/routes/quickbooks.py
"""
QuickBooks integration routes: OAuth connect/callback, disconnect, scheduled
token refresh, catalog and customer sync, connection listing.

The callback is a browser redirect target, so every outcome is a 302 back to
the admin page with `?error=<kind>` or `?success=connected`, never JSON.
"""
from datetime import timedelta

from flask import Blueprint, current_app, g, jsonify, redirect, request

from ..config import validate_quickbooks_config
from ..decorators import require_auth, require_cron_secret, require_role, request_session_token
from ..errors import (
    CsrfValidationFailed,
    MetadataFetchFailed,
    NetworkTimeout,
    OAuthExchangeFailed,
    PersistenceFailure,
    RackTrackError,
)
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..services import catalog_sync_service, oauth_service, session_service, token_refresh_service
from ..services.connection_store import ConnectionStore
from ..services.quickbooks_client import client_for_app


quickbooks_bp = Blueprint("quickbooks", __name__, url_prefix="/api/quickbooks")

STATE_COOKIE = "qb_oauth_state"


def _error_response(exc: RackTrackError):
    db.session.rollback()
    return jsonify(exc.to_dict()), exc.http_status


def _admin_redirect(**params):
    path = current_app.config.get("QB_ADMIN_REDIRECT_PATH", "/admin/quickbooks")
    query = "&".join(f"{k}={v}" for k, v in params.items())
    response = redirect(f"{path}?{query}")
    # The state is single-use whatever the outcome
    response.delete_cookie(STATE_COOKIE)
    return response


def _connection_id_from_body():
    data = request.get_json(silent=True) or {}
    value = data.get("connection_id")
    return int(value) if value is not None else None


@quickbooks_bp.get("/connect")
@require_auth
@require_role(ROLE_ADMIN)
def connect():
    """Start the OAuth handshake: 302 to Intuit with a fresh state cookie."""
    if "quickbooks_client" not in current_app.extensions:
        problems = validate_quickbooks_config(current_app.config)
        if problems:
            current_app.logger.error("QuickBooks is not configured: %s", "; ".join(problems))
            return jsonify({"error": "QuickBooks is not configured", "kind": "error", "problems": problems}), 500

    try:
        auth_request = oauth_service.begin_authorization(client_for_app(current_app))
    except Exception:
        current_app.logger.exception("Failed to initiate QuickBooks connection")
        return jsonify({"error": "Failed to initiate QuickBooks connection", "kind": "error"}), 500

    response = redirect(auth_request.url)
    response.set_cookie(
        STATE_COOKIE,
        auth_request.state,
        max_age=int(current_app.config.get("QB_STATE_TTL_SECONDS", 600)),
        httponly=True,
        secure=bool(current_app.config.get("QB_STATE_COOKIE_SECURE", False)),
        samesite="Lax",
    )
    return response


@quickbooks_bp.get("/callback")
def callback():
    """
    Intuit redirects here with code, state and realmId (or error).

    Order: provider error, missing params, state check, user check, token
    exchange, company info, persistence.
    """
    if request.args.get("error"):
        current_app.logger.warning("QuickBooks OAuth error: %s", request.args.get("error"))
        return _admin_redirect(error="oauth_error")

    code = request.args.get("code")
    state = request.args.get("state")
    realm_id = request.args.get("realmId")
    if not code or not state or not realm_id:
        return _admin_redirect(error="missing_params")

    issued_state = request.cookies.get(STATE_COOKIE)
    try:
        oauth_service.verify_state(state, issued_state)
    except CsrfValidationFailed:
        current_app.logger.warning("QuickBooks callback rejected: state mismatch for realm %s", realm_id)
        return _admin_redirect(error="invalid_state")

    context = session_service.validate_session(request_session_token() or "")
    if context is None:
        return _admin_redirect(error="unauthorized")

    store = ConnectionStore(db.session)
    try:
        _, created = oauth_service.complete_authorization(
            store,
            client_for_app(current_app),
            code=code,
            state=state,
            issued_state=issued_state,
            realm_id=realm_id,
        )
    except PersistenceFailure as e:
        return _admin_redirect(error="create_failed" if e.operation == "create" else "update_failed")
    except (OAuthExchangeFailed, MetadataFetchFailed, NetworkTimeout) as e:
        current_app.logger.error("QuickBooks callback failed for realm %s: %s", realm_id, e.message)
        return _admin_redirect(error="callback_error")
    except Exception:
        db.session.rollback()
        current_app.logger.exception("QuickBooks callback error")
        return _admin_redirect(error="callback_error")

    current_app.logger.info(
        "QuickBooks %s for realm %s by user %s",
        "connected" if created else "reconnected", realm_id, context.user.id,
    )
    return _admin_redirect(success="connected")


@quickbooks_bp.post("/disconnect")
@require_auth
@require_role(ROLE_ADMIN)
def disconnect():
    """Request body (optional): {"connection_id": int}; defaults to the single active connection."""
    try:
        store = ConnectionStore(db.session)
        connection_id = _connection_id_from_body()
        if connection_id is None:
            connection_id = store.resolve().id
        oauth_service.disconnect(store, connection_id)
        current_app.logger.info("QuickBooks connection %s disconnected by user %s", connection_id, g.current_user.id)
        return jsonify({"success": True})
    except (TypeError, ValueError):
        return jsonify({"error": "connection_id must be an integer", "kind": "validation_error"}), 400
    except RackTrackError as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to disconnect QuickBooks")
        return jsonify({"error": "Failed to disconnect QuickBooks", "kind": "error"}), 500


@quickbooks_bp.post("/refresh-token")
@require_cron_secret
def refresh_tokens():
    """Scheduled sweep trigger. Authorization: Bearer <CRON_SECRET>."""
    config = current_app.config
    try:
        report = token_refresh_service.refresh_expiring_tokens(
            ConnectionStore(db.session),
            client_for_app(current_app),
            window=timedelta(minutes=config.get("QB_REFRESH_WINDOW_MINUTES", 30)),
            max_workers=config.get("QB_REFRESH_MAX_WORKERS", 4),
        )
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Error in token refresh")
        return jsonify({"error": "Failed to refresh tokens", "kind": "error"}), 500

    if not report.results:
        return jsonify({"message": "No active connections found", "results": []})
    return jsonify({"message": "Token refresh completed", **report.to_dict()})


@quickbooks_bp.get("/refresh-token")
def refresh_tokens_info():
    return jsonify({
        "message": "QuickBooks token refresh endpoint",
        "usage": "Send POST request to refresh tokens",
    })


def _run_sync(sync_fn, noun: str):
    config = current_app.config
    try:
        store = ConnectionStore(db.session)
        connection = store.resolve(_connection_id_from_body())
        result = sync_fn(
            db.session,
            store,
            client_for_app(current_app),
            connection,
            page_size=config.get("QB_SYNC_PAGE_SIZE", 20),
            max_pages=config.get("QB_SYNC_MAX_PAGES", 50),
            token_buffer=timedelta(minutes=config.get("QB_TOKEN_EXPIRY_BUFFER_MINUTES", 5)),
        )
    except (TypeError, ValueError):
        return jsonify({"error": "connection_id must be an integer", "kind": "validation_error"}), 400
    except RackTrackError as e:
        current_app.logger.error("%s sync failed: %s", noun.capitalize(), e.message)
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("%s sync error", noun.capitalize())
        return jsonify({"error": "Sync failed", "kind": "error"}), 500

    body = {
        "success": True,
        "message": f"Synced {result.synced} {noun} ({result.created} created, {result.updated} updated)",
        **result.to_dict(),
    }
    if not result.errors:
        body.pop("errors")
    return jsonify(body)


@quickbooks_bp.post("/sync/items")
@require_auth
@require_role(ROLE_ADMIN)
def sync_items():
    return _run_sync(catalog_sync_service.sync_items, "items")


@quickbooks_bp.post("/sync/customers")
@require_auth
@require_role(ROLE_ADMIN)
def sync_customers():
    return _run_sync(catalog_sync_service.sync_customers, "customers")


@quickbooks_bp.get("/connections")
@require_auth
@require_role(ROLE_ADMIN)
def list_connections():
    try:
        connections = ConnectionStore(db.session).list_all()
        return jsonify([c.to_dict() for c in connections])
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list QuickBooks connections")
        return jsonify({"error": "Failed to list QuickBooks connections", "kind": "error"}), 500
