# backend/racktrack/routes/orders.py
"""
Customer PO API routes: list, create, read, edit, delete, status transitions,
estimate push.

All business rules live in order_service / estimate_service; these handlers
translate JSON to calls and RackTrackError to {"error", "kind", ...} bodies.
"""
from datetime import timedelta

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import RackTrackError, ValidationError
from ..extensions import db
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import estimate_service, order_service
from ..services.connection_store import ConnectionStore
from ..services.order_repository import OrderRepository
from ..services.quickbooks_client import client_for_app


orders_bp = Blueprint("orders", __name__, url_prefix="/api/customer-pos")

MAX_LIST_LIMIT = 1000


def _error_response(exc: RackTrackError):
    db.session.rollback()
    return jsonify(exc.to_dict()), exc.http_status


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": message, "kind": "error"}), 500


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@orders_bp.get("")
@require_auth
def list_orders():
    """
    Query params: status (or 'all'), customer_id, search, limit (default 200)
    """
    try:
        customer_id = request.args.get("customer_id", type=int)
        limit = min(max(request.args.get("limit", 200, type=int), 1), MAX_LIST_LIMIT)
        orders = order_service.list_orders(
            OrderRepository(db.session),
            status=request.args.get("status"),
            customer_id=customer_id,
            search=(request.args.get("search") or "").strip() or None,
            limit=limit,
        )
        return jsonify([o.to_dict(include_lines=True) for o in orders])
    except RackTrackError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("Failed to fetch customer POs")


@orders_bp.post("")
@require_auth
def create_order():
    """
    Create a PO in 'draft' with optional lines.

    Request body:
    {
        "po_number": str (optional, generated when absent),
        "customer_id": int,
        "description": str,
        "po_date": "YYYY-MM-DD", "due_date": "YYYY-MM-DD",
        "items": [{"product_id": int, "description": str, "quantity": int, "unit_price_cents": int}, ...]
    }

    Returns:
        201: created PO with customer and items
        400: validation error
        500: persistence_failure / partial_create_failure
    """
    try:
        data = _json_body()
        lines = data.pop("items", None)
        if lines is not None and not isinstance(lines, list):
            raise ValidationError("items must be a list", field="items")

        order = order_service.create(
            OrderRepository(db.session),
            data,
            lines,
            actor_id=g.current_user.id,
        )
        return jsonify(order.to_dict(include_lines=True)), 201
    except RackTrackError as e:
        if e.http_status >= 500:
            current_app.logger.error("Customer PO create failed: %s", e.message)
        return _error_response(e)
    except Exception:
        return _unexpected("Failed to create customer PO")


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order(order_id: int):
    try:
        order = order_service.get(OrderRepository(db.session), order_id)
        return jsonify(order.to_dict(include_lines=True, include_history=True))
    except RackTrackError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("Failed to fetch customer PO")


@orders_bp.patch("/<int:order_id>")
@require_auth
def edit_order(order_id: int):
    """
    Edit PO fields and optionally replace its lines.

    Request body: any of the create fields; "items" (when present) replaces
    every line, renumbered from 1. production_status is refused here.

    Returns:
        200: updated PO with customer and items
        400: validation error
        404: PO not found
    """
    try:
        data = _json_body()
        lines = data.pop("items", None)
        if lines is not None and not isinstance(lines, list):
            raise ValidationError("items must be a list", field="items")

        order = order_service.edit(
            OrderRepository(db.session),
            order_id,
            data,
            lines,
            actor_id=g.current_user.id,
        )
        return jsonify(order.to_dict(include_lines=True))
    except RackTrackError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("Failed to update customer PO")


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_order(order_id: int):
    try:
        order_service.delete(OrderRepository(db.session), order_id, actor_id=g.current_user.id)
        return jsonify({"success": True})
    except RackTrackError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("Failed to delete customer PO")


@orders_bp.patch("/<int:order_id>/status")
@require_auth
def update_status(order_id: int):
    """
    Request body:
    {
        "status": str,
        "reason": str (required for on_hold),
        "notes": str (optional, replaces production_notes)
    }

    Returns:
        200: {success, po, message}
        400: {error, kind, validTransitions?}
        404: PO not found
    """
    try:
        data = _json_body()
        status = data.get("status")
        if not status:
            raise ValidationError("Status is required", field="status")

        order = order_service.transition(
            OrderRepository(db.session),
            order_id,
            status,
            actor_id=g.current_user.id,
            reason=data.get("reason"),
            notes=data.get("notes"),
        )
        return jsonify({
            "success": True,
            "po": order.to_dict(),
            "message": f"PO status updated to {order.production_status}",
        })
    except RackTrackError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("Failed to update PO status")


@orders_bp.post("/<int:order_id>/sync-estimate")
@require_auth
def sync_estimate(order_id: int):
    """
    Create or update the QuickBooks Estimate for this PO.

    Request body (optional): {"connection_id": int}
    """
    try:
        data = request.get_json(silent=True) or {}
        store = ConnectionStore(db.session)
        connection = store.resolve(data.get("connection_id"))

        order, estimate, created = estimate_service.push_estimate(
            OrderRepository(db.session),
            store,
            client_for_app(current_app),
            connection,
            order_id,
            actor_id=g.current_user.id,
            token_buffer=timedelta(minutes=current_app.config.get("QB_TOKEN_EXPIRY_BUFFER_MINUTES", 5)),
        )
        return jsonify({
            "success": True,
            "message": "Estimate created in QuickBooks" if created else "Estimate updated in QuickBooks",
            "estimate": {
                "id": estimate.get("Id"),
                "number": estimate.get("DocNumber"),
                "status": estimate.get("TxnStatus"),
                "total": estimate.get("TotalAmt"),
            },
            "po": order.to_dict(),
        })
    except RackTrackError as e:
        current_app.logger.warning("Estimate sync for PO %s failed: %s", order_id, e.message)
        return _error_response(e)
    except Exception:
        return _unexpected("Failed to sync estimate")
