# Overview: Service-layer operations for customer POs; encapsulates business logic and database work.

"""
RackTrack Order Lifecycle Service

================================================================================
PURPOSE: Every production_status change and every order write goes through
this module.
================================================================================

TRANSITION (transition):
    1. Load order (NotFound)
    2. order_status.require_legal (InvalidTransition / UnknownState propagate)
    3. Build delta: production_status, updated_by; hold_reason on entering
       on_hold (reason required), cleared otherwise; production_notes
       overwritten when notes are given
    4. OrderRepository.update (PersistenceFailure on storage error)
    5. Status history row is appended by the CustomerPO mapper hook in the
       same flush; nothing here writes history directly

CREATE (create), two-phase write with compensation:
    1. po_number defaults to PO-<count+1, 6 digits>. Two concurrent creators
       can compute the same number; uq_customer_pos_po_number rejects the
       loser with PersistenceFailure, which the caller may retry
    2. Insert order row
    3. Insert lines with line_number = index + 1
    4. Line failure -> compensating delete of the order -> PartialCreateFailure
    5. Commit, then re-read order with customer and lines

EDIT (edit):
    production_status is refused (status changes only go through transition).
    Field changes and the optional line replacement (renumbered from 1) are
    committed together; total_amount_cents follows the new lines unless given

DELETE (delete):
    Refused for in_production and invoiced orders; removes lines, history
    and the order row in one commit
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from ..errors import NotFound, PartialCreateFailure, PersistenceFailure, ValidationError
from ..models import CustomerPO
from .order_repository import OrderRepository
from .order_status import ProductionStatus, parse_status, require_legal


logger = logging.getLogger(__name__)

PO_NUMBER_PREFIX = "PO-"
PO_NUMBER_PAD = 6

# Fields a caller may set on create or edit; new orders always start in 'draft'.
ORDER_WRITABLE_FIELDS = {
    "po_number",
    "customer_id",
    "description",
    "po_date",
    "due_date",
    "production_notes",
    "total_amount_cents",
}
LINE_WRITABLE_FIELDS = {
    "product_id",
    "description",
    "quantity",
    "unit_price_cents",
    "total_amount_cents",
}

# Orders in these states cannot be deleted
UNDELETABLE_STATUSES = frozenset({
    ProductionStatus.IN_PRODUCTION.value,
    ProductionStatus.INVOICED.value,
})


def next_po_number(repo: OrderRepository) -> str:
    """Count-then-format candidate number; uniqueness is enforced by the database."""
    return f"{PO_NUMBER_PREFIX}{str(repo.count() + 1).zfill(PO_NUMBER_PAD)}"


def _as_int(value: Any, field: str, *, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value.strip())
        else:
            raise ValidationError(f"{field} must be an integer", field=field)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field)
    return value


def _as_date(value: Any, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field) from None


def _clean_order_fields(order_data: dict, *, partial: bool = False) -> dict:
    if partial and "production_status" in order_data:
        raise ValidationError(
            "production_status can only be changed through the status endpoint",
            field="production_status",
        )
    status = order_data.get("production_status")
    if status is not None and parse_status(status) is not ProductionStatus.DRAFT:
        raise ValidationError(
            "New orders start in 'draft'; use the status endpoint to move them",
            field="production_status",
        )

    unknown = set(order_data) - ORDER_WRITABLE_FIELDS - {"production_status"}
    if unknown:
        raise ValidationError(f"Unknown order fields: {', '.join(sorted(unknown))}")

    fields = {k: v for k, v in order_data.items() if k in ORDER_WRITABLE_FIELDS}
    if "po_number" in fields:
        fields["po_number"] = (fields["po_number"] or "").strip() or None
    if fields.get("customer_id") is not None:
        fields["customer_id"] = _as_int(fields["customer_id"], "customer_id")
    if "total_amount_cents" in fields and fields["total_amount_cents"] is not None:
        fields["total_amount_cents"] = _as_int(fields["total_amount_cents"], "total_amount_cents", minimum=0)
    for key in ("po_date", "due_date"):
        if key in fields:
            fields[key] = _as_date(fields[key], key)
    if partial:
        # Explicit nulls clear optional fields on edit
        if "po_number" in fields and fields["po_number"] is None:
            raise ValidationError("po_number cannot be blank", field="po_number")
        if fields.get("total_amount_cents", 0) is None:
            del fields["total_amount_cents"]
        return fields
    return {k: v for k, v in fields.items() if v is not None}


def _clean_line(index: int, line: dict) -> dict:
    if not isinstance(line, dict):
        raise ValidationError(f"items[{index}] must be an object")

    unknown = set(line) - LINE_WRITABLE_FIELDS - {"line_number", "id", "po_id"}
    if unknown:
        raise ValidationError(f"Unknown fields on items[{index}]: {', '.join(sorted(unknown))}")

    if "quantity" not in line:
        raise ValidationError(f"items[{index}].quantity is required", field="quantity")

    row = {k: v for k, v in line.items() if k in LINE_WRITABLE_FIELDS}
    row["quantity"] = _as_int(row["quantity"], f"items[{index}].quantity", minimum=1)
    row["unit_price_cents"] = _as_int(row.get("unit_price_cents", 0), f"items[{index}].unit_price_cents", minimum=0)
    if row.get("product_id") is not None:
        row["product_id"] = _as_int(row["product_id"], f"items[{index}].product_id")
    if row.get("total_amount_cents") is None:
        row["total_amount_cents"] = row["quantity"] * row["unit_price_cents"]
    else:
        row["total_amount_cents"] = _as_int(row["total_amount_cents"], f"items[{index}].total_amount_cents", minimum=0)

    # Sequential numbering is assigned here, never taken from the caller
    row["line_number"] = index + 1
    return row


def create(
    repo: OrderRepository,
    order_data: dict,
    lines: Optional[list[dict]] = None,
    *,
    actor_id: Optional[int],
) -> CustomerPO:
    """
    Create an order and its lines as one logical unit.

    Returns:
        The committed order re-read with customer, lines and products.

    Raises:
        ValidationError: bad input (nothing written)
        PersistenceFailure: order row rejected, e.g. duplicate po_number
        PartialCreateFailure: lines rejected; the order row was deleted again
    """
    fields = _clean_order_fields(order_data or {})
    line_rows = [_clean_line(i, line) for i, line in enumerate(lines or [])]

    if not fields.get("po_number"):
        fields["po_number"] = next_po_number(repo)
    if "total_amount_cents" not in fields:
        fields["total_amount_cents"] = sum(row["total_amount_cents"] for row in line_rows)

    fields["production_status"] = ProductionStatus.DRAFT.value
    fields["created_by"] = actor_id
    fields["updated_by"] = actor_id

    order = repo.insert_order(fields)
    order_id = order.id

    if line_rows:
        try:
            repo.insert_lines(order_id, line_rows)
        except PersistenceFailure as exc:
            logger.warning(
                "Line insert failed for order %s (%s); issuing compensating delete",
                order_id, fields["po_number"], exc_info=exc.cause,
            )
            compensated = True
            try:
                repo.delete_order(order_id)
            except PersistenceFailure:
                # delete_order rolled the session back; the uncommitted order row went with it
                compensated = False
            raise PartialCreateFailure(
                f"Failed to create order items: {exc.cause or exc}",
                cause=exc.cause,
                po_number=fields["po_number"],
                compensated=compensated,
            )

    repo.commit()
    logger.info("Created order %s (%s) with %d lines", order_id, fields["po_number"], len(line_rows))

    created = repo.get_with_lines(order_id)
    if created is None:
        raise NotFound(f"Order {order_id} not found after create", order_id=order_id)
    return created


def transition(
    repo: OrderRepository,
    order_id: int,
    requested_status: str,
    *,
    actor_id: Optional[int],
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> CustomerPO:
    """
    Move an order to `requested_status`.

    Raises:
        NotFound: no such order
        UnknownState / InvalidTransition: from order_status, unchanged
        ValidationError: on_hold requested without a reason
        PersistenceFailure: storage rejected the update; the order may still
            be in its previous state
    """
    order = repo.get(order_id)
    if order is None:
        raise NotFound(f"PO {order_id} not found", order_id=order_id)

    current = order.production_status
    target = require_legal(current, requested_status)

    delta: dict[str, Any] = {
        "production_status": target.value,
        "updated_by": actor_id,
    }

    if target is ProductionStatus.ON_HOLD:
        if reason is None or not str(reason).strip():
            raise ValidationError("A reason is required to put an order on hold", field="reason")
        delta["hold_reason"] = str(reason).strip()
    else:
        delta["hold_reason"] = None

    if notes:
        delta["production_notes"] = notes

    try:
        repo.update(order, delta)
    except PersistenceFailure:
        logger.error("Failed to move order %s from %s to %s", order_id, current, target.value, exc_info=True)
        raise

    logger.info("Order %s moved %s -> %s by user %s", order_id, current, target.value, actor_id)
    return order


def edit(
    repo: OrderRepository,
    order_id: int,
    order_data: dict,
    lines: Optional[list[dict]] = None,
    *,
    actor_id: Optional[int],
) -> CustomerPO:
    """
    Update an order's non-status fields and optionally replace its lines.

    When `lines` is given (an empty list clears them) the new lines are
    numbered from 1 in the order supplied, and total_amount_cents is
    recomputed from them unless the caller sets it.

    Raises:
        NotFound: no such order
        ValidationError: bad input, including any production_status key
        PersistenceFailure: storage rejected the change; nothing was applied
    """
    order = repo.get(order_id)
    if order is None:
        raise NotFound(f"PO {order_id} not found", order_id=order_id)

    fields = _clean_order_fields(order_data or {}, partial=True)
    line_rows = None
    if lines is not None:
        line_rows = [_clean_line(i, line) for i, line in enumerate(lines)]
        fields.setdefault("total_amount_cents", sum(row["total_amount_cents"] for row in line_rows))
    fields["updated_by"] = actor_id

    try:
        if line_rows is not None:
            repo.replace_lines(order_id, line_rows)
        repo.update(order, fields)
    except PersistenceFailure:
        repo.rollback()
        logger.error("Failed to edit order %s", order_id, exc_info=True)
        raise

    logger.info(
        "Edited order %s by user %s (%s)",
        order_id, actor_id,
        "fields only" if line_rows is None else f"{len(line_rows)} lines",
    )
    updated = repo.get_with_lines(order_id)
    if updated is None:
        raise NotFound(f"PO {order_id} not found", order_id=order_id)
    return updated


def delete(repo: OrderRepository, order_id: int, *, actor_id: Optional[int]) -> None:
    """
    Delete an order with its lines and history.

    Raises:
        NotFound: no such order
        ValidationError: order is in production or already invoiced
        PersistenceFailure: storage rejected the delete
    """
    order = repo.get(order_id)
    if order is None:
        raise NotFound(f"PO {order_id} not found", order_id=order_id)

    status = order.production_status
    if status in UNDELETABLE_STATUSES:
        raise ValidationError(
            "Cannot delete PO that is in production or invoiced",
            field="production_status",
            production_status=status,
        )

    po_number = order.po_number
    repo.delete(order_id)
    logger.info("Deleted order %s (%s) in %s by user %s", order_id, po_number, status, actor_id)


def get(repo: OrderRepository, order_id: int) -> CustomerPO:
    order = repo.get_with_lines(order_id)
    if order is None:
        raise NotFound(f"PO {order_id} not found", order_id=order_id)
    return order


def list_orders(
    repo: OrderRepository,
    *,
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 200,
) -> list[CustomerPO]:
    """List orders newest first; status 'all' or empty means no status filter."""
    if status and status != "all":
        status = parse_status(status).value
    else:
        status = None
    return repo.list(status=status, customer_id=customer_id, search=search, limit=limit)
