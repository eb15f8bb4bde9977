# Overview: Pushes a customer PO to QuickBooks as an Estimate and records the estimate ids on the PO.

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from ..errors import NotFound, ValidationError
from ..models import CustomerPO, QBConnection
from .connection_store import ConnectionStore
from .order_repository import OrderRepository
from .quickbooks_client import QuickBooksClient
from .token_refresh_service import ensure_access_token


logger = logging.getLogger(__name__)

# Lines whose product was never synced from QuickBooks point at this item
GENERIC_ITEM_REF = "1"


def _dollars(cents: Optional[int]) -> float:
    return round((cents or 0) / 100.0, 2)


def build_estimate_payload(order: CustomerPO) -> dict:
    """Estimate body for `order`. Custom fields 1-3 carry PO number, production status, due date."""
    due = order.due_date.isoformat() if order.due_date else None
    payload = {
        "CustomerRef": {"value": order.customer.qb_customer_id},
        "DocNumber": order.po_number,
        "Line": [
            {
                "Id": str(line.line_number),
                "LineNum": line.line_number,
                "Description": line.description or (line.product.name if line.product else None),
                "Amount": _dollars(line.total_amount_cents),
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {
                    "ItemRef": {"value": (line.product.qb_item_id if line.product else None) or GENERIC_ITEM_REF},
                    "Qty": line.quantity,
                    "UnitPrice": _dollars(line.unit_price_cents),
                },
            }
            for line in order.lines
        ],
        "CustomField": [
            {"DefinitionId": "1", "Name": "PO Number", "Type": "StringType", "StringValue": order.po_number},
            {
                "DefinitionId": "2",
                "Name": "Production Status",
                "Type": "StringType",
                "StringValue": order.production_status.replace("_", " ").upper(),
            },
            {"DefinitionId": "3", "Name": "Production Due", "Type": "StringType", "StringValue": due or ""},
        ],
    }
    if order.po_date:
        payload["TxnDate"] = order.po_date.isoformat()
    if due:
        payload["ExpirationDate"] = due

    note = [order.description] if order.description else []
    if order.production_notes:
        note.append(f"Production Notes: {order.production_notes}")
    if note:
        payload["PrivateNote"] = "\n".join(note)
    return payload


def push_estimate(
    repo: OrderRepository,
    store: ConnectionStore,
    client: QuickBooksClient,
    connection: QBConnection,
    order_id: int,
    *,
    actor_id: Optional[int],
    token_buffer: Optional[timedelta] = None,
) -> tuple[CustomerPO, dict, bool]:
    """
    Create or update the QuickBooks Estimate for an order.

    Returns:
        (order, estimate, created); production_status is left unchanged.

    Raises:
        NotFound: no such order
        ValidationError: customer has no qb_customer_id yet
        RemoteApiError / NetworkTimeout: Intuit call failed
        PersistenceFailure: estimate ids could not be stored on the order
    """
    order = repo.get_with_lines(order_id)
    if order is None:
        raise NotFound(f"PO {order_id} not found", order_id=order_id)
    if order.customer is None or not order.customer.qb_customer_id:
        raise ValidationError("Customer must be synced to QuickBooks first", order_id=order_id)

    access_token = ensure_access_token(store, client, connection, buffer=token_buffer)
    payload = build_estimate_payload(order)

    created = not order.qb_estimate_id
    if not created:
        current = client.get_estimate(access_token, connection.realm_id, order.qb_estimate_id)
        payload["Id"] = order.qb_estimate_id
        payload["SyncToken"] = current["SyncToken"]

    estimate = client.save_estimate(access_token, connection.realm_id, payload)

    repo.update(
        order,
        {
            "qb_estimate_id": str(estimate["Id"]),
            "qb_estimate_number": estimate.get("DocNumber"),
            "qb_sync_token": estimate.get("SyncToken"),
            "updated_by": actor_id,
        },
    )
    logger.info(
        "%s QuickBooks estimate %s for order %s",
        "Created" if created else "Updated", estimate["Id"], order_id,
    )
    return order, estimate, created
