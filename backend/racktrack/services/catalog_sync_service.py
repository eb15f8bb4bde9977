# Overview: Pulls QuickBooks Items and Customers into local products and customers.

"""
QuickBooks Catalog Reconciler

ITEMS (sync_items):
    - Page through `select * from Item` with a bounded page size
    - Only Inventory and NonInventory items become products; other types
      (Service, Category, Group) are counted in total and skipped
    - Each item is created or updated by qb_item_id inside its own savepoint
      and committed on its own: an item is either fully written or not at all
    - A failing item lands in `errors` and the run continues
    - A page that cannot be fetched after the first one is recorded in
      `errors` as {"page_start", "error"} and ends paging; committed items
      stay and last_sync_at is still stamped
    - `should_cancel` is checked between items; already committed items stay
    - Locally-owned products (qb_item_id NULL) are never touched

CUSTOMERS (sync_customers): same contract keyed by qb_customer_id.

Both refuse with ValidationError, before any network call, when the
connection has sync_enabled switched off.

Money arrives from Intuit as decimal dollars and is stored as integer cents.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import RackTrackError, ValidationError
from ..models import Customer, Product, QBConnection
from ..models.inventory import PRODUCT_TYPE_FINISHED_GOOD, PRODUCT_TYPE_RAW_MATERIAL
from ..time_utils import parse_iso_datetime, utcnow
from .connection_store import ConnectionStore
from .quickbooks_client import MAX_QUERY_RESULTS, QuickBooksClient
from .token_refresh_service import ensure_access_token


logger = logging.getLogger(__name__)

SYNCABLE_ITEM_TYPES = ("Inventory", "NonInventory")

DEFAULT_PAGE_SIZE = 20
DEFAULT_MAX_PAGES = 50


@dataclass
class SyncResult:
    total: int = 0
    synced: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "synced": self.synced,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "errors": list(self.errors),
        }


def _to_cents(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a money amount: {value!r}") from None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _qb_id(record: dict) -> str:
    value = record.get("Id")
    if value is None or value == "":
        raise ValueError("QuickBooks record has no Id")
    return str(value)


def map_item(item: dict) -> dict:
    """QuickBooks Item -> Product column values."""
    item_id = _qb_id(item)
    return {
        "qb_item_id": item_id,
        "name": item.get("Name") or f"QB Item {item_id}",
        "description": item.get("Description"),
        "sku": item.get("Sku") or f"QB-{item_id}",
        "unit_of_measure": item.get("UnitOfMeasure") or "Each",
        "cost_cents": _to_cents(item.get("PurchaseCost")),
        "sell_price_cents": _to_cents(item.get("UnitPrice")),
        "min_stock_level": int(item.get("ReorderPoint") or 0),
        "is_active": bool(item.get("Active", True)),
        "product_type": PRODUCT_TYPE_RAW_MATERIAL if item.get("Type") == "Inventory" else PRODUCT_TYPE_FINISHED_GOOD,
        "units_per_case": 1,
    }


def _map_address(addr: Optional[dict]) -> Optional[dict]:
    if not addr:
        return None
    return {
        "line1": addr.get("Line1"),
        "line2": addr.get("Line2"),
        "city": addr.get("City"),
        "state": addr.get("CountrySubDivisionCode"),
        "postal_code": addr.get("PostalCode"),
        "country": addr.get("Country"),
    }


def _customer_name(customer: dict) -> str:
    if customer.get("DisplayName"):
        return customer["DisplayName"]
    if customer.get("CompanyName"):
        return customer["CompanyName"]
    person = " ".join(p for p in (customer.get("GivenName"), customer.get("FamilyName")) if p)
    return person or f"QB Customer {customer.get('Id')}"


def map_customer(customer: dict, *, now: Optional[datetime] = None) -> dict:
    """QuickBooks Customer -> Customer column values."""
    meta = customer.get("MetaData") or {}
    return {
        "qb_customer_id": _qb_id(customer),
        "qb_sync_token": customer.get("SyncToken"),
        "name": _customer_name(customer),
        "display_name": customer.get("DisplayName"),
        "company_name": customer.get("CompanyName"),
        "email": (customer.get("PrimaryEmailAddr") or {}).get("Address"),
        "phone": (customer.get("PrimaryPhone") or {}).get("FreeFormNumber"),
        "mobile": (customer.get("Mobile") or {}).get("FreeFormNumber"),
        "billing_address": _map_address(customer.get("BillAddr")),
        "shipping_address": _map_address(customer.get("ShipAddr")),
        "is_active": bool(customer.get("Active", True)),
        "qb_created_time": parse_iso_datetime(meta.get("CreateTime")),
        "qb_last_updated_time": parse_iso_datetime(meta.get("LastUpdatedTime")),
        "last_synced_at": now or utcnow(),
    }


def _page_size(page_size: int) -> int:
    return max(1, min(int(page_size), MAX_QUERY_RESULTS))


def _upsert(session, model, key_column: str, values: dict) -> bool:
    """Create or update one row by its QuickBooks id inside a savepoint. Returns True if created."""
    with session.begin_nested():
        row = session.query(model).filter(getattr(model, key_column) == values[key_column]).one_or_none()
        created = row is None
        if created:
            row = model(**values)
            session.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        session.flush()
    session.commit()
    return created


def _reconcile(
    session,
    store: ConnectionStore,
    client: QuickBooksClient,
    connection: QBConnection,
    *,
    entity: str,
    model,
    key_column: str,
    mapper: Callable[[dict], dict],
    accept: Callable[[dict], bool],
    label: Callable[[dict], Any],
    page_size: int,
    max_pages: int,
    should_cancel: Optional[Callable[[], bool]],
    now: Optional[datetime],
    token_buffer: Optional[timedelta],
) -> SyncResult:
    if not connection.sync_enabled:
        raise ValidationError(
            f"Sync is disabled for QuickBooks company {connection.company_id}",
            connection_id=connection.id,
        )
    access_token = ensure_access_token(store, client, connection, now=now, buffer=token_buffer)
    realm_id = connection.realm_id
    page_size = _page_size(page_size)
    result = SyncResult()

    start = 1
    for page in range(max(1, int(max_pages))):
        try:
            rows = client.query(access_token, realm_id, entity, start_position=start, max_results=page_size)
        except RackTrackError as exc:
            # Nothing committed yet: the whole run failed
            if page == 0:
                raise
            logger.warning("%s page at %d failed after %d synced: %s", entity, start, result.synced, exc.message)
            result.errors.append({"page_start": start, "error": exc.message})
            break

        result.total += len(rows)
        for row in rows:
            if should_cancel is not None and should_cancel():
                result.cancelled = True
                logger.info("%s sync cancelled after %d synced", entity, result.synced)
                break
            if not accept(row):
                result.skipped += 1
                continue
            try:
                created = _upsert(session, model, key_column, mapper(row))
            except (SQLAlchemyError, KeyError, ValueError, TypeError) as exc:
                session.rollback()
                logger.warning("Failed to sync %s %s: %s", entity, row.get("Id"), exc)
                result.errors.append({entity.lower(): label(row), "error": str(exc)})
                continue
            result.synced += 1
            if created:
                result.created += 1
            else:
                result.updated += 1

        if result.cancelled or len(rows) < page_size:
            break
        start += page_size

    store.mark_synced(connection)
    logger.info(
        "%s sync for connection %s: %d synced (%d created, %d updated), %d skipped, %d errors",
        entity, connection.id, result.synced, result.created, result.updated, result.skipped, len(result.errors),
    )
    return result


def sync_items(
    session,
    store: ConnectionStore,
    client: QuickBooksClient,
    connection: QBConnection,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_pages: int = DEFAULT_MAX_PAGES,
    should_cancel: Optional[Callable[[], bool]] = None,
    now: Optional[datetime] = None,
    token_buffer: Optional[timedelta] = None,
) -> SyncResult:
    """
    Reconcile QuickBooks Items into products.

    Raises only before the first item is processed (token refresh, first page
    fetch); per-item failures are reported in SyncResult.errors.
    """
    return _reconcile(
        session, store, client, connection,
        entity="Item",
        model=Product,
        key_column="qb_item_id",
        mapper=map_item,
        accept=lambda item: item.get("Type") in SYNCABLE_ITEM_TYPES,
        label=lambda item: item.get("Name"),
        page_size=page_size,
        max_pages=max_pages,
        should_cancel=should_cancel,
        now=now,
        token_buffer=token_buffer,
    )


def sync_customers(
    session,
    store: ConnectionStore,
    client: QuickBooksClient,
    connection: QBConnection,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_pages: int = DEFAULT_MAX_PAGES,
    should_cancel: Optional[Callable[[], bool]] = None,
    now: Optional[datetime] = None,
    token_buffer: Optional[timedelta] = None,
) -> SyncResult:
    """Reconcile QuickBooks Customers into customers."""
    return _reconcile(
        session, store, client, connection,
        entity="Customer",
        model=Customer,
        key_column="qb_customer_id",
        mapper=lambda c: map_customer(c, now=now),
        accept=lambda c: True,
        label=_customer_name,
        page_size=page_size,
        max_pages=max_pages,
        should_cancel=should_cancel,
        now=now,
        token_buffer=token_buffer,
    )
