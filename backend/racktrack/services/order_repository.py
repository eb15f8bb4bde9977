# Overview: Persistence for customer POs and their lines; the only code that writes these tables.

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from ..errors import PersistenceFailure
from ..models import CustomerPO, CustomerPOItem, CustomerPOStatusHistory


logger = logging.getLogger(__name__)


class OrderRepository:
    """
    Order and order-line storage bound to one SQLAlchemy session.

    Writes go through the ORM so the status-history mapper hook on CustomerPO
    fires for every production_status change.
    """

    def __init__(self, session):
        self.session = session

    # ------------------------------------------------------------------ reads

    def get(self, order_id: int) -> Optional[CustomerPO]:
        return self.session.get(CustomerPO, order_id)

    def get_with_lines(self, order_id: int) -> Optional[CustomerPO]:
        return (
            self.session.query(CustomerPO)
            .options(
                joinedload(CustomerPO.customer),
                selectinload(CustomerPO.lines).joinedload(CustomerPOItem.product),
                selectinload(CustomerPO.status_history),
            )
            .filter(CustomerPO.id == order_id)
            .one_or_none()
        )

    def list(
        self,
        *,
        status: Optional[str] = None,
        customer_id: Optional[int] = None,
        search: Optional[str] = None,
        limit: int = 200,
    ) -> list[CustomerPO]:
        q = self.session.query(CustomerPO).options(
            joinedload(CustomerPO.customer),
            selectinload(CustomerPO.lines).joinedload(CustomerPOItem.product),
        )
        if status:
            q = q.filter(CustomerPO.production_status == status)
        if customer_id is not None:
            q = q.filter(CustomerPO.customer_id == customer_id)
        if search:
            pattern = f"%{search}%"
            q = q.filter(or_(CustomerPO.po_number.ilike(pattern), CustomerPO.description.ilike(pattern)))
        return q.order_by(CustomerPO.created_at.desc(), CustomerPO.id.desc()).limit(limit).all()

    def count(self) -> int:
        return self.session.query(func.count(CustomerPO.id)).scalar() or 0

    # ----------------------------------------------------------------- writes

    def insert_order(self, fields: dict) -> CustomerPO:
        """Insert the order row (flushed, not committed). Unique po_number violations land here."""
        order = CustomerPO(**fields)
        self.session.add(order)
        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(
                f"Failed to create order {fields.get('po_number')!r}",
                operation="create_order",
                cause=exc,
                po_number=fields.get("po_number"),
            )
        return order

    def insert_lines(self, order_id: int, lines: list[dict]) -> list[CustomerPOItem]:
        """
        Bulk-insert lines for an already-inserted order inside a savepoint.

        On failure the savepoint is rolled back (no line survives) and the
        order row is left for the caller to compensate.
        """
        items = [CustomerPOItem(po_id=order_id, **line) for line in lines]
        try:
            with self.session.begin_nested():
                self.session.add_all(items)
                self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(
                f"Failed to create lines for order {order_id}",
                operation="create_lines",
                cause=exc,
                order_id=order_id,
            )
        return items

    def update(self, order: CustomerPO, delta: dict) -> CustomerPO:
        """Apply `delta` to one order row and commit."""
        for key, value in delta.items():
            setattr(order, key, value)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(
                f"Failed to update order {order.id}",
                operation="update",
                cause=exc,
                order_id=order.id,
            )
        return order

    def replace_lines(self, order_id: int, lines: list[dict]) -> list[CustomerPOItem]:
        """
        Swap the order's lines for `lines` inside a savepoint (flushed, not committed).

        On failure the savepoint is rolled back and the previous lines remain.
        """
        items = [CustomerPOItem(po_id=order_id, **line) for line in lines]
        try:
            with self.session.begin_nested():
                self.session.query(CustomerPOItem).filter(CustomerPOItem.po_id == order_id).delete()
                self.session.add_all(items)
                self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(
                f"Failed to replace lines for order {order_id}",
                operation="replace_lines",
                cause=exc,
                order_id=order_id,
            )
        return items

    def _delete_rows(self, order_id: int) -> None:
        self.session.query(CustomerPOItem).filter(CustomerPOItem.po_id == order_id).delete()
        self.session.query(CustomerPOStatusHistory).filter(
            CustomerPOStatusHistory.po_id == order_id
        ).delete()
        self.session.query(CustomerPO).filter(CustomerPO.id == order_id).delete()

    def delete(self, order_id: int) -> None:
        """Remove the order with its lines and history, then commit."""
        try:
            self._delete_rows(order_id)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure(
                f"Failed to delete order {order_id}",
                operation="delete",
                cause=exc,
                order_id=order_id,
            )

    def delete_order(self, order_id: int) -> None:
        """
        Compensating delete: remove the order together with its lines and
        history, then commit. Used only to undo a partially created order.
        """
        try:
            self._delete_rows(order_id)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Compensating delete failed for order %s", order_id, exc_info=True)
            raise PersistenceFailure(
                f"Failed to remove partially created order {order_id}",
                operation="compensate",
                cause=exc,
                order_id=order_id,
            )

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceFailure("Failed to commit order changes", operation="commit", cause=exc)

    def rollback(self) -> None:
        self.session.rollback()
