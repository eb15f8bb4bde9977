from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from ..services.order_status import ProductionStatus
from racktrack.time_utils import to_utc_z, utcnow


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ProductionStatus)


class CustomerPO(db.Model):
    """
    Customer purchase order moving through the production pipeline.

    production_status is only written by order_service.transition (and set to
    'draft' on create). Every change of it appends a CustomerPOStatusHistory
    row in the same flush (see _record_status_change below).
    """
    __tablename__ = "customer_pos"
    __table_args__ = (
        db.UniqueConstraint("po_number", name="uq_customer_pos_po_number"),
        db.CheckConstraint(f"production_status IN ({_STATUS_VALUES})", name="ck_customer_pos_status"),
        db.Index("ix_customer_pos_status_created", "production_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "PO-000042")
    po_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)
    po_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)

    production_status = db.Column(db.String(32), nullable=False, default=ProductionStatus.DRAFT.value)
    hold_reason = db.Column(db.String(500), nullable=True)
    production_notes = db.Column(db.Text, nullable=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # QuickBooks estimate linkage (set by estimate push)
    qb_estimate_id = db.Column(db.String(64), nullable=True)
    qb_estimate_number = db.Column(db.String(64), nullable=True)
    qb_sync_token = db.Column(db.String(32), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    # No delete cascade: OrderRepository removes lines explicitly (replace, delete, compensate)
    lines = db.relationship(
        "CustomerPOItem",
        back_populates="order",
        order_by="CustomerPOItem.line_number",
        lazy=True,
    )
    status_history = db.relationship(
        "CustomerPOStatusHistory",
        back_populates="order",
        order_by="CustomerPOStatusHistory.id",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<CustomerPO id={self.id} po_number={self.po_number!r} status={self.production_status!r}>"

    def to_dict(self, *, include_lines: bool = False, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "customer_id": self.customer_id,
            "customer": self.customer.to_summary() if self.customer else None,
            "description": self.description,
            "po_date": self.po_date.isoformat() if self.po_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "production_status": self.production_status,
            "hold_reason": self.hold_reason,
            "production_notes": self.production_notes,
            "total_amount_cents": self.total_amount_cents,
            "qb_estimate_id": self.qb_estimate_id,
            "qb_estimate_number": self.qb_estimate_number,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        if include_history:
            data["status_history"] = [h.to_dict() for h in self.status_history]
        return data


class CustomerPOItem(db.Model):
    """Line on a customer PO. line_number is 1..N in insertion order."""
    __tablename__ = "customer_po_items"
    __table_args__ = (
        db.UniqueConstraint("po_id", "line_number", name="uq_customer_po_items_po_line"),
        db.CheckConstraint("quantity > 0", name="ck_customer_po_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_customer_po_items_price_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_id = db.Column(
        db.Integer,
        db.ForeignKey("customer_pos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    description = db.Column(db.String(500), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("CustomerPO", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "po_id": self.po_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product": (
                {"id": self.product.id, "name": self.product.name, "sku": self.product.sku}
                if self.product else None
            ),
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_amount_cents": self.total_amount_cents,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerPOStatusHistory(db.Model):
    """
    Append-only audit of production_status changes.

    IMMUTABLE: written only by the mapper hook below, never updated or deleted
    (except together with its order by the compensating delete).
    """
    __tablename__ = "customer_po_status_history"
    __table_args__ = (
        db.Index("ix_customer_po_status_history_po_changed", "po_id", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_id = db.Column(
        db.Integer,
        db.ForeignKey("customer_pos.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=False)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.String(500), nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("CustomerPO", back_populates="status_history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "po_id": self.po_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by,
            "reason": self.reason,
            "changed_at": to_utc_z(self.changed_at),
        }


@event.listens_for(CustomerPO, "after_update")
def _record_status_change(mapper, connection, target):
    """Storage-side audit: runs inside the UPDATE's flush and transaction."""
    history = inspect(target).attrs.production_status.history
    if not history.has_changes() or not history.added:
        return

    from_status = history.deleted[0] if history.deleted else None
    to_status = history.added[0]
    if from_status == to_status:
        return

    connection.execute(
        CustomerPOStatusHistory.__table__.insert().values(
            po_id=target.id,
            from_status=from_status,
            to_status=to_status,
            changed_by=target.updated_by,
            reason=target.hold_reason if to_status == ProductionStatus.ON_HOLD.value else None,
            changed_at=utcnow(),
        )
    )
