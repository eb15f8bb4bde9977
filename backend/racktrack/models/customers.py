from __future__ import annotations

from ..extensions import db
from racktrack.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer that places purchase orders.

    Rows with qb_customer_id are mirrored from QuickBooks by the customer
    reconciler; rows without it are local-only.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("qb_customer_id", name="uq_customers_qb_customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(255), nullable=True)
    company_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    mobile = db.Column(db.String(64), nullable=True)

    billing_address = db.Column(db.JSON, nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    qb_customer_id = db.Column(db.String(64), nullable=True)
    qb_sync_token = db.Column(db.String(32), nullable=True)
    qb_created_time = db.Column(db.DateTime(timezone=True), nullable=True)
    qb_last_updated_time = db.Column(db.DateTime(timezone=True), nullable=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "company_name": self.company_name,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "company_name": self.company_name,
            "email": self.email,
            "phone": self.phone,
            "mobile": self.mobile,
            "billing_address": self.billing_address,
            "shipping_address": self.shipping_address,
            "is_active": self.is_active,
            "qb_customer_id": self.qb_customer_id,
            "qb_sync_token": self.qb_sync_token,
            "qb_created_time": to_utc_z(self.qb_created_time),
            "qb_last_updated_time": to_utc_z(self.qb_last_updated_time),
            "last_synced_at": to_utc_z(self.last_synced_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
