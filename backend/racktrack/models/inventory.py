from __future__ import annotations

from ..extensions import db
from racktrack.time_utils import to_utc_z


PRODUCT_TYPE_RAW_MATERIAL = "raw_material"
PRODUCT_TYPE_FINISHED_GOOD = "finished_good"


class Product(db.Model):
    """
    Product master data.

    QUICKBOOKS OWNERSHIP:
    - qb_item_id set: the row mirrors a QuickBooks Item and is rewritten by
      the catalog reconciler on every sync (qb_item_id is the idempotency key).
    - qb_item_id NULL: locally-owned product; the reconciler never touches it.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.UniqueConstraint("qb_item_id", name="uq_products_qb_item_id"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    unit_of_measure = db.Column(db.String(32), nullable=False, default="Each")
    units_per_case = db.Column(db.Integer, nullable=False, default=1)
    product_type = db.Column(db.String(32), nullable=False, default=PRODUCT_TYPE_FINISHED_GOOD)

    # Authoritative storage in cents
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    sell_price_cents = db.Column(db.Integer, nullable=False, default=0)

    min_stock_level = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    qb_item_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} qb_item_id={self.qb_item_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit_of_measure": self.unit_of_measure,
            "units_per_case": self.units_per_case,
            "product_type": self.product_type,
            "cost_cents": self.cost_cents,
            "sell_price_cents": self.sell_price_cents,
            "min_stock_level": self.min_stock_level,
            "is_active": self.is_active,
            "qb_item_id": self.qb_item_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
