from __future__ import annotations

from ..extensions import db
from racktrack.time_utils import to_utc_z


class QBConnection(db.Model):
    """
    OAuth credential set binding RackTrack to one QuickBooks company.

    LIFECYCLE:
    - Created on the first successful OAuth callback for a company_id
    - Updated in place on every token refresh or re-authorization
    - Hard-deleted only by an explicit disconnect

    INVARIANT: at most one row per QuickBooks company (uq_qb_connections_company).

    SECURITY: access_token / refresh_token never leave the backend; to_dict()
    omits them.
    """
    __tablename__ = "qb_connections"
    __table_args__ = (
        db.UniqueConstraint("company_id", name="uq_qb_connections_company"),
        db.Index("ix_qb_connections_active_expiry", "is_active", "token_expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    company_id = db.Column(db.String(64), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)
    realm_id = db.Column(db.String(64), nullable=False)
    base_url = db.Column(db.String(255), nullable=False)

    access_token = db.Column(db.Text, nullable=False)
    refresh_token = db.Column(db.Text, nullable=False)
    token_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    sync_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_error = db.Column(db.Text, nullable=True)
    error_count = db.Column(db.Integer, nullable=False, default=0)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<QBConnection id={self.id} company_id={self.company_id!r} active={self.is_active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "company_name": self.company_name,
            "realm_id": self.realm_id,
            "base_url": self.base_url,
            "token_expires_at": to_utc_z(self.token_expires_at),
            "is_active": self.is_active,
            "sync_enabled": self.sync_enabled,
            "last_error": self.last_error,
            "error_count": self.error_count,
            "last_sync_at": to_utc_z(self.last_sync_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
