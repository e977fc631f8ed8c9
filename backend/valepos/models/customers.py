from __future__ import annotations

from ..extensions import db
from valepos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Buyer master data.

    tax_id is the normalized RUT ("12345678-9"); it is nullable because ticket
    and receipt sales never require one. Invoices (facturas) need tax_id and
    legal_name, which is what data_complete records.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("tax_id", name="uq_customers_tax_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tax_id = db.Column(db.String(16), nullable=True)
    legal_name = db.Column(db.String(255), nullable=True)
    name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    data_complete = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tax_id": self.tax_id,
            "legal_name": self.legal_name,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "data_complete": self.data_complete,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
