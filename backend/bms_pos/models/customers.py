from __future__ import annotations

from ..extensions import db
from bms_pos.time_utils import to_utc_z

CUSTOMER_STATUS_ACTIVE = "ACTIVO"
CUSTOMER_STATUS_INACTIVE = "INACTIVO"


class Customer(db.Model):
    """
    Customer referenced by credit sales.

    Identified by id_number (national ID / cédula). Directory maintenance
    happens elsewhere; the sale engine only looks customers up or creates
    them on first credit purchase.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("id_number", name="uq_customers_id_number"),
        db.Index("ix_customers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(150), nullable=False)
    id_number = db.Column(db.String(20), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    institution = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=CUSTOMER_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} id_number={self.id_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "id_number": self.id_number,
            "phone": self.phone,
            "institution": self.institution,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
