from __future__ import annotations

from ..extensions import db
from bms_pos.time_utils import to_utc_z

SALE_STATUS_PAID = "PAID"
SALE_STATUS_PENDING = "PENDING"
SALE_STATUS_PARTIAL = "PARCIAL"
SALE_STATUS_VOIDED = "ANULADO"

INVOICE_TICKET = "TICKET"
INVOICE_FISCAL = "FISCAL"
VALID_INVOICE_TYPES = [INVOICE_TICKET, INVOICE_FISCAL]

LINE_PHYSICAL = "PHYSICAL"
LINE_ADVANCE = "ADVANCE"
LINE_DONATION = "DONATION"
VALID_LINE_TYPES = [LINE_PHYSICAL, LINE_ADVANCE, LINE_DONATION]


class Sale(db.Model):
    """
    Sale ledger row: the authoritative debt/paid record of one transaction.

    WHY frozen values: exchange_rate, tax_rate_bps and every total are
    captured at settlement time. Later rate refreshes or catalog edits never
    change what the customer owes.

    PAYMENT DESCRIPTOR:
    payment_method is free text (methods, bank references, appended payment
    and void notes) that also carries one " [CAP:<amount>]" token per
    cash-advance line. advance_usd_cents holds the same information as a
    structured column. See services/payment_descriptor.py.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        db.Index("ix_sales_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # PAID, PENDING, PARCIAL, ANULADO
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PAID, index=True)
    is_credit = db.Column(db.Boolean, nullable=False, default=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Bs per USD at sale time
    exchange_rate = db.Column(db.Numeric(14, 4), nullable=False)

    # Tax breakdown (USD cents)
    subtotal_taxable_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_exempt_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    tax_usd_cents = db.Column(db.Integer, nullable=False, default=0)

    total_usd_cents = db.Column(db.Integer, nullable=False)
    total_ves_cents = db.Column(db.Integer, nullable=False)

    # Collected so far (distinct from total owed)
    amount_paid_usd_cents = db.Column(db.Integer, nullable=False, default=0)

    # Sum of [CAP:...] tokens
    advance_usd_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.Text, nullable=True)

    # TICKET (plain receipt) or FISCAL
    invoice_type = db.Column(db.String(20), nullable=False, default=INVOICE_TICKET)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_usd_cents(self) -> int:
        return max(self.total_usd_cents - self.amount_paid_usd_cents, 0)

    def __repr__(self) -> str:
        return f"<Sale id={self.id} status={self.status} total_usd_cents={self.total_usd_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": to_utc_z(self.created_at),
            "customer_id": self.customer_id,
            "status": self.status,
            "is_credit": self.is_credit,
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "subtotal_taxable_usd_cents": self.subtotal_taxable_usd_cents,
            "subtotal_exempt_usd_cents": self.subtotal_exempt_usd_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_usd_cents": self.tax_usd_cents,
            "total_usd_cents": self.total_usd_cents,
            "total_ves_cents": self.total_ves_cents,
            "amount_paid_usd_cents": self.amount_paid_usd_cents,
            "remaining_usd_cents": self.remaining_usd_cents,
            "advance_usd_cents": self.advance_usd_cents,
            "payment_method": self.payment_method,
            "invoice_type": self.invoice_type,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }


class SaleLine(db.Model):
    """
    Line item on a sale. Immutable once created.

    line_type discriminates physical inventory from non-physical lines:
    ADVANCE (cash advance recorded through the till) and DONATION never touch
    batches or the kardex. Price and taxability are frozen from the catalog.
    """
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    line_type = db.Column(db.String(16), nullable=False, default=LINE_PHYSICAL)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_usd_cents = db.Column(db.Integer, nullable=False)
    line_total_usd_cents = db.Column(db.Integer, nullable=False)
    is_taxable = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")

    @property
    def is_physical(self) -> bool:
        return self.line_type == LINE_PHYSICAL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_type": self.line_type,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_usd_cents": self.unit_price_usd_cents,
            "line_total_usd_cents": self.line_total_usd_cents,
            "is_taxable": self.is_taxable,
            "created_at": to_utc_z(self.created_at),
        }
