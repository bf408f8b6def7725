# Overview: Installment payments against credit sales and the receivables listing.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Sale
from ..models.sales import SALE_STATUS_PAID, SALE_STATUS_PARTIAL, SALE_STATUS_PENDING
from bms_pos.money import format_cents
from bms_pos.time_utils import to_utc_z, utcnow
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import InvalidAmountError, InvalidSaleRequestError, OverpaymentError, SaleNotFoundError
from .payment_descriptor import PaymentToken, append_note
from .sales_service import ACTION_PAY, assert_transition


def remaining_cents(sale: Sale) -> int:
    return sale.remaining_usd_cents


def apply_payment(
    sale_id: int,
    amount_usd_cents: int,
    method: str,
    reference: str | None = None,
) -> Sale:
    """
    Register one installment (abono) on a PENDING or PARCIAL sale.

    The sale becomes PAID once collected reaches the total within
    PAYMENT_TOLERANCE_CENTS, otherwise PARCIAL. Inventory is untouched.

    Raises:
        SaleNotFoundError, InvalidAmountError, SaleNotPayableError, OverpaymentError
    """
    if isinstance(amount_usd_cents, bool) or not isinstance(amount_usd_cents, int) or amount_usd_cents <= 0:
        raise InvalidAmountError(
            "Payment amount must be a positive number of cents",
            details={"amount_usd_cents": amount_usd_cents},
        )
    method = (method or "").strip()
    if not method:
        raise InvalidSaleRequestError("Payment method is required")

    tolerance = current_app.config.get("PAYMENT_TOLERANCE_CENTS", 5)

    def _op():
        begin_write_transaction()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFoundError(sale_id)

        assert_transition(sale, ACTION_PAY)

        new_paid = sale.amount_paid_usd_cents + amount_usd_cents
        if new_paid > sale.total_usd_cents + tolerance:
            raise OverpaymentError(
                f"Payment exceeds the remaining balance of sale {sale.id}",
                details={
                    "sale_id": sale.id,
                    "amount_usd_cents": amount_usd_cents,
                    "remaining_usd_cents": sale.remaining_usd_cents,
                },
            )

        sale.amount_paid_usd_cents = new_paid
        sale.status = SALE_STATUS_PAID if new_paid >= sale.total_usd_cents - tolerance else SALE_STATUS_PARTIAL

        token = PaymentToken(method=method, reference=(reference or "").strip() or None)
        sale.payment_method = append_note(
            sale.payment_method,
            f"ABONO {format_cents(amount_usd_cents)}: {token.to_text()}",
        )

        db.session.commit()
        return sale

    return run_with_retry(_op)


def list_pending_credits() -> list[dict]:
    """Open receivables, soonest due first."""
    now = utcnow()
    sales = (
        Sale.query.filter(
            Sale.is_credit.is_(True),
            Sale.status.in_([SALE_STATUS_PENDING, SALE_STATUS_PARTIAL]),
        )
        .order_by(Sale.due_date.asc(), Sale.id.asc())
        .all()
    )

    rows = []
    for sale in sales:
        rows.append({
            "sale_id": sale.id,
            "created_at": to_utc_z(sale.created_at),
            "due_date": to_utc_z(sale.due_date) if sale.due_date else None,
            "status": sale.status,
            "customer": sale.customer.to_dict() if sale.customer else None,
            "total_usd_cents": sale.total_usd_cents,
            "amount_paid_usd_cents": sale.amount_paid_usd_cents,
            "remaining_usd_cents": remaining_cents(sale),
            "is_overdue": bool(sale.due_date and sale.due_date < now),
        })
    return rows
