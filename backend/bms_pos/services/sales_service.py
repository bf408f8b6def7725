"""
Settlement & Void Engine

WHY: A sale and its inventory effects are one unit. Settlement allocates
stock FEFO, freezes prices/taxability/rate onto the ledger row and writes the
kardex; voiding is the exact inverse (stock credited back, IN movements), not
a soft delete. Both run as a single DB transaction.

SALE STATE MACHINE:
- new cash sale -> PAID, new credit sale -> PENDING
- PENDING --partial payment--> PARCIAL
- PENDING/PARCIAL --full payment--> PAID
- PAID/PENDING --void--> ANULADO
- PARCIAL --void--> forbidden (collected cash would desync from revenue)
- ANULADO --void--> forbidden
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Sale, SaleLine
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from ..models.sales import (
    LINE_ADVANCE,
    LINE_PHYSICAL,
    SALE_STATUS_PAID,
    SALE_STATUS_PARTIAL,
    SALE_STATUS_PENDING,
    SALE_STATUS_VOIDED,
    VALID_INVOICE_TYPES,
    VALID_LINE_TYPES,
    INVOICE_TICKET,
)
from bms_pos.money import apply_rate_bps, convert_cents, round_half_up, to_rate
from bms_pos.time_utils import utcnow
from .batch_service import allocate, credit, get_product_for_update
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .customer_service import resolve_customer_ref
from .errors import (
    AlreadyVoidedError,
    InsufficientStockError,
    InvalidCreditTermsError,
    InvalidLineError,
    InvalidSaleRequestError,
    MissingCustomerForCreditError,
    PartialSaleVoidForbiddenError,
    ProductNotFoundError,
    SaleNotFoundError,
    SaleNotPayableError,
)
from .kardex_service import record_movement
from .payment_descriptor import PaymentDescriptor, append_advance_tokens, append_note, extract_advance_tokens


# =============================================================================
# STATE MACHINE
# =============================================================================

ACTION_VOID = "void"
ACTION_PAY = "pay"

ALLOWED_FROM = {
    ACTION_VOID: {SALE_STATUS_PAID, SALE_STATUS_PENDING},
    ACTION_PAY: {SALE_STATUS_PENDING, SALE_STATUS_PARTIAL},
}


def assert_transition(sale: Sale, action: str) -> None:
    """Raise the specific state error when action is not allowed from sale.status."""
    if sale.status in ALLOWED_FROM[action]:
        return
    if action == ACTION_VOID:
        if sale.status == SALE_STATUS_VOIDED:
            raise AlreadyVoidedError(sale.id)
        if sale.status == SALE_STATUS_PARTIAL:
            raise PartialSaleVoidForbiddenError(sale.id)
    raise SaleNotPayableError(sale.id, sale.status)


# =============================================================================
# CART VALIDATION
# =============================================================================

@dataclass(frozen=True)
class CartLine:
    line_type: str
    quantity: int
    product_id: int | None = None
    description: str | None = None
    amount_usd_cents: int | None = None


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def normalize_lines(lines) -> list[CartLine]:
    """Validate raw cart lines before any database work."""
    if not isinstance(lines, list) or not lines:
        raise InvalidLineError("Sale must contain at least one line")

    cart: list[CartLine] = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise InvalidLineError("Each line must be an object", details={"line": index})

        line_type = str(raw.get("line_type") or LINE_PHYSICAL).strip().upper()
        if line_type not in VALID_LINE_TYPES:
            raise InvalidLineError(
                f"Invalid line_type: {line_type}. Must be one of {VALID_LINE_TYPES}",
                details={"line": index},
            )

        quantity = raw.get("quantity", 1 if line_type != LINE_PHYSICAL else None)
        if not _is_int(quantity) or quantity <= 0:
            raise InvalidLineError(
                "quantity must be a positive integer",
                details={"line": index, "quantity": quantity},
            )

        description = raw.get("description")
        if line_type == LINE_PHYSICAL:
            product_id = raw.get("product_id")
            if not _is_int(product_id):
                raise InvalidLineError("product_id required for PHYSICAL lines", details={"line": index})
            cart.append(CartLine(line_type=line_type, quantity=quantity, product_id=product_id,
                                 description=description))
            continue

        amount = raw.get("amount_usd_cents")
        tokens = extract_advance_tokens(description) if line_type == LINE_ADVANCE else []
        if amount is None and tokens:
            # Legacy carts only carry the amount inside the label token
            amount = sum(tokens)
        if not _is_int(amount) or amount <= 0:
            raise InvalidLineError(
                f"amount_usd_cents must be a positive integer for {line_type} lines",
                details={"line": index, "amount_usd_cents": amount},
            )
        if line_type == LINE_ADVANCE:
            # The CAP token records the cash handed out, so it must equal the line total
            if quantity != 1:
                raise InvalidLineError(
                    "ADVANCE lines must have quantity 1",
                    details={"line": index, "quantity": quantity},
                )
            if tokens and sum(tokens) != amount:
                raise InvalidLineError(
                    "ADVANCE label tokens do not match amount_usd_cents",
                    details={"line": index, "amount_usd_cents": amount, "tokens": tokens},
                )
        cart.append(CartLine(line_type=line_type, quantity=quantity, description=description,
                             amount_usd_cents=amount))

    return cart


def _requested_by_product(cart: list[CartLine]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in cart:
        if line.line_type == LINE_PHYSICAL:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def _advance_amounts(line: CartLine, line_total: int) -> list[int]:
    """CAP amounts for an advance line: the label's token(s), else the line amount.

    normalize_lines guarantees both add up to line_total.
    """
    tokens = extract_advance_tokens(line.description)
    return tokens or [line_total]


# =============================================================================
# SETTLEMENT
# =============================================================================

def create_sale(
    *,
    lines,
    exchange_rate,
    payment_method: str | None = None,
    is_credit: bool = False,
    credit_days: int | None = None,
    customer_ref=None,
    invoice_type: str = INVOICE_TICKET,
    tax_rate_bps: int | None = None,
) -> Sale:
    """
    Settle a cart into a committed sale.

    Raises:
        InvalidLineError: malformed cart, unknown or inactive product
        MissingCustomerForCreditError: credit sale without a customer
        InsufficientStockError: cached aggregate below the requested quantity
        StockInconsistencyError: batches disagree with the aggregate mid-allocation
    """
    cart = normalize_lines(lines)

    if is_credit and customer_ref in (None, "", {}):
        raise MissingCustomerForCreditError()

    if credit_days is None:
        credit_days = current_app.config.get("DEFAULT_CREDIT_DAYS", 15)
    if is_credit and (not _is_int(credit_days) or credit_days <= 0):
        raise InvalidCreditTermsError("credit_days must be a positive integer", details={"credit_days": credit_days})

    try:
        rate = to_rate(exchange_rate)
    except ValueError as exc:
        raise InvalidSaleRequestError(str(exc))
    if not rate.is_finite() or rate <= 0:
        raise InvalidSaleRequestError("exchange_rate must be positive", details={"exchange_rate": str(exchange_rate)})

    invoice_type = (invoice_type or INVOICE_TICKET).upper()
    if invoice_type not in VALID_INVOICE_TYPES:
        raise InvalidSaleRequestError(f"Invalid invoice_type: {invoice_type}. Must be one of {VALID_INVOICE_TYPES}")

    if tax_rate_bps is None:
        tax_rate_bps = current_app.config.get("TAX_RATE_BPS", 1600)

    requested = _requested_by_product(cart)

    def _op():
        begin_write_transaction()

        # Lock in id order so concurrent carts never wait on each other in a cycle
        products = {}
        for product_id in sorted(requested):
            try:
                products[product_id] = get_product_for_update(product_id, require_active=True)
            except ProductNotFoundError as exc:
                raise InvalidLineError(str(exc), details=exc.details)

        for product_id, qty in requested.items():
            product = products[product_id]
            if product.stock < qty:
                raise InsufficientStockError(product_id, qty, product.stock, product.name)

        customer = resolve_customer_ref(customer_ref) if is_credit else None

        now = utcnow()
        sale = Sale(
            created_at=now,
            customer_id=customer.id if customer else None,
            is_credit=bool(is_credit),
            exchange_rate=rate,
            tax_rate_bps=tax_rate_bps,
            invoice_type=invoice_type,
            total_usd_cents=0,
            total_ves_cents=0,
            status=SALE_STATUS_PENDING if is_credit else SALE_STATUS_PAID,
        )
        db.session.add(sale)
        db.session.flush()

        document_ref = f"VENTA #{sale.id}"
        taxable = 0
        exempt = 0
        advances: list[int] = []

        for line in cart:
            if line.line_type == LINE_PHYSICAL:
                product = products[line.product_id]
                unit_price = product.price_usd_cents
                line_total = unit_price * line.quantity
                if product.is_taxable:
                    taxable += line_total
                else:
                    exempt += line_total

                prev_stock = product.stock
                allocations = allocate(product, line.quantity)
                record_movement(
                    product_id=product.id,
                    direction=MOVEMENT_OUT,
                    quantity=line.quantity,
                    reason="VENTA",
                    document_ref=document_ref,
                    prev_stock=prev_stock,
                    resulting_stock=product.stock,
                    batch_id=allocations[0].batch_id if len(allocations) == 1 else None,
                    cost_usd_cents=_average_cost(allocations),
                    occurred_at=now,
                )
                db.session.add(SaleLine(
                    sale_id=sale.id,
                    line_type=LINE_PHYSICAL,
                    product_id=product.id,
                    description=line.description or product.name,
                    quantity=line.quantity,
                    unit_price_usd_cents=unit_price,
                    line_total_usd_cents=line_total,
                    is_taxable=bool(product.is_taxable),
                    created_at=now,
                ))
                continue

            # Advances and donations: no inventory, never taxed
            line_total = line.amount_usd_cents * line.quantity
            exempt += line_total
            if line.line_type == LINE_ADVANCE:
                advances.extend(_advance_amounts(line, line_total))
            db.session.add(SaleLine(
                sale_id=sale.id,
                line_type=line.line_type,
                product_id=None,
                description=line.description,
                quantity=line.quantity,
                unit_price_usd_cents=line.amount_usd_cents,
                line_total_usd_cents=line_total,
                is_taxable=False,
                created_at=now,
            ))

        tax = apply_rate_bps(taxable, tax_rate_bps)
        total = taxable + exempt + tax

        sale.subtotal_taxable_usd_cents = taxable
        sale.subtotal_exempt_usd_cents = exempt
        sale.tax_usd_cents = tax
        sale.total_usd_cents = total
        sale.total_ves_cents = convert_cents(total, rate)
        sale.advance_usd_cents = sum(advances)
        if payment_method or advances:
            sale.payment_method = append_advance_tokens(payment_method, advances)

        if is_credit:
            sale.amount_paid_usd_cents = 0
            sale.due_date = now + timedelta(days=credit_days)
        else:
            sale.amount_paid_usd_cents = total

        db.session.commit()
        return sale

    return run_with_retry(_op)


def _average_cost(allocations) -> int | None:
    costed = [a for a in allocations if a.unit_cost_usd_cents is not None]
    if not costed:
        return None
    units = sum(a.quantity for a in costed)
    cost = sum(a.quantity * a.unit_cost_usd_cents for a in costed)
    return round_half_up(Decimal(cost) / Decimal(units))


# =============================================================================
# VOID / REVERSAL
# =============================================================================

def void_sale(sale_id: int, reason: str) -> Sale:
    """
    Void a sale and put every physical unit back into stock.

    Raises:
        SaleNotFoundError, AlreadyVoidedError, PartialSaleVoidForbiddenError
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidSaleRequestError("reason required to void a sale")

    def _op():
        begin_write_transaction()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFoundError(sale_id)

        assert_transition(sale, ACTION_VOID)

        now = utcnow()
        document_ref = f"ANULACION VENTA #{sale.id}"
        lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id).all()
        for line in lines:
            if not line.is_physical:
                continue
            product = get_product_for_update(line.product_id)
            prev_stock = product.stock
            batch = credit(product, line.quantity)
            record_movement(
                product_id=product.id,
                direction=MOVEMENT_IN,
                quantity=line.quantity,
                reason=f"ANULACION: {reason}"[:255],
                document_ref=document_ref,
                prev_stock=prev_stock,
                resulting_stock=product.stock,
                batch_id=batch.id,
                cost_usd_cents=batch.cost_usd_cents,
                occurred_at=now,
            )

        sale.status = SALE_STATUS_VOIDED
        sale.voided_at = now
        sale.void_reason = reason[:255]
        sale.payment_method = append_note(sale.payment_method, f"ANULADO: {reason}")

        db.session.commit()
        return sale

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFoundError(sale_id)
    return sale


def get_sale_detail(sale_id: int) -> dict:
    sale = get_sale(sale_id)
    lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id).all()

    line_rows = []
    for line in lines:
        row = line.to_dict()
        row["product_name"] = line.product.name if line.product else None
        line_rows.append(row)

    return {
        "sale": sale.to_dict(),
        "lines": line_rows,
        "customer": sale.customer.to_dict() if sale.customer else None,
        "payment": PaymentDescriptor.parse(sale.payment_method).to_dict(),
    }
