# Overview: Catalog entry points used by the till: product creation with opening stock, priced listings.

from __future__ import annotations

from ..extensions import db
from ..models import Product
from bms_pos.money import convert_cents
from bms_pos.time_utils import parse_iso_date
from .batch_service import INITIAL_BATCH_CODE, _receive_batch_inner
from .concurrency import begin_write_transaction, run_with_retry
from .errors import InvalidLineError

INITIAL_STOCK_REASON = "INVENTARIO INICIAL"


def create_product(
    *,
    name: str,
    price_usd_cents: int,
    category: str | None = None,
    is_taxable: bool = True,
    initial_stock: int = 0,
    expiration_date=None,
    cost_usd_cents: int | None = None,
    batch_code: str | None = None,
) -> Product:
    """
    Create a product; opening stock becomes its first batch.

    The aggregate is never written directly here: opening stock goes through
    the same batch + kardex path as any other stock entry, so the product
    starts with Product.stock == SUM(batches) == kardex replay.
    """
    if not isinstance(initial_stock, int) or isinstance(initial_stock, bool) or initial_stock < 0:
        raise InvalidLineError("initial_stock must be a non-negative integer", details={"initial_stock": initial_stock})
    exp = parse_iso_date(expiration_date)

    def _op():
        begin_write_transaction()
        product = Product(
            name=name,
            category=category,
            price_usd_cents=price_usd_cents,
            is_taxable=is_taxable,
            is_active=True,
            stock=0,
        )
        db.session.add(product)
        db.session.flush()

        if initial_stock:
            _receive_batch_inner(
                product=product,
                quantity=initial_stock,
                expiration_date=exp,
                cost_usd_cents=cost_usd_cents,
                batch_code=batch_code or INITIAL_BATCH_CODE,
                reason=INITIAL_STOCK_REASON,
                document_ref=f"ALTA PRODUCTO #{product.id}",
            )

        db.session.commit()
        return product

    return run_with_retry(_op)


def list_products(exchange_rate, *, include_inactive: bool = False) -> list[dict]:
    """Catalog with local-currency prices computed at the given rate."""
    q = Product.query
    if not include_inactive:
        q = q.filter_by(is_active=True)
    products = q.order_by(Product.id.asc()).all()

    result = []
    for product in products:
        row = product.to_dict()
        row["price_ves_cents"] = convert_cents(product.price_usd_cents, exchange_rate)
        result.append(row)
    return result
