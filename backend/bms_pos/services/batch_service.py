# Overview: Batch store and FEFO allocation engine; owns per-lot quantities and the product aggregate.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import Product, ProductBatch
from ..models.inventory import MOVEMENT_IN
from bms_pos.time_utils import utcnow, parse_iso_date
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import InvalidLineError, ProductNotFoundError, StockInconsistencyError
from .kardex_service import record_movement
"""
Batch Store Invariants (authoritative)

- FEFO: deductions walk batches by expiration_date ascending, NULL (never
  expires) last, ties broken by batch id (oldest lot first).
- Credits (sale voids) go to the batch with the furthest expiration, NULL
  first, on the theory that returned stock is the freshest.
- Batch stock never goes below zero; batches are never deleted.
- Product.stock == SUM(batch.stock) after every committed operation. It is
  always re-derived from the batches, never adjusted by arithmetic.
- Nothing in this module commits except the public receive_batch(); the
  allocation/credit primitives run inside the caller's transaction.
"""

RECOVERY_BATCH_CODE = "REINGRESO-ANULACION"
INITIAL_BATCH_CODE = "LOTE-INICIAL"


@dataclass(frozen=True)
class BatchAllocation:
    batch_id: int
    quantity: int
    unit_cost_usd_cents: int | None = None


def get_product_for_update(product_id: int, *, require_active: bool = False) -> Product:
    query = lock_for_update(db.session.query(Product).filter_by(id=product_id))
    product = query.first()
    if product is None:
        raise ProductNotFoundError(product_id)
    if require_active and not product.is_active:
        raise InvalidLineError(
            f"Product {product.name} is inactive",
            details={"product_id": product_id},
        )
    return product


def _fefo_order():
    return (
        ProductBatch.expiration_date.asc().nulls_last(),
        ProductBatch.id.asc(),
    )


def get_batches(product_id: int) -> list[ProductBatch]:
    """All batches of a product in FEFO order (read-only)."""
    return (
        ProductBatch.query.filter_by(product_id=product_id)
        .order_by(*_fefo_order())
        .all()
    )


def recompute_product_stock(product: Product) -> int:
    """Re-derive the cached aggregate from the batch rows."""
    db.session.flush()
    total = (
        db.session.query(func.coalesce(func.sum(ProductBatch.stock), 0))
        .filter(ProductBatch.product_id == product.id)
        .scalar()
    )
    product.stock = int(total or 0)
    db.session.flush()
    return product.stock


def allocate(product: Product, quantity: int) -> list[BatchAllocation]:
    """
    Deduct quantity from the product's batches in FEFO order.

    The caller has already checked availability against Product.stock. If the
    batches turn out to hold less, the aggregate had drifted: raise
    StockInconsistencyError so the whole transaction rolls back.
    """
    if quantity <= 0:
        raise ValueError("allocation quantity must be positive")

    batches = (
        lock_for_update(
            db.session.query(ProductBatch).filter(
                ProductBatch.product_id == product.id,
                ProductBatch.stock > 0,
            )
        )
        .order_by(*_fefo_order())
        .all()
    )

    still_needed = quantity
    allocations: list[BatchAllocation] = []
    for batch in batches:
        if still_needed <= 0:
            break
        take = min(batch.stock, still_needed)
        batch.stock -= take
        still_needed -= take
        allocations.append(
            BatchAllocation(batch_id=batch.id, quantity=take, unit_cost_usd_cents=batch.cost_usd_cents)
        )

    if still_needed > 0:
        raise StockInconsistencyError(
            f"Batches for product {product.name} hold less stock than its aggregate",
            details={
                "product_id": product.id,
                "requested_quantity": quantity,
                "missing_quantity": still_needed,
                "aggregate": product.stock,
            },
        )

    recompute_product_stock(product)
    return allocations


def credit(product: Product, quantity: int) -> ProductBatch:
    """
    Return quantity to the freshest batch, creating a recovery batch when the
    product has none.
    """
    if quantity <= 0:
        raise ValueError("credit quantity must be positive")

    batch = (
        lock_for_update(db.session.query(ProductBatch).filter_by(product_id=product.id))
        .order_by(ProductBatch.expiration_date.desc().nulls_first(), ProductBatch.id.desc())
        .first()
    )

    if batch is None:
        batch = ProductBatch(
            product_id=product.id,
            batch_code=RECOVERY_BATCH_CODE,
            expiration_date=None,
            stock=quantity,
            cost_usd_cents=product.price_usd_cents,
            created_at=utcnow(),
        )
        db.session.add(batch)
    else:
        batch.stock += quantity

    recompute_product_stock(product)
    return batch


def _receive_batch_inner(
    *,
    product: Product,
    quantity: int,
    expiration_date: date | None,
    cost_usd_cents: int | None,
    batch_code: str | None,
    reason: str,
    document_ref: str | None,
) -> ProductBatch:
    """New batch + aggregate + IN movement, without transaction handling."""
    prev_stock = product.stock
    batch = ProductBatch(
        product_id=product.id,
        batch_code=batch_code,
        expiration_date=expiration_date,
        stock=quantity,
        cost_usd_cents=cost_usd_cents if cost_usd_cents is not None else product.price_usd_cents,
        created_at=utcnow(),
    )
    db.session.add(batch)
    db.session.flush()

    new_stock = recompute_product_stock(product)
    record_movement(
        product_id=product.id,
        direction=MOVEMENT_IN,
        quantity=quantity,
        reason=reason,
        document_ref=document_ref,
        prev_stock=prev_stock,
        resulting_stock=new_stock,
        batch_id=batch.id,
        cost_usd_cents=batch.cost_usd_cents,
    )
    return batch


def receive_batch(
    *,
    product_id: int,
    quantity: int,
    expiration_date=None,
    cost_usd_cents: int | None = None,
    batch_code: str | None = None,
    reason: str = "COMPRA",
    document_ref: str | None = None,
) -> ProductBatch:
    """Stock entry: register a new lot for a product."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise InvalidLineError("quantity must be a positive integer", details={"quantity": quantity})
    if cost_usd_cents is not None and cost_usd_cents < 0:
        raise InvalidLineError("cost_usd_cents must be >= 0")
    exp = parse_iso_date(expiration_date)

    def _op():
        begin_write_transaction()
        product = get_product_for_update(product_id)
        batch = _receive_batch_inner(
            product=product,
            quantity=quantity,
            expiration_date=exp,
            cost_usd_cents=cost_usd_cents,
            batch_code=batch_code,
            reason=reason,
            document_ref=document_ref,
        )
        db.session.commit()
        return batch

    return run_with_retry(_op)


def resync_product_stock(product_id: int) -> tuple[int, int]:
    """Force re-derivation of one aggregate; returns (old, new)."""
    def _op():
        begin_write_transaction()
        product = get_product_for_update(product_id)
        old = product.stock
        new = recompute_product_stock(product)
        db.session.commit()
        return old, new

    return run_with_retry(_op)
