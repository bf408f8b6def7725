# Overview: Service-layer operations for the kardex (inventory movement log).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from ..extensions import db
from ..models import InventoryMovement, Product, ProductBatch
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from bms_pos.time_utils import utcnow
from .errors import ProductNotFoundError
"""
Kardex Invariants (authoritative)

- Append-only: no updates, no deletes (mapper events reject both).
- Every batch mutation (allocate, credit, receive) is paired with exactly one
  movement, written inside the same DB transaction.
- new_stock is the product aggregate right after the movement.
- Replaying signed quantities (IN +, OUT -) from zero reproduces Product.stock.
  Initial stock entries are IN movements themselves, so no baseline is needed.
- Range filters are inclusive on created_at.
"""

VALID_DIRECTIONS = (MOVEMENT_IN, MOVEMENT_OUT)


def record_movement(
    *,
    product_id: int,
    direction: str,
    quantity: int,
    reason: str | None,
    document_ref: str | None,
    resulting_stock: int,
    prev_stock: int | None = None,
    batch_id: int | None = None,
    cost_usd_cents: int | None = None,
    occurred_at: datetime | None = None,
) -> InventoryMovement:
    """Append one kardex row. Flushes, never commits."""
    if direction not in VALID_DIRECTIONS:
        raise ValueError(f"invalid movement direction: {direction}")
    if quantity <= 0:
        raise ValueError("movement quantity must be positive")

    movement = InventoryMovement(
        product_id=product_id,
        batch_id=batch_id,
        type=direction,
        quantity=quantity,
        prev_stock=prev_stock,
        new_stock=resulting_stock,
        document_ref=document_ref,
        reason=reason,
        cost_usd_cents=cost_usd_cents,
        created_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def list_movements(
    product_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
) -> list[InventoryMovement]:
    """Kardex export for one product, oldest first."""
    q = InventoryMovement.query.filter_by(product_id=product_id)
    if start is not None:
        q = q.filter(InventoryMovement.created_at >= start)
    if end is not None:
        q = q.filter(InventoryMovement.created_at <= end)
    q = q.order_by(InventoryMovement.created_at.asc(), InventoryMovement.id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def replay_stock(product_id: int) -> int:
    """Rebuild the aggregate from the kardex alone."""
    signed = case(
        (InventoryMovement.type == MOVEMENT_IN, InventoryMovement.quantity),
        else_=-InventoryMovement.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(InventoryMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def audit_product(product_id: int) -> dict:
    """Compare the three stock surfaces for one product."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)

    batch_total = (
        db.session.query(func.coalesce(func.sum(ProductBatch.stock), 0))
        .filter(ProductBatch.product_id == product_id)
        .scalar()
    )
    batch_total = int(batch_total or 0)
    kardex_total = replay_stock(product_id)

    return {
        "product_id": product_id,
        "name": product.name,
        "aggregate": product.stock,
        "batch_total": batch_total,
        "kardex_total": kardex_total,
        "consistent": product.stock == batch_total == kardex_total,
    }
