from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from bms_pos.time_utils import to_utc_z, to_iso_date

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to rewrite an append-only kardex row."""


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product.stock is a CACHE of SUM(product_batches.stock). It is never
    authoritative and never decremented in place; every writer re-sums the
    batches inside the same transaction (see batch_service.recompute_product_stock).

    WHY:
    1. Listings and availability checks need O(1) stock reads
    2. Re-deriving on every write self-heals any drift from past bugs
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active_stock", "is_active", "stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(50), nullable=True)

    # USD reference price in cents
    price_usd_cents = db.Column(db.Integer, nullable=False)

    # IVA applies unless flagged exempt
    is_taxable = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Cached aggregate of batch stock
    stock = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_usd_cents": self.price_usd_cents,
            "is_taxable": self.is_taxable,
            "is_active": self.is_active,
            "stock": self.stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductBatch(db.Model):
    """
    A dated stock lot of one product.

    FEFO: batches are consumed by expiration_date ascending; NULL expiration
    (non-perishable) sorts last. Batches are never deleted; a drained batch
    stays as a zero-stock row so the lot history remains visible.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_batches_stock_non_negative"),
        db.Index("ix_product_batches_product_expiration", "product_id", "expiration_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Human lot label (manufacturer code, LOTE-INICIAL, REINGRESO-ANULACION...)
    batch_code = db.Column(db.String(50), nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    cost_usd_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<ProductBatch id={self.id} product_id={self.product_id} "
            f"expires={self.expiration_date} stock={self.stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_code": self.batch_code,
            "expiration_date": to_iso_date(self.expiration_date),
            "stock": self.stock,
            "cost_usd_cents": self.cost_usd_cents,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class InventoryMovement(db.Model):
    """
    Kardex: append-only log of every stock change.

    IMMUTABLE: rows are never updated or deleted (enforced by mapper events
    below). prev_stock/new_stock snapshot the product aggregate around the
    movement, so replaying IN/OUT quantities from zero reproduces Product.stock.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_inventory_movements_quantity_positive"),
        db.Index("ix_inventory_movements_product_created", "product_id", "created_at"),
        db.Index("ix_inventory_movements_document_ref", "document_ref"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)

    # IN or OUT
    type = db.Column(db.String(10), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    prev_stock = db.Column(db.Integer, nullable=True)
    new_stock = db.Column(db.Integer, nullable=True)

    # Invoice / delivery note / sale reference
    document_ref = db.Column(db.String(100), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    cost_usd_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.type == MOVEMENT_IN else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "type": self.type,
            "quantity": self.quantity,
            "prev_stock": self.prev_stock,
            "new_stock": self.new_stock,
            "document_ref": self.document_ref,
            "reason": self.reason,
            "cost_usd_cents": self.cost_usd_cents,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(InventoryMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ImmutableRecordError(f"inventory movement {target.id} is immutable")


@event.listens_for(InventoryMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ImmutableRecordError(f"inventory movement {target.id} cannot be deleted")
