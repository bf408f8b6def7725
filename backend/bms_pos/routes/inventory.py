# Overview: Flask API routes for batches and the kardex; parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..services import batch_service, kardex_service
from ..services.errors import LedgerError, ProductNotFoundError
from ..validation import ValidationError, validate_batch_create
from ..extensions import db
from ..models import Product
from bms_pos.time_utils import day_bounds, parse_iso_date, parse_iso_datetime

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _require_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def _parse_range_bound(value: str | None, *, end: bool):
    """'YYYY-MM-DD' covers the whole day; full datetimes are used as given."""
    if not value:
        return None
    value = value.strip()
    if len(value) == 10:
        start_dt, end_dt = day_bounds(parse_iso_date(value))
        return end_dt if end else start_dt
    return parse_iso_datetime(value)


@inventory_bp.post("/batches")
def receive_batch_route():
    """
    Stock entry (new lot).

    Body: product_id, quantity, expiration_date?, cost_usd_cents?, batch_code?,
    reason?, document_ref?
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400
    payload = dict(payload)
    reason = str(payload.pop("reason", None) or "COMPRA").strip()
    document_ref = payload.pop("document_ref", None)

    try:
        patch = validate_batch_create(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        batch = batch_service.receive_batch(
            product_id=patch["product_id"],
            quantity=patch["stock"],
            expiration_date=patch.get("expiration_date"),
            cost_usd_cents=patch.get("cost_usd_cents"),
            batch_code=patch.get("batch_code"),
            reason=reason,
            document_ref=document_ref,
        )
    except LedgerError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to receive batch")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Batch %s received for product %s (%s units)", batch.id, batch.product_id, batch.stock)
    return {"batch": batch.to_dict(), "product_stock": batch.product.stock}, 201


@inventory_bp.get("/<int:product_id>/batches")
def list_batches(product_id: int):
    try:
        _require_product(product_id)
    except LedgerError as e:
        return e.to_response()
    return {"items": [b.to_dict() for b in batch_service.get_batches(product_id)]}


@inventory_bp.get("/<int:product_id>/movements")
def list_movements(product_id: int):
    """
    Kardex for one product, oldest first.

    Query params:
    - start, end: ISO date or datetime, both inclusive
    """
    try:
        start = _parse_range_bound(request.args.get("start"), end=False)
        end = _parse_range_bound(request.args.get("end"), end=True)
    except ValueError:
        return {"error": "start/end must be ISO-8601 dates"}, 400

    try:
        _require_product(product_id)
    except LedgerError as e:
        return e.to_response()

    movements = kardex_service.list_movements(product_id, start=start, end=end)
    return {"items": [m.to_dict() for m in movements]}


@inventory_bp.get("/<int:product_id>/audit")
def audit_product(product_id: int):
    try:
        return kardex_service.audit_product(product_id)
    except LedgerError as e:
        return e.to_response()
