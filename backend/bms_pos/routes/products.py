# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..services.errors import LedgerError
from ..services.products_service import create_product, list_products as list_products_service
from ..services.rate_service import get_rate_provider
from ..validation import ValidationError, validate_product_create

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    Catalog with USD and Bs prices at the current rate.

    Query params:
    - include_inactive: "true" to list deactivated products too
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    rate = get_rate_provider().current()
    items = list_products_service(rate, include_inactive=include_inactive)
    return {"items": items, "exchange_rate": str(rate)}


@products_bp.post("")
def create_product_route():
    """
    Create a product. Optional opening stock (initial_stock, expiration_date,
    cost_usd_cents, batch_code) becomes its first batch.
    """
    payload = request.get_json(silent=True) or {}

    try:
        product_fields, opening = validate_product_create(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = create_product(
            name=product_fields["name"],
            price_usd_cents=product_fields["price_usd_cents"],
            category=product_fields.get("category"),
            is_taxable=product_fields.get("is_taxable", True),
            initial_stock=opening.get("stock") or 0,
            expiration_date=opening.get("expiration_date"),
            cost_usd_cents=opening.get("cost_usd_cents"),
            batch_code=opening.get("batch_code"),
        )
    except LedgerError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Product %s created with stock %s", product.id, product.stock)
    return product.to_dict(), 201
