from __future__ import annotations
from datetime import date, datetime
from bms_pos.time_utils import parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from bms_pos.models import Product, ProductBatch


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    - aliases: public field name -> column key (e.g. quantity -> stock)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    aliases: dict[str, str] | None = None


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "category", "price_usd_cents", "is_taxable"},
    required_on_create={"name", "price_usd_cents"},
)

BATCH_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "batch_code", "expiration_date", "stock", "cost_usd_cents"},
    required_on_create={"product_id", "stock"},
    aliases={"quantity": "stock"},
)

# Opening-stock keys accepted on POST /api/products
OPENING_STOCK_POLICY = ModelValidationPolicy(
    writable_fields={"batch_code", "expiration_date", "stock", "cost_usd_cents"},
    required_on_create=set(),
    aliases={"initial_stock": "stock"},
)


def parse_bool(value: Any) -> bool:
    """JSON flag: real booleans, or "1"/"true"/"yes"/"si" strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "si")
    return bool(value)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        return parse_bool(value)

    # Dates (expiration) accept 'YYYY-MM-DD'
    if isinstance(coltype, Date):
        if isinstance(value, (date, datetime)):
            return parse_iso_date(value)
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
            return d
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by column name.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    aliases = policy.aliases or {}
    payload = {aliases.get(k, k): v for k, v in payload.items()}
    public_name = {v: k for k, v in aliases.items()}

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(public_name.get(f, f) for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {public_name.get(k, k)}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{public_name.get(k, k)} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Business rules that are not captured by SQLAlchemy metadata alone."""
    if "price_usd_cents" in patch and patch["price_usd_cents"] is not None:
        price = patch["price_usd_cents"]
        if price < 0:
            raise ValidationError("price_usd_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"price_usd_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_batch(patch: dict, *, allow_zero: bool = False) -> None:
    # Stock entry requires qty > 0 (opening stock may be 0) and a non-negative cost
    qty = patch.get("stock")
    if qty is not None:
        if qty < 0 or (qty == 0 and not allow_zero):
            raise ValidationError("quantity must be > 0")

    cost = patch.get("cost_usd_cents")
    if cost is not None and cost < 0:
        raise ValidationError("cost_usd_cents must be >= 0")


def validate_product_create(payload: dict) -> tuple[dict, dict]:
    """Split a POST /api/products body into (product fields, opening-stock fields)."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    stock_keys = set(OPENING_STOCK_POLICY.writable_fields) | set(OPENING_STOCK_POLICY.aliases)
    product_part = {k: v for k, v in payload.items() if k not in stock_keys}
    stock_part = {k: v for k, v in payload.items() if k in stock_keys}

    product = validate_payload(model=Product, payload=product_part, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(product)

    opening = validate_payload(model=ProductBatch, payload=stock_part, policy=OPENING_STOCK_POLICY, partial=True)
    enforce_rules_batch(opening, allow_zero=True)
    return product, opening


def validate_batch_create(payload: dict) -> dict:
    patch = validate_payload(model=ProductBatch, payload=payload, policy=BATCH_POLICY, partial=False)
    enforce_rules_batch(patch)
    return patch
