# Overview: Read-only reports over the sale ledger and the catalog.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Product, Sale
from ..models.sales import SALE_STATUS_VOIDED
from bms_pos.time_utils import day_bounds, parse_iso_date, to_iso_date, to_utc_z, utcnow
from .credit_service import list_pending_credits


class ReportError(Exception):
    """Raised when report parameters are unusable."""
    pass


def daily_summary(day=None) -> dict:
    """Totals for the non-voided sales of one calendar day (UTC)."""
    try:
        target = parse_iso_date(day) if day else utcnow().date()
    except ValueError:
        raise ReportError("day must be YYYY-MM-DD")
    start, end = day_bounds(target)

    row = (
        db.session.query(
            func.count(Sale.id).label("sales_count"),
            func.coalesce(func.sum(Sale.total_usd_cents), 0).label("total_usd_cents"),
            func.coalesce(func.sum(Sale.total_ves_cents), 0).label("total_ves_cents"),
            func.coalesce(func.sum(Sale.amount_paid_usd_cents), 0).label("collected_usd_cents"),
            func.coalesce(func.sum(Sale.advance_usd_cents), 0).label("advance_usd_cents"),
        )
        .filter(
            Sale.status != SALE_STATUS_VOIDED,
            Sale.created_at >= start,
            Sale.created_at <= end,
        )
        .one()
    )

    voided = (
        db.session.query(func.count(Sale.id))
        .filter(
            Sale.status == SALE_STATUS_VOIDED,
            Sale.created_at >= start,
            Sale.created_at <= end,
        )
        .scalar()
    )

    return {
        "day": to_iso_date(target),
        "sales_count": int(row.sales_count or 0),
        "voided_count": int(voided or 0),
        "total_usd_cents": int(row.total_usd_cents),
        "total_ves_cents": int(row.total_ves_cents),
        "collected_usd_cents": int(row.collected_usd_cents),
        "advance_usd_cents": int(row.advance_usd_cents),
    }


def recent_sales(limit: int = 10) -> list[dict]:
    if limit <= 0:
        raise ReportError("limit must be positive")

    rows = (
        db.session.query(Sale, Customer.full_name)
        .outerjoin(Customer, Customer.id == Sale.customer_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "sale_id": sale.id,
            "created_at": to_utc_z(sale.created_at),
            "status": sale.status,
            "customer_name": customer_name,
            "total_usd_cents": sale.total_usd_cents,
            "total_ves_cents": sale.total_ves_cents,
            "payment_method": sale.payment_method,
        }
        for sale, customer_name in rows
    ]


def low_stock(threshold: int | None = None) -> list[dict]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    if threshold < 0:
        raise ReportError("threshold must be >= 0")

    products = (
        Product.query.filter(Product.is_active.is_(True), Product.stock <= threshold)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
    return [
        {"product_id": p.id, "name": p.name, "category": p.category, "stock": p.stock}
        for p in products
    ]


def credit_pending() -> list[dict]:
    return list_pending_credits()
