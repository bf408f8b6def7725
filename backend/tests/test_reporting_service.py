from datetime import datetime

import pytest

from bms_pos.extensions import db
from bms_pos.models import Sale
from bms_pos.services import reporting_service, sales_service
from bms_pos.services.reporting_service import ReportError

from conftest import credit_customer, physical


def test_daily_summary_excludes_voided_sales(taxable_product):
    cash = sales_service.create_sale(
        lines=[
            physical(taxable_product, 1),
            {"line_type": "ADVANCE", "description": "Avance", "amount_usd_cents": 500},
        ],
        exchange_rate="40",
        payment_method="EFECTIVO",
    )
    credit = sales_service.create_sale(
        lines=[physical(taxable_product, 2)], exchange_rate="40",
        is_credit=True, customer_ref=credit_customer(),
    )
    voided = sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="40")
    sales_service.void_sale(voided.id, "Error")

    summary = reporting_service.daily_summary()

    assert summary["sales_count"] == 2
    assert summary["voided_count"] == 1
    assert summary["total_usd_cents"] == cash.total_usd_cents + credit.total_usd_cents
    assert summary["collected_usd_cents"] == cash.total_usd_cents
    assert summary["advance_usd_cents"] == 500


def test_daily_summary_for_other_day(taxable_product):
    sale = sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="40")
    row = db.session.get(Sale, sale.id)
    row.created_at = datetime(2024, 3, 15, 23, 59, 59)
    db.session.commit()

    summary = reporting_service.daily_summary("2024-03-15")
    assert summary["day"] == "2024-03-15"
    assert summary["sales_count"] == 1
    assert reporting_service.daily_summary("2024-03-16")["sales_count"] == 0


def test_daily_summary_rejects_bad_day(db_session):
    with pytest.raises(ReportError):
        reporting_service.daily_summary("15/03/2024")


def test_recent_sales_newest_first_with_customer(taxable_product):
    first = sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="40")
    second = sales_service.create_sale(
        lines=[physical(taxable_product, 1)], exchange_rate="40",
        is_credit=True, customer_ref=credit_customer(),
    )

    rows = reporting_service.recent_sales(limit=10)
    assert [r["sale_id"] for r in rows] == [second.id, first.id]
    assert rows[0]["customer_name"] == "Maria Perez"
    assert rows[1]["customer_name"] is None
    assert len(reporting_service.recent_sales(limit=1)) == 1


def test_low_stock_threshold(taxable_product, exempt_product):
    rows = reporting_service.low_stock()
    assert [r["product_id"] for r in rows] == [exempt_product.id]

    rows = reporting_service.low_stock(threshold=25)
    assert [r["stock"] for r in rows] == [10, 20]
