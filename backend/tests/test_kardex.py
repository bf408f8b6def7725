from datetime import datetime

import pytest

from bms_pos.extensions import db
from bms_pos.models import ImmutableRecordError, InventoryMovement, Product
from bms_pos.services import kardex_service, sales_service
from bms_pos.services.errors import ProductNotFoundError

from conftest import physical


def test_replay_matches_aggregate_after_mixed_activity(dated_product):
    sale = sales_service.create_sale(lines=[physical(dated_product, 4)], exchange_rate="40")
    sales_service.create_sale(lines=[physical(dated_product, 2)], exchange_rate="40")
    sales_service.void_sale(sale.id, "Cliente devolvio")

    product = db.session.get(Product, dated_product.id)
    assert product.stock == 10
    assert kardex_service.replay_stock(dated_product.id) == 10


def test_audit_product_reports_consistent_surfaces(dated_product):
    sales_service.create_sale(lines=[physical(dated_product, 5)], exchange_rate="40")

    report = kardex_service.audit_product(dated_product.id)
    assert report == {
        "product_id": dated_product.id,
        "name": "Yogurt",
        "aggregate": 7,
        "batch_total": 7,
        "kardex_total": 7,
        "consistent": True,
    }


def test_audit_product_flags_drift(dated_product):
    db.session.execute(db.update(Product).where(Product.id == dated_product.id).values(stock=3))
    db.session.commit()

    report = kardex_service.audit_product(dated_product.id)
    assert report["consistent"] is False
    assert report["aggregate"] == 3
    assert report["batch_total"] == 12


def test_audit_unknown_product(db_session):
    with pytest.raises(ProductNotFoundError):
        kardex_service.audit_product(424242)


def test_list_movements_ordered_and_range_inclusive(db_session, taxable_product):
    t1 = datetime(2030, 1, 1, 9, 0, 0)
    t2 = datetime(2030, 1, 2, 9, 0, 0)
    t3 = datetime(2030, 1, 3, 9, 0, 0)
    for when, direction, qty in ((t2, "OUT", 2), (t1, "IN", 5), (t3, "OUT", 1)):
        kardex_service.record_movement(
            product_id=taxable_product.id,
            direction=direction,
            quantity=qty,
            reason="TEST",
            document_ref=None,
            resulting_stock=0,
            occurred_at=when,
        )
    db.session.commit()

    ranged = kardex_service.list_movements(taxable_product.id, start=t1, end=t2)
    assert [(m.type, m.quantity) for m in ranged] == [("IN", 5), ("OUT", 2)]

    everything = kardex_service.list_movements(taxable_product.id)
    assert [m.created_at for m in everything] == sorted(m.created_at for m in everything)


def test_sale_writes_out_movement_with_document_ref(db_session, taxable_product):
    sale = sales_service.create_sale(lines=[physical(taxable_product, 3)], exchange_rate="40")

    out = InventoryMovement.query.filter_by(product_id=taxable_product.id, type="OUT").one()
    assert out.quantity == 3
    assert out.prev_stock == 20
    assert out.new_stock == 17
    assert out.document_ref == f"VENTA #{sale.id}"
    assert out.reason == "VENTA"


def test_movement_rows_cannot_be_updated(db_session, taxable_product):
    movement = InventoryMovement.query.filter_by(product_id=taxable_product.id).first()
    movement.quantity = 999
    with pytest.raises(ImmutableRecordError):
        db.session.flush()
    db.session.rollback()


def test_movement_rows_cannot_be_deleted(db_session, taxable_product):
    movement = InventoryMovement.query.filter_by(product_id=taxable_product.id).first()
    db.session.delete(movement)
    with pytest.raises(ImmutableRecordError):
        db.session.flush()
    db.session.rollback()


def test_record_movement_rejects_unknown_direction(db_session, taxable_product):
    with pytest.raises(ValueError):
        kardex_service.record_movement(
            product_id=taxable_product.id,
            direction="SIDEWAYS",
            quantity=1,
            reason=None,
            document_ref=None,
            resulting_stock=0,
        )
