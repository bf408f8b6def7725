from datetime import timedelta
from decimal import Decimal

import pytest

from bms_pos.extensions import db
from bms_pos.models import Customer, InventoryMovement, Product, ProductBatch, Sale, SaleLine
from bms_pos.services import credit_service, kardex_service, sales_service
from bms_pos.services.errors import (
    AlreadyVoidedError,
    InsufficientStockError,
    InvalidLineError,
    InvalidSaleRequestError,
    MissingCustomerForCreditError,
    PartialSaleVoidForbiddenError,
    SaleNotFoundError,
)
from bms_pos.services.payment_descriptor import extract_advance_tokens

from conftest import credit_customer, physical


class TestSettlement:
    def test_cash_sale_totals_and_frozen_rate(self, taxable_product, exempt_product):
        sale = sales_service.create_sale(
            lines=[physical(taxable_product, 2), physical(exempt_product, 1)],
            exchange_rate="40.00",
            payment_method="EFECTIVO",
        )

        assert sale.status == "PAID"
        assert sale.subtotal_taxable_usd_cents == 2000
        assert sale.subtotal_exempt_usd_cents == 500
        assert sale.tax_rate_bps == 1600
        assert sale.tax_usd_cents == 320
        assert sale.total_usd_cents == 2820
        assert sale.total_ves_cents == 112800
        assert sale.amount_paid_usd_cents == 2820
        assert sale.exchange_rate == Decimal("40.0000")
        assert sale.payment_method == "EFECTIVO"

    def test_sale_lines_freeze_price_and_taxability(self, taxable_product):
        sale = sales_service.create_sale(lines=[physical(taxable_product, 3)], exchange_rate="40")

        product = db.session.get(Product, taxable_product.id)
        product.price_usd_cents = 9999
        product.is_taxable = False
        db.session.commit()

        line = SaleLine.query.filter_by(sale_id=sale.id).one()
        assert line.unit_price_usd_cents == 1000
        assert line.line_total_usd_cents == 3000
        assert line.is_taxable is True
        assert db.session.get(Sale, sale.id).total_usd_cents == 3480

    def test_tax_rounds_half_up(self, db_session):
        from bms_pos.services.products_service import create_product
        product = create_product(name="Chicle", price_usd_cents=3, initial_stock=5)
        # 3 * 16% = 0.48 -> 0; 2 units: 6 * 16% = 0.96 -> 1
        sale = sales_service.create_sale(lines=[physical(product, 2)], exchange_rate="36.5")
        assert sale.tax_usd_cents == 1
        assert sale.total_usd_cents == 7
        assert sale.total_ves_cents == 256  # 7 * 36.5 = 255.5 -> 256

    def test_physical_line_deducts_fefo_and_aggregate(self, dated_product):
        sales_service.create_sale(lines=[physical(dated_product, 4)], exchange_rate="40")

        stock = {b.batch_code: b.stock for b in ProductBatch.query.filter_by(product_id=dated_product.id)}
        assert stock == {"B05": 0, "B10": 3, "BNULL": 5}
        assert db.session.get(Product, dated_product.id).stock == 8

    def test_same_product_on_two_lines_is_checked_in_total(self, exempt_product):
        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(
                lines=[physical(exempt_product, 6), physical(exempt_product, 5)],
                exchange_rate="40",
            )
        assert db.session.get(Product, exempt_product.id).stock == 10

    def test_advance_tokens_round_trip(self, taxable_product):
        sale = sales_service.create_sale(
            lines=[
                physical(taxable_product, 1),
                {"line_type": "ADVANCE", "description": "Avance efectivo [CAP:50.00]", "amount_usd_cents": 5000},
                {"line_type": "ADVANCE", "description": "Avance", "amount_usd_cents": 2500},
            ],
            exchange_rate="40",
            payment_method="PAGO MOVIL (Ref: 0412)",
        )

        assert sale.payment_method == "PAGO MOVIL (Ref: 0412) [CAP:50.00] [CAP:25.00]"
        assert extract_advance_tokens(sale.payment_method) == [5000, 2500]
        assert sale.advance_usd_cents == 7500
        # Advances are exempt and never taxed
        assert sale.subtotal_exempt_usd_cents == 7500
        assert sale.tax_usd_cents == 160

    def test_advance_amount_can_come_from_label_only(self, db_session):
        sale = sales_service.create_sale(
            lines=[{"line_type": "ADVANCE", "description": "Avance [CAP:12.50]"}],
            exchange_rate="40",
            payment_method="ZELLE",
        )
        assert sale.total_usd_cents == 1250
        assert sale.payment_method == "ZELLE [CAP:12.50]"

    def test_donation_line_has_no_inventory_or_token(self, taxable_product):
        sale = sales_service.create_sale(
            lines=[{"line_type": "DONATION", "description": "Donacion", "amount_usd_cents": 300}],
            exchange_rate="40",
            payment_method="EFECTIVO",
        )

        assert sale.payment_method == "EFECTIVO"
        assert sale.advance_usd_cents == 0
        assert sale.total_usd_cents == 300
        assert InventoryMovement.query.filter_by(type="OUT").count() == 0
        line = SaleLine.query.filter_by(sale_id=sale.id).one()
        assert line.product_id is None
        assert line.is_taxable is False

    def test_credit_sale_creates_customer_and_due_date(self, taxable_product):
        sale = sales_service.create_sale(
            lines=[physical(taxable_product, 1)],
            exchange_rate="40",
            is_credit=True,
            customer_ref=credit_customer(),
        )

        assert sale.status == "PENDING"
        assert sale.is_credit is True
        assert sale.amount_paid_usd_cents == 0
        assert sale.due_date - sale.created_at == timedelta(days=15)
        customer = Customer.query.filter_by(id_number="V-12345678").one()
        assert sale.customer_id == customer.id
        assert customer.status == "ACTIVO"

    def test_credit_sale_reuses_active_customer(self, taxable_product):
        first = sales_service.create_sale(
            lines=[physical(taxable_product, 1)], exchange_rate="40",
            is_credit=True, customer_ref=credit_customer(),
        )
        second = sales_service.create_sale(
            lines=[physical(taxable_product, 1)], exchange_rate="40",
            is_credit=True, customer_ref=credit_customer(full_name="Maria P."), credit_days=30,
        )

        assert first.customer_id == second.customer_id
        assert Customer.query.count() == 1
        assert second.due_date - second.created_at == timedelta(days=30)

    def test_credit_sale_by_customer_id(self, taxable_product):
        customer = Customer(full_name="Jose Rivas", id_number="V-999")
        db.session.add(customer)
        db.session.commit()

        sale = sales_service.create_sale(
            lines=[physical(taxable_product, 1)], exchange_rate="40",
            is_credit=True, customer_ref=customer.id,
        )
        assert sale.customer_id == customer.id

    def test_credit_with_advance_tokens_is_allowed(self, taxable_product):
        sale = sales_service.create_sale(
            lines=[
                physical(taxable_product, 1),
                {"line_type": "ADVANCE", "description": "Avance", "amount_usd_cents": 1000},
            ],
            exchange_rate="40",
            is_credit=True,
            customer_ref=credit_customer(),
            payment_method="CREDITO",
        )
        assert sale.status == "PENDING"
        assert sale.payment_method == "CREDITO [CAP:10.00]"


class TestSettlementRejections:
    def test_credit_without_customer(self, taxable_product):
        with pytest.raises(MissingCustomerForCreditError):
            sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="40", is_credit=True)
        assert Sale.query.count() == 0

    def test_credit_with_incomplete_customer(self, taxable_product):
        with pytest.raises(MissingCustomerForCreditError):
            sales_service.create_sale(
                lines=[physical(taxable_product, 1)], exchange_rate="40",
                is_credit=True, customer_ref={"full_name": "Sin Cedula"},
            )
        assert Sale.query.count() == 0
        assert db.session.get(Product, taxable_product.id).stock == 20

    def test_unknown_product_is_invalid_line(self, db_session):
        with pytest.raises(InvalidLineError):
            sales_service.create_sale(lines=[{"product_id": 777, "quantity": 1}], exchange_rate="40")

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", None])
    def test_bad_quantity(self, taxable_product, quantity):
        with pytest.raises(InvalidLineError):
            sales_service.create_sale(
                lines=[{"product_id": taxable_product.id, "quantity": quantity}], exchange_rate="40"
            )

    def test_empty_cart(self, db_session):
        with pytest.raises(InvalidLineError):
            sales_service.create_sale(lines=[], exchange_rate="40")

    def test_unknown_line_type(self, taxable_product):
        with pytest.raises(InvalidLineError):
            sales_service.create_sale(
                lines=[{"line_type": "GIFT", "amount_usd_cents": 100, "quantity": 1}], exchange_rate="40"
            )

    @pytest.mark.parametrize("line", [
        {"line_type": "ADVANCE", "description": "AVANCE [CAP:50.00]", "amount_usd_cents": 5000, "quantity": 2},
        {"line_type": "ADVANCE", "description": "AVANCE", "amount_usd_cents": 5000, "quantity": 3},
        {"line_type": "ADVANCE", "description": "AVANCE [CAP:50.00]", "amount_usd_cents": 3000},
    ])
    def test_advance_line_must_match_its_token(self, db_session, line):
        with pytest.raises(InvalidLineError):
            sales_service.create_sale(lines=[line], exchange_rate="40", payment_method="PAGO MOVIL")
        assert Sale.query.count() == 0

    def test_bad_exchange_rate(self, taxable_product):
        with pytest.raises(InvalidSaleRequestError):
            sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="0")

    def test_insufficient_stock_rolls_back_everything(self, taxable_product, exempt_product):
        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(
                lines=[physical(taxable_product, 2), physical(exempt_product, 11)],
                exchange_rate="40",
            )

        assert exc.value.details == {"product_id": exempt_product.id, "requested_quantity": 11, "available": 10}
        assert Sale.query.count() == 0
        assert SaleLine.query.count() == 0
        assert InventoryMovement.query.filter_by(type="OUT").count() == 0
        assert db.session.get(Product, taxable_product.id).stock == 20
        assert db.session.get(Product, exempt_product.id).stock == 10

    def test_inactive_product_rejected(self, taxable_product):
        product = db.session.get(Product, taxable_product.id)
        product.is_active = False
        db.session.commit()

        with pytest.raises(InvalidLineError):
            sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="40")


class TestVoid:
    def test_void_is_exact_inverse(self, dated_product, exempt_product):
        before_batches = {b.id: b.stock for b in ProductBatch.query.all()}
        sale = sales_service.create_sale(
            lines=[physical(dated_product, 9), physical(exempt_product, 2)],
            exchange_rate="40",
            payment_method="EFECTIVO",
        )

        voided = sales_service.void_sale(sale.id, "Error de cajero")

        assert voided.status == "ANULADO"
        assert voided.void_reason == "Error de cajero"
        assert voided.voided_at is not None
        assert voided.payment_method == "EFECTIVO + [ANULADO: Error de cajero]"

        # Aggregates restored; units land on the freshest batch
        assert db.session.get(Product, dated_product.id).stock == 12
        assert db.session.get(Product, exempt_product.id).stock == 10
        after = {b.id: b.stock for b in ProductBatch.query.all()}
        assert sum(after.values()) == sum(before_batches.values())

        ins = InventoryMovement.query.filter_by(document_ref=f"ANULACION VENTA #{sale.id}").all()
        assert sorted((m.product_id, m.quantity, m.type) for m in ins) == sorted([
            (dated_product.id, 9, "IN"),
            (exempt_product.id, 2, "IN"),
        ])
        assert all(m.reason == "ANULACION: Error de cajero" for m in ins)

        for pid in (dated_product.id, exempt_product.id):
            assert kardex_service.audit_product(pid)["consistent"] is True

    def test_void_pending_credit_sale(self, taxable_product):
        sale = sales_service.create_sale(
            lines=[physical(taxable_product, 2)], exchange_rate="40",
            is_credit=True, customer_ref=credit_customer(),
        )
        voided = sales_service.void_sale(sale.id, "Cliente desistio")
        assert voided.status == "ANULADO"
        assert db.session.get(Product, taxable_product.id).stock == 20

    def test_void_service_only_sale_touches_no_inventory(self, db_session):
        sale = sales_service.create_sale(
            lines=[{"line_type": "DONATION", "amount_usd_cents": 100}], exchange_rate="40",
        )
        sales_service.void_sale(sale.id, "Duplicado")
        assert InventoryMovement.query.count() == 0

    def test_void_twice(self, taxable_product):
        sale = sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="40")
        sales_service.void_sale(sale.id, "Primera")

        with pytest.raises(AlreadyVoidedError):
            sales_service.void_sale(sale.id, "Segunda")
        assert db.session.get(Product, taxable_product.id).stock == 20

    def test_void_partial_sale_forbidden(self, taxable_product):
        sale = sales_service.create_sale(
            lines=[physical(taxable_product, 1)], exchange_rate="40",
            is_credit=True, customer_ref=credit_customer(),
        )
        credit_service.apply_payment(sale.id, 100, "EFECTIVO")

        with pytest.raises(PartialSaleVoidForbiddenError) as exc:
            sales_service.void_sale(sale.id, "Intento")
        assert exc.value.details["status"] == "PARCIAL"
        assert db.session.get(Sale, sale.id).status == "PARCIAL"
        assert db.session.get(Product, taxable_product.id).stock == 19

    def test_void_requires_reason(self, taxable_product):
        sale = sales_service.create_sale(lines=[physical(taxable_product, 1)], exchange_rate="40")
        with pytest.raises(InvalidSaleRequestError):
            sales_service.void_sale(sale.id, "   ")

    def test_void_unknown_sale(self, db_session):
        with pytest.raises(SaleNotFoundError):
            sales_service.void_sale(31337, "x")

    def test_void_after_batches_drained_uses_recovery_batch(self, db_session):
        from bms_pos.services.products_service import create_product
        product = create_product(name="Pan", price_usd_cents=100, initial_stock=1)
        sale = sales_service.create_sale(lines=[physical(product, 1)], exchange_rate="40")

        sales_service.void_sale(sale.id, "Devuelto")
        # Drained batch still exists, so the unit goes back there
        batches = ProductBatch.query.filter_by(product_id=product.id).all()
        assert len(batches) == 1
        assert batches[0].stock == 1


class TestSaleDetail:
    def test_detail_includes_lines_and_parsed_descriptor(self, taxable_product):
        sale = sales_service.create_sale(
            lines=[
                physical(taxable_product, 1),
                {"line_type": "ADVANCE", "description": "Avance", "amount_usd_cents": 2000},
            ],
            exchange_rate="40",
            payment_method="PUNTO (Ref: 77)",
        )

        detail = sales_service.get_sale_detail(sale.id)
        assert detail["sale"]["id"] == sale.id
        assert [line["line_type"] for line in detail["lines"]] == ["PHYSICAL", "ADVANCE"]
        assert detail["lines"][0]["product_name"] == "Harina PAN"
        assert detail["payment"]["methods"] == [{"method": "PUNTO", "reference": "77"}]
        assert detail["payment"]["advances_usd_cents"] == [2000]
        assert detail["customer"] is None

    def test_detail_unknown_sale(self, db_session):
        with pytest.raises(SaleNotFoundError):
            sales_service.get_sale_detail(5)
