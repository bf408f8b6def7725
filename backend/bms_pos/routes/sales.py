# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/bms_pos/routes/sales.py
"""Sale settlement, installment and void endpoints. Amounts are USD cents."""

from flask import Blueprint, request, jsonify
from flask import current_app

from ..services import credit_service, sales_service
from ..services.errors import InvalidAmountError, LedgerError
from ..services.rate_service import get_rate_provider
from bms_pos.money import parse_amount_to_cents
from bms_pos.validation import parse_bool


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _customer_ref(data: dict):
    if data.get("customer") is not None:
        return data["customer"]
    return data.get("customer_id")


@sales_bp.post("")
def create_sale_route():
    """
    Settle a cart.

    Body:
    - lines: [{line_type?, product_id?, quantity, description?, amount_usd_cents?}]
    - payment_method: descriptor text, e.g. "PAGO MOVIL (Ref: 0412)"
    - is_credit, credit_days, customer {full_name, id_number, ...} or customer_id
    - invoice_type: TICKET | FISCAL

    The exchange rate is frozen from the rate provider at this moment.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    try:
        sale = sales_service.create_sale(
            lines=data.get("lines"),
            exchange_rate=get_rate_provider().current(),
            payment_method=data.get("payment_method"),
            is_credit=parse_bool(data.get("is_credit", False)),
            credit_days=data.get("credit_days"),
            customer_ref=_customer_ref(data),
            invoice_type=data.get("invoice_type") or "TICKET",
        )
    except LedgerError as e:
        return jsonify(e.to_response()[0]), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Sale %s settled: %s USD cents, status %s", sale.id, sale.total_usd_cents, sale.status
    )
    return jsonify({
        "sale_id": sale.id,
        "status": sale.status,
        "total_usd_cents": sale.total_usd_cents,
        "total_ves_cents": sale.total_ves_cents,
        "sale": sale.to_dict(),
    }), 201


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        return jsonify(sales_service.get_sale_detail(sale_id)), 200
    except LedgerError as e:
        return jsonify(e.to_response()[0]), e.http_status


@sales_bp.post("/<int:sale_id>/payments")
def apply_payment_route(sale_id: int):
    """
    Register an installment on a credit sale.

    Body: amount_usd_cents (int) or amount ("20.00"), method, reference?
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    amount = data.get("amount_usd_cents")
    if amount is None and data.get("amount") is not None:
        try:
            amount = parse_amount_to_cents(str(data["amount"]))
        except ValueError as e:
            return jsonify(InvalidAmountError(str(e)).to_response()[0]), 400

    try:
        sale = credit_service.apply_payment(
            sale_id,
            amount,
            data.get("method"),
            data.get("reference"),
        )
    except LedgerError as e:
        return jsonify(e.to_response()[0]), e.http_status
    except Exception:
        current_app.logger.exception("Failed to apply payment")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info("Payment of %s cents applied to sale %s -> %s", amount, sale.id, sale.status)
    return jsonify({
        "status": sale.status,
        "remaining_usd_cents": credit_service.remaining_cents(sale),
    }), 200


@sales_bp.post("/<int:sale_id>/void")
def void_sale_route(sale_id: int):
    """Body: reason (required)."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    try:
        sale = sales_service.void_sale(sale_id, data.get("reason"))
    except LedgerError as e:
        return jsonify(e.to_response()[0]), e.http_status
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info("Sale %s voided: %s", sale.id, sale.void_reason)
    return jsonify({"success": True, "sale": sale.to_dict()}), 200
