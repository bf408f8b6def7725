from flask import Blueprint, jsonify, request

from bms_pos.services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/daily")
def daily_report():
    try:
        report = reporting_service.daily_summary(request.args.get("day"))
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/recent-sales")
def recent_sales_report():
    limit = request.args.get("limit", default=10, type=int)
    try:
        return jsonify({"items": reporting_service.recent_sales(limit)}), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/low-stock")
def low_stock_report():
    threshold = request.args.get("threshold", type=int)
    try:
        return jsonify({"items": reporting_service.low_stock(threshold)}), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/credit-pending")
def credit_pending_report():
    return jsonify({"items": reporting_service.credit_pending()}), 200
