# Overview: Flask API routes for stock reports; read-only views over the batch ledger.

from flask import Blueprint, current_app, request, g

from ..decorators import require_actor
from ..services import reconciliation_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/low-stock")
@require_actor
def low_stock_route():
    """Products below their low-stock threshold. Optional ?threshold=N overrides every threshold."""
    threshold = request.args.get("threshold", type=int)
    rows = reconciliation_service.low_stock(g.org_id, threshold_override=threshold)
    return {
        "items": [
            {**product.to_dict(), "quantity_on_hand": quantity}
            for product, quantity in rows
        ],
        "count": len(rows),
    }, 200


@reports_bp.get("/expiring")
@require_actor
def expiring_route():
    """Stocked batches expiring within ?days=N (default EXPIRY_WARNING_DAYS)."""
    days = request.args.get("days", current_app.config.get("EXPIRY_WARNING_DAYS", 30), type=int)
    rows = reconciliation_service.expiring_within(g.org_id, days)
    return {
        "days": days,
        "items": [
            {**batch.to_dict(), "product_name": product.name}
            for batch, product in rows
        ],
    }, 200


@reports_bp.get("/expiry")
@require_actor
def expiry_report_route():
    horizon = request.args.get("horizon_days", reconciliation_service.DEFAULT_HORIZON_DAYS, type=int)
    return {"report": reconciliation_service.expiry_report(g.org_id, horizon_days=horizon)}, 200


@reports_bp.get("/valuation")
@require_actor
def valuation_route():
    return {
        "total_value_cents": reconciliation_service.valuation(g.org_id),
        "products": reconciliation_service.valuation_by_product(g.org_id),
    }, 200


@reports_bp.get("/ledger-check")
@require_actor
def ledger_check_route():
    """Batches whose quantity disagrees with their movement history. Empty means consistent."""
    discrepancies = reconciliation_service.ledger_discrepancies(g.org_id)
    return {"consistent": not discrepancies, "discrepancies": discrepancies}, 200
