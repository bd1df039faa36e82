from flask import Blueprint, jsonify, request, g

from app.decorators import require_auth, require_permission
from app.models.entities import ENTITY_BRANCH, ENTITY_FACTORY
from app.services import report_service
from app.services.entity_service import accessible_inventory_ids, accessible_entity_ids
from app.validation import ServiceError, error_response


reports_bp = Blueprint("reports", __name__, url_prefix="/api/v1/reports")


def _report(builder, **kwargs):
    try:
        return jsonify(builder(**kwargs)), 200
    except ServiceError as e:
        return error_response(e)


def _inventories():
    return accessible_inventory_ids(g.current_user)


def _branches():
    return accessible_entity_ids(g.current_user, ENTITY_BRANCH)


def _range() -> dict:
    return {"start": request.args.get("start_date"), "end": request.args.get("end_date")}


@reports_bp.get("/available-dresses")
@require_auth
@require_permission("VIEW_REPORTS")
def available_dresses_report():
    return _report(
        report_service.available_dresses,
        inventory_ids=_inventories(),
        cloth_type_id=request.args.get("cloth_type_id", type=int),
    )


@reports_bp.get("/out-of-branch")
@require_auth
@require_permission("VIEW_REPORTS")
def out_of_branch_report():
    return _report(report_service.out_of_branch, inventory_ids=_inventories())


@reports_bp.get("/overdue-returns")
@require_auth
@require_permission("VIEW_REPORTS")
def overdue_returns_report():
    return _report(
        report_service.overdue_returns,
        inventory_ids=_inventories(),
        days_overdue=request.args.get("days_overdue", default=0, type=int),
    )


@reports_bp.get("/most-rented")
@require_auth
@require_permission("VIEW_REPORTS")
def most_rented_report():
    return _report(
        report_service.most_rented,
        inventory_ids=_inventories(),
        limit=request.args.get("limit", default=report_service.DEFAULT_LIMIT, type=int),
        **_range(),
    )


@reports_bp.get("/most-sold")
@require_auth
@require_permission("VIEW_REPORTS")
def most_sold_report():
    return _report(
        report_service.most_sold,
        inventory_ids=_inventories(),
        limit=request.args.get("limit", default=report_service.DEFAULT_LIMIT, type=int),
        **_range(),
    )


@reports_bp.get("/rental-profits")
@require_auth
@require_permission("VIEW_REPORTS")
def rental_profits_report():
    return _report(
        report_service.rental_profits,
        inventory_ids=_inventories(),
        group_by=request.args.get("group_by", "month"),
        **_range(),
    )


@reports_bp.get("/tailoring-profits")
@require_auth
@require_permission("VIEW_REPORTS")
def tailoring_profits_report():
    return _report(
        report_service.tailoring_profits,
        inventory_ids=_inventories(),
        group_by=request.args.get("group_by", "month"),
        **_range(),
    )


@reports_bp.get("/factory-evaluations")
@require_auth
@require_permission("VIEW_REPORTS")
def factory_evaluations_report():
    return _report(
        report_service.factory_evaluations,
        factory_ids=accessible_entity_ids(g.current_user, ENTITY_FACTORY),
        **_range(),
    )


@reports_bp.get("/employee-orders")
@require_auth
@require_permission("VIEW_REPORTS")
def employee_orders_report():
    return _report(report_service.employee_orders, inventory_ids=_inventories(), **_range())


@reports_bp.get("/daily-cashbox")
@require_auth
@require_permission("VIEW_REPORTS")
def daily_cashbox_report():
    return _report(
        report_service.daily_cashbox,
        day=request.args.get("date"),
        branch_id=request.args.get("branch_id", type=int),
        branch_ids=_branches(),
    )


@reports_bp.get("/monthly-financial")
@require_auth
@require_permission("VIEW_REPORTS")
def monthly_financial_report():
    return _report(
        report_service.monthly_financial,
        year=request.args.get("year", type=int),
        month=request.args.get("month", type=int),
        inventory_ids=_inventories(),
        branch_ids=_branches(),
    )


@reports_bp.get("/expenses")
@require_auth
@require_permission("VIEW_REPORTS")
def expenses_report():
    return _report(
        report_service.expenses,
        branch_id=request.args.get("branch_id", type=int),
        branch_ids=_branches(),
        **_range(),
    )


@reports_bp.get("/deposits")
@require_auth
@require_permission("VIEW_REPORTS")
def deposits_report():
    return _report(report_service.deposits, inventory_ids=_inventories(), status=request.args.get("status"))


@reports_bp.get("/debts")
@require_auth
@require_permission("VIEW_REPORTS")
def debts_report():
    return _report(
        report_service.debts,
        inventory_ids=_inventories(),
        limit=request.args.get("limit", default=report_service.DEFAULT_LIMIT, type=int),
    )
