"""
Care Audit Service
Dashboard blueprint — read-only due-date and overdue views.

Endpoints:
    GET /api/v1/audits/dashboard/overdue-action-plans    team_id, organization_id, category
    GET /api/v1/audits/dashboard/action-plan-stats       team_id, organization_id, category
    GET /api/v1/audits/dashboard/latest-runs             organization_id, category, team_id
    GET /api/v1/audits/dashboard/overdue-runs            organization_id, category, team_id
    GET /api/v1/audits/dashboard/upcoming-runs           organization_id, category, team_id, window_days
    GET /api/v1/audits/dashboard/residents/<rid>/overdue-items
"""

from flask import Blueprint, current_app, jsonify, request

from careaudit.blueprints import register_error_handlers
from careaudit.services import audit_run_service, due_dates

dashboard_bp = Blueprint("audit_dashboard", __name__, url_prefix="/api/v1/audits/dashboard")
register_error_handlers(dashboard_bp)


def _run_scope():
    return {
        "category": request.args.get("category"),
        "team_id": request.args.get("team_id"),
    }


@dashboard_bp.route("/overdue-action-plans", methods=["GET"])
def overdue_action_plans():
    plans = due_dates.overdue_action_plans(
        request.args.get("team_id"),
        category=request.args.get("category"),
        organization_id=request.args.get("organization_id"),
    )
    return jsonify({"items": [p.to_dict(include_history=False) for p in plans], "total": len(plans)})


@dashboard_bp.route("/action-plan-stats", methods=["GET"])
def action_plan_stats():
    return jsonify(due_dates.action_plan_stats(
        request.args.get("team_id"),
        category=request.args.get("category"),
        organization_id=request.args.get("organization_id"),
    ))


@dashboard_bp.route("/latest-runs", methods=["GET"])
def latest_runs():
    runs = audit_run_service.latest_completed_per_template(
        request.args.get("organization_id"), **_run_scope(),
    )
    return jsonify({"items": [r.to_dict() for r in runs], "total": len(runs)})


@dashboard_bp.route("/overdue-runs", methods=["GET"])
def overdue_runs():
    runs = due_dates.overdue_runs(request.args.get("organization_id"), **_run_scope())
    return jsonify({"items": [r.to_dict() for r in runs], "total": len(runs)})


@dashboard_bp.route("/upcoming-runs", methods=["GET"])
def upcoming_runs():
    window = request.args.get("window_days", current_app.config["AUDIT_UPCOMING_WINDOW_DAYS"], type=int)
    runs = due_dates.upcoming_runs(
        request.args.get("organization_id"), window_days=window, **_run_scope(),
    )
    return jsonify({"items": [r.to_dict() for r in runs], "total": len(runs), "window_days": window})


@dashboard_bp.route("/residents/<resident_id>/overdue-items", methods=["GET"])
def resident_overdue_items(resident_id):
    return jsonify({
        "resident_id": resident_id,
        "overdue_count": due_dates.item_overdue_count(resident_id),
    })
