"""
Care Audit Service
Action plan blueprint — remediation tasks raised against audit runs.

Endpoints:
    POST   /api/v1/audits/action-plans                       create (caller is the creator)
    GET    /api/v1/audits/action-plans/assigned              caller's plans (status, organization_id)
    GET    /api/v1/audits/action-plans/created               plans the caller raised (status)
    GET    /api/v1/audits/action-plans/unread-count
    POST   /api/v1/audits/action-plans/viewed                mark all of the caller's plans viewed
    GET    /api/v1/audits/action-plans/<id>                  detail with status history
    PUT    /api/v1/audits/action-plans/<id>                  update details
    POST   /api/v1/audits/action-plans/<id>/transition       {status, comment}
    POST   /api/v1/audits/action-plans/<id>/viewed
    DELETE /api/v1/audits/action-plans/<id>

    GET    /api/v1/audits/runs/<id>/action-plans
    GET    /api/v1/audits/templates/<id>/action-plans
"""

import logging

from flask import Blueprint, jsonify, request

from careaudit.blueprints import current_user, json_body, ok, register_error_handlers
from careaudit.core.exceptions import ValidationError
from careaudit.services import action_plan_service

logger = logging.getLogger(__name__)

action_plan_bp = Blueprint("action_plans", __name__, url_prefix="/api/v1/audits")
register_error_handlers(action_plan_bp)


def _require_user(data=None):
    user_id, name = current_user(data)
    if not user_id:
        raise ValidationError("Caller identity is required (X-User-Email)", details={"user": "required"})
    return user_id, name


def _plan_list(plans):
    return jsonify({"items": [p.to_dict(include_history=False) for p in plans], "total": len(plans)})


@action_plan_bp.route("/action-plans", methods=["POST"])
def create_action_plan():
    data = json_body()
    user_id, user_name = current_user(data)
    plan = action_plan_service.create_action_plan(
        run_id=data.get("run_id"),
        template_id=data.get("template_id"),
        item_id=data.get("item_id"),
        description=data.get("description"),
        assigned_to=data.get("assigned_to"),
        assigned_to_name=data.get("assigned_to_name", ""),
        priority=data.get("priority", "Medium"),
        due_date=data.get("due_date"),
        created_by=user_id,
        created_by_name=user_name,
        team_id=data.get("team_id"),
        resident_id=data.get("resident_id"),
    )
    return ok(plan.to_dict(), 201)


@action_plan_bp.route("/action-plans/assigned", methods=["GET"])
def list_assigned():
    user_id, _ = _require_user()
    plans = action_plan_service.list_for_assignee(
        user_id,
        organization_id=request.args.get("organization_id"),
        status=request.args.get("status"),
    )
    return _plan_list(plans)


@action_plan_bp.route("/action-plans/created", methods=["GET"])
def list_created():
    user_id, _ = _require_user()
    return _plan_list(action_plan_service.list_created_by(user_id, status=request.args.get("status")))


@action_plan_bp.route("/action-plans/unread-count", methods=["GET"])
def unread_count():
    user_id, _ = _require_user()
    return jsonify({"unread_count": action_plan_service.count_unread(user_id)})


@action_plan_bp.route("/action-plans/viewed", methods=["POST"])
def mark_all_viewed():
    user_id, _ = _require_user(json_body())
    return ok({"marked_viewed": action_plan_service.mark_all_viewed(user_id)})


@action_plan_bp.route("/action-plans/<int:plan_id>", methods=["GET"])
def get_action_plan(plan_id):
    return jsonify(action_plan_service.get_plan_detail(plan_id))


@action_plan_bp.route("/action-plans/<int:plan_id>", methods=["PUT"])
def update_action_plan(plan_id):
    plan = action_plan_service.update_action_plan(plan_id, json_body())
    return ok(plan.to_dict())


@action_plan_bp.route("/action-plans/<int:plan_id>/transition", methods=["POST"])
def transition_action_plan(plan_id):
    data = json_body()
    user_id, user_name = current_user(data)
    plan = action_plan_service.transition_action_plan(
        plan_id,
        data.get("status"),
        comment=data.get("comment"),
        updated_by=user_id,
        updated_by_name=user_name,
    )
    return ok(plan.to_dict())


@action_plan_bp.route("/action-plans/<int:plan_id>/viewed", methods=["POST"])
def mark_viewed(plan_id):
    return ok(action_plan_service.mark_viewed(plan_id).to_dict())


@action_plan_bp.route("/action-plans/<int:plan_id>", methods=["DELETE"])
def delete_action_plan(plan_id):
    action_plan_service.delete_action_plan(plan_id)
    return ok({"deleted": plan_id})


@action_plan_bp.route("/runs/<int:run_id>/action-plans", methods=["GET"])
def list_for_run(run_id):
    return _plan_list(action_plan_service.list_for_run(run_id))


@action_plan_bp.route("/templates/<int:template_id>/action-plans", methods=["GET"])
def list_for_template(template_id):
    return _plan_list(action_plan_service.list_for_template(template_id))
