"""
Care Audit Service
Audit run blueprint — drafts, autosave, completion, history, resident items.

Endpoints:
    POST   /api/v1/audits/templates/<id>/runs/draft    find-or-create the open run
    GET    /api/v1/audits/templates/<id>/runs          ?state=open|completed (team_id, resident_id, limit)
    GET    /api/v1/audits/templates/<id>/runs/latest   most recent completed run
    GET    /api/v1/audits/runs/<id>
    PUT    /api/v1/audits/runs/<id>                    autosave items / status
    POST   /api/v1/audits/runs/<id>/complete
    DELETE /api/v1/audits/runs/<id>                    drafts only

    GET    /api/v1/audits/residents/<rid>/items
    PUT    /api/v1/audits/residents/<rid>/items        upsert one item row
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from careaudit.blueprints import current_user, json_body, ok, register_error_handlers
from careaudit.core.exceptions import ValidationError
from careaudit.services import audit_run_service, resident_audit_item_service

logger = logging.getLogger(__name__)

run_bp = Blueprint("audit_runs", __name__, url_prefix="/api/v1/audits")
register_error_handlers(run_bp)


@run_bp.route("/templates/<int:template_id>/runs/draft", methods=["POST"])
def get_or_create_draft(template_id):
    data = json_body()
    user_id, _ = current_user(data)
    run = audit_run_service.get_or_create_draft(
        template_id,
        audited_by=user_id,
        team_id=data.get("team_id"),
        resident_id=data.get("resident_id"),
        resident_name=data.get("resident_name"),
    )
    return ok(run.to_dict())


@run_bp.route("/templates/<int:template_id>/runs", methods=["GET"])
def list_runs(template_id):
    state = request.args.get("state", "open")
    team_id = request.args.get("team_id")
    resident_id = request.args.get("resident_id")
    if state == "open":
        runs = audit_run_service.list_open_runs(template_id, team_id=team_id, resident_id=resident_id)
    elif state == "completed":
        limit = request.args.get("limit", current_app.config["AUDIT_COMPLETED_HISTORY_LIMIT"], type=int)
        runs = audit_run_service.list_completed_runs(
            template_id, team_id=team_id, resident_id=resident_id, limit=limit,
        )
    else:
        raise ValidationError(f"Invalid state filter: {state}", details={"state": "open or completed"})
    return jsonify({"items": [r.to_dict() for r in runs], "total": len(runs)})


@run_bp.route("/templates/<int:template_id>/runs/latest", methods=["GET"])
def latest_run(template_id):
    run = audit_run_service.latest_completed_run(
        template_id,
        team_id=request.args.get("team_id"),
        resident_id=request.args.get("resident_id"),
    )
    return jsonify(run.to_dict() if run else None)


@run_bp.route("/runs/<int:run_id>", methods=["GET"])
def get_run(run_id):
    return jsonify(audit_run_service.get_run(run_id).to_dict())


@run_bp.route("/runs/<int:run_id>", methods=["PUT"])
def update_run(run_id):
    data = json_body()
    run = audit_run_service.update_run(
        run_id,
        items=data.get("items"),
        status=data.get("status", "draft"),
        overall_notes=data.get("overall_notes"),
    )
    return ok(run.to_dict())


@run_bp.route("/runs/<int:run_id>/complete", methods=["POST"])
def complete_run(run_id):
    data = json_body()
    user_id, _ = current_user(data)
    run = audit_run_service.complete_run(
        run_id,
        items=data.get("items"),
        overall_notes=data.get("overall_notes"),
        audited_by=user_id or None,
    )
    return ok(run.to_dict())


@run_bp.route("/runs/<int:run_id>", methods=["DELETE"])
def delete_run(run_id):
    audit_run_service.delete_run(run_id)
    return ok({"deleted": run_id})


# ── Resident audit items ─────────────────────────────────────────────────

@run_bp.route("/residents/<resident_id>/items", methods=["GET"])
def list_resident_items(resident_id):
    items = resident_audit_item_service.list_for_resident(resident_id)
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@run_bp.route("/residents/<resident_id>/items", methods=["PUT"])
def upsert_resident_item(resident_id):
    data = json_body()
    user_id, user_name = current_user(data)
    item = resident_audit_item_service.upsert_item(
        resident_id=resident_id,
        item_name=data.get("item_name"),
        status=data.get("status"),
        team_id=data.get("team_id"),
        organization_id=data.get("organization_id"),
        auditor_name=data.get("auditor_name") or user_name or user_id or None,
        last_audited_date=data.get("last_audited_date"),
        due_date=data.get("due_date"),
    )
    return ok(item.to_dict())
