"""
Care Audit Service
Audit template blueprint.

Endpoints:
    GET    /api/v1/audits/templates                        list active (organization_id, team_id, category)
    POST   /api/v1/audits/templates                        create
    GET    /api/v1/audits/templates/<id>                   detail
    PUT    /api/v1/audits/templates/<id>                   update
    POST   /api/v1/audits/templates/<id>/archive           soft delete
    GET    /api/v1/audits/templates/<id>/deletion-impact   run / plan counts
    DELETE /api/v1/audits/templates/<id>                   archive, or cascade with ?cascade=true
"""

import logging

from flask import Blueprint, jsonify, request

from careaudit.blueprints import current_user, json_body, ok, register_error_handlers
from careaudit.services import template_service

logger = logging.getLogger(__name__)

template_bp = Blueprint("audit_templates", __name__, url_prefix="/api/v1/audits")
register_error_handlers(template_bp)


@template_bp.route("/templates", methods=["GET"])
def list_templates():
    templates = template_service.list_active_templates(
        organization_id=request.args.get("organization_id"),
        team_id=request.args.get("team_id"),
        category=request.args.get("category"),
    )
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)})


@template_bp.route("/templates", methods=["POST"])
def create_template():
    data = json_body()
    user_id, _ = current_user(data)
    template = template_service.create_template(
        category=data.get("category"),
        name=data.get("name"),
        description=data.get("description", ""),
        items=data.get("items"),
        frequency=data.get("frequency"),
        organization_id=data.get("organization_id"),
        team_id=data.get("team_id"),
        created_by=user_id,
    )
    return ok(template.to_dict(), 201)


@template_bp.route("/templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(template_service.get_template(template_id).to_dict())


@template_bp.route("/templates/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    template = template_service.update_template(template_id, json_body())
    return ok(template.to_dict())


@template_bp.route("/templates/<int:template_id>/archive", methods=["POST"])
def archive_template(template_id):
    template = template_service.archive_template(template_id)
    return ok(template.to_dict())


@template_bp.route("/templates/<int:template_id>/deletion-impact", methods=["GET"])
def deletion_impact(template_id):
    return jsonify(template_service.deletion_impact(template_id))


@template_bp.route("/templates/<int:template_id>", methods=["DELETE"])
def delete_template(template_id):
    """Archive by default; ``?cascade=true`` removes runs and action plans too."""
    if request.args.get("cascade", "false").lower() == "true":
        result = template_service.delete_template_cascade(template_id)
        logger.info("Template %s cascade-deleted by %s", template_id, current_user()[0] or "unknown")
        return ok(result)
    template = template_service.archive_template(template_id)
    return ok({"template_id": template.id, "archived": True})
