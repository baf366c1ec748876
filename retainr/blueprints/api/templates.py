from flask import jsonify, request
from flask_login import current_user, login_required

from . import bp
from retainr.extensions import db
from retainr.models import EmailTemplate
from retainr.models.email_template import TEMPLATE_TYPES
from retainr.services.dunning import enable_exclusively
from retainr.utils.validators import clean_str


def _validated(data, *, partial: bool):
    """Return (fields, errors) for a create/update payload."""
    fields, errors = {}, []

    if "type" in data or not partial:
        t = (data.get("type") or "").strip()
        if t not in TEMPLATE_TYPES:
            errors.append(f"type must be one of {', '.join(TEMPLATE_TYPES)}")
        fields["type"] = t
    if "subject" in data or not partial:
        subject = clean_str(data.get("subject"), 200)
        if not subject:
            errors.append("subject is required")
        fields["subject"] = subject
    if "body" in data or not partial:
        body = (data.get("body") or "").strip()
        if not body:
            errors.append("body is required")
        fields["body"] = body
    if "is_enabled" in data:
        fields["is_enabled"] = bool(data.get("is_enabled"))
    return fields, errors


@bp.get("/templates")
@login_required
def list_templates():
    rows = EmailTemplate.query.filter_by(user_id=current_user.id).order_by(EmailTemplate.type, EmailTemplate.id).all()
    return jsonify([r.to_dict() for r in rows]), 200


@bp.post("/templates")
@login_required
def create_template():
    fields, errors = _validated(request.get_json(silent=True) or {}, partial=False)
    if errors:
        return jsonify({"error": "validation_failed", "errors": errors}), 400

    enabled = fields.pop("is_enabled", True)
    template = EmailTemplate(user_id=current_user.id, is_enabled=False, **fields)
    db.session.add(template)
    db.session.flush()
    if enabled:
        enable_exclusively(template)
    db.session.commit()
    return jsonify(template.to_dict()), 201


@bp.put("/templates/<int:template_id>")
@login_required
def update_template(template_id: int):
    template = EmailTemplate.query.filter_by(id=template_id, user_id=current_user.id).first()
    if template is None:
        return jsonify({"error": "not_found"}), 404

    fields, errors = _validated(request.get_json(silent=True) or {}, partial=True)
    if errors:
        return jsonify({"error": "validation_failed", "errors": errors}), 400

    enabled = fields.pop("is_enabled", None)
    for key, value in fields.items():
        setattr(template, key, value)
    db.session.flush()
    if enabled is True or (enabled is None and template.is_enabled):
        enable_exclusively(template)
    elif enabled is False:
        template.is_enabled = False
    db.session.commit()
    return jsonify(template.to_dict()), 200
