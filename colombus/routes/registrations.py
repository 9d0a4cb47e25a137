from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..models import Registration
from ..services import enrollment
from ..shared.errors import ValidationError
from ..shared.payload import request_payload, require_int
from ..shared.rbac import login_required, rh_required

bp = Blueprint("registrations", __name__, url_prefix="/api")


@bp.get("/registrations")
@login_required
def my_registrations(current_user):
    query = Registration.query.filter_by(user_id=current_user.id)
    session_id = request.args.get("session_id", type=int)
    if session_id:
        query = query.filter_by(session_id=session_id)
    registrations = query.order_by(Registration.registered_at.desc(), Registration.id.desc()).all()
    return jsonify([r.to_dict() for r in registrations])


@bp.post("/registrations")
@login_required
def create_registration(current_user):
    payload = request_payload()
    session_id = require_int(payload, "session_id")
    registration = enrollment.create_registration(
        current_user, session_id, priority=payload.get("priority")
    )
    current_app.logger.info(
        f"[REGISTRATION] created id={registration.id} user={current_user.id}"
        f" session={session_id} status={registration.status}"
    )
    return jsonify({"ok": True, "registration": registration.to_dict()}), 201


@bp.patch("/registrations/<int:registration_id>")
@login_required
def update_registration(registration_id: int, current_user):
    payload = request_payload()
    action = (payload.get("action") or "").strip().lower()
    if not action:
        raise ValidationError("action is required.")
    registration = enrollment.decide_registration(current_user, registration_id, action)
    return jsonify({"ok": True, "registration": registration.to_dict()})


@bp.delete("/registrations/<int:registration_id>")
@login_required
def delete_registration(registration_id: int, current_user):
    enrollment.delete_registration(current_user, registration_id)
    return jsonify({"ok": True})


@bp.get("/admin/registrations")
@rh_required
def admin_registrations(current_user):
    query = Registration.query
    status = request.args.get("status")
    if status:
        query = query.filter_by(status=status)
    session_id = request.args.get("session_id", type=int)
    if session_id:
        query = query.filter_by(session_id=session_id)
    registrations = query.order_by(Registration.id).all()
    return jsonify([r.to_dict() for r in registrations])
