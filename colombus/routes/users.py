from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func

from ..app import coach_validation_only, db, set_setting
from ..models import AuditLog, CoachAssignment, User
from ..services.archival import archive_user, delete_user, unarchive_user
from ..shared.acl import apply_roles, is_coach, normalize_roles
from ..shared.constants import COACH_VALIDATION_ONLY_KEY, SENIORITY_LEVELS
from ..shared.errors import NotFound, ValidationError
from ..shared.passwords import MIN_PASSWORD_LENGTH
from ..shared.payload import request_payload, require_bool, require_int
from ..shared.rbac import rh_required

bp = Blueprint("users", __name__, url_prefix="/api")


def _role_list(payload: dict) -> list[str]:
    roles = payload.get("roles")
    if isinstance(roles, str):
        roles = [r.strip() for r in roles.split(",") if r.strip()]
    if not isinstance(roles, list):
        raise ValidationError("roles must be a list.")
    return normalize_roles(roles)


@bp.get("/users")
@rh_required
def list_users(current_user):
    query = User.query
    archived = request.args.get("archived")
    if archived in ("true", "false"):
        query = query.filter(User.archived.is_(archived == "true"))
    users = query.order_by(func.lower(User.name).nullslast(), User.email).all()
    return jsonify([u.to_dict() for u in users])


@bp.post("/users")
@rh_required
def create_user(current_user):
    payload = request_payload()
    email = (payload.get("email") or "").strip().lower()
    name = (payload.get("name") or "").strip()
    password = payload.get("password") or ""
    if not email or not name:
        raise ValidationError("email and name are required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters.")
    seniority = payload.get("seniority") or None
    if seniority is not None and seniority not in SENIORITY_LEVELS:
        raise ValidationError(f"seniority must be one of {', '.join(SENIORITY_LEVELS)}.")
    if User.query.filter(func.lower(User.email) == email).first():
        raise ValidationError("An account already exists with this email.")
    user = User(
        email=email,
        name=name,
        seniority=seniority,
        business_unit=payload.get("business_unit"),
    )
    apply_roles(user, _role_list(payload))
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    db.session.add(
        AuditLog(
            user_id=current_user.id,
            target_user_id=user.id,
            action="user_create",
            details=f"email={user.email} roles={','.join(user.roles)}",
        )
    )
    db.session.commit()
    current_app.logger.info(f"[USERS] created user={user.id} by={current_user.id}")
    return jsonify({"ok": True, "user": user.to_dict()}), 201


@bp.patch("/admin/users/<int:user_id>")
@rh_required
def update_roles(user_id: int, current_user):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    roles = _role_list(request_payload())
    before = ",".join(user.roles)
    apply_roles(user, roles)
    if not is_coach(user):
        CoachAssignment.query.filter_by(coach_id=user.id).delete(synchronize_session=False)
    db.session.add(
        AuditLog(
            user_id=current_user.id,
            target_user_id=user.id,
            action="user_roles",
            details=f"roles={before}->{','.join(user.roles)}",
        )
    )
    db.session.commit()
    return jsonify({"ok": True, "user": user.to_dict()})


@bp.patch("/users/<int:user_id>/archive")
@rh_required
def archive(user_id: int, current_user):
    result = archive_user(current_user, user_id)
    current_app.logger.info(
        f"[ARCHIVE] user={user_id} by={current_user.id}"
        f" withdrawn={result.withdrawn_interests} cancelled={result.cancelled_registrations}"
    )
    return jsonify(
        {
            "ok": True,
            "user": result.user.to_dict(),
            "withdrawn_interests": result.withdrawn_interests,
            "cancelled_registrations": result.cancelled_registrations,
            "removed_assignments": result.removed_assignments,
        }
    )


@bp.patch("/users/<int:user_id>/unarchive")
@rh_required
def unarchive(user_id: int, current_user):
    user = unarchive_user(current_user, user_id)
    return jsonify({"ok": True, "user": user.to_dict()})


@bp.delete("/users/<int:user_id>")
@rh_required
def delete(user_id: int, current_user):
    delete_user(current_user, user_id)
    current_app.logger.info(f"[ARCHIVE] delete user={user_id} by={current_user.id}")
    return jsonify({"ok": True})


@bp.get("/admin/coach-assignments")
@rh_required
def list_assignments(current_user):
    assignments = CoachAssignment.query.order_by(CoachAssignment.id).all()
    return jsonify([a.to_dict() for a in assignments])


@bp.post("/admin/coach-assignments")
@rh_required
def create_assignment(current_user):
    payload = request_payload()
    coach_id = require_int(payload, "coach_id")
    coachee_id = require_int(payload, "coachee_id")
    if coach_id == coachee_id:
        raise ValidationError("A user cannot coach themselves.")
    coach = db.session.get(User, coach_id)
    coachee = db.session.get(User, coachee_id)
    if not coach or not coachee:
        raise NotFound("User not found.")
    if coach.archived or coachee.archived:
        raise ValidationError("Archived users cannot be assigned.")
    if not is_coach(coach):
        raise ValidationError("The selected user does not have the coach role.")
    if CoachAssignment.query.filter_by(coach_id=coach_id, coachee_id=coachee_id).first():
        raise ValidationError("This coach is already assigned to this user.")
    assignment = CoachAssignment(coach_id=coach_id, coachee_id=coachee_id)
    db.session.add(assignment)
    db.session.add(
        AuditLog(
            user_id=current_user.id,
            target_user_id=coachee_id,
            action="coach_assign",
            details=f"coach_id={coach_id}",
        )
    )
    db.session.commit()
    return jsonify({"ok": True, "assignment": assignment.to_dict()}), 201


@bp.delete("/admin/coach-assignments/<int:assignment_id>")
@rh_required
def delete_assignment(assignment_id: int, current_user):
    assignment = db.session.get(CoachAssignment, assignment_id)
    if not assignment:
        raise NotFound("Assignment not found.")
    db.session.delete(assignment)
    db.session.commit()
    return jsonify({"ok": True})


@bp.get("/admin/settings/coach-validation")
@rh_required
def get_coach_validation(current_user):
    return jsonify({"coach_validation_only": coach_validation_only()})


@bp.patch("/admin/settings/coach-validation")
@rh_required
def update_coach_validation(current_user):
    payload = request_payload()
    value = require_bool(payload.get("coach_validation_only"), "coach_validation_only")
    set_setting(COACH_VALIDATION_ONLY_KEY, "true" if value else "false")
    db.session.add(
        AuditLog(
            user_id=current_user.id,
            action="settings_coach_validation",
            details=f"coach_validation_only={value}",
        )
    )
    db.session.commit()
    current_app.logger.info(f"[SETTINGS] coach_validation_only={value} by={current_user.id}")
    return jsonify({"ok": True, "coach_validation_only": value})
