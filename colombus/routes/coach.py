from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from ..app import coach_validation_only
from ..models import CoachAssignment, FormationInterest, Registration, User
from ..services import enrollment
from ..shared.lifecycle import APPROVE, REJECT
from ..shared.rbac import coach_required, login_required

bp = Blueprint("coach", __name__, url_prefix="/api/coach")


@bp.get("/overview")
@coach_required
def overview(current_user):
    assignments = CoachAssignment.query.filter_by(coach_id=current_user.id).all()
    coachee_ids = [a.coachee_id for a in assignments]
    coachees = (
        User.query.filter(User.id.in_(coachee_ids), User.archived.is_(False))
        .order_by(User.name)
        .all()
        if coachee_ids
        else []
    )
    interests = (
        FormationInterest.query.filter(FormationInterest.user_id.in_(coachee_ids))
        .order_by(FormationInterest.expressed_at.desc())
        .all()
        if coachee_ids
        else []
    )
    registrations = (
        Registration.query.filter(Registration.user_id.in_(coachee_ids))
        .order_by(Registration.registered_at.desc())
        .all()
        if coachee_ids
        else []
    )
    return jsonify(
        {
            "assignments": [a.to_dict() for a in assignments],
            "coachees": [u.to_dict() for u in coachees],
            "interests": [i.to_dict() for i in interests],
            "registrations": [r.to_dict() for r in registrations],
            "settings": {"coach_validation_only": coach_validation_only()},
        }
    )


@bp.post("/interests/<int:interest_id>/approve")
@login_required
def approve_interest(interest_id: int, current_user):
    interest = enrollment.decide_interest(current_user, interest_id, APPROVE)
    current_app.logger.info(
        f"[COACH] approve interest={interest_id} coach={current_user.id} status={interest.status}"
    )
    return jsonify({"ok": True, "interest": interest.to_dict()})


@bp.post("/interests/<int:interest_id>/reject")
@login_required
def reject_interest(interest_id: int, current_user):
    interest = enrollment.decide_interest(current_user, interest_id, REJECT)
    current_app.logger.info(f"[COACH] reject interest={interest_id} coach={current_user.id}")
    return jsonify({"ok": True, "interest": interest.to_dict()})
