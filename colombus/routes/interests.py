from __future__ import annotations

from collections import OrderedDict

from flask import Blueprint, current_app, jsonify

from ..models import FormationInterest
from ..services import enrollment
from ..shared.constants import (
    INTEREST_APPROVED,
    INTEREST_CONVERTED,
    INTEREST_PENDING,
    INTEREST_REJECTED,
    INTEREST_WITHDRAWN,
    PRIORITIES,
)
from ..shared.errors import ValidationError
from ..shared.payload import optional_int, request_payload
from ..shared.rbac import login_required, rh_required
from ..shared.time import parse_iso_date

bp = Blueprint("interests", __name__, url_prefix="/api")

STATUS_COUNTERS = (INTEREST_PENDING, INTEREST_APPROVED, INTEREST_CONVERTED, INTEREST_WITHDRAWN)


def aggregate_by_formation(interests: list[FormationInterest]) -> list[dict]:
    """Per-formation status and priority counts for the RH overview.

    Priority counts skip rejected and withdrawn interests; formations left
    with nothing pending, approved or converted are dropped.
    """

    stats: "OrderedDict[int, dict]" = OrderedDict()
    for interest in interests:
        if interest.formation_id is None:
            continue
        entry = stats.setdefault(
            interest.formation_id,
            {
                "formation_id": interest.formation_id,
                **{status: 0 for status in STATUS_COUNTERS},
                **{f"{p.lower()}_count": 0 for p in PRIORITIES},
            },
        )
        if interest.status in STATUS_COUNTERS:
            entry[interest.status] += 1
        if interest.status not in (INTEREST_REJECTED, INTEREST_WITHDRAWN):
            key = f"{interest.priority.lower()}_count"
            if key in entry:
                entry[key] += 1
    return [
        entry
        for entry in stats.values()
        if entry[INTEREST_PENDING] or entry[INTEREST_APPROVED] or entry[INTEREST_CONVERTED]
    ]


@bp.get("/interests")
@login_required
def my_interests(current_user):
    interests = (
        FormationInterest.query.filter_by(user_id=current_user.id)
        .order_by(FormationInterest.expressed_at.desc(), FormationInterest.id.desc())
        .all()
    )
    return jsonify([i.to_dict() for i in interests])


@bp.post("/interests")
@login_required
def express_interest(current_user):
    payload = request_payload()
    formation_id = optional_int(payload, "formation_id")
    custom = None
    if formation_id is None:
        planned = payload.get("custom_planned_date")
        planned_date = parse_iso_date(planned)
        if planned and planned_date is None:
            raise ValidationError("custom_planned_date must be an ISO date.")
        custom = {
            "title": payload.get("custom_title"),
            "description": payload.get("custom_description"),
            "link": payload.get("custom_link"),
            "planned_date": planned_date,
        }
    interest = enrollment.express_interest(
        current_user,
        priority=payload.get("priority"),
        formation_id=formation_id,
        custom=custom,
    )
    current_app.logger.info(
        f"[INTEREST] created id={interest.id} user={current_user.id} priority={interest.priority}"
    )
    return jsonify({"ok": True, "interest": interest.to_dict()}), 201


@bp.patch("/interests/<int:interest_id>")
@login_required
def update_interest(interest_id: int, current_user):
    payload = request_payload()
    action = (payload.get("action") or "").strip().lower()
    if not action:
        raise ValidationError("action is required.")
    interest = enrollment.decide_interest(current_user, interest_id, action)
    return jsonify({"ok": True, "interest": interest.to_dict()})


@bp.delete("/interests/<int:interest_id>")
@login_required
def delete_interest(interest_id: int, current_user):
    enrollment.delete_interest(current_user, interest_id)
    return jsonify({"ok": True})


@bp.get("/admin/interests")
@rh_required
def admin_interests(current_user):
    interests = FormationInterest.query.order_by(FormationInterest.id).all()
    return jsonify(
        {
            "interests": [i.to_dict() for i in interests],
            "aggregated": aggregate_by_formation(interests),
        }
    )


@bp.delete("/admin/interests/<int:interest_id>")
@rh_required
def admin_delete_interest(interest_id: int, current_user):
    enrollment.delete_interest(current_user, interest_id, as_admin=True)
    current_app.logger.info(f"[INTEREST] admin delete id={interest_id} by={current_user.id}")
    return jsonify({"ok": True})
