from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..app import db
from ..models import Formation, Registration, Session
from ..shared.constants import MODALITIES, REGISTRATION_ACTIVE, SESSION_CLOSED_STATUSES
from ..shared.errors import NotFound, ValidationError
from ..shared.payload import request_payload, require_int
from ..shared.rbac import login_required, rh_required
from ..shared.time import now_utc, parse_iso_datetime

bp = Blueprint("catalog", __name__, url_prefix="/api")


def _enrolled_counts(session_ids: list[int]) -> dict[int, int]:
    if not session_ids:
        return {}
    rows = (
        db.session.query(Registration.session_id, db.func.count(Registration.id))
        .filter(
            Registration.session_id.in_(session_ids),
            Registration.status.in_(REGISTRATION_ACTIVE),
        )
        .group_by(Registration.session_id)
        .all()
    )
    return {session_id: count for session_id, count in rows}


def _naive_utc(value):
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(now_utc().tzinfo).replace(tzinfo=None)
    return value


@bp.get("/formations")
@login_required
def list_formations(current_user):
    query = Formation.query
    if request.args.get("active") != "false":
        query = query.filter(Formation.active.is_(True))
    formations = query.order_by(Formation.title).all()
    return jsonify([f.to_dict() for f in formations])


@bp.get("/formations/<int:formation_id>")
@login_required
def get_formation(formation_id: int, current_user):
    formation = db.session.get(Formation, formation_id)
    if not formation:
        raise NotFound("Formation not found.")
    return jsonify(formation.to_dict())


@bp.post("/formations")
@rh_required
def create_formation(current_user):
    payload = request_payload()
    title = (payload.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required.")
    modality = payload.get("modality") or None
    if modality is not None and modality not in MODALITIES:
        raise ValidationError(f"modality must be one of {', '.join(MODALITIES)}.")
    formation = Formation(
        title=title,
        description=payload.get("description") or "",
        objectives=payload.get("objectives"),
        prerequisites=payload.get("prerequisites"),
        duration=payload.get("duration"),
        modality=modality,
        seniority_required=payload.get("seniority_required"),
        theme=payload.get("theme"),
        active=bool(payload.get("active", True)),
    )
    db.session.add(formation)
    db.session.commit()
    current_app.logger.info(f"[CATALOG] formation={formation.id} created by={current_user.id}")
    return jsonify(formation.to_dict()), 201


@bp.get("/sessions")
@login_required
def list_sessions(current_user):
    query = Session.query
    formation_id = request.args.get("formation_id", type=int)
    if formation_id:
        query = query.filter(Session.formation_id == formation_id)
    if request.args.get("upcoming") == "true":
        query = query.filter(
            Session.start_date >= _naive_utc(now_utc()),
            Session.status.notin_(SESSION_CLOSED_STATUSES),
        )
    sessions = query.order_by(Session.start_date).all()
    counts = _enrolled_counts([s.id for s in sessions])
    return jsonify([s.to_dict(enrolled=counts.get(s.id, 0)) for s in sessions])


@bp.get("/sessions/<int:session_id>")
@login_required
def get_session(session_id: int, current_user):
    sess = db.session.get(Session, session_id)
    if not sess:
        raise NotFound("Session not found.")
    return jsonify(sess.to_dict(enrolled=sess.active_registration_count()))


@bp.post("/sessions")
@rh_required
def create_session(current_user):
    payload = request_payload()
    formation_id = require_int(payload, "formation_id")
    if not db.session.get(Formation, formation_id):
        raise NotFound("Formation not found.")
    capacity = require_int(payload, "capacity")
    if capacity < 1:
        raise ValidationError("capacity must be at least 1.")
    start = _naive_utc(parse_iso_datetime(payload.get("start_date")))
    end = _naive_utc(parse_iso_datetime(payload.get("end_date")))
    if start is None or end is None:
        raise ValidationError("start_date and end_date must be ISO datetimes.")
    if end < start:
        raise ValidationError("end_date cannot be before start_date.")
    sess = Session(
        formation_id=formation_id,
        start_date=start,
        end_date=end,
        location=payload.get("location"),
        capacity=capacity,
    )
    db.session.add(sess)
    db.session.commit()
    current_app.logger.info(f"[CATALOG] session={sess.id} formation={formation_id} created by={current_user.id}")
    return jsonify(sess.to_dict(enrolled=0)), 201
