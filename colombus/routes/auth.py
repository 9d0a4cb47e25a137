from __future__ import annotations

from flask import Blueprint, current_app, jsonify, session as flask_session
from sqlalchemy import func

from ..app import db
from ..models import User
from ..shared.passwords import hash_password, password_needs_upgrade
from ..shared.payload import request_payload
from ..shared.rbac import login_required

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@bp.post("/login")
def login():
    payload = request_payload()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    if not email or not password:
        return jsonify({"ok": False, "error": "ValidationError", "message": "Email and password required"}), 400

    user = User.query.filter(func.lower(User.email) == email).one_or_none()
    if not user or not user.check_password(password):
        current_app.logger.info(f"[AUTH-FAIL] email={email} reason=credentials")
        return jsonify({"ok": False, "error": "Unauthenticated", "message": "Invalid email or password"}), 401
    if user.archived:
        current_app.logger.info(f"[AUTH-FAIL] email={email} reason=archived")
        return jsonify({"ok": False, "error": "Forbidden", "message": "Account archived"}), 403

    if password_needs_upgrade(user.password_hash):
        user.password_hash = hash_password(password)
        db.session.commit()

    flask_session.clear()
    flask_session["user_id"] = user.id
    flask_session["user_email"] = user.email
    current_app.logger.info(f"[AUTH] login user={user.id}")
    return jsonify({"ok": True, "user": user.to_dict()})


@bp.post("/logout")
def logout():
    flask_session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
@login_required
def me(current_user):
    return jsonify({"ok": True, "user": current_user.to_dict()})
