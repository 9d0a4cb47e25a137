from functools import wraps

from flask import jsonify, session

from ..app import db
from ..models import User
from .acl import is_coach, is_rh


def _current_user():
    user_id = session.get("user_id")
    if not user_id:
        return None
    user = db.session.get(User, user_id)
    if not user or user.archived:
        return None
    return user


def _unauthenticated():
    return jsonify({"ok": False, "error": "Unauthenticated", "message": "Authentication required"}), 401


def _forbidden():
    return jsonify({"ok": False, "error": "Forbidden", "message": "Unauthorized"}), 403


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = _current_user()
        if not user:
            return _unauthenticated()
        return fn(*args, **kwargs, current_user=user)

    return wrapper


def rh_required(fn):
    """Allow RH users only."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = _current_user()
        if not user:
            return _unauthenticated()
        if not is_rh(user):
            return _forbidden()
        return fn(*args, **kwargs, current_user=user)

    return wrapper


def coach_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = _current_user()
        if not user:
            return _unauthenticated()
        if not (is_coach(user) or is_rh(user)):
            return _forbidden()
        return fn(*args, **kwargs, current_user=user)

    return wrapper
