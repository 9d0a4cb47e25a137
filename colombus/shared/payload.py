from __future__ import annotations

from flask import request

from .errors import ValidationError


def request_payload() -> dict:
    """JSON body when present, form data otherwise."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = request.form.to_dict()
    return payload


def require_int(payload: dict, key: str) -> int:
    raw = payload.get(key)
    if raw is None or raw == "":
        raise ValidationError(f"{key} is required.")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer.")


def optional_int(payload: dict, key: str) -> int | None:
    if payload.get(key) in (None, ""):
        return None
    return require_int(payload, key)


def require_bool(value, key: str = "value") -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise ValidationError(f"{key} must be true or false.")
