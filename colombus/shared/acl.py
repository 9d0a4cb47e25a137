from __future__ import annotations

from typing import Any, Protocol

from ..app import db, coach_validation_only
from ..models import CoachAssignment, User
from .constants import COACH, IMPLIED_ROLES, RH, ROLE_ATTRS
from .errors import ValidationError
from .lifecycle import ActorContext


def is_rh(user: Any) -> bool:
    return bool(user and user.has_role(RH))


def is_coach(user: Any) -> bool:
    return bool(user and user.has_role(COACH))


class AccessPolicy(Protocol):
    """Capability checks the lifecycle engine relies on."""

    def is_rh(self, actor: Any) -> bool: ...

    def is_coach_of(self, coach_id: int, coachee_id: int) -> bool: ...

    def coach_of(self, user_id: int) -> int | None: ...

    def owns(self, actor: Any, record: Any) -> bool: ...

    def coach_validation_only(self) -> bool: ...


class DbAccessPolicy:
    """AccessPolicy backed by the role flags and ``coach_assignments``."""

    def is_rh(self, actor: Any) -> bool:
        return is_rh(actor)

    def is_coach_of(self, coach_id: int, coachee_id: int) -> bool:
        if coach_id is None or coachee_id is None or coach_id == coachee_id:
            return False
        return (
            db.session.query(CoachAssignment.id)
            .filter_by(coach_id=coach_id, coachee_id=coachee_id)
            .first()
            is not None
        )

    def coach_of(self, user_id: int) -> int | None:
        row = (
            db.session.query(CoachAssignment.coach_id)
            .join(User, User.id == CoachAssignment.coach_id)
            .filter(CoachAssignment.coachee_id == user_id, User.archived.is_(False))
            .order_by(CoachAssignment.created_at, CoachAssignment.id)
            .first()
        )
        return row[0] if row else None

    def owns(self, actor: Any, record: Any) -> bool:
        return bool(
            actor is not None
            and record is not None
            and getattr(actor, "id", None) == getattr(record, "user_id", None)
        )

    def coach_validation_only(self) -> bool:
        return coach_validation_only()


def actor_context(policy: AccessPolicy, actor: Any, record: Any) -> ActorContext:
    """Evaluate every capability of ``actor`` over ``record`` at once."""

    return ActorContext(
        is_rh=policy.is_rh(actor),
        is_owner=policy.owns(actor, record),
        is_coach_of_owner=policy.is_coach_of(
            getattr(actor, "id", None), getattr(record, "user_id", None)
        ),
        coach_validation_only=policy.coach_validation_only(),
    )


def normalize_roles(role_names: list[str]) -> list[str]:
    """Validate role names and add the roles they imply."""

    unknown = [r for r in role_names if r not in ROLE_ATTRS]
    if unknown:
        raise ValidationError(f"Unknown role(s): {', '.join(unknown)}")
    roles = list(dict.fromkeys(role_names))
    for role in list(roles):
        for implied in IMPLIED_ROLES.get(role, []):
            if implied not in roles:
                roles.append(implied)
    if not roles:
        raise ValidationError("At least one role is required.")
    return roles


def apply_roles(user: User, role_names: list[str]) -> None:
    for name, attr in ROLE_ATTRS.items():
        setattr(user, attr, name in role_names)
