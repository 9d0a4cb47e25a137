from __future__ import annotations

from sqlalchemy.orm import validates

from ..app import db
from ..shared.passwords import hash_password, check_password
from ..shared.time import iso_or_none
from ..shared.constants import (
    INTEREST_ACTIVE,
    REGISTRATION_ACTIVE,
    ROLE_ATTRS,
    SESSION_OPEN,
)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255))
    name = db.Column(db.String(255))
    seniority = db.Column(db.String(16))
    business_unit = db.Column(db.String(255))
    is_consultant = db.Column(db.Boolean, nullable=False, default=False)
    is_rh = db.Column(db.Boolean, nullable=False, default=False)
    is_coach = db.Column(db.Boolean, nullable=False, default=False)
    is_formateur = db.Column(db.Boolean, nullable=False, default=False)
    is_formateur_externe = db.Column(db.Boolean, nullable=False, default=False)
    is_manager = db.Column(db.Boolean, nullable=False, default=False)
    p1_used = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    p2_used = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    archived = db.Column(
        db.Boolean, nullable=False, default=False, server_default=db.text("false")
    )
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    __table_args__ = (
        db.Index("ix_users_email_lower", db.func.lower(email), unique=True),
        db.CheckConstraint("p1_used >= 0 AND p1_used <= 1", name="ck_users_p1_used"),
        db.CheckConstraint("p2_used >= 0 AND p2_used <= 1", name="ck_users_p2_used"),
    )

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return value.lower()

    def set_password(self, plain: str) -> None:
        self.password_hash = hash_password(plain)

    def check_password(self, plain: str) -> bool:
        if not self.password_hash:
            return False
        return check_password(plain, self.password_hash)

    def has_role(self, role: str) -> bool:
        attr = ROLE_ATTRS.get(role)
        return bool(attr and getattr(self, attr, False))

    @property
    def roles(self) -> list[str]:
        return [name for name, attr in ROLE_ATTRS.items() if getattr(self, attr, False)]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "roles": self.roles,
            "seniority": self.seniority,
            "business_unit": self.business_unit,
            "p1_used": self.p1_used,
            "p2_used": self.p2_used,
            "archived": bool(self.archived),
        }


class Formation(db.Model):
    __tablename__ = "formations"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    objectives = db.Column(db.Text)
    prerequisites = db.Column(db.Text)
    duration = db.Column(db.String(64))
    modality = db.Column(db.String(16))
    seniority_required = db.Column(db.String(16))
    theme = db.Column(db.String(255))
    active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "modality": self.modality,
            "theme": self.theme,
            "active": bool(self.active),
        }


class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    formation_id = db.Column(
        db.Integer, db.ForeignKey("formations.id", ondelete="CASCADE"), nullable=False
    )
    formation = db.relationship("Formation")
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    location = db.Column(db.String(255))
    capacity = db.Column(db.Integer, nullable=False)
    instructor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    status = db.Column(
        db.String(16), nullable=False, default=SESSION_OPEN, server_default=SESSION_OPEN
    )

    def active_registration_count(self) -> int:
        return (
            db.session.query(db.func.count(Registration.id))
            .filter(
                Registration.session_id == self.id,
                Registration.status.in_(REGISTRATION_ACTIVE),
            )
            .scalar()
            or 0
        )

    def to_dict(self, enrolled: int | None = None) -> dict:
        data = {
            "id": self.id,
            "formation_id": self.formation_id,
            "start_date": iso_or_none(self.start_date),
            "end_date": iso_or_none(self.end_date),
            "location": self.location,
            "capacity": self.capacity,
            "status": self.status,
        }
        if enrolled is not None:
            data["enrolled"] = enrolled
        return data


class CoachAssignment(db.Model):
    __tablename__ = "coach_assignments"

    id = db.Column(db.Integer, primary_key=True)
    coach_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    coachee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    __table_args__ = (
        db.UniqueConstraint("coach_id", "coachee_id", name="uq_coach_assignment"),
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "coach_id": self.coach_id, "coachee_id": self.coachee_id}


class FormationInterest(db.Model):
    __tablename__ = "formation_interests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # NULL for off-catalog requests
    formation_id = db.Column(
        db.Integer, db.ForeignKey("formations.id", ondelete="CASCADE")
    )
    priority = db.Column(db.String(2), nullable=False)
    status = db.Column(db.String(16), nullable=False)
    coach_status = db.Column(db.String(16))
    coach_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    coach_validated_at = db.Column(db.DateTime(timezone=True))
    expressed_at = db.Column(db.DateTime(timezone=True), server_default=db.func.now())
    custom_title = db.Column(db.String(255))
    custom_description = db.Column(db.Text)
    custom_link = db.Column(db.String(512))
    custom_planned_date = db.Column(db.Date)
    # when the P1/P2 slot was taken; NULL when the record holds none
    quota_reserved_at = db.Column(db.DateTime(timezone=True))
    __table_args__ = (
        db.Index("ix_formation_interests_user_formation", "user_id", "formation_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in INTEREST_ACTIVE

    @property
    def is_off_catalog(self) -> bool:
        return self.formation_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "formation_id": self.formation_id,
            "priority": self.priority,
            "status": self.status,
            "coach_status": self.coach_status,
            "coach_id": self.coach_id,
            "coach_validated_at": iso_or_none(self.coach_validated_at),
            "expressed_at": iso_or_none(self.expressed_at),
            "custom_title": self.custom_title,
            "custom_description": self.custom_description,
            "custom_link": self.custom_link,
            "custom_planned_date": iso_or_none(self.custom_planned_date),
        }


class Registration(db.Model):
    __tablename__ = "registrations"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    session_id = db.Column(
        db.Integer, db.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    formation_id = db.Column(
        db.Integer, db.ForeignKey("formations.id", ondelete="CASCADE"), nullable=False
    )
    priority = db.Column(db.String(2), nullable=False)
    status = db.Column(db.String(16), nullable=False)
    registered_at = db.Column(db.DateTime(timezone=True), server_default=db.func.now())
    attended = db.Column(db.Boolean, nullable=False, default=False)
    quota_reserved_at = db.Column(db.DateTime(timezone=True))
    __table_args__ = (
        db.Index("ix_registrations_session_status", "session_id", "status"),
        db.Index("ix_registrations_user_formation", "user_id", "formation_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "formation_id": self.formation_id,
            "priority": self.priority,
            "status": self.status,
            "registered_at": iso_or_none(self.registered_at),
            "attended": bool(self.attended),
        }


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    target_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action = db.Column(db.String(255), nullable=False)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
