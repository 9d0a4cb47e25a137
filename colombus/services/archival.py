from __future__ import annotations

import logging
from dataclasses import dataclass

from ..app import db
from ..models import CoachAssignment, FormationInterest, Registration, User
from ..shared.acl import is_rh
from ..shared.constants import INTEREST_ACTIVE, REGISTRATION_ACTIVE
from ..shared.errors import Forbidden, InvalidTransition, NotFound
from ..shared.lifecycle import ARCHIVE, SYSTEM
from .enrollment import (
    apply_interest_action,
    apply_registration_action,
    atomic,
    audit,
    lock_user,
    sync_session_status,
)

logger = logging.getLogger("colombus.lifecycle")


@dataclass
class ArchiveResult:
    user: User
    withdrawn_interests: int
    cancelled_registrations: int
    removed_assignments: int


def _ensure_can_administer(actor: User, user_id: int) -> None:
    if not is_rh(actor) or actor.archived:
        raise Forbidden("Only RH can archive or delete accounts.")
    if actor.id == user_id:
        raise Forbidden("RH cannot archive or delete their own account.")


def _remove_assignments(user_id: int) -> int:
    return (
        CoachAssignment.query.filter(
            (CoachAssignment.coach_id == user_id)
            | (CoachAssignment.coachee_id == user_id)
        ).delete(synchronize_session=False)
    )


def archive_user(actor: User, user_id: int) -> ArchiveResult:
    """Archive an account and unwind its in-flight commitments.

    Active interests are withdrawn and active registrations cancelled through
    the regular transitions, so their P1/P2 slots are released. Converted,
    rejected, withdrawn, cancelled and completed rows are left as they are.
    """

    _ensure_can_administer(actor, user_id)
    with atomic():
        user = lock_user(user_id)
        if user.archived:
            raise InvalidTransition("User is already archived.")

        interests = (
            FormationInterest.query.filter(
                FormationInterest.user_id == user.id,
                FormationInterest.status.in_(INTEREST_ACTIVE),
            )
            .order_by(FormationInterest.id)
            .with_for_update()
            .all()
        )
        for interest in interests:
            apply_interest_action(interest, user, ARCHIVE, SYSTEM, actor)

        registrations = (
            Registration.query.filter(
                Registration.user_id == user.id,
                Registration.status.in_(REGISTRATION_ACTIVE),
            )
            .order_by(Registration.id)
            .with_for_update()
            .all()
        )
        for registration in registrations:
            apply_registration_action(registration, user, ARCHIVE, SYSTEM, actor)

        removed = _remove_assignments(user.id)
        user.archived = True
        audit(
            actor,
            user.id,
            "user_archive",
            f"withdrawn={len(interests)} cancelled={len(registrations)} assignments={removed}",
        )
        logger.info(
            "[ARCHIVE] user=%s withdrawn=%s cancelled=%s assignments=%s",
            user.id,
            len(interests),
            len(registrations),
            removed,
        )
    return ArchiveResult(
        user=user,
        withdrawn_interests=len(interests),
        cancelled_registrations=len(registrations),
        removed_assignments=removed,
    )


def unarchive_user(actor: User, user_id: int) -> User:
    """Restore an archived account. Released commitments stay released."""

    _ensure_can_administer(actor, user_id)
    with atomic():
        user = lock_user(user_id)
        if not user.archived:
            raise InvalidTransition("User is not archived.")
        user.archived = False
        audit(actor, user.id, "user_unarchive", f"user_id={user.id}")
    return user


def delete_user(actor: User, user_id: int) -> None:
    """Purge an account with all its interests, registrations and coach links.

    No ledger bookkeeping is needed: the counters go away with the user row.
    """

    _ensure_can_administer(actor, user_id)
    with atomic():
        user = db.session.get(User, user_id)
        if not user:
            raise NotFound("User not found.")
        session_ids = [
            row[0]
            for row in db.session.query(Registration.session_id)
            .filter(Registration.user_id == user.id)
            .distinct()
        ]
        interests = FormationInterest.query.filter_by(user_id=user.id).delete(
            synchronize_session=False
        )
        registrations = Registration.query.filter_by(user_id=user.id).delete(
            synchronize_session=False
        )
        FormationInterest.query.filter_by(coach_id=user.id).update(
            {"coach_id": None}, synchronize_session=False
        )
        removed = _remove_assignments(user.id)
        audit(
            actor,
            None,
            "user_delete",
            f"user_id={user.id} email={user.email} interests={interests}"
            f" registrations={registrations} assignments={removed}",
        )
        db.session.delete(user)
        db.session.flush()
        for session_id in session_ids:
            sync_session_status(session_id)
        logger.info(
            "[ARCHIVE] deleted user=%s interests=%s registrations=%s",
            user_id,
            interests,
            registrations,
        )
