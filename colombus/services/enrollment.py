"""Apply lifecycle decisions to the database.

Every public function here is one atomic unit: the rows it depends on are
locked (``SELECT ... FOR UPDATE``), the state machine in
``shared.lifecycle`` decides the outcome, and the record write, the quota
ledger write and the audit row are committed together. Any error rolls the
whole unit back.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Optional

from ..app import db, get_setting
from ..models import (
    AuditLog,
    Formation,
    FormationInterest,
    Registration,
    Session,
    User,
)
from ..shared.acl import AccessPolicy, DbAccessPolicy, actor_context
from ..shared.constants import (
    INTEREST_ACTIVE,
    INTEREST_APPROVED,
    INTEREST_PENDING,
    QUOTA_RESET_AT_KEY,
    REGISTRATION_ACTIVE,
    REGISTRATION_CANCELLED,
    SESSION_CLOSED_STATUSES,
    SESSION_FULL,
    SESSION_OPEN,
)
from ..shared.errors import Forbidden, NotFound, ValidationError
from ..shared.lifecycle import (
    CANCEL,
    CONVERT,
    INTEREST_ACTIONS,
    REGISTRATION_ACTIONS,
    SYSTEM,
    WITHDRAW,
    ActorContext,
    InterestState,
    InterestTransition,
    RegistrationState,
    RegistrationTransition,
    SessionSnapshot,
    interest_creation,
    interest_transition,
    registration_creation,
    registration_transition,
)
from ..shared.quota import (
    RELEASE,
    RESERVE,
    LedgerDelta,
    QuotaLedger,
    apply_ledger,
    ledger_of,
    reservation_current,
    validate_priority,
)
from ..shared.time import now_utc, parse_iso_datetime

logger = logging.getLogger("colombus.lifecycle")


@contextmanager
def atomic():
    """Commit the enclosed writes together or not at all."""
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _policy(policy: Optional[AccessPolicy]) -> AccessPolicy:
    return policy if policy is not None else DbAccessPolicy()


def lock_user(user_id: int) -> User:
    user = (
        db.session.query(User)
        .filter(User.id == user_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if not user:
        raise NotFound("User not found.")
    return user


def _lock_session(session_id: int) -> Session:
    sess = (
        db.session.query(Session)
        .filter(Session.id == session_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if not sess:
        raise NotFound("Session not found.")
    return sess


def _locked_interest(interest_id: int) -> tuple[FormationInterest, User]:
    interest = db.session.get(FormationInterest, interest_id)
    if not interest:
        raise NotFound("Interest not found.")
    owner = lock_user(interest.user_id)
    interest = (
        db.session.query(FormationInterest)
        .filter(FormationInterest.id == interest_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if not interest:
        raise NotFound("Interest not found.")
    return interest, owner


def _locked_registration(registration_id: int) -> tuple[Registration, User]:
    registration = db.session.get(Registration, registration_id)
    if not registration:
        raise NotFound("Registration not found.")
    owner = lock_user(registration.user_id)
    registration = (
        db.session.query(Registration)
        .filter(Registration.id == registration_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if not registration:
        raise NotFound("Registration not found.")
    return registration, owner


def _ensure_active_actor(actor: User) -> None:
    if actor is None or actor.archived:
        raise Forbidden("Archived accounts cannot perform this action.")


def _next_ledger(user: User, delta: Optional[LedgerDelta]) -> Optional[QuotaLedger]:
    # evaluated before any write so QuotaExceeded leaves state untouched
    if delta is None:
        return None
    return delta.apply(ledger_of(user))


def _write_ledger(user: User, ledger: Optional[QuotaLedger], reason: str) -> None:
    if ledger is None:
        return
    before = ledger_of(user)
    if before == ledger:
        return
    apply_ledger(user, ledger)
    logger.info(
        "[QUOTA] user=%s p1=%s->%s p2=%s->%s reason=%s",
        user.id,
        before.p1_used,
        ledger.p1_used,
        before.p2_used,
        ledger.p2_used,
        reason,
    )


def quota_reset_at():
    return parse_iso_datetime(get_setting(QUOTA_RESET_AT_KEY))


def holds_current_slot(record) -> bool:
    """Whether ``record`` took its P1/P2 slot after the last yearly reset."""
    return reservation_current(record.quota_reserved_at, quota_reset_at())


def _stamp_reservation(record, delta: Optional[LedgerDelta]) -> None:
    if delta is None:
        return
    if delta.op == RESERVE:
        record.quota_reserved_at = now_utc()
    elif delta.op == RELEASE:
        record.quota_reserved_at = None


def audit(actor: Optional[User], target_user_id: Optional[int], action: str, details: str) -> None:
    db.session.add(
        AuditLog(
            user_id=getattr(actor, "id", None),
            target_user_id=target_user_id,
            action=action,
            details=details,
        )
    )


def _interest_state(interest: FormationInterest) -> InterestState:
    return InterestState(
        status=interest.status,
        priority=interest.priority,
        coach_status=interest.coach_status,
        reservation_current=holds_current_slot(interest),
    )


def _registration_state(registration: Registration) -> RegistrationState:
    return RegistrationState(
        status=registration.status,
        priority=registration.priority,
        reservation_current=holds_current_slot(registration),
    )


def apply_interest_action(
    interest: FormationInterest,
    owner: User,
    action: str,
    ctx: ActorContext,
    actor: Optional[User],
) -> InterestTransition:
    """Run one interest transition on already-locked rows, without committing."""

    transition = interest_transition(_interest_state(interest), action, ctx)
    ledger = _next_ledger(owner, transition.delta)

    previous = interest.status
    interest.status = transition.status
    interest.coach_status = transition.coach_status
    if transition.coach_validated:
        interest.coach_validated_at = now_utc()
        interest.coach_id = getattr(actor, "id", None)
    _stamp_reservation(interest, transition.delta)
    _write_ledger(owner, ledger, f"interest:{interest.id}:{action}")
    audit(
        actor,
        owner.id,
        f"interest_{action}",
        f"interest_id={interest.id} status={previous}->{interest.status}"
        f" coach_status={interest.coach_status} priority={interest.priority}",
    )
    logger.info(
        "[INTEREST] id=%s user=%s action=%s status=%s->%s",
        interest.id,
        owner.id,
        action,
        previous,
        interest.status,
    )
    return transition


def apply_registration_action(
    registration: Registration,
    owner: User,
    action: str,
    ctx: ActorContext,
    actor: Optional[User],
) -> RegistrationTransition:
    """Run one registration transition on already-locked rows, without committing."""

    transition = registration_transition(_registration_state(registration), action, ctx)
    ledger = _next_ledger(owner, transition.delta)

    previous = registration.status
    registration.status = transition.status
    _stamp_reservation(registration, transition.delta)
    _write_ledger(owner, ledger, f"registration:{registration.id}:{action}")
    audit(
        actor,
        owner.id,
        f"registration_{action}",
        f"registration_id={registration.id} status={previous}->{registration.status}"
        f" priority={registration.priority}",
    )
    logger.info(
        "[REGISTRATION] id=%s user=%s action=%s status=%s->%s",
        registration.id,
        owner.id,
        action,
        previous,
        registration.status,
    )
    if previous != registration.status:
        sync_session_status(registration.session_id)
    return transition


def sync_session_status(session_id: int) -> None:
    sess = db.session.get(Session, session_id)
    if not sess or sess.status in SESSION_CLOSED_STATUSES:
        return
    enrolled = sess.active_registration_count()
    sess.status = SESSION_FULL if enrolled >= sess.capacity else SESSION_OPEN


# -- interests ---------------------------------------------------------------


def express_interest(
    actor: User,
    *,
    priority,
    formation_id: Optional[int] = None,
    custom: Optional[dict] = None,
    policy: Optional[AccessPolicy] = None,
) -> FormationInterest:
    """Record ``actor``'s intent to attend a formation, reserving P1/P2 at once.

    ``formation_id=None`` makes an off-catalog request, which needs
    ``custom["title"]``.
    """

    policy = _policy(policy)
    _ensure_active_actor(actor)
    priority = validate_priority(priority)
    custom = custom or {}
    if formation_id is None:
        if not (custom.get("title") or "").strip():
            raise ValidationError("Off-catalog interests need a title.")
    else:
        formation = db.session.get(Formation, formation_id)
        if not formation or not formation.active:
            raise NotFound("Formation not found.")

    with atomic():
        owner = lock_user(actor.id)
        has_active = has_registration = False
        if formation_id is not None:
            has_active = (
                db.session.query(FormationInterest.id)
                .filter(
                    FormationInterest.user_id == owner.id,
                    FormationInterest.formation_id == formation_id,
                    FormationInterest.status.in_(INTEREST_ACTIVE),
                )
                .first()
                is not None
            )
            has_registration = (
                db.session.query(Registration.id)
                .filter(
                    Registration.user_id == owner.id,
                    Registration.formation_id == formation_id,
                    Registration.status.in_(REGISTRATION_ACTIVE),
                )
                .first()
                is not None
            )
        coach_id = policy.coach_of(owner.id)
        decision = interest_creation(
            priority,
            has_active_interest=has_active,
            coach_gate=coach_id is not None,
            has_active_registration=has_registration,
        )
        ledger = _next_ledger(owner, decision.delta)

        interest = FormationInterest(
            user_id=owner.id,
            formation_id=formation_id,
            priority=priority,
            status=decision.status,
            coach_status=decision.coach_status,
            coach_id=coach_id,
            expressed_at=now_utc(),
            custom_title=(custom.get("title") or None),
            custom_description=custom.get("description"),
            custom_link=custom.get("link"),
            custom_planned_date=custom.get("planned_date"),
        )
        _stamp_reservation(interest, decision.delta)
        db.session.add(interest)
        db.session.flush()
        _write_ledger(owner, ledger, f"interest:{interest.id}:create")
        audit(
            actor,
            owner.id,
            "interest_create",
            f"interest_id={interest.id} formation_id={formation_id} priority={priority}",
        )
        logger.info(
            "[INTEREST] id=%s user=%s action=create priority=%s formation=%s",
            interest.id,
            owner.id,
            priority,
            formation_id,
        )
    return interest


def decide_interest(
    actor: User,
    interest_id: int,
    action: str,
    *,
    policy: Optional[AccessPolicy] = None,
) -> FormationInterest:
    """Approve, reject or withdraw an interest on behalf of ``actor``."""

    if action not in INTEREST_ACTIONS:
        raise ValidationError(f"Unknown interest action: {action}")
    policy = _policy(policy)
    _ensure_active_actor(actor)
    with atomic():
        interest, owner = _locked_interest(interest_id)
        ctx = actor_context(policy, actor, interest)
        apply_interest_action(interest, owner, action, ctx, actor)
    return interest


def withdraw_interest(
    actor: User, interest_id: int, *, policy: Optional[AccessPolicy] = None
) -> FormationInterest:
    return decide_interest(actor, interest_id, WITHDRAW, policy=policy)


def delete_interest(
    actor: User,
    interest_id: int,
    *,
    as_admin: bool = False,
    policy: Optional[AccessPolicy] = None,
) -> None:
    """Physically remove an interest, releasing its slot first if still active.

    The owner may delete their own interests; RH may delete any with
    ``as_admin=True``.
    """

    policy = _policy(policy)
    _ensure_active_actor(actor)
    with atomic():
        interest, owner = _locked_interest(interest_id)
        ctx = actor_context(policy, actor, interest)
        if as_admin:
            if not ctx.is_rh:
                raise Forbidden("Only RH can delete other users' interests.")
            ctx = SYSTEM
        elif not ctx.is_owner:
            raise Forbidden("Only the owner can delete this interest.")
        if interest.is_active:
            apply_interest_action(interest, owner, WITHDRAW, ctx, actor)
        audit(actor, owner.id, "interest_delete", f"interest_id={interest.id}")
        db.session.delete(interest)


# -- registrations -----------------------------------------------------------


def create_registration(
    actor: User,
    session_id: int,
    *,
    priority=None,
    policy: Optional[AccessPolicy] = None,
) -> Registration:
    """Book ``actor`` a seat in a session.

    An approved interest for the session's formation is converted and the
    registration is validated right away; otherwise it waits for RH. While
    an interest for the formation is still pending, registering is refused.
    """

    _ensure_active_actor(actor)
    if not db.session.get(Session, session_id):
        raise NotFound("Session not found.")

    with atomic():
        owner = lock_user(actor.id)
        sess = _lock_session(session_id)
        approved = (
            db.session.query(FormationInterest)
            .filter(
                FormationInterest.user_id == owner.id,
                FormationInterest.formation_id == sess.formation_id,
                FormationInterest.status == INTEREST_APPROVED,
            )
            .populate_existing()
            .with_for_update()
            .first()
        )
        has_pending_interest = (
            db.session.query(FormationInterest.id)
            .filter(
                FormationInterest.user_id == owner.id,
                FormationInterest.formation_id == sess.formation_id,
                FormationInterest.status == INTEREST_PENDING,
            )
            .first()
            is not None
        )
        if approved is None and not has_pending_interest:
            priority = validate_priority(priority)
        has_active_registration = (
            db.session.query(Registration.id)
            .filter(
                Registration.user_id == owner.id,
                Registration.formation_id == sess.formation_id,
                Registration.status != REGISTRATION_CANCELLED,
            )
            .first()
            is not None
        )
        decision = registration_creation(
            priority,
            SessionSnapshot(
                capacity=sess.capacity,
                enrolled=sess.active_registration_count(),
                status=sess.status,
            ),
            has_active_registration=has_active_registration,
            approved_interest_priority=approved.priority if approved else None,
            has_pending_interest=has_pending_interest,
        )

        registration = Registration(
            user_id=owner.id,
            session_id=sess.id,
            formation_id=sess.formation_id,
            priority=decision.priority,
            status=decision.status,
            registered_at=now_utc(),
            # a converted interest hands its reservation over
            quota_reserved_at=approved.quota_reserved_at if decision.convert_interest else None,
        )
        db.session.add(registration)
        db.session.flush()
        if decision.convert_interest:
            apply_interest_action(approved, owner, CONVERT, SYSTEM, actor)
        audit(
            actor,
            owner.id,
            "registration_create",
            f"registration_id={registration.id} session_id={sess.id}"
            f" priority={registration.priority} status={registration.status}",
        )
        logger.info(
            "[REGISTRATION] id=%s user=%s action=create session=%s status=%s",
            registration.id,
            owner.id,
            sess.id,
            registration.status,
        )
        sync_session_status(sess.id)
    return registration


def decide_registration(
    actor: User,
    registration_id: int,
    action: str,
    *,
    policy: Optional[AccessPolicy] = None,
) -> Registration:
    """Validate, cancel or complete a registration on behalf of ``actor``."""

    if action not in REGISTRATION_ACTIONS:
        raise ValidationError(f"Unknown registration action: {action}")
    policy = _policy(policy)
    _ensure_active_actor(actor)
    with atomic():
        registration, owner = _locked_registration(registration_id)
        ctx = actor_context(policy, actor, registration)
        apply_registration_action(registration, owner, action, ctx, actor)
    return registration


def cancel_registration(
    actor: User, registration_id: int, *, policy: Optional[AccessPolicy] = None
) -> Registration:
    return decide_registration(actor, registration_id, CANCEL, policy=policy)


def delete_registration(
    actor: User, registration_id: int, *, policy: Optional[AccessPolicy] = None
) -> None:
    """Owner removes their registration, cancelling it first if still active."""

    policy = _policy(policy)
    _ensure_active_actor(actor)
    with atomic():
        registration, owner = _locked_registration(registration_id)
        ctx = actor_context(policy, actor, registration)
        if not ctx.is_owner:
            raise Forbidden("Only the owner can delete this registration.")
        if registration.status in REGISTRATION_ACTIVE:
            apply_registration_action(registration, owner, CANCEL, ctx, actor)
        session_id = registration.session_id
        audit(actor, owner.id, "registration_delete", f"registration_id={registration.id}")
        db.session.delete(registration)
        db.session.flush()
        sync_session_status(session_id)
