"""Interest and registration state machines.

Pure decision functions: given the current state of a record, the action
requested and what is known about the actor, they return the next status and
the quota ledger delta to apply, or raise one of the typed errors from
``errors``. Nothing here touches Flask or the database; ``services.enrollment``
loads the rows, calls these functions and writes the result back inside one
transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .constants import (
    COACH_APPROVED,
    COACH_PENDING,
    INTEREST_ACTIVE,
    INTEREST_APPROVED,
    INTEREST_CONVERTED,
    INTEREST_PENDING,
    INTEREST_REJECTED,
    INTEREST_WITHDRAWN,
    REGISTRATION_ACTIVE,
    REGISTRATION_CANCELLED,
    REGISTRATION_COMPLETED,
    REGISTRATION_PENDING,
    REGISTRATION_VALIDATED,
    SESSION_CLOSED_STATUSES,
)
from .errors import (
    CapacityExceeded,
    DuplicateEnrollment,
    DuplicateInterest,
    Forbidden,
    InvalidTransition,
    ValidationError,
)
from .quota import RELEASE, RESERVE, LedgerDelta, consumes_quota

APPROVE = "approve"
REJECT = "reject"
WITHDRAW = "withdraw"
CONVERT = "convert"
ARCHIVE = "archive"

VALIDATE = "validate"
CANCEL = "cancel"
COMPLETE = "complete"

INTEREST_ACTIONS = (APPROVE, REJECT, WITHDRAW)
REGISTRATION_ACTIONS = (VALIDATE, CANCEL, COMPLETE)


@dataclass(frozen=True)
class ActorContext:
    """What the access policy decided about the acting user for one record."""

    is_rh: bool = False
    is_owner: bool = False
    is_coach_of_owner: bool = False
    coach_validation_only: bool = False
    system: bool = False


SYSTEM = ActorContext(system=True)


@dataclass(frozen=True)
class InterestState:
    status: str
    priority: str
    coach_status: Optional[str] = None
    reservation_current: bool = True


@dataclass(frozen=True)
class InterestTransition:
    status: str
    coach_status: Optional[str]
    delta: Optional[LedgerDelta] = None
    coach_validated: bool = False


@dataclass(frozen=True)
class RegistrationState:
    status: str
    priority: str
    reservation_current: bool = True


@dataclass(frozen=True)
class RegistrationTransition:
    status: str
    delta: Optional[LedgerDelta] = None


@dataclass(frozen=True)
class SessionSnapshot:
    capacity: int
    enrolled: int
    status: str = "open"


@dataclass(frozen=True)
class RegistrationCreation:
    status: str
    priority: str
    convert_interest: bool
    delta: Optional[LedgerDelta] = None


def _reserve(priority: str) -> Optional[LedgerDelta]:
    return LedgerDelta(RESERVE, priority) if consumes_quota(priority) else None


def _release(priority: str, current: bool = True) -> Optional[LedgerDelta]:
    if not current:
        return None
    return LedgerDelta(RELEASE, priority) if consumes_quota(priority) else None


def interest_creation(
    priority: str,
    *,
    has_active_interest: bool,
    coach_gate: bool,
    has_active_registration: bool = False,
) -> InterestTransition:
    """Decide the initial state of a new interest.

    Quota is reserved here, at first commitment, and carried over to the
    registration when the interest is converted.
    """

    if has_active_interest:
        raise DuplicateInterest("An active interest already exists for this formation.")
    if has_active_registration:
        raise DuplicateEnrollment("Already registered for this formation.")
    return InterestTransition(
        status=INTEREST_PENDING,
        coach_status=COACH_PENDING if coach_gate else None,
        delta=_reserve(priority),
    )


def _coach_decision(
    state: InterestState, action: str, ctx: ActorContext
) -> InterestTransition:
    if state.status != INTEREST_PENDING or state.coach_status == COACH_APPROVED:
        raise InvalidTransition(
            f"Coach cannot {action} an interest that is {state.status}"
            f" (coach status {state.coach_status or COACH_PENDING})."
        )
    if action == APPROVE:
        status = INTEREST_APPROVED if ctx.coach_validation_only else INTEREST_PENDING
        return InterestTransition(
            status=status, coach_status=COACH_APPROVED, coach_validated=True
        )
    return InterestTransition(
        status=INTEREST_REJECTED,
        coach_status=state.coach_status,
        delta=_release(state.priority, state.reservation_current),
    )


def interest_transition(
    state: InterestState, action: str, ctx: ActorContext
) -> InterestTransition:
    if action in (APPROVE, REJECT):
        if ctx.is_rh or ctx.system:
            pass
        elif ctx.is_coach_of_owner:
            return _coach_decision(state, action, ctx)
        else:
            raise Forbidden("Only RH or the owner's coach can decide on this interest.")
    elif action == WITHDRAW:
        if not (ctx.is_owner or ctx.system):
            raise Forbidden("Only the owner can withdraw this interest.")
    elif action in (CONVERT, ARCHIVE):
        if not ctx.system:
            raise Forbidden(f"{action} is not a user action.")
    else:
        raise ValidationError(f"Unknown interest action: {action}")

    if action == APPROVE:
        if state.status != INTEREST_PENDING:
            raise InvalidTransition(f"Cannot approve an interest that is {state.status}.")
        return InterestTransition(status=INTEREST_APPROVED, coach_status=state.coach_status)

    if action == CONVERT:
        if state.status != INTEREST_APPROVED:
            raise InvalidTransition(f"Cannot convert an interest that is {state.status}.")
        return InterestTransition(status=INTEREST_CONVERTED, coach_status=state.coach_status)

    if state.status not in INTEREST_ACTIVE:
        raise InvalidTransition(f"Cannot {action} an interest that is {state.status}.")
    status = INTEREST_REJECTED if action == REJECT else INTEREST_WITHDRAWN
    return InterestTransition(
        status=status,
        coach_status=state.coach_status,
        delta=_release(state.priority, state.reservation_current),
    )


def registration_creation(
    priority: str,
    session: SessionSnapshot,
    *,
    has_active_registration: bool,
    approved_interest_priority: Optional[str] = None,
    has_pending_interest: bool = False,
) -> RegistrationCreation:
    """Decide how a new registration enters the lifecycle.

    With an approved interest for the same formation the registration is
    validated at once and inherits the interest's priority (its slot is
    already reserved). Otherwise it waits in ``pending`` and the slot is only
    reserved when RH validates it.

    A pending interest for the formation blocks registration until it is
    decided, so one commitment never ends up reserving twice.
    """

    if session.status in SESSION_CLOSED_STATUSES:
        raise InvalidTransition(f"Session is {session.status}.")
    if session.enrolled >= session.capacity:
        raise CapacityExceeded("Session is full.")
    if has_active_registration:
        raise DuplicateEnrollment("Already registered for this formation.")
    if has_pending_interest:
        raise InvalidTransition(
            "An interest for this formation is still awaiting approval."
        )
    if approved_interest_priority is not None:
        return RegistrationCreation(
            status=REGISTRATION_VALIDATED,
            priority=approved_interest_priority,
            convert_interest=True,
        )
    return RegistrationCreation(
        status=REGISTRATION_PENDING, priority=priority, convert_interest=False
    )


def holds_reservation(status: str) -> bool:
    """A registration owns its quota slot once validated."""
    return status in (REGISTRATION_VALIDATED, REGISTRATION_COMPLETED)


def registration_transition(
    state: RegistrationState, action: str, ctx: ActorContext
) -> RegistrationTransition:
    if action in (VALIDATE, COMPLETE):
        if not (ctx.is_rh or ctx.system):
            raise Forbidden(f"Only RH can {action} a registration.")
    elif action == CANCEL:
        if not (ctx.is_rh or ctx.is_owner or ctx.system):
            raise Forbidden("Only RH or the owner can cancel this registration.")
    elif action == ARCHIVE:
        if not ctx.system:
            raise Forbidden("archive is not a user action.")
    else:
        raise ValidationError(f"Unknown registration action: {action}")

    if action == VALIDATE:
        if state.status != REGISTRATION_PENDING:
            raise InvalidTransition(f"Cannot validate a registration that is {state.status}.")
        return RegistrationTransition(
            status=REGISTRATION_VALIDATED, delta=_reserve(state.priority)
        )

    if action == COMPLETE:
        if state.status != REGISTRATION_VALIDATED:
            raise InvalidTransition(f"Cannot complete a registration that is {state.status}.")
        return RegistrationTransition(status=REGISTRATION_COMPLETED)

    if state.status not in REGISTRATION_ACTIVE:
        raise InvalidTransition(f"Cannot cancel a registration that is {state.status}.")
    delta = (
        _release(state.priority, state.reservation_current)
        if holds_reservation(state.status)
        else None
    )
    return RegistrationTransition(status=REGISTRATION_CANCELLED, delta=delta)
