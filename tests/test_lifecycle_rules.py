import pytest

from colombus.shared.errors import (
    CapacityExceeded,
    DuplicateEnrollment,
    DuplicateInterest,
    Forbidden,
    InvalidTransition,
    ValidationError,
)
from colombus.shared.lifecycle import (
    APPROVE,
    ARCHIVE,
    CANCEL,
    COMPLETE,
    CONVERT,
    REJECT,
    SYSTEM,
    VALIDATE,
    WITHDRAW,
    ActorContext,
    InterestState,
    RegistrationState,
    SessionSnapshot,
    holds_reservation,
    interest_creation,
    interest_transition,
    registration_creation,
    registration_transition,
)
from colombus.shared.quota import RELEASE, RESERVE


pytestmark = pytest.mark.smoke

RH = ActorContext(is_rh=True)
OWNER = ActorContext(is_owner=True)
COACH = ActorContext(is_coach_of_owner=True)
COACH_FINAL = ActorContext(is_coach_of_owner=True, coach_validation_only=True)
STRANGER = ActorContext()


def test_creation_reserves_quota_priorities():
    created = interest_creation("P1", has_active_interest=False, coach_gate=False)
    assert created.status == "pending"
    assert created.coach_status is None
    assert created.delta.op == RESERVE and created.delta.priority == "P1"

    p3 = interest_creation("P3", has_active_interest=False, coach_gate=False)
    assert p3.delta is None


def test_creation_with_coach_gate():
    created = interest_creation("P2", has_active_interest=False, coach_gate=True)
    assert created.coach_status == "pending"


def test_duplicate_interest():
    with pytest.raises(DuplicateInterest):
        interest_creation("P3", has_active_interest=True, coach_gate=False)


def test_rh_approves_pending():
    result = interest_transition(InterestState("pending", "P1"), APPROVE, RH)
    assert result.status == "approved"
    assert result.delta is None


def test_rh_can_override_pending_coach():
    result = interest_transition(InterestState("pending", "P1", "pending"), APPROVE, RH)
    assert result.status == "approved"
    assert result.coach_status == "pending"


@pytest.mark.parametrize("action", [APPROVE, REJECT])
def test_owner_cannot_decide(action):
    with pytest.raises(Forbidden):
        interest_transition(InterestState("pending", "P1"), action, OWNER)


def test_stranger_cannot_withdraw():
    with pytest.raises(Forbidden):
        interest_transition(InterestState("pending", "P1"), WITHDRAW, STRANGER)


@pytest.mark.parametrize("action", [CONVERT, ARCHIVE])
def test_system_only_actions(action):
    with pytest.raises(Forbidden):
        interest_transition(InterestState("approved", "P1"), action, RH)


def test_unknown_action():
    with pytest.raises(ValidationError):
        interest_transition(InterestState("pending", "P1"), "promote", RH)


@pytest.mark.parametrize("status", ["pending", "approved"])
@pytest.mark.parametrize("action,expected", [(REJECT, "rejected"), (WITHDRAW, "withdrawn")])
def test_leaving_active_state_releases(status, action, expected):
    ctx = RH if action == REJECT else OWNER
    result = interest_transition(InterestState(status, "P2"), action, ctx)
    assert result.status == expected
    assert result.delta.op == RELEASE and result.delta.priority == "P2"


def test_archive_withdraws_and_releases():
    result = interest_transition(InterestState("approved", "P1"), ARCHIVE, SYSTEM)
    assert result.status == "withdrawn"
    assert result.delta.op == RELEASE


def test_convert_keeps_reservation():
    result = interest_transition(InterestState("approved", "P1"), CONVERT, SYSTEM)
    assert result.status == "converted"
    assert result.delta is None


def test_convert_requires_approved():
    with pytest.raises(InvalidTransition):
        interest_transition(InterestState("pending", "P1"), CONVERT, SYSTEM)


@pytest.mark.parametrize("status", ["converted", "rejected", "withdrawn"])
@pytest.mark.parametrize("action,ctx", [(APPROVE, RH), (REJECT, RH), (WITHDRAW, OWNER)])
def test_terminal_interest_states_are_final(status, action, ctx):
    with pytest.raises(InvalidTransition):
        interest_transition(InterestState(status, "P1"), action, ctx)


def test_coach_approval_waits_for_rh():
    result = interest_transition(InterestState("pending", "P1", "pending"), APPROVE, COACH)
    assert result.status == "pending"
    assert result.coach_status == "approved"
    assert result.coach_validated
    assert result.delta is None


def test_coach_approval_final_when_configured():
    result = interest_transition(
        InterestState("pending", "P1", "pending"), APPROVE, COACH_FINAL
    )
    assert result.status == "approved"
    assert result.coach_status == "approved"


def test_coach_reject_releases():
    result = interest_transition(InterestState("pending", "P2", "pending"), REJECT, COACH)
    assert result.status == "rejected"
    assert result.coach_status == "pending"
    assert result.delta.op == RELEASE


def test_coach_cannot_decide_twice():
    with pytest.raises(InvalidTransition):
        interest_transition(InterestState("pending", "P1", "approved"), REJECT, COACH)
    with pytest.raises(InvalidTransition):
        interest_transition(InterestState("approved", "P1", "approved"), APPROVE, COACH)


def test_registration_from_approved_interest():
    created = registration_creation(
        None,
        SessionSnapshot(capacity=2, enrolled=0),
        has_active_registration=False,
        approved_interest_priority="P1",
    )
    assert created.status == "validated"
    assert created.priority == "P1"
    assert created.convert_interest
    assert created.delta is None


def test_registration_without_interest_waits():
    created = registration_creation(
        "P2", SessionSnapshot(capacity=2, enrolled=1), has_active_registration=False
    )
    assert created.status == "pending"
    assert created.priority == "P2"
    assert not created.convert_interest


def test_registration_capacity():
    with pytest.raises(CapacityExceeded):
        registration_creation(
            "P3", SessionSnapshot(capacity=2, enrolled=2), has_active_registration=False
        )


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_registration_closed_session(status):
    with pytest.raises(InvalidTransition):
        registration_creation(
            "P3",
            SessionSnapshot(capacity=5, enrolled=0, status=status),
            has_active_registration=False,
        )


def test_registration_duplicate():
    with pytest.raises(DuplicateEnrollment):
        registration_creation(
            "P3", SessionSnapshot(capacity=5, enrolled=0), has_active_registration=True
        )


def test_validate_reserves():
    result = registration_transition(RegistrationState("pending", "P2"), VALIDATE, RH)
    assert result.status == "validated"
    assert result.delta.op == RESERVE


def test_owner_cannot_validate():
    with pytest.raises(Forbidden):
        registration_transition(RegistrationState("pending", "P2"), VALIDATE, OWNER)


def test_cancel_pending_holds_nothing():
    result = registration_transition(RegistrationState("pending", "P1"), CANCEL, OWNER)
    assert result.status == "cancelled"
    assert result.delta is None


def test_cancel_validated_releases():
    result = registration_transition(RegistrationState("validated", "P1"), CANCEL, RH)
    assert result.status == "cancelled"
    assert result.delta.op == RELEASE and result.delta.priority == "P1"


def test_complete_keeps_quota():
    result = registration_transition(RegistrationState("validated", "P1"), COMPLETE, RH)
    assert result.status == "completed"
    assert result.delta is None
    assert holds_reservation("completed")


@pytest.mark.parametrize("status", ["cancelled", "completed"])
@pytest.mark.parametrize("action", [VALIDATE, CANCEL, COMPLETE])
def test_terminal_registration_states_are_final(status, action):
    with pytest.raises(InvalidTransition):
        registration_transition(RegistrationState(status, "P1"), action, RH)


def test_stranger_cannot_cancel():
    with pytest.raises(Forbidden):
        registration_transition(RegistrationState("pending", "P1"), CANCEL, STRANGER)


def test_interest_blocked_while_registered():
    with pytest.raises(DuplicateEnrollment):
        interest_creation(
            "P1", has_active_interest=False, coach_gate=False, has_active_registration=True
        )


def test_registration_waits_for_pending_interest():
    with pytest.raises(InvalidTransition):
        registration_creation(
            None,
            SessionSnapshot(capacity=5, enrolled=0),
            has_active_registration=False,
            has_pending_interest=True,
        )


@pytest.mark.parametrize("action,ctx", [(WITHDRAW, OWNER), (REJECT, RH), (ARCHIVE, SYSTEM)])
def test_reservation_from_previous_year_is_not_released(action, ctx):
    state = InterestState("pending", "P1", reservation_current=False)
    result = interest_transition(state, action, ctx)
    assert result.status in ("withdrawn", "rejected")
    assert result.delta is None


def test_cancelling_previous_year_registration_releases_nothing():
    state = RegistrationState("validated", "P2", reservation_current=False)
    result = registration_transition(state, CANCEL, RH)
    assert result.status == "cancelled"
    assert result.delta is None
