import pytest

from colombus.app import db, set_setting
from colombus.models import AuditLog, FormationInterest, Registration, Session, User
from colombus.services import enrollment
from colombus.shared.errors import (
    CapacityExceeded,
    DuplicateEnrollment,
    DuplicateInterest,
    Forbidden,
    InvalidTransition,
    NotFound,
    QuotaExceeded,
    ValidationError,
)


pytestmark = pytest.mark.smoke


def ledger(user_id):
    db.session.expire_all()
    user = db.session.get(User, user_id)
    return user.p1_used, user.p2_used


def test_p1_reserved_at_interest_and_blocks_second(app, make_user, make_formation):
    user = make_user()
    f1 = make_formation("Kubernetes")
    f2 = make_formation("Terraform")

    interest = enrollment.express_interest(user, priority="P1", formation_id=f1.id)
    assert interest.status == "pending"
    assert ledger(user.id) == (1, 0)

    with pytest.raises(QuotaExceeded):
        enrollment.express_interest(user, priority="P1", formation_id=f2.id)
    assert ledger(user.id) == (1, 0)
    assert FormationInterest.query.filter_by(user_id=user.id).count() == 1


def test_withdraw_then_express_again(app, make_user, make_formation):
    user = make_user()
    formation = make_formation()
    first = enrollment.express_interest(user, priority="P1", formation_id=formation.id)

    enrollment.withdraw_interest(user, first.id)
    assert ledger(user.id) == (0, 0)
    assert db.session.get(FormationInterest, first.id).status == "withdrawn"

    again = enrollment.express_interest(user, priority="P1", formation_id=formation.id)
    assert again.status == "pending"
    assert ledger(user.id) == (1, 0)


def test_duplicate_active_interest(app, make_user, make_formation):
    user = make_user()
    formation = make_formation()
    enrollment.express_interest(user, priority="P3", formation_id=formation.id)
    with pytest.raises(DuplicateInterest):
        enrollment.express_interest(user, priority="P3", formation_id=formation.id)


def test_rh_reject_releases(app, make_user, make_formation):
    user = make_user()
    rh = make_user(rh=True)
    interest = enrollment.express_interest(
        user, priority="P2", formation_id=make_formation().id
    )
    assert ledger(user.id) == (0, 1)

    enrollment.decide_interest(rh, interest.id, "reject")
    assert ledger(user.id) == (0, 0)
    with pytest.raises(InvalidTransition):
        enrollment.decide_interest(rh, interest.id, "approve")


def test_owner_cannot_approve_own_interest(app, make_user, make_formation):
    user = make_user()
    interest = enrollment.express_interest(
        user, priority="P3", formation_id=make_formation().id
    )
    with pytest.raises(Forbidden):
        enrollment.decide_interest(user, interest.id, "approve")


def test_approved_interest_converts_on_registration(
    app, make_user, make_formation, make_session
):
    user = make_user()
    rh = make_user(rh=True)
    formation = make_formation()
    sess = make_session(formation)
    interest = enrollment.express_interest(user, priority="P1", formation_id=formation.id)
    enrollment.decide_interest(rh, interest.id, "approve")

    registration = enrollment.create_registration(user, sess.id)
    assert registration.status == "validated"
    assert registration.priority == "P1"
    assert db.session.get(FormationInterest, interest.id).status == "converted"
    assert ledger(user.id) == (1, 0)

    enrollment.cancel_registration(user, registration.id)
    assert ledger(user.id) == (0, 0)


def test_registration_without_interest_reserves_on_validation(
    app, make_user, make_formation, make_session
):
    user = make_user()
    rh = make_user(rh=True)
    sess = make_session(make_formation())

    registration = enrollment.create_registration(user, sess.id, priority="P2")
    assert registration.status == "pending"
    assert ledger(user.id) == (0, 0)

    enrollment.decide_registration(rh, registration.id, "validate")
    assert ledger(user.id) == (0, 1)

    enrollment.decide_registration(rh, registration.id, "complete")
    assert db.session.get(Registration, registration.id).status == "completed"
    assert ledger(user.id) == (0, 1)


def test_validation_blocked_when_slot_taken(app, make_user, make_formation, make_session):
    user = make_user()
    rh = make_user(rh=True)
    enrollment.express_interest(user, priority="P2", formation_id=make_formation("A").id)
    sess = make_session(make_formation("B"))
    registration = enrollment.create_registration(user, sess.id, priority="P2")

    with pytest.raises(QuotaExceeded):
        enrollment.decide_registration(rh, registration.id, "validate")
    assert db.session.get(Registration, registration.id).status == "pending"


def test_cancel_pending_registration_keeps_other_reservation(
    app, make_user, make_formation, make_session
):
    user = make_user()
    enrollment.express_interest(user, priority="P2", formation_id=make_formation("A").id)
    sess = make_session(make_formation("B"))
    registration = enrollment.create_registration(user, sess.id, priority="P2")

    enrollment.cancel_registration(user, registration.id)
    assert db.session.get(Registration, registration.id).status == "cancelled"
    assert ledger(user.id) == (0, 1)


def test_registration_requires_priority_without_interest(
    app, make_user, make_formation, make_session
):
    user = make_user()
    sess = make_session(make_formation())
    with pytest.raises(ValidationError):
        enrollment.create_registration(user, sess.id)


def test_capacity_and_session_status(app, make_user, make_formation, make_session):
    first = make_user()
    second = make_user()
    sess = make_session(make_formation(), capacity=1)

    registration = enrollment.create_registration(first, sess.id, priority="P3")
    assert db.session.get(Session, sess.id).status == "full"
    with pytest.raises(CapacityExceeded):
        enrollment.create_registration(second, sess.id, priority="P3")

    enrollment.cancel_registration(first, registration.id)
    assert db.session.get(Session, sess.id).status == "open"
    enrollment.create_registration(second, sess.id, priority="P3")


def test_one_registration_per_formation(app, make_user, make_formation, make_session):
    user = make_user()
    formation = make_formation()
    morning = make_session(formation)
    evening = make_session(formation)
    enrollment.create_registration(user, morning.id, priority="P3")
    with pytest.raises(DuplicateEnrollment):
        enrollment.create_registration(user, evening.id, priority="P3")


def test_closed_session_rejects_registration(app, make_user, make_formation, make_session):
    user = make_user()
    sess = make_session(make_formation(), status="cancelled")
    with pytest.raises(InvalidTransition):
        enrollment.create_registration(user, sess.id, priority="P3")


def test_unknown_session(app, make_user):
    with pytest.raises(NotFound):
        enrollment.create_registration(make_user(), 999, priority="P3")


def test_off_catalog_interest(app, make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        enrollment.express_interest(user, priority="P3", custom={"title": "  "})

    interest = enrollment.express_interest(
        user,
        priority="P2",
        custom={"title": "Rust embarqué", "link": "https://example.com/rust"},
    )
    assert interest.is_off_catalog
    assert interest.custom_title == "Rust embarqué"
    assert ledger(user.id) == (0, 1)


def test_inactive_formation_not_found(app, make_user, make_formation):
    formation = make_formation(active=False)
    with pytest.raises(NotFound):
        enrollment.express_interest(make_user(), priority="P3", formation_id=formation.id)


def test_archived_actor_rejected(app, make_user, make_formation):
    user = make_user(archived=True)
    with pytest.raises(Forbidden):
        enrollment.express_interest(user, priority="P3", formation_id=make_formation().id)


def test_coach_gate_requires_rh_after_coach(app, make_user, make_formation, assign_coach):
    user = make_user()
    coach = make_user(coach=True)
    rh = make_user(rh=True)
    assign_coach(coach, user)

    interest = enrollment.express_interest(
        user, priority="P1", formation_id=make_formation().id
    )
    assert interest.coach_status == "pending"
    assert interest.coach_id == coach.id

    enrollment.decide_interest(coach, interest.id, "approve")
    interest = db.session.get(FormationInterest, interest.id)
    assert interest.status == "pending"
    assert interest.coach_status == "approved"
    assert interest.coach_validated_at is not None

    enrollment.decide_interest(rh, interest.id, "approve")
    assert db.session.get(FormationInterest, interest.id).status == "approved"


def test_coach_approval_final_when_enabled(app, make_user, make_formation, assign_coach):
    user = make_user()
    coach = make_user(coach=True)
    assign_coach(coach, user)
    set_setting("coach_validation_only", "true")
    db.session.commit()

    interest = enrollment.express_interest(
        user, priority="P2", formation_id=make_formation().id
    )
    enrollment.decide_interest(coach, interest.id, "approve")
    assert db.session.get(FormationInterest, interest.id).status == "approved"


def test_coach_reject_releases(app, make_user, make_formation, assign_coach):
    user = make_user()
    coach = make_user(coach=True)
    assign_coach(coach, user)
    interest = enrollment.express_interest(
        user, priority="P1", formation_id=make_formation().id
    )
    enrollment.decide_interest(coach, interest.id, "reject")
    assert db.session.get(FormationInterest, interest.id).status == "rejected"
    assert ledger(user.id) == (0, 0)


def test_unassigned_coach_forbidden(app, make_user, make_formation):
    user = make_user()
    coach = make_user(coach=True)
    interest = enrollment.express_interest(
        user, priority="P3", formation_id=make_formation().id
    )
    with pytest.raises(Forbidden):
        enrollment.decide_interest(coach, interest.id, "approve")


def test_archived_coach_does_not_gate(app, make_user, make_formation, assign_coach):
    user = make_user()
    coach = make_user(coach=True, archived=True)
    assign_coach(coach, user)
    interest = enrollment.express_interest(
        user, priority="P3", formation_id=make_formation().id
    )
    assert interest.coach_status is None


def test_delete_active_interest_releases(app, make_user, make_formation):
    user = make_user()
    other = make_user()
    interest = enrollment.express_interest(
        user, priority="P1", formation_id=make_formation().id
    )
    with pytest.raises(Forbidden):
        enrollment.delete_interest(other, interest.id)

    enrollment.delete_interest(user, interest.id)
    assert db.session.get(FormationInterest, interest.id) is None
    assert ledger(user.id) == (0, 0)


def test_admin_delete_requires_rh(app, make_user, make_formation):
    user = make_user()
    rh = make_user(rh=True)
    interest = enrollment.express_interest(
        user, priority="P2", formation_id=make_formation().id
    )
    with pytest.raises(Forbidden):
        enrollment.delete_interest(user, interest.id, as_admin=True)
    enrollment.delete_interest(rh, interest.id, as_admin=True)
    assert ledger(user.id) == (0, 0)


def test_delete_registration_frees_seat(app, make_user, make_formation, make_session):
    user = make_user()
    sess = make_session(make_formation(), capacity=1)
    registration = enrollment.create_registration(user, sess.id, priority="P3")
    enrollment.delete_registration(user, registration.id)
    assert db.session.get(Registration, registration.id) is None
    assert db.session.get(Session, sess.id).status == "open"


def test_transitions_are_audited(app, make_user, make_formation):
    user = make_user()
    interest = enrollment.express_interest(
        user, priority="P1", formation_id=make_formation().id
    )
    enrollment.withdraw_interest(user, interest.id)
    actions = [row.action for row in AuditLog.query.order_by(AuditLog.id)]
    assert actions == ["interest_create", "interest_withdraw"]


def test_pending_interest_blocks_registration_until_approved(
    app, make_user, make_formation, make_session
):
    user = make_user()
    rh = make_user(rh=True)
    formation = make_formation()
    sess = make_session(formation)
    interest = enrollment.express_interest(user, priority="P1", formation_id=formation.id)

    with pytest.raises(InvalidTransition):
        enrollment.create_registration(user, sess.id, priority="P1")
    assert Registration.query.filter_by(user_id=user.id).count() == 0

    enrollment.decide_interest(rh, interest.id, "approve")
    registration = enrollment.create_registration(user, sess.id)
    assert registration.status == "validated"
    assert db.session.get(FormationInterest, interest.id).status == "converted"
    assert ledger(user.id) == (1, 0)


def test_interest_refused_while_registered(app, make_user, make_formation, make_session):
    user = make_user()
    formation = make_formation()
    sess = make_session(formation)
    enrollment.create_registration(user, sess.id, priority="P2")
    with pytest.raises(DuplicateEnrollment):
        enrollment.express_interest(user, priority="P2", formation_id=formation.id)
    assert ledger(user.id) == (0, 0)


def test_failed_write_rolls_back_interest_creation(
    app, make_user, make_formation, monkeypatch
):
    user = make_user()
    formation = make_formation()

    def broken_audit(*args, **kwargs):
        raise RuntimeError("audit table unavailable")

    monkeypatch.setattr(enrollment, "audit", broken_audit)
    with pytest.raises(RuntimeError):
        enrollment.express_interest(user, priority="P1", formation_id=formation.id)

    assert ledger(user.id) == (0, 0)
    assert FormationInterest.query.filter_by(user_id=user.id).count() == 0


def test_failed_write_rolls_back_validation(
    app, make_user, make_formation, make_session, monkeypatch
):
    user = make_user()
    rh = make_user(rh=True)
    sess = make_session(make_formation())
    registration = enrollment.create_registration(user, sess.id, priority="P2")

    def broken_audit(*args, **kwargs):
        raise RuntimeError("audit table unavailable")

    monkeypatch.setattr(enrollment, "audit", broken_audit)
    with pytest.raises(RuntimeError):
        enrollment.decide_registration(rh, registration.id, "validate")

    assert ledger(user.id) == (0, 0)
    assert db.session.get(Registration, registration.id).status == "pending"


def test_archived_actor_cannot_delete(app, make_user, make_formation, make_session):
    user = make_user()
    interest = enrollment.express_interest(
        user, priority="P1", formation_id=make_formation("A").id
    )
    sess = make_session(make_formation("B"))
    registration = enrollment.create_registration(user, sess.id, priority="P3")
    user.archived = True
    db.session.commit()

    with pytest.raises(Forbidden):
        enrollment.delete_interest(user, interest.id)
    with pytest.raises(Forbidden):
        enrollment.delete_registration(user, registration.id)
    assert db.session.get(FormationInterest, interest.id) is not None
    assert db.session.get(Registration, registration.id) is not None
    assert ledger(user.id) == (1, 0)
