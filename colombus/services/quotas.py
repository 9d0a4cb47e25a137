from __future__ import annotations

import logging
from dataclasses import dataclass

from ..app import db, set_setting
from ..models import FormationInterest, Registration, User
from ..shared.constants import (
    INTEREST_ACTIVE,
    P1,
    P2,
    QUOTA_RESET_AT_KEY,
    REGISTRATION_COMPLETED,
    REGISTRATION_VALIDATED,
)
from ..shared.quota import QuotaLedger, apply_ledger, ledger_of, reservation_current
from ..shared.time import now_utc
from .enrollment import atomic, audit, quota_reset_at

logger = logging.getLogger("colombus.lifecycle")


@dataclass
class LedgerDrift:
    user_id: int
    email: str
    actual: QuotaLedger
    expected: QuotaLedger


def _held_priorities(user_id: int) -> set[str]:
    reset_at = quota_reset_at()
    rows = [
        *db.session.query(
            FormationInterest.priority, FormationInterest.quota_reserved_at
        ).filter(
            FormationInterest.user_id == user_id,
            FormationInterest.status.in_(INTEREST_ACTIVE),
        ),
        *db.session.query(Registration.priority, Registration.quota_reserved_at).filter(
            Registration.user_id == user_id,
            Registration.status.in_((REGISTRATION_VALIDATED, REGISTRATION_COMPLETED)),
        ),
    ]
    return {
        priority
        for priority, reserved_at in rows
        if reservation_current(reserved_at, reset_at)
    }


def expected_ledger(user_id: int) -> QuotaLedger:
    """The ledger implied by the records currently holding a P1/P2 slot.

    Holders are pending/approved interests and validated or completed
    registrations whose reservation was taken since the last yearly reset.
    """

    held = _held_priorities(user_id)
    return QuotaLedger(p1_used=int(P1 in held), p2_used=int(P2 in held))


def find_drift(include_archived: bool = False) -> list[LedgerDrift]:
    query = User.query.order_by(User.id)
    if not include_archived:
        query = query.filter(User.archived.is_(False))
    drift = []
    for user in query.all():
        actual = ledger_of(user)
        expected = expected_ledger(user.id)
        if actual != expected:
            drift.append(LedgerDrift(user.id, user.email, actual, expected))
    return drift


def repair_drift(drift: list[LedgerDrift]) -> int:
    with atomic():
        for entry in drift:
            user = db.session.get(User, entry.user_id)
            if user is None:
                continue
            apply_ledger(user, entry.expected)
            audit(
                None,
                user.id,
                "quota_repair",
                f"p1={entry.actual.p1_used}->{entry.expected.p1_used}"
                f" p2={entry.actual.p2_used}->{entry.expected.p2_used}",
            )
            logger.warning("[QUOTA] repaired drift user=%s", user.id)
    return len(drift)


def reset_quotas() -> int:
    """Yearly reset: zero every P1/P2 counter and remember when it happened."""

    with atomic():
        count = User.query.filter((User.p1_used > 0) | (User.p2_used > 0)).update(
            {"p1_used": 0, "p2_used": 0}, synchronize_session=False
        )
        set_setting(QUOTA_RESET_AT_KEY, now_utc().isoformat())
        audit(None, None, "quota_reset", f"users={count}")
    logger.info("[QUOTA] yearly reset users=%s", count)
    return count
