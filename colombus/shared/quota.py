"""Per-user yearly P1/P2 quota ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from .constants import P1, P2, PRIORITIES, QUOTA_PRIORITIES
from .errors import QuotaExceeded, ValidationError
from .time import as_utc

RESERVE = "reserve"
RELEASE = "release"

_LABELS = {P1: "P1", P2: "P2"}


def validate_priority(priority: Any) -> str:
    value = (priority or "").strip().upper() if isinstance(priority, str) else ""
    if value not in PRIORITIES:
        raise ValidationError("priority must be one of P1, P2, P3.")
    return value


def consumes_quota(priority: str) -> bool:
    return priority in QUOTA_PRIORITIES


@dataclass(frozen=True)
class LedgerDelta:
    """A reserve or release of one priority slot."""

    op: str
    priority: str

    def apply(self, ledger: "QuotaLedger") -> "QuotaLedger":
        if self.op == RESERVE:
            return ledger.reserve(self.priority)
        return ledger.release(self.priority)


@dataclass(frozen=True)
class QuotaLedger:
    p1_used: int = 0
    p2_used: int = 0

    def used(self, priority: str) -> int:
        if priority == P1:
            return self.p1_used
        if priority == P2:
            return self.p2_used
        return 0

    def can_reserve(self, priority: str) -> bool:
        return not consumes_quota(priority) or self.used(priority) == 0

    def reserve(self, priority: str) -> "QuotaLedger":
        if not consumes_quota(priority):
            return self
        if self.used(priority) > 0:
            raise QuotaExceeded(
                f"{_LABELS[priority]} priority already used this year."
            )
        return self._with(priority, 1)

    def release(self, priority: str) -> "QuotaLedger":
        # saturates at zero
        if not consumes_quota(priority) or self.used(priority) <= 0:
            return self
        return self._with(priority, self.used(priority) - 1)

    def reset(self) -> "QuotaLedger":
        return QuotaLedger()

    def _with(self, priority: str, value: int) -> "QuotaLedger":
        if priority == P1:
            return QuotaLedger(p1_used=value, p2_used=self.p2_used)
        return QuotaLedger(p1_used=self.p1_used, p2_used=value)


def ledger_of(user: Any) -> QuotaLedger:
    return QuotaLedger(
        p1_used=int(getattr(user, "p1_used", 0) or 0),
        p2_used=int(getattr(user, "p2_used", 0) or 0),
    )


def apply_ledger(user: Any, ledger: QuotaLedger) -> None:
    user.p1_used = ledger.p1_used
    user.p2_used = ledger.p2_used


def reservation_current(
    reserved_at: Optional[datetime], reset_at: Optional[datetime]
) -> bool:
    """Whether a slot reserved at ``reserved_at`` still counts in this quota year.

    Reservations taken before the last yearly reset were wiped by it and must
    not be released again.
    """

    if reserved_at is None:
        return False
    if reset_at is None:
        return True
    return as_utc(reserved_at) >= as_utc(reset_at)
