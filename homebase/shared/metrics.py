"""
Dashboard derivations over already-fetched collections.

Every function here is pure: it takes API-shaped records (camelCase dicts) and
recomputes its figure from scratch, so callers can run them on each render.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

PENDING_STATUSES = ("draft", "sent")
ACCEPTED_STATUS = "accepted"


def _parse_datetime(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # Naive timestamps from the API are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pending_proposals(proposals: Iterable[dict]) -> list[dict]:
    return [p for p in proposals if p.get("status") in PENDING_STATUSES]


def accepted_proposals(proposals: Iterable[dict]) -> list[dict]:
    return [p for p in proposals if p.get("status") == ACCEPTED_STATUS]


def total_earnings(proposals: Iterable[dict]) -> Decimal:
    """Sum of estimatedCost over accepted proposals, kept in fixed point"""
    total = Decimal("0.00")
    for proposal in accepted_proposals(proposals):
        total += Decimal(str(proposal.get("estimatedCost") or "0"))
    return total.quantize(Decimal("0.01"))


def upcoming_appointments(
    appointments: Iterable[dict], now: Optional[datetime] = None
) -> list[dict]:
    """Appointments scheduled at or after ``now``, soonest first"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    upcoming = [
        appt
        for appt in appointments
        if _parse_datetime(appt["scheduledDateTime"]) >= now
    ]
    return sorted(upcoming, key=lambda appt: _parse_datetime(appt["scheduledDateTime"]))


def next_appointment(
    appointments: Iterable[dict], now: Optional[datetime] = None
) -> Optional[dict]:
    upcoming = upcoming_appointments(appointments, now)
    return upcoming[0] if upcoming else None


def referrals_needed(max_houses_allowed: int) -> int:
    """Paid referrals needed to cover the subscription for a plan tier"""
    if max_houses_allowed >= 7:
        return 40
    if max_houses_allowed >= 3:
        return 20
    return 5


def referral_progress(referral_count: int, needed: int) -> float:
    """Percentage toward a free subscription, capped at 100"""
    if needed <= 0:
        return 100.0
    return min(100.0, referral_count / needed * 100)


def contractor_summary(
    proposals: list[dict], appointments: list[dict], now: Optional[datetime] = None
) -> dict[str, Any]:
    upcoming = upcoming_appointments(appointments, now)
    return {
        "pendingCount": len(pending_proposals(proposals)),
        "acceptedCount": len(accepted_proposals(proposals)),
        "earnings": str(total_earnings(proposals)),
        "upcomingAppointments": upcoming,
        "nextAppointment": upcoming[0] if upcoming else None,
    }


def homeowner_summary(
    appointments: list[dict],
    referral_count: int,
    max_houses_allowed: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    upcoming = upcoming_appointments(appointments, now)
    needed = referrals_needed(max_houses_allowed)
    return {
        "upcomingAppointments": upcoming,
        "nextAppointment": upcoming[0] if upcoming else None,
        "referralCount": referral_count,
        "referralsNeeded": needed,
        "referralsRemaining": max(0, needed - referral_count),
        "referralProgress": referral_progress(referral_count, needed),
    }
