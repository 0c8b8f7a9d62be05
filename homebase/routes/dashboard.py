"""
Dashboard summaries

Server rendition of the figures the dashboards derive client-side, computed
with the same functions from shared.metrics.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_contractor, get_current_user
from ..database import get_db
from ..domain.proposals.repository import ProposalRepository
from ..domain.proposals.service import ProposalService
from ..models import User
from ..shared.metrics import contractor_summary, homeowner_summary
from .appointments import appointment_to_response, get_appointments_for_user

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


def _appointment_dicts(db: Session, user: User) -> list[dict]:
    return [
        appointment_to_response(appt).model_dump(mode="json")
        for appt in get_appointments_for_user(db, user)
    ]


@router.get("/contractor", response_model=dict)
async def get_contractor_dashboard(
    current_user: User = Depends(get_current_contractor),
    db: Session = Depends(get_db),
):
    """Pending/accepted counts, earnings and upcoming appointments"""
    proposals = [
        ProposalService.to_response(proposal, current_user).model_dump(mode="json")
        for proposal in ProposalRepository.get_proposals(db, contractor_id=current_user.id)
    ]
    return contractor_summary(proposals, _appointment_dicts(db, current_user), datetime.now(timezone.utc))


@router.get("/homeowner", response_model=dict)
async def get_homeowner_dashboard(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Upcoming appointments and referral progress"""
    return homeowner_summary(
        _appointment_dicts(db, current_user),
        referral_count=current_user.referral_count or 0,
        max_houses_allowed=current_user.max_houses_allowed if current_user.max_houses_allowed is not None else 2,
        now=datetime.now(timezone.utc),
    )
