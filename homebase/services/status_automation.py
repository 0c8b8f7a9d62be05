"""
Automated status transitions for proposals
Handles sent → expired once a proposal's validity window has closed
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..domain.proposals.repository import ProposalRepository
from ..domain.proposals.state_machine import ProposalStatus, assert_transition

logger = logging.getLogger(__name__)


def expire_stale_proposals(db: Session, today: Optional[date] = None) -> dict:
    """
    Expire sent proposals whose validUntil date has passed
    Should be run as a scheduled job (daily cron)

    A proposal valid until today is still open today; it expires tomorrow.

    Returns:
        dict: Summary of status changes made
    """
    summary = {"sent_to_expired": 0, "total_updated": 0}

    try:
        today = today or datetime.now(timezone.utc).date()

        for proposal in ProposalRepository.get_stale_sent_proposals(db, today):
            proposal.status = assert_transition(proposal.status, ProposalStatus.EXPIRED.value).value
            summary["sent_to_expired"] += 1
            logger.info(f"⌛ Proposal {proposal.id} transitioned: sent → expired (valid until {proposal.valid_until})")

        if summary["sent_to_expired"] > 0:
            db.commit()
            summary["total_updated"] = summary["sent_to_expired"]
            logger.info(f"📊 Proposal automation summary: {summary}")
        else:
            logger.debug("ℹ️ No proposal status updates needed")

        return summary

    except Exception as e:
        logger.error(f"❌ Error expiring proposals: {str(e)}")
        db.rollback()
        raise
