"""
In-app notifications for homeowners.
Delivery beyond the notifications table (push, email) is handled elsewhere.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models import Notification, Proposal, User

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    homeowner_id: str,
    notification_type: str,
    title: str,
    message: str,
    link: Optional[str] = None,
    priority: str = "normal",
) -> Notification:
    notification = Notification(
        homeowner_id=homeowner_id,
        type=notification_type,
        title=title,
        message=message,
        link=link,
        priority=priority,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    logger.info(f"🔔 Notification '{title}' created for homeowner {homeowner_id}")
    return notification


def notify_proposal_sent(db: Session, proposal: Proposal, contractor: User) -> Optional[Notification]:
    """Tell the attached homeowner a proposal is waiting for them"""
    if not proposal.homeowner_id:
        return None

    contractor_name = contractor.name or "A contractor"
    try:
        return create_notification(
            db,
            homeowner_id=proposal.homeowner_id,
            notification_type="proposal",
            title="New Proposal",
            message=f"{contractor_name} sent you a proposal: {proposal.title}",
            link="/messages",
            priority="high",
        )
    except Exception as e:
        # The proposal itself is already saved; a missed notification must not fail it
        db.rollback()
        logger.error(f"Failed to create proposal notification for {proposal.id}: {e}")
        return None


def get_notifications(db: Session, homeowner_id: str) -> list[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.homeowner_id == homeowner_id)
        .order_by(Notification.created_at.desc())
        .all()
    )
