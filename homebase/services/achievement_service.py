"""
Contractor-hiring achievements for homeowners.

A homeowner "hires" a contractor when a proposal from that contractor is
accepted. Milestones unlock once each, the first time the number of distinct
hired contractors reaches their threshold.
"""

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Proposal, UserAchievement

logger = logging.getLogger(__name__)

CONTRACTOR_HIRE_MILESTONES = [
    {"count": 1, "type": "contractor_hired_1", "title": "First Hire!", "description": "You hired your first contractor"},
    {"count": 3, "type": "contractor_hired_3", "title": "Building Trust", "description": "You hired 3 contractors"},
    {"count": 5, "type": "contractor_hired_5", "title": "Growing Network", "description": "You hired 5 contractors"},
    {"count": 10, "type": "contractor_hired_10", "title": "Community Builder", "description": "You hired 10 contractors"},
]


def get_contractor_hire_count(db: Session, homeowner_id: str) -> int:
    return (
        db.query(func.count(func.distinct(Proposal.contractor_id)))
        .filter(Proposal.homeowner_id == homeowner_id, Proposal.status == "accepted")
        .scalar()
        or 0
    )


def has_achievement(db: Session, homeowner_id: str, achievement_type: str) -> bool:
    return (
        db.query(UserAchievement.id)
        .filter(
            UserAchievement.homeowner_id == homeowner_id,
            UserAchievement.achievement_type == achievement_type,
        )
        .first()
        is not None
    )


def check_and_unlock_contractor_hiring_achievements(db: Session, homeowner_id: str) -> list[dict]:
    """
    Unlock any hiring milestones the homeowner has newly reached.

    Returns:
        List of {"title", "description"} for achievements unlocked by this call,
        in milestone order
    """
    hire_count = get_contractor_hire_count(db, homeowner_id)
    unlocked = []

    for milestone in CONTRACTOR_HIRE_MILESTONES:
        if hire_count < milestone["count"]:
            break
        if has_achievement(db, homeowner_id, milestone["type"]):
            continue

        db.add(
            UserAchievement(
                homeowner_id=homeowner_id,
                achievement_type=milestone["type"],
                achievement_title=milestone["title"],
                achievement_description=milestone["description"],
                achievement_metadata={"contractorCount": hire_count},
            )
        )
        unlocked.append({"title": milestone["title"], "description": milestone["description"]})

    if unlocked:
        db.commit()
        logger.info(
            f"🏆 Homeowner {homeowner_id} unlocked {len(unlocked)} achievement(s) "
            f"at {hire_count} hired contractor(s)"
        )

    return unlocked
