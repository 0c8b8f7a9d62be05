"""Proposal repository - Database operations for proposals"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Proposal, User


class ProposalRepository:
    """Repository for proposal database operations"""

    @staticmethod
    def get_proposals(
        db: Session,
        contractor_id: Optional[str] = None,
        homeowner_id: Optional[str] = None,
    ) -> list[Proposal]:
        """Get proposals filtered by issuer and/or recipient, newest first"""
        query = db.query(Proposal)

        if contractor_id:
            query = query.filter(Proposal.contractor_id == contractor_id)

        if homeowner_id:
            query = query.filter(Proposal.homeowner_id == homeowner_id)

        return query.order_by(Proposal.created_at.desc(), Proposal.id).all()

    @staticmethod
    def get_proposal_by_id(db: Session, proposal_id: str) -> Optional[Proposal]:
        return db.query(Proposal).filter(Proposal.id == proposal_id).first()

    @staticmethod
    def user_can_read_object(db: Session, user_id: str, object_path: str) -> bool:
        """True if a proposal the user is party to holds the object as its contract or an attachment"""
        proposals = db.query(Proposal).filter(
            or_(Proposal.contractor_id == user_id, Proposal.homeowner_id == user_id)
        )
        return any(
            proposal.contract_file_path == object_path or object_path in (proposal.attachments or [])
            for proposal in proposals
        )

    @staticmethod
    def create_proposal(db: Session, contractor_id: str, **proposal_data) -> Proposal:
        proposal = Proposal(contractor_id=contractor_id, **proposal_data)
        db.add(proposal)
        db.commit()
        db.refresh(proposal)
        return proposal

    @staticmethod
    def update_proposal(db: Session, proposal: Proposal, **updates) -> Proposal:
        """
        Apply a partial update.

        Keys present in ``updates`` are written even when their value is None,
        so callers can clear optional fields; absent keys are left untouched.
        """
        for key, value in updates.items():
            if hasattr(proposal, key):
                setattr(proposal, key, value)

        db.commit()
        db.refresh(proposal)
        return proposal

    @staticmethod
    def delete_proposal(db: Session, proposal: Proposal) -> None:
        db.delete(proposal)
        db.commit()

    @staticmethod
    def set_contract(db: Session, proposal: Proposal, contract_file_path: str) -> Proposal:
        proposal.contract_file_path = contract_file_path
        db.commit()
        db.refresh(proposal)
        return proposal

    @staticmethod
    def sign_customer(
        db: Session,
        proposal: Proposal,
        signature: str,
        signer_name: str,
        signed_at: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
        status: str,
    ) -> Proposal:
        proposal.customer_signature = signature
        proposal.customer_signer_name = signer_name
        proposal.contract_signed_at = signed_at
        proposal.signature_ip_address = ip_address
        proposal.signature_user_agent = user_agent
        proposal.status = status
        db.commit()
        db.refresh(proposal)
        return proposal

    @staticmethod
    def get_stale_sent_proposals(db: Session, today: date) -> list[Proposal]:
        """Sent proposals whose validity window has closed"""
        return (
            db.query(Proposal)
            .filter(
                Proposal.status == "sent",
                Proposal.valid_until.isnot(None),
                Proposal.valid_until < today,
            )
            .all()
        )

    @staticmethod
    def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()
