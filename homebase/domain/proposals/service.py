"""Proposal service - Business logic for proposal operations"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import Proposal, User
from ...services.achievement_service import check_and_unlock_contractor_hiring_achievements
from ...services.notification_service import notify_proposal_sent
from ...services.status_automation import expire_stale_proposals
from ...shared.validators import normalize_cost, normalize_object_path
from ...utils.sanitization import sanitize_list, sanitize_string
from .repository import ProposalRepository
from .schemas import (
    ContractUploadRequest,
    ProposalCreate,
    ProposalResponse,
    ProposalUpdate,
    SignatureRequest,
)
from .state_machine import InvalidTransition, ProposalStatus, assert_signable, assert_transition

logger = logging.getLogger(__name__)

# API field -> column, for partial updates
UPDATABLE_FIELDS = {
    "homeownerId": "homeowner_id",
    "title": "title",
    "description": "description",
    "serviceType": "service_type",
    "estimatedCost": "estimated_cost",
    "estimatedDuration": "estimated_duration",
    "scope": "scope",
    "materials": "materials",
    "warrantyPeriod": "warranty_period",
    "validUntil": "valid_until",
    "status": "status",
    "customerNotes": "customer_notes",
    "internalNotes": "internal_notes",
    "attachments": "attachments",
}

# Columns that may be cleared by sending null
NULLABLE_FIELDS = {
    "homeownerId",
    "warrantyPeriod",
    "validUntil",
    "customerNotes",
    "internalNotes",
    "attachments",
}

SANITIZED_FIELDS = {
    "title",
    "description",
    "serviceType",
    "estimatedDuration",
    "scope",
    "warrantyPeriod",
    "customerNotes",
    "internalNotes",
}

HOMEOWNER_STATUS_CHOICES = {ProposalStatus.ACCEPTED, ProposalStatus.REJECTED}


def invalid_transition_detail(error: InvalidTransition) -> dict:
    return {
        "code": "invalid_transition",
        "current": error.current,
        "target": error.target,
        "message": str(error),
    }


class ProposalService:
    """Service layer for proposal business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ProposalRepository()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_proposals(
        self,
        user: User,
        contractor_id: Optional[str] = None,
        homeowner_id: Optional[str] = None,
    ) -> list[Proposal]:
        """Get the caller's proposals, issued or received"""
        if contractor_id and contractor_id != user.id:
            raise HTTPException(status_code=403, detail="You can only view your own proposals")
        if homeowner_id and homeowner_id != user.id:
            raise HTTPException(status_code=403, detail="You can only view your own proposals")

        if not contractor_id and not homeowner_id:
            if user.role == "contractor":
                contractor_id = user.id
            else:
                homeowner_id = user.id

        return self.repo.get_proposals(self.db, contractor_id, homeowner_id)

    def get_proposal(self, proposal_id: str, user: User) -> Proposal:
        """Get a proposal the caller issued or received"""
        proposal = self.repo.get_proposal_by_id(self.db, proposal_id)
        if not proposal or user.id not in (proposal.contractor_id, proposal.homeowner_id):
            raise HTTPException(status_code=404, detail="Proposal not found")
        return proposal

    def _get_owned_proposal(self, proposal_id: str, user: User) -> Proposal:
        proposal = self.get_proposal(proposal_id, user)
        if proposal.contractor_id != user.id:
            raise HTTPException(status_code=403, detail="Only the issuing contractor can do this")
        return proposal

    def _require_homeowner(self, homeowner_id: str) -> User:
        homeowner = self.repo.get_user_by_id(self.db, homeowner_id)
        if not homeowner or homeowner.role != "homeowner":
            raise HTTPException(status_code=404, detail="Homeowner not found")
        return homeowner

    def _unlock_achievements(self, homeowner_id: str) -> list[dict]:
        # The status change is already committed; a failed unlock must not undo it
        try:
            return check_and_unlock_contractor_hiring_achievements(self.db, homeowner_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Achievement check failed for homeowner {homeowner_id}: {e}")
            return []

    def _transition(self, proposal: Proposal, target: str) -> str:
        try:
            return assert_transition(proposal.status, target).value
        except InvalidTransition as e:
            logger.warning(f"⚠️ Rejected status change for proposal {proposal.id}: {e}")
            raise HTTPException(status_code=409, detail=invalid_transition_detail(e)) from e

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_proposal(self, data: ProposalCreate, user: User) -> Proposal:
        """Create a new proposal issued by the caller"""
        logger.info(f"📝 Creating proposal for contractor_id: {user.id}, homeowner_id: {data.homeownerId}")

        if user.role != "contractor":
            raise HTTPException(status_code=403, detail="Only contractors can create proposals")

        if data.homeownerId:
            self._require_homeowner(data.homeownerId)

        # New proposals start as drafts; creating one already sent is the only shortcut
        try:
            status = assert_transition(ProposalStatus.DRAFT.value, data.status.value)
        except InvalidTransition as e:
            raise HTTPException(status_code=409, detail=invalid_transition_detail(e)) from e

        proposal_data = {
            "homeowner_id": data.homeownerId,
            "title": sanitize_string(data.title),
            "description": sanitize_string(data.description),
            "service_type": sanitize_string(data.serviceType),
            "estimated_cost": Decimal(data.estimatedCost),
            "estimated_duration": sanitize_string(data.estimatedDuration),
            "scope": sanitize_string(data.scope),
            "materials": sanitize_list(data.materials),
            "warranty_period": sanitize_string(data.warrantyPeriod),
            "valid_until": data.validUntil,
            "status": status.value,
            "customer_notes": sanitize_string(data.customerNotes),
            "internal_notes": sanitize_string(data.internalNotes),
            "attachments": data.attachments,
        }

        proposal = self.repo.create_proposal(self.db, user.id, **proposal_data)
        logger.info(f"✅ Proposal {proposal.id} created by contractor {user.id}")

        if proposal.homeowner_id:
            notify_proposal_sent(self.db, proposal, user)

        return proposal

    def update_proposal(
        self, proposal_id: str, data: ProposalUpdate, user: User
    ) -> tuple[Proposal, list[dict]]:
        """
        Apply a partial update.

        Only fields present in the request body are written. The contractor who
        issued the proposal may change any field; the attached homeowner may only
        accept or reject it.

        Returns:
            The updated proposal and any achievements unlocked by the change
        """
        proposal = self.get_proposal(proposal_id, user)
        fields = data.model_fields_set

        if proposal.contractor_id != user.id:
            if fields - {"status"}:
                raise HTTPException(status_code=403, detail="Homeowners can only accept or reject a proposal")
            if data.status is not None and data.status not in HOMEOWNER_STATUS_CHOICES:
                raise HTTPException(status_code=403, detail="Homeowners can only accept or reject a proposal")

        previous_status = proposal.status
        updates = {}
        for field in fields:
            column = UPDATABLE_FIELDS.get(field)
            if column is None:
                continue

            value = getattr(data, field)
            if value is None and field not in NULLABLE_FIELDS:
                continue

            if field == "status":
                value = self._transition(proposal, value.value)
            elif field == "estimatedCost":
                value = Decimal(value)
            elif field == "materials":
                value = sanitize_list(value)
            elif field == "homeownerId" and value is not None:
                self._require_homeowner(value)
            elif field in SANITIZED_FIELDS:
                value = sanitize_string(value)

            updates[column] = value

        proposal = self.repo.update_proposal(self.db, proposal, **updates)
        logger.info(f"✅ Proposal {proposal.id} updated by user {user.id}: {sorted(updates)}")

        achievements = []
        if proposal.status != previous_status:
            logger.info(f"🔄 Proposal {proposal.id} transitioned: {previous_status} → {proposal.status}")
            if proposal.status == ProposalStatus.SENT.value:
                notify_proposal_sent(self.db, proposal, proposal.contractor)
            elif proposal.status == ProposalStatus.ACCEPTED.value and proposal.homeowner_id:
                achievements = self._unlock_achievements(proposal.homeowner_id)

        return proposal, achievements

    def delete_proposal(self, proposal_id: str, user: User) -> None:
        """Hard delete a proposal"""
        proposal = self._get_owned_proposal(proposal_id, user)
        self.repo.delete_proposal(self.db, proposal)
        logger.info(f"🗑️ Proposal {proposal_id} deleted by contractor {user.id}")

    def set_contract(self, proposal_id: str, data: ContractUploadRequest, user: User) -> Proposal:
        """Attach an uploaded contract document"""
        proposal = self._get_owned_proposal(proposal_id, user)

        try:
            contract_path = normalize_object_path(data.contractFilePath)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        proposal = self.repo.set_contract(self.db, proposal, contract_path)
        logger.info(f"📄 Contract {contract_path} attached to proposal {proposal.id}")
        return proposal

    def sign_proposal(
        self,
        proposal_id: str,
        data: SignatureRequest,
        user: User,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[Proposal, list[dict]]:
        """
        Record the homeowner's signature on the proposal's contract.

        Signing accepts the proposal. The IP address is whatever the browser
        reported, falling back to the address the request came from.
        """
        proposal = self.get_proposal(proposal_id, user)

        if proposal.homeowner_id != user.id:
            raise HTTPException(status_code=403, detail="Only the homeowner can sign this proposal")
        if not proposal.contract_file_path:
            raise HTTPException(status_code=409, detail="Upload a contract before signing")
        if proposal.customer_signature:
            raise HTTPException(status_code=409, detail="Proposal has already been signed")

        try:
            assert_signable(proposal.status)
        except InvalidTransition as e:
            raise HTTPException(status_code=409, detail=invalid_transition_detail(e)) from e

        ip_address = data.ipAddress or client_ip

        proposal = self.repo.sign_customer(
            self.db,
            proposal,
            signature=data.signature,
            signer_name=sanitize_string(data.signerName),
            signed_at=data.signedAt,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            status=ProposalStatus.ACCEPTED.value,
        )
        logger.info(
            f"✍️ Proposal {proposal.id} signed by homeowner {user.id} "
            f"(signer: {proposal.customer_signer_name}, ip: {ip_address or 'unknown'})"
        )

        return proposal, self._unlock_achievements(user.id)

    def expire_stale(self) -> dict:
        return expire_stale_proposals(self.db)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def to_response(
        proposal: Proposal, viewer: User, achievements: Optional[list[dict]] = None
    ) -> ProposalResponse:
        """Build the API representation; internal notes are for the contractor only"""
        return ProposalResponse(
            id=proposal.id,
            contractorId=proposal.contractor_id,
            homeownerId=proposal.homeowner_id,
            title=proposal.title,
            description=proposal.description or "",
            serviceType=proposal.service_type,
            estimatedCost=normalize_cost(proposal.estimated_cost if proposal.estimated_cost is not None else 0),
            estimatedDuration=proposal.estimated_duration or "",
            scope=proposal.scope or "",
            materials=proposal.materials or [],
            warrantyPeriod=proposal.warranty_period,
            validUntil=proposal.valid_until,
            status=proposal.status,
            customerNotes=proposal.customer_notes,
            internalNotes=proposal.internal_notes if viewer.id == proposal.contractor_id else None,
            attachments=proposal.attachments,
            contractFilePath=proposal.contract_file_path,
            contractSignedAt=proposal.contract_signed_at,
            customerSignature=proposal.customer_signature,
            customerSignerName=proposal.customer_signer_name,
            contractorSignature=proposal.contractor_signature,
            signatureIpAddress=proposal.signature_ip_address,
            createdAt=proposal.created_at,
            updatedAt=proposal.updated_at,
            newAchievements=achievements or None,
        )
