"""Proposal router - FastAPI endpoints for proposal operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...rate_limiter import create_rate_limiter, get_client_ip
from .schemas import (
    ContractUploadRequest,
    ProposalCreate,
    ProposalResponse,
    ProposalUpdate,
    SignatureRequest,
)
from .service import ProposalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proposals", tags=["Proposals"])

rate_limit_sign = create_rate_limiter(limit=20, window_seconds=3600, key_prefix="proposal_sign")


def get_proposal_service(db: Session = Depends(get_db)) -> ProposalService:
    """Dependency injection for ProposalService"""
    return ProposalService(db)


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ProposalResponse])
async def get_proposals(
    contractorId: Optional[str] = Query(None, description="Proposals issued by this contractor"),
    homeownerId: Optional[str] = Query(None, description="Proposals sent to this homeowner"),
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Get the current user's proposals, newest first"""
    proposals = service.get_proposals(current_user, contractorId, homeownerId)
    return [service.to_response(proposal, current_user) for proposal in proposals]


@router.post("", response_model=ProposalResponse, status_code=201)
async def create_proposal(
    data: ProposalCreate,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Create a new proposal"""
    proposal = service.create_proposal(data, current_user)
    return service.to_response(proposal, current_user)


@router.post("/automation/expire", response_model=dict)
async def run_proposal_expiry(
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """
    Manually trigger proposal expiry
    (In production this runs daily from the worker's cron)
    """
    logger.info(f"⏱️ Proposal expiry triggered by user {current_user.id}")
    return service.expire_stale()


@router.get("/{proposal_id}", response_model=ProposalResponse)
async def get_proposal(
    proposal_id: str,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Get a specific proposal"""
    proposal = service.get_proposal(proposal_id, current_user)
    return service.to_response(proposal, current_user)


@router.patch("/{proposal_id}", response_model=ProposalResponse, response_model_exclude_none=False)
async def update_proposal(
    proposal_id: str,
    data: ProposalUpdate,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Partially update a proposal; the response lists any achievements unlocked"""
    proposal, achievements = service.update_proposal(proposal_id, data, current_user)
    return service.to_response(proposal, current_user, achievements)


@router.delete("/{proposal_id}", status_code=204)
async def delete_proposal(
    proposal_id: str,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Delete a proposal permanently"""
    service.delete_proposal(proposal_id, current_user)
    return Response(status_code=204)


# ============================================================================
# CONTRACT & SIGNATURE
# ============================================================================


@router.post("/{proposal_id}/contract", response_model=ProposalResponse)
async def upload_contract(
    proposal_id: str,
    data: ContractUploadRequest,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
):
    """Attach an uploaded contract document to a proposal"""
    proposal = service.set_contract(proposal_id, data, current_user)
    return service.to_response(proposal, current_user)


@router.post("/{proposal_id}/sign", response_model=ProposalResponse)
async def sign_proposal(
    proposal_id: str,
    data: SignatureRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: ProposalService = Depends(get_proposal_service),
    _: None = Depends(rate_limit_sign),
):
    """Sign a proposal's contract as the homeowner"""
    proposal, achievements = service.sign_proposal(
        proposal_id,
        data,
        current_user,
        client_ip=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return service.to_response(proposal, current_user, achievements)
