import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from ..auth import get_current_contractor, get_current_user
from ..database import get_db
from ..models import ContractorAppointment, Proposal, User
from ..utils.sanitization import sanitize_string

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["Appointments"])

APPOINTMENT_STATUSES = ("scheduled", "completed", "cancelled")


class AppointmentCreate(BaseModel):
    homeownerId: str
    serviceType: str
    scheduledDateTime: datetime
    proposalId: Optional[str] = None
    notes: Optional[str] = None
    status: str = "scheduled"

    @field_validator("serviceType")
    @classmethod
    def validate_service_type(cls, v):
        if not v or not v.strip():
            raise ValueError("Service type is required")
        return v.strip()

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in APPOINTMENT_STATUSES:
            raise ValueError(f"Status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
        return v


class AppointmentResponse(BaseModel):
    id: str
    contractorId: str
    homeownerId: str
    proposalId: Optional[str]
    serviceType: str
    scheduledDateTime: datetime
    notes: Optional[str]
    status: str
    createdAt: Optional[datetime]


def appointment_to_response(appointment: ContractorAppointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        contractorId=appointment.contractor_id,
        homeownerId=appointment.homeowner_id,
        proposalId=appointment.proposal_id,
        serviceType=appointment.service_type,
        scheduledDateTime=appointment.scheduled_date_time,
        notes=appointment.notes,
        status=appointment.status,
        createdAt=appointment.created_at,
    )


def get_appointments_for_user(
    db: Session,
    user: User,
    contractor_id: Optional[str] = None,
    homeowner_id: Optional[str] = None,
) -> list[ContractorAppointment]:
    """Appointments the user is party to, in scheduled order"""
    if contractor_id and contractor_id != user.id:
        raise HTTPException(status_code=403, detail="You can only view your own appointments")
    if homeowner_id and homeowner_id != user.id:
        raise HTTPException(status_code=403, detail="You can only view your own appointments")

    query = db.query(ContractorAppointment)
    if contractor_id or (not homeowner_id and user.role == "contractor"):
        query = query.filter(ContractorAppointment.contractor_id == user.id)
    else:
        query = query.filter(ContractorAppointment.homeowner_id == user.id)

    return query.order_by(ContractorAppointment.scheduled_date_time.asc()).all()


@router.get("", response_model=list[AppointmentResponse])
async def get_appointments(
    contractorId: Optional[str] = Query(None),
    homeownerId: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the current user's appointments"""
    appointments = get_appointments_for_user(db, current_user, contractorId, homeownerId)
    return [appointment_to_response(appt) for appt in appointments]


@router.post("", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_contractor),
    db: Session = Depends(get_db),
):
    """Schedule a visit with a homeowner"""
    homeowner = db.query(User).filter(User.id == data.homeownerId, User.role == "homeowner").first()
    if not homeowner:
        raise HTTPException(status_code=404, detail="Homeowner not found")

    if data.proposalId:
        proposal = db.query(Proposal).filter(Proposal.id == data.proposalId).first()
        if not proposal or proposal.contractor_id != current_user.id:
            raise HTTPException(status_code=404, detail="Proposal not found")

    # Stored as naive UTC
    scheduled_at = data.scheduledDateTime
    if scheduled_at.tzinfo is not None:
        scheduled_at = scheduled_at.astimezone(timezone.utc).replace(tzinfo=None)

    appointment = ContractorAppointment(
        contractor_id=current_user.id,
        homeowner_id=homeowner.id,
        proposal_id=data.proposalId,
        service_type=sanitize_string(data.serviceType),
        scheduled_date_time=scheduled_at,
        notes=sanitize_string(data.notes),
        status=data.status,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    logger.info(f"📅 Appointment {appointment.id} scheduled by contractor {current_user.id} for {appointment.scheduled_date_time}")
    return appointment_to_response(appointment)
