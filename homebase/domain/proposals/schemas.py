"""Proposal domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import normalize_cost, normalize_materials
from .state_machine import ProposalStatus


class ProposalCreate(BaseModel):
    """Schema for creating a new proposal"""

    homeownerId: Optional[str] = None
    title: str
    description: str = ""
    serviceType: str
    estimatedCost: str = "0.00"
    estimatedDuration: str = ""
    scope: str = ""
    materials: list[str] = []
    warrantyPeriod: Optional[str] = None
    validUntil: Optional[date] = None
    status: ProposalStatus = ProposalStatus.DRAFT
    customerNotes: Optional[str] = None
    internalNotes: Optional[str] = None
    attachments: Optional[list[str]] = None

    @field_validator("title", "serviceType")
    @classmethod
    def validate_required(cls, v):
        if not v or not v.strip():
            raise ValueError("This field is required")
        return v.strip()

    @field_validator("estimatedCost", mode="before")
    @classmethod
    def validate_cost(cls, v):
        return normalize_cost(v)

    @field_validator("materials", mode="before")
    @classmethod
    def validate_materials(cls, v):
        return normalize_materials(v)


class ProposalUpdate(BaseModel):
    """Schema for a partial proposal update - only fields sent are applied"""

    homeownerId: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    serviceType: Optional[str] = None
    estimatedCost: Optional[str] = None
    estimatedDuration: Optional[str] = None
    scope: Optional[str] = None
    materials: Optional[list[str]] = None
    warrantyPeriod: Optional[str] = None
    validUntil: Optional[date] = None
    status: Optional[ProposalStatus] = None
    customerNotes: Optional[str] = None
    internalNotes: Optional[str] = None
    attachments: Optional[list[str]] = None

    @field_validator("title", "serviceType")
    @classmethod
    def validate_required(cls, v):
        if v is not None and not v.strip():
            raise ValueError("This field cannot be blank")
        return v.strip() if v is not None else v

    @field_validator("estimatedCost", mode="before")
    @classmethod
    def validate_cost(cls, v):
        if v is None:
            return v
        return normalize_cost(v)

    @field_validator("materials", mode="before")
    @classmethod
    def validate_materials(cls, v):
        if v is None:
            return v
        return normalize_materials(v)


class ContractUploadRequest(BaseModel):
    """Schema for attaching an uploaded contract document"""

    contractFilePath: str


class SignatureRequest(BaseModel):
    """Schema for a customer e-signature submission"""

    signature: str  # PNG data URL
    signerName: str
    signedAt: datetime
    ipAddress: Optional[str] = None

    @field_validator("signature")
    @classmethod
    def validate_signature(cls, v):
        if not v or not v.startswith("data:image/"):
            raise ValueError("Signature must be an image data URL")
        return v

    @field_validator("signerName")
    @classmethod
    def validate_signer_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Signer name is required")
        return v.strip()


class AchievementUnlocked(BaseModel):
    title: str
    description: Optional[str] = None


class ProposalResponse(BaseModel):
    """Schema for proposal response"""

    id: str
    contractorId: str
    homeownerId: Optional[str]
    title: str
    description: str
    serviceType: str
    estimatedCost: str
    estimatedDuration: str
    scope: str
    materials: list[str]
    warrantyPeriod: Optional[str]
    validUntil: Optional[date]
    status: str
    customerNotes: Optional[str]
    internalNotes: Optional[str] = None
    attachments: Optional[list[str]]
    contractFilePath: Optional[str]
    contractSignedAt: Optional[datetime]
    customerSignature: Optional[str]
    customerSignerName: Optional[str]
    contractorSignature: Optional[str]
    signatureIpAddress: Optional[str]
    createdAt: datetime
    updatedAt: datetime
    newAchievements: Optional[list[AchievementUnlocked]] = None

    class Config:
        from_attributes = True
