"""
Proposal create/edit form validation

Everything here runs before a request is sent; a rejected form raises
ValidationFailure and never reaches the network.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator

from ..domain.proposals.state_machine import ProposalStatus
from ..shared.validators import normalize_cost, normalize_materials
from .api import ValidationFailure

SERVICE_TYPES = [
    "hvac",
    "plumbing",
    "electrical",
    "roofing",
    "gutters",
    "drywall",
    "custom-cabinetry",
    "flooring",
    "painting",
    "landscaping",
    "other",
]


class ProposalForm(BaseModel):
    """Values of the create/edit proposal form"""

    title: str
    serviceType: str
    estimatedCost: str
    description: str = ""
    estimatedDuration: str = ""
    scope: str = ""
    materials: list[str] = []
    warrantyPeriod: Optional[str] = None
    validUntil: Optional[date] = None
    status: ProposalStatus = ProposalStatus.DRAFT
    customerNotes: Optional[str] = None
    internalNotes: Optional[str] = None
    homeownerId: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        if not v or not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("serviceType")
    @classmethod
    def validate_service_type(cls, v):
        if not v or not v.strip():
            raise ValueError("Service type is required")
        if v.strip() not in SERVICE_TYPES:
            raise ValueError(f"Unknown service type: {v}")
        return v.strip()

    @field_validator("estimatedCost", mode="before")
    @classmethod
    def validate_cost(cls, v):
        return normalize_cost(v)

    @field_validator("materials", mode="before")
    @classmethod
    def validate_materials(cls, v):
        return normalize_materials(v)

    @field_validator("warrantyPeriod", "customerNotes", "internalNotes", "homeownerId", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")


def _messages(error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        message = item["msg"]
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(message)
    return messages


def build_create_payload(values: dict) -> dict:
    """
    Validate create-form values and return the request body.

    Raises:
        ValidationFailure: If any field is missing or invalid
    """
    try:
        return ProposalForm(**values).to_payload()
    except ValidationError as e:
        raise ValidationFailure(_messages(e)) from e


def build_update_payload(patch: dict) -> dict:
    """
    Validate a partial update, re-normalizing only the fields present.

    Raises:
        ValidationFailure: If a present field is invalid
    """
    payload = dict(patch)
    errors = []

    for field, message in (("title", "Title is required"), ("serviceType", "Service type is required")):
        if field in payload:
            value = payload[field]
            if not isinstance(value, str) or not value.strip():
                errors.append(message)
            else:
                payload[field] = value.strip()

    if "estimatedCost" in payload:
        try:
            payload["estimatedCost"] = normalize_cost(payload["estimatedCost"])
        except ValueError as e:
            errors.append(str(e))

    if "materials" in payload:
        payload["materials"] = normalize_materials(payload["materials"])

    if "status" in payload:
        try:
            payload["status"] = ProposalStatus(payload["status"]).value
        except ValueError:
            errors.append(f"Unknown status: {payload['status']}")

    if isinstance(payload.get("validUntil"), date):
        payload["validUntil"] = payload["validUntil"].isoformat()

    if errors:
        raise ValidationFailure(errors)
    return payload


def form_values_from_proposal(proposal: dict) -> dict:
    """Prefill the edit form from a fetched proposal"""
    return {
        "title": proposal.get("title", ""),
        "serviceType": proposal.get("serviceType", ""),
        "estimatedCost": proposal.get("estimatedCost", ""),
        "description": proposal.get("description", ""),
        "estimatedDuration": proposal.get("estimatedDuration", ""),
        "scope": proposal.get("scope", ""),
        "materials": ", ".join(proposal.get("materials") or []),
        "warrantyPeriod": proposal.get("warrantyPeriod") or "",
        "validUntil": proposal.get("validUntil"),
        "status": proposal.get("status", ProposalStatus.DRAFT.value),
        "customerNotes": proposal.get("customerNotes") or "",
        "internalNotes": proposal.get("internalNotes") or "",
        "homeownerId": proposal.get("homeownerId"),
    }

