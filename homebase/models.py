import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate an opaque unique identifier"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="homeowner")  # homeowner, contractor, agent
    max_houses_allowed = Column(Integer, nullable=False, default=2)  # Drives the referral tier
    referral_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())

    proposals_issued = relationship(
        "Proposal", back_populates="contractor", foreign_keys="Proposal.contractor_id"
    )
    proposals_received = relationship(
        "Proposal", back_populates="homeowner", foreign_keys="Proposal.homeowner_id"
    )


class Proposal(Base):
    __tablename__ = "proposals"

    id = Column(String(36), primary_key=True, default=generate_id)
    contractor_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Nullable: a proposal may be drafted before a recipient is chosen
    homeowner_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    service_type = Column(String(50), nullable=False)
    estimated_cost = Column(Numeric(12, 2), nullable=False, default=0)
    estimated_duration = Column(String(100), nullable=False, default="")
    scope = Column(Text, nullable=False, default="")
    materials = Column(JSON, nullable=False, default=list)
    warranty_period = Column(String(100), nullable=True)
    valid_until = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="draft", index=True)

    customer_notes = Column(Text, nullable=True)  # Visible to the homeowner
    internal_notes = Column(Text, nullable=True)  # Contractor only
    attachments = Column(JSON, nullable=True)

    # Contract + e-signature audit trail
    contract_file_path = Column(String(500), nullable=True)
    contract_signed_at = Column(DateTime, nullable=True)
    customer_signature = Column(Text, nullable=True)  # PNG data URL
    customer_signer_name = Column(String(255), nullable=True)
    contractor_signature = Column(Text, nullable=True)
    signature_ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6, not trustworthy
    signature_user_agent = Column(String(500), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    contractor = relationship("User", back_populates="proposals_issued", foreign_keys=[contractor_id])
    homeowner = relationship("User", back_populates="proposals_received", foreign_keys=[homeowner_id])

    def __repr__(self):
        return f"<Proposal(id={self.id}, title={self.title}, status={self.status})>"


class ContractorAppointment(Base):
    __tablename__ = "contractor_appointments"

    id = Column(String(36), primary_key=True, default=generate_id)
    contractor_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    homeowner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    proposal_id = Column(String(36), ForeignKey("proposals.id", ondelete="SET NULL"), nullable=True)
    service_type = Column(String(50), nullable=False)
    scheduled_date_time = Column(DateTime, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="scheduled")  # scheduled, completed, cancelled
    created_at = Column(DateTime, server_default=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    homeowner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(500), nullable=True)
    priority = Column(String(20), nullable=False, default="normal")
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())


class UserAchievement(Base):
    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("homeowner_id", "achievement_type", name="uq_user_achievement_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    homeowner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_type = Column(String(100), nullable=False)
    achievement_title = Column(String(255), nullable=False)
    achievement_description = Column(Text, nullable=True)
    achievement_metadata = Column(JSON, nullable=True)
    unlocked_at = Column(DateTime, server_default=func.now())
