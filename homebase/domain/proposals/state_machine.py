"""Proposal status transitions"""

from enum import Enum


class ProposalStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


ALLOWED_TRANSITIONS: dict[ProposalStatus, set[ProposalStatus]] = {
    ProposalStatus.DRAFT: {ProposalStatus.SENT},
    ProposalStatus.SENT: {
        ProposalStatus.ACCEPTED,
        ProposalStatus.REJECTED,
        ProposalStatus.EXPIRED,
    },
    ProposalStatus.ACCEPTED: set(),
    ProposalStatus.REJECTED: set(),
    ProposalStatus.EXPIRED: set(),
}

# Signing a contract is an acceptance; a drafted proposal with a contract
# attached may be signed directly.
SIGNABLE_STATUSES = {ProposalStatus.DRAFT, ProposalStatus.SENT}


class InvalidTransition(ValueError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change proposal status from '{current}' to '{target}'")


def can_transition(current: str, target: str) -> bool:
    """Same-status updates are no-ops and always allowed"""
    if current == target:
        return True
    try:
        return ProposalStatus(target) in ALLOWED_TRANSITIONS[ProposalStatus(current)]
    except ValueError:
        return False


def assert_transition(current: str, target: str) -> ProposalStatus:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
    return ProposalStatus(target)


def assert_signable(current: str) -> None:
    if ProposalStatus(current) not in SIGNABLE_STATUSES:
        raise InvalidTransition(current, ProposalStatus.ACCEPTED.value)
