import pytest

from homebase.domain.proposals.state_machine import (
    InvalidTransition,
    ProposalStatus,
    assert_signable,
    assert_transition,
    can_transition,
)


@pytest.mark.parametrize(
    "current,target",
    [
        ("draft", "sent"),
        ("sent", "accepted"),
        ("sent", "rejected"),
        ("sent", "expired"),
        ("draft", "draft"),
        ("accepted", "accepted"),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    assert assert_transition(current, target) == ProposalStatus(target)


@pytest.mark.parametrize(
    "current,target",
    [
        ("draft", "accepted"),
        ("draft", "expired"),
        ("sent", "draft"),
        ("accepted", "sent"),
        ("rejected", "accepted"),
        ("expired", "sent"),
        ("draft", "archived"),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransition) as exc:
        assert_transition(current, target)
    assert exc.value.current == current
    assert exc.value.target == target


def test_invalid_transition_is_a_value_error():
    with pytest.raises(ValueError):
        assert_transition("accepted", "draft")


def test_signing_allowed_only_before_a_decision():
    assert_signable("draft")
    assert_signable("sent")
    for status in ("accepted", "rejected", "expired"):
        with pytest.raises(InvalidTransition):
            assert_signable(status)
