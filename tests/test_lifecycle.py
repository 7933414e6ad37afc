import pytest

from ricevute.config import RewardPolicy
from ricevute.domain.errors import InvalidStateTransition
from ricevute.domain.lifecycle import compute_rewards, ensure_transition_allowed, is_terminal
from ricevute.domain.models import IntakeStatus


@pytest.mark.parametrize(
    "amount,points,cashback",
    [(240.0, 24, 4.8), (99.99, 9, 2.0), (9.99, 0, 0.2)],
)
def test_rewards(amount, points, cashback):
    r = compute_rewards(amount, RewardPolicy())
    assert r.points == points
    assert r.cashback == pytest.approx(cashback)


def test_rewards_follow_policy():
    r = compute_rewards(100.0, RewardPolicy(points_divisor=5, cashback_rate=0.1))
    assert (r.points, r.cashback) == (20, 10.0)


def test_terminal_states():
    assert not is_terminal(IntakeStatus.PROVISIONAL)
    assert is_terminal(IntakeStatus.FINAL)
    assert is_terminal(IntakeStatus.REJECTED)


def test_transitions():
    ensure_transition_allowed(1, IntakeStatus.PROVISIONAL, IntakeStatus.FINAL)
    ensure_transition_allowed(1, IntakeStatus.PROVISIONAL, IntakeStatus.REJECTED)
    for current in (IntakeStatus.FINAL, IntakeStatus.REJECTED):
        for target in IntakeStatus:
            with pytest.raises(InvalidStateTransition):
                ensure_transition_allowed(1, current, target)
