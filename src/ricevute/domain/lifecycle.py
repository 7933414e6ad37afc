"""
@file lifecycle.py
@brief Macchina a stati del record di acquisizione e calcolo premi.
@ingroup domain_module

@details
provisional -> final | rejected; final e rejected sono terminali.
"""

from __future__ import annotations
import math

from ricevute.config import RewardPolicy
from .errors import InvalidStateTransition
from .models import IntakeStatus, Rewards

ALLOWED_TRANSITIONS: dict[IntakeStatus, frozenset[IntakeStatus]] = {
    IntakeStatus.PROVISIONAL: frozenset({IntakeStatus.FINAL, IntakeStatus.REJECTED}),
    IntakeStatus.FINAL: frozenset(),
    IntakeStatus.REJECTED: frozenset(),
}


def is_terminal(status: IntakeStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def ensure_transition_allowed(record_id: int, current: IntakeStatus, target: IntakeStatus) -> None:
    """
    @brief Verifica che la transizione sia ammessa.
    @throws InvalidStateTransition Se il record è già terminale.
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateTransition(
            f"Intake record {record_id} is already {current.value}",
            {"intake_id": record_id, "status": current.value, "requested": target.value},
        )


def compute_rewards(amount: float, policy: RewardPolicy) -> Rewards:
    """
    @brief Punti e cashback deterministici per un importo approvato.
    @param amount Importo del record (> 0).
    @param policy Divisore punti e percentuale cashback.
    @return Rewards(points=floor(amount / divisor), cashback=amount * rate arrotondato al centesimo).
    """
    points = int(math.floor(amount / policy.points_divisor)) if amount > 0 else 0
    cashback = round(amount * policy.cashback_rate, 2) if amount > 0 else 0.0
    return Rewards(points=points, cashback=cashback)
