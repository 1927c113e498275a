"""
Negotiation state machine - pure status transition rules.

    pending --(first price pitch / final offer)--> active
    pending | active --(capture committed)--> paid
    pending | active --(either party)--> cancelled

paid and cancelled are terminal: no further status or price changes.
"""

import logging
from typing import Dict, FrozenSet

from shopsphere.errors import InvalidTransition
from shopsphere.models import NegotiationStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


class NegotiationStateMachine:
    """Transition table for negotiation statuses"""

    TRANSITIONS: Dict[NegotiationStatus, FrozenSet[NegotiationStatus]] = {
        NegotiationStatus.PENDING: frozenset({
            NegotiationStatus.ACTIVE,
            NegotiationStatus.PAID,
            NegotiationStatus.CANCELLED,
        }),
        NegotiationStatus.ACTIVE: frozenset({
            NegotiationStatus.ACTIVE,
            NegotiationStatus.PAID,
            NegotiationStatus.CANCELLED,
        }),
        NegotiationStatus.PAID: frozenset(),
        NegotiationStatus.CANCELLED: frozenset(),
    }

    @classmethod
    def is_terminal(cls, status: NegotiationStatus) -> bool:
        return NegotiationStatus(status) in TERMINAL_STATUSES

    @classmethod
    def can_transition(cls, current: NegotiationStatus, target: NegotiationStatus) -> bool:
        return NegotiationStatus(target) in cls.TRANSITIONS[NegotiationStatus(current)]

    @classmethod
    def transition(cls, current: NegotiationStatus, target: NegotiationStatus) -> NegotiationStatus:
        """
        Validate a status change.

        Args:
            current: Status the negotiation is in
            target: Status requested

        Returns:
            The target status

        Raises:
            InvalidTransition: If the change is not allowed
        """
        current = NegotiationStatus(current)
        target = NegotiationStatus(target)
        if not cls.can_transition(current, target):
            logger.warning(f"Rejected negotiation transition {current.value} -> {target.value}")
            raise InvalidTransition(
                f"Cannot move a {current.value} negotiation to {target.value}"
            )
        return target
