"""Negotiation services"""

from .state_machine import NegotiationStateMachine
from .manager import NegotiationManager, parse_price

__all__ = ["NegotiationStateMachine", "NegotiationManager", "parse_price"]
