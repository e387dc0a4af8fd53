"""Approver routing recommendations."""

from signoff.routing.engine import (
    CandidateScore,
    RoutingContext,
    RoutingDecision,
    RoutingEngine,
    TeamMember,
)

__all__ = [
    "RoutingEngine",
    "RoutingContext",
    "RoutingDecision",
    "CandidateScore",
    "TeamMember",
]
