"""Handoff state machine for single- and multi-profile tasks."""

from specialist_router.handoff.coordinator import (
    HandoffCoordinator,
    TransitionOutcome,
    evaluate_contracts,
    unsatisfied_condition,
)

__all__ = [
    "HandoffCoordinator",
    "TransitionOutcome",
    "evaluate_contracts",
    "unsatisfied_condition",
]
