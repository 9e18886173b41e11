"""
Issue Status State Machine
Valid lifecycle transitions for issues:

    reported -> in_review -> resolved | rejected

resolved and rejected are terminal. Boosting is a flag, not a state, and is
not governed here.
"""

import logging
from typing import Dict, Optional, Set

from models import IssueStatus
from utils.exception_handler import InvalidStatusTransitionError, ValidationError

logger = logging.getLogger(__name__)


class IssueStateMachine:
    """Business rules for issue status changes"""

    valid_transitions: Dict[str, Set[str]] = {
        IssueStatus.REPORTED.value: {
            IssueStatus.IN_REVIEW.value,
        },
        IssueStatus.IN_REVIEW.value: {
            IssueStatus.RESOLVED.value,
            IssueStatus.REJECTED.value,
        },
        # Terminal states (no transitions allowed)
        IssueStatus.RESOLVED.value: set(),
        IssueStatus.REJECTED.value: set(),
    }

    terminal_states: Set[str] = {
        IssueStatus.RESOLVED.value,
        IssueStatus.REJECTED.value,
    }

    initial_state = IssueStatus.REPORTED.value

    @classmethod
    def is_lifecycle_status(cls, status: Optional[str]) -> bool:
        return status in cls.valid_transitions

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.terminal_states

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.valid_transitions.get(current, set())

    @classmethod
    def validate_transition(cls, current: str, target: str) -> None:
        """Raise unless current -> target is an allowed change (same state is not a change)"""
        if not cls.is_lifecycle_status(target):
            raise ValidationError(f"Unknown issue status: {target!r}")
        if current == target:
            raise InvalidStatusTransitionError(current, target, f"Issue is already '{current}'")
        if not cls.can_transition(current, target):
            logger.warning(f"🚫 INVALID_TRANSITION: {current} -> {target}")
            raise InvalidStatusTransitionError(current, target)
