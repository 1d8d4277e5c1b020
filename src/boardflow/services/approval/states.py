"""Approval record states and transitions.

    ┌──────────┐
    │ PENDING  │ ← created by submission, escalation or resubmission
    └────┬─────┘
         │
    ┌────┴─────┐
    │          │
┌───▼────┐ ┌───▼────┐
│APPROVED│ │REJECTED│ (changes_requested flag returns the item to draft)
└────────┘ └────────┘

Both decided states are terminal. A changes request is a rejection of the
current record; resubmission creates a new record instead of reopening it.
"""

from typing import NamedTuple

from boardflow.services.approval.schemas import DecisionOutcome, RecordStatus


class TransitionRule(NamedTuple):
    """A legal record transition."""

    from_state: RecordStatus
    to_state: RecordStatus
    outcome: DecisionOutcome
    requires_comment: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(RecordStatus.PENDING, RecordStatus.APPROVED, DecisionOutcome.APPROVED),
    TransitionRule(
        RecordStatus.PENDING,
        RecordStatus.REJECTED,
        DecisionOutcome.REJECTED,
        requires_comment=True,
    ),
]

TRANSITION_TARGETS: dict[tuple[RecordStatus, DecisionOutcome], TransitionRule] = {
    (rule.from_state, rule.outcome): rule for rule in TRANSITION_RULES
}

TERMINAL_STATES: set[RecordStatus] = {RecordStatus.APPROVED, RecordStatus.REJECTED}


def get_transition_rule(
    from_state: RecordStatus, outcome: DecisionOutcome
) -> TransitionRule | None:
    """Get the rule for applying an outcome to a record in ``from_state``."""
    return TRANSITION_TARGETS.get((from_state, outcome))


def is_terminal(state: RecordStatus) -> bool:
    return state in TERMINAL_STATES
