# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Transition Planner

Pure mapping from a classified stack state (and any orphans) to the single
corrective transition for a deploy run. No AWS calls are made here.
"""

from typing import Optional, Sequence

from .models import OrphanCandidate, OrphanChoice, StackState, Transition, TransitionPlan

BUSY_REASON = "operation in progress, retry later"
STUCK_REASON = "manual resource cleanup required"

_DIRECT = {
    StackState.HEALTHY: (Transition.UPDATE, "stack is healthy"),
    StackState.FAILED_UPDATE: (Transition.UPDATE, "previous update rolled back"),
    StackState.DEGRADED: (Transition.UPDATE, "stack is in a failed state"),
    StackState.FAILED_INITIAL: (
        Transition.TEARDOWN_THEN_CREATE,
        "initial creation rolled back",
    ),
    StackState.BUSY: (Transition.FAIL, BUSY_REASON),
    StackState.STUCK: (Transition.FAIL, STUCK_REASON),
}


def requires_confirmation(state: StackState, orphans: Sequence[OrphanCandidate]) -> bool:
    """True when the operator must choose between importing and discarding orphans"""
    return state == StackState.ABSENT and len(orphans) > 0


def plan_transition(
    state: StackState,
    orphans: Sequence[OrphanCandidate] = (),
    choice: Optional[OrphanChoice] = None,
) -> TransitionPlan:
    """
    Choose the corrective transition for a deploy

    Args:
        state: Classified stack state
        orphans: Orphan candidates detected for the stack
        choice: Operator decision, required when requires_confirmation() is True

    Returns:
        TransitionPlan

    Raises:
        ValueError: Orphans are present on an absent stack and no choice was given
    """
    orphans = tuple(orphans)

    if state == StackState.ABSENT:
        if not orphans:
            return TransitionPlan(
                transition=Transition.CREATE, state=state, reason="stack does not exist"
            )
        if choice is None:
            raise ValueError("orphaned resources found; an import or discard choice is required")
        if choice == OrphanChoice.IMPORT:
            return TransitionPlan(
                transition=Transition.IMPORT,
                state=state,
                orphans=orphans,
                reason="import orphaned resources",
            )
        return TransitionPlan(
            transition=Transition.DISCARD_THEN_CREATE,
            state=state,
            orphans=orphans,
            reason="discard orphaned resources",
        )

    transition, reason = _DIRECT[state]
    return TransitionPlan(transition=transition, state=state, orphans=orphans, reason=reason)
