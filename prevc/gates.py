"""
Phase Transition Gates

Pure policy checks deciding whether the workflow may advance from its
current phase. Two gates exist:

- plan_required: leaving Planning needs a linked plan
- approval_required: entering Execution needs an approved plan

Neither gate applies in autonomous mode. enforce_gates() is the only
place a failed check becomes an exception.
"""

import logging
from typing import Optional

from .errors import GateError
from .phases import get_phase_name, is_valid_phase, parse_phase
from .scaling import resolve_settings
from .schema import (
    PHASE_ORDER,
    GateCheckResult,
    GateChecks,
    GateSettings,
    GateStatus,
    GateType,
    PrevcPhase,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

PLAN_BLOCKING_REASON = "A plan must be linked before advancing from Planning to Review phase."
PLAN_HINT = "Use scaffold_plan and link_plan to create and link a plan, or enable autonomous mode."
APPROVAL_BLOCKING_REASON = "The plan must be approved before advancing from Review to Execution phase."
APPROVAL_HINT = "Use approve_plan to approve the plan, or enable autonomous mode."


def get_effective_settings(status: WorkflowStatus) -> GateSettings:
    """Project settings merged over the defaults for the project's scale."""
    return resolve_settings(status.project.scale, status.project.settings)


def _leaves_planning(current: PrevcPhase, target: PrevcPhase) -> bool:
    return current == PrevcPhase.P and PHASE_ORDER.index(target) > PHASE_ORDER.index(PrevcPhase.P)


def _enters_execution(current: PrevcPhase, target: PrevcPhase) -> bool:
    return (
        current in (PrevcPhase.P, PrevcPhase.R)
        and PHASE_ORDER.index(target) >= PHASE_ORDER.index(PrevcPhase.E)
    )


def check_gates(status: WorkflowStatus, target_phase: Optional[PrevcPhase] = None) -> GateCheckResult:
    """
    Evaluate the gates for moving from the current phase to target_phase.

    Args:
        status: Workflow status to evaluate (not modified)
        target_phase: Phase to move to. Defaults to the next active phase.

    Returns:
        GateCheckResult with per-gate outcome and, when blocked, the
        blocking gate, reason and hint. The plan gate is reported first.
    """
    settings = get_effective_settings(status)

    if settings.autonomous_mode:
        return GateCheckResult(can_advance=True)

    current = status.project.current_phase
    target = parse_phase(target_phase) if target_phase else status.next_active_phase()
    if target is None:
        return GateCheckResult(can_advance=True)

    gates = GateChecks()
    result = GateCheckResult(can_advance=True, gates=gates)

    if settings.require_plan and _leaves_planning(current, target):
        passed = status.has_linked_plan()
        gates.plan_required = GateStatus(passed=passed, required=True)
        if not passed:
            result.can_advance = False
            result.blocking_gate = GateType.PLAN_REQUIRED
            result.blocking_reason = PLAN_BLOCKING_REASON
            result.hint = PLAN_HINT

    if settings.require_approval and _enters_execution(current, target):
        passed = status.approval.plan_approved
        gates.approval_required = GateStatus(passed=passed, required=True)
        if not passed and result.can_advance:
            result.can_advance = False
            result.blocking_gate = GateType.APPROVAL_REQUIRED
            result.blocking_reason = APPROVAL_BLOCKING_REASON
            result.hint = APPROVAL_HINT

    return result


def enforce_gates(
    status: WorkflowStatus,
    force: bool = False,
    next_phase: Optional[PrevcPhase] = None,
) -> None:
    """
    Raise GateError if the transition is blocked.

    Args:
        status: Workflow status to evaluate
        force: Skip all gate checks
        next_phase: Phase being moved to. Defaults to the next active phase.

    Raises:
        GateError: carrying the blocking gate, the transition and a hint
    """
    current = status.project.current_phase
    target = next_phase or status.next_active_phase()

    if force:
        if target is not None:
            code = parse_phase(target).value if is_valid_phase(target) else target
            logger.warning(f"Gate checks bypassed for {current.value} -> {code}")
        return

    if target is not None:
        target = parse_phase(target)
    result = check_gates(status, target)
    if result.can_advance:
        return

    logger.info(
        f"Transition {get_phase_name(current)} -> {get_phase_name(target)} "
        f"blocked by {result.blocking_gate.value}"
    )
    raise GateError(
        result.blocking_reason,
        gate=result.blocking_gate,
        from_phase=current,
        to_phase=target,
        hint=result.hint,
    )
