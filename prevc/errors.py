"""
Workflow Errors

Typed exceptions raised by the status store, gate checker and
orchestrator. Callers can catch WorkflowError to handle all of them.
"""

from typing import Optional

from .schema import GateType, PrevcPhase


# ============================================================================
# EXCEPTIONS
# ============================================================================

class WorkflowError(Exception):
    """Base exception for workflow errors"""
    pass


class NotFoundError(WorkflowError):
    """No workflow exists where one is required"""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "No workflow found. Initialize a workflow before running this operation."
        )


class AlreadyExistsError(WorkflowError):
    """A workflow already exists and would be overwritten"""

    def __init__(self, name: Optional[str] = None):
        self.name = name
        label = f" '{name}'" if name else ""
        super().__init__(
            f"A workflow{label} already exists. Archive or reset it before creating a new one."
        )


class StatusParseError(WorkflowError):
    """The persisted status record is structurally unreadable"""
    pass


class InvalidPhaseError(WorkflowError, ValueError):
    """An unknown phase code was given"""
    pass


class GateError(WorkflowError):
    """A gate blocked a phase transition"""

    def __init__(
        self,
        message: str,
        gate: GateType,
        from_phase: PrevcPhase,
        to_phase: PrevcPhase,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.gate = gate
        self.from_phase = from_phase
        self.to_phase = to_phase
        self.hint = hint

    @property
    def blocking_gate(self) -> GateType:
        return self.gate

    @property
    def transition(self) -> tuple[PrevcPhase, PrevcPhase]:
        return (self.from_phase, self.to_phase)

    def __str__(self) -> str:
        message = super().__str__()
        if self.hint:
            return f"{message} Hint: {self.hint}"
        return message
