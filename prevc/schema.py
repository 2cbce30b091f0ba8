"""
Workflow Schema Definitions using Pydantic

This module defines the persisted workflow status record (status.yaml),
the plan tracking records (plans.json, plan-tracking/<slug>.json) and the
structured results returned by the gate checker and orchestrator.
"""

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from typing import Any, Optional
from datetime import datetime, timezone
from enum import Enum, IntEnum

from .utils import percent_complete


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class PrevcPhase(str, Enum):
    """The five workflow phases, in their fixed order."""
    P = "P"  # Planning
    R = "R"  # Review
    E = "E"  # Execution
    V = "V"  # Validation
    C = "C"  # Confirmation


PHASE_ORDER: list[PrevcPhase] = [
    PrevcPhase.P,
    PrevcPhase.R,
    PrevcPhase.E,
    PrevcPhase.V,
    PrevcPhase.C,
]


class ProjectScale(IntEnum):
    """Project size classification. Ordinal: higher means stricter."""
    QUICK = 0
    SMALL = 1
    MEDIUM = 2
    LARGE = 3
    ENTERPRISE = 4

    @classmethod
    def parse(cls, value: Any) -> "ProjectScale":
        """Accept a scale member, its name (any case) or its ordinal."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid project scale: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            name = value.strip().upper()
            if name in cls.__members__:
                return cls[name]
            if name.isdigit():
                return cls(int(name))
        raise ValueError(f"Invalid project scale: {value!r}")


class StatusType(str, Enum):
    """Status of a phase, agent or plan step."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class OutputStatus(str, Enum):
    """Whether an expected phase output has been produced."""
    UNFILLED = "unfilled"
    FILLED = "filled"


class ExecutionAction(str, Enum):
    """Kinds of entries in the execution history."""
    STARTED = "started"
    COMPLETED = "completed"
    PLAN_LINKED = "plan_linked"
    PLAN_APPROVED = "plan_approved"
    PHASE_SKIPPED = "phase_skipped"
    SETTINGS_CHANGED = "settings_changed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    PHASE_UPDATED = "phase_updated"
    AGENT_STARTED = "agent_started"
    AGENT_COMPLETED = "agent_completed"
    AGENT_UPDATED = "agent_updated"


class PlanStatus(str, Enum):
    """Lifecycle of a plan reference in the registry."""
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class GateType(str, Enum):
    """Named preconditions for phase transitions."""
    PLAN_REQUIRED = "plan_required"
    APPROVAL_REQUIRED = "approval_required"


# ============================================================================
# Workflow Status (status.yaml)
# ============================================================================

class GateSettings(BaseModel):
    """Gate policy. Unset fields fall back to the scale defaults."""
    autonomous_mode: Optional[bool] = None
    require_plan: Optional[bool] = None
    require_approval: Optional[bool] = None

    def merged_over(self, defaults: "GateSettings") -> "GateSettings":
        """Return a fully populated copy; fields set here win over defaults."""
        return GateSettings(
            autonomous_mode=self.autonomous_mode if self.autonomous_mode is not None else defaults.autonomous_mode,
            require_plan=self.require_plan if self.require_plan is not None else defaults.require_plan,
            require_approval=self.require_approval if self.require_approval is not None else defaults.require_approval,
        )


class PhaseOutput(BaseModel):
    """An artifact a phase is expected to produce."""
    path: str
    status: OutputStatus = OutputStatus.UNFILLED


class PhaseStatus(BaseModel):
    """Runtime state of a single PREVC phase."""
    status: StatusType = StatusType.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reason: Optional[str] = None  # For skipped phases
    role: Optional[str] = None
    current_task: Optional[str] = None
    outputs: list[PhaseOutput] = Field(default_factory=list)


class AgentStatus(BaseModel):
    """Runtime state of an agent or role participating in the workflow."""
    status: StatusType = StatusType.PENDING
    phase: Optional[PrevcPhase] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    outputs: list[str] = Field(default_factory=list)


class PlanApproval(BaseModel):
    """Plan gate state."""
    plan_created: bool = False
    plan_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None


class WorkflowPlanRef(BaseModel):
    """A plan linked to the workflow, as recorded on the project."""
    slug: str
    path: str


class ProjectMetadata(BaseModel):
    """Identity and position of the workflow."""
    name: str
    scale: ProjectScale
    started: datetime = Field(default_factory=_utc_now)
    current_phase: PrevcPhase = PrevcPhase.P
    plan: Optional[str] = None
    plans: list[WorkflowPlanRef] = Field(default_factory=list)
    settings: Optional[GateSettings] = None

    @field_validator('scale', mode='before')
    @classmethod
    def parse_scale(cls, v):
        return ProjectScale.parse(v)

    @field_serializer('scale')
    def serialize_scale(self, scale: ProjectScale) -> str:
        return scale.name


class ExecutionHistoryEntry(BaseModel):
    """One immutable entry of the execution log."""
    model_config = ConfigDict(frozen=True)

    seq: int
    timestamp: datetime
    phase: PrevcPhase
    action: ExecutionAction
    plan: Optional[str] = None
    approved_by: Optional[str] = None
    agent: Optional[str] = None
    description: Optional[str] = None
    plan_phase: Optional[str] = None
    step_index: Optional[int] = None
    step_description: Optional[str] = None
    output: Optional[str] = None
    notes: Optional[str] = None


class ExecutionHistory(BaseModel):
    """Append-only execution log plus a resume summary."""
    history: list[ExecutionHistoryEntry] = Field(default_factory=list)
    last_activity: datetime = Field(default_factory=_utc_now)
    resume_context: str = ""

    def append(
        self,
        phase: PrevcPhase,
        action: ExecutionAction,
        timestamp: Optional[datetime] = None,
        **details,
    ) -> ExecutionHistoryEntry:
        """Append an entry with the next sequence number.

        Timestamps never go backwards: an entry stamped earlier than the
        last one is clamped to the last timestamp.
        """
        timestamp = timestamp or _utc_now()
        if self.history and timestamp < self.history[-1].timestamp:
            timestamp = self.history[-1].timestamp
        seq = self.history[-1].seq + 1 if self.history else 1
        entry = ExecutionHistoryEntry(seq=seq, timestamp=timestamp, phase=phase, action=action, **details)
        self.history.append(entry)
        self.last_activity = timestamp
        return entry


class WorkflowStatus(BaseModel):
    """Root aggregate persisted to .context/workflow/status.yaml."""
    project: ProjectMetadata
    phases: dict[PrevcPhase, PhaseStatus] = Field(default_factory=dict)
    agents: dict[str, AgentStatus] = Field(default_factory=dict)
    execution: ExecutionHistory = Field(default_factory=ExecutionHistory)
    approval: PlanApproval = Field(default_factory=PlanApproval)

    @model_validator(mode='after')
    def order_phases(self):
        """Keep all five phase codes present and in P, R, E, V, C order."""
        phases = self.phases
        if list(phases.keys()) != PHASE_ORDER:
            self.phases = {code: phases.get(code, PhaseStatus()) for code in PHASE_ORDER}
        return self

    @property
    def current_phase(self) -> PrevcPhase:
        return self.project.current_phase

    def active_phases(self) -> list[PrevcPhase]:
        """Phases that are not skipped, in order."""
        return [code for code, phase in self.phases.items() if phase.status != StatusType.SKIPPED]

    def next_active_phase(self, after: Optional[PrevcPhase] = None) -> Optional[PrevcPhase]:
        """Next non-skipped phase after `after` (default: the current phase)."""
        after = after or self.project.current_phase
        for code in PHASE_ORDER[PHASE_ORDER.index(after) + 1:]:
            if self.phases[code].status != StatusType.SKIPPED:
                return code
        return None

    def is_complete(self) -> bool:
        """True when every phase is either completed or skipped."""
        return all(
            phase.status in (StatusType.COMPLETED, StatusType.SKIPPED)
            for phase in self.phases.values()
        )

    def has_linked_plan(self) -> bool:
        return bool(self.approval.plan_created or self.project.plan or self.project.plans)


# ============================================================================
# Gate Results
# ============================================================================

class GateStatus(BaseModel):
    """Outcome of a single gate."""
    passed: bool = True
    required: bool = False


class GateChecks(BaseModel):
    plan_required: GateStatus = Field(default_factory=GateStatus)
    approval_required: GateStatus = Field(default_factory=GateStatus)


class GateCheckResult(BaseModel):
    """Result of evaluating the gates for a transition."""
    can_advance: bool
    gates: GateChecks = Field(default_factory=GateChecks)
    blocking_gate: Optional[GateType] = None
    blocking_reason: Optional[str] = None
    hint: Optional[str] = None


# ============================================================================
# Plans (plans.json, plan-tracking/<slug>.json)
# ============================================================================

class PlanReference(BaseModel):
    """A plan document registered with the workflow."""
    slug: str
    path: str
    title: str
    summary: Optional[str] = None
    linked_at: datetime = Field(default_factory=_utc_now)
    status: PlanStatus = PlanStatus.ACTIVE


class PlansRegistry(BaseModel):
    """Contents of .context/workflow/plans.json."""
    active: list[PlanReference] = Field(default_factory=list)
    completed: list[PlanReference] = Field(default_factory=list)
    primary: Optional[str] = None

    def find(self, slug: str) -> Optional[PlanReference]:
        for ref in self.active + self.completed:
            if ref.slug == slug:
                return ref
        return None


class PlanStep(BaseModel):
    """A numbered step inside a plan phase."""
    index: int
    description: str
    status: StatusType = StatusType.PENDING
    output: Optional[str] = None
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class PlanPhase(BaseModel):
    """A phase of a plan document, mapped onto a PREVC phase."""
    id: str
    name: str
    prevc_phase: PrevcPhase
    steps: list[PlanStep] = Field(default_factory=list)
    status: StatusType = StatusType.PENDING
    progress: int = 0


class PlanAgent(BaseModel):
    """An agent named in a plan's lineup."""
    type: str
    role: Optional[str] = None


class PlanDecision(BaseModel):
    """An immutable decision log entry."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    phase: Optional[PrevcPhase] = None
    decided_by: Optional[str] = None
    decided_at: datetime = Field(default_factory=_utc_now)
    alternatives: list[str] = Field(default_factory=list)


class LinkedPlan(BaseModel):
    """A plan reference with its parsed structure and tracked progress."""
    ref: PlanReference
    phases: list[PlanPhase] = Field(default_factory=list)
    agents: list[PlanAgent] = Field(default_factory=list)
    docs: list[str] = Field(default_factory=list)
    decisions: list[PlanDecision] = Field(default_factory=list)
    progress: int = 0
    current_phase: Optional[str] = None

    @property
    def slug(self) -> str:
        return self.ref.slug


class StepExecution(BaseModel):
    """Tracked execution state of one plan step."""
    step_index: int
    description: str
    status: StatusType = StatusType.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: Optional[str] = None
    notes: Optional[str] = None


class PhaseExecution(BaseModel):
    """Tracked execution state of one plan phase."""
    phase_id: str
    status: StatusType = StatusType.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    steps: list[StepExecution] = Field(default_factory=list)
    commit_hash: Optional[str] = None
    committed_at: Optional[datetime] = None
    committed_by: Optional[str] = None

    def get_step(self, step_index: int) -> Optional[StepExecution]:
        for step in self.steps:
            if step.step_index == step_index:
                return step
        return None


class PlanExecutionTracking(BaseModel):
    """Contents of .context/workflow/plan-tracking/<slug>.json."""
    plan_slug: str
    progress: int = 0
    phases: dict[str, PhaseExecution] = Field(default_factory=dict)
    decisions: list[PlanDecision] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=_utc_now)

    def total_steps(self) -> int:
        return sum(len(phase.steps) for phase in self.phases.values())

    def completed_steps(self) -> int:
        return sum(
            1
            for phase in self.phases.values()
            for step in phase.steps
            if step.status == StatusType.COMPLETED
        )

    def recompute_progress(self) -> int:
        self.progress = percent_complete(self.completed_steps(), self.total_steps())
        return self.progress


# ============================================================================
# Orchestration Guidance
# ============================================================================

class AgentSuggestion(BaseModel):
    """The agent recommended to take over next."""
    agent: str
    reason: str
    phase: Optional[PrevcPhase] = None


class PhaseOrchestration(BaseModel):
    """Advisory guidance for running a phase."""
    phase: PrevcPhase
    phase_name: str
    description: str
    roles: list[str] = Field(default_factory=list)
    recommended_agents: list[str] = Field(default_factory=list)
    start_with: Optional[str] = None
    agent_sequence: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    docs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)


class WorkflowSummary(BaseModel):
    """Condensed view of a workflow for status displays."""
    name: str
    scale: ProjectScale
    current_phase: PrevcPhase
    progress: int
    completed_phases: int
    total_phases: int
    is_complete: bool
    plan: Optional[str] = None
    resume_context: str = ""

    @field_serializer('scale')
    def serialize_scale(self, scale: ProjectScale) -> str:
        return scale.name
