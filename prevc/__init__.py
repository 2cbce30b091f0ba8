"""
PREVC Workflow Engine

Phase-gated workflow engine for development work across five phases:
Plan, Review, Execute, Validate, Confirm. Tracks phase and agent state,
enforces plan and approval gates, and links step-structured plan
documents to the workflow.
"""

from .schema import (
    PHASE_ORDER,
    ExecutionAction,
    ExecutionHistoryEntry,
    GateCheckResult,
    GateSettings,
    GateType,
    LinkedPlan,
    PhaseOrchestration,
    PlanDecision,
    PlanReference,
    PrevcPhase,
    ProjectScale,
    StatusType,
    WorkflowStatus,
    WorkflowSummary,
)

from .errors import (
    WorkflowError,
    NotFoundError,
    AlreadyExistsError,
    GateError,
    StatusParseError,
    InvalidPhaseError,
)

from .gates import check_gates, enforce_gates, get_effective_settings
from .scaling import get_default_settings, detect_project_scale
from .status_store import StatusStore
from .plan_linker import PlanLinker
from .orchestrator import Orchestrator
from .config import WorkflowConfig, configure_logging
from .path_resolver import ContextPaths

__version__ = "0.1.0"
