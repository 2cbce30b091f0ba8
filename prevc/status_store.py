"""
Workflow Status Store

Loads, migrates and persists the WorkflowStatus record at
.context/workflow/status.yaml.

Every mutator is a full read-modify-write: load the record, change it in
memory, append an execution history entry, regenerate the resume context
and save. There is no locking; a single writer is assumed.

Older records are upgraded on load (see migrate_status_data) and the
upgraded record is written back so backfilled values stay stable.
"""

import copy
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError

from .errors import AlreadyExistsError, InvalidPhaseError, NotFoundError, StatusParseError
from .path_resolver import ContextPaths
from .phases import get_phase_name, parse_phase
from .scaling import get_default_settings, get_phases_for_scale, get_roles_for_scale, resolve_settings
from .schema import (
    PHASE_ORDER,
    AgentStatus,
    ExecutionAction,
    ExecutionHistory,
    ExecutionHistoryEntry,
    GateSettings,
    OutputStatus,
    PhaseOutput,
    PhaseStatus,
    PlanApproval,
    PrevcPhase,
    ProjectMetadata,
    ProjectScale,
    StatusType,
    WorkflowPlanRef,
    WorkflowStatus,
    _utc_now,
)
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

MIGRATION_APPROVER = "system-migration"
MIGRATION_DESCRIPTION = "Migrated from legacy workflow"
ADVANCED_WITHOUT_COMPLETION = "Advanced without completion"
WORKFLOW_COMPLETE_CONTEXT = "Workflow complete: all active phases are finished."

_STEP_ACTIONS = {
    StatusType.IN_PROGRESS: ExecutionAction.STEP_STARTED,
    StatusType.COMPLETED: ExecutionAction.STEP_COMPLETED,
    StatusType.SKIPPED: ExecutionAction.STEP_SKIPPED,
}

_AGENT_ACTIONS = {
    StatusType.IN_PROGRESS: ExecutionAction.AGENT_STARTED,
    StatusType.COMPLETED: ExecutionAction.AGENT_COMPLETED,
}

_LEGACY_HISTORY_KEYS = {
    "planPhase": "plan_phase",
    "stepIndex": "step_index",
    "stepDescription": "step_description",
    "approvedBy": "approved_by",
}


# ============================================================================
# Resume Context
# ============================================================================

def generate_resume_context(
    phase: PrevcPhase,
    action: ExecutionAction,
    plan_phase: Optional[str] = None,
    step_index: Optional[int] = None,
    step_description: Optional[str] = None,
    agent: Optional[str] = None,
) -> str:
    """One sentence telling a reader what to do next after `action`."""
    name = get_phase_name(phase)
    step = f"Step {step_index}" if step_index is not None else "Step"
    if plan_phase:
        step = f"{step} of {plan_phase}"
    if step_description:
        step = f"{step} ({step_description})"

    if action == ExecutionAction.STARTED:
        return f"{name} phase in progress: finish its work, then complete the phase to advance."
    if action == ExecutionAction.COMPLETED:
        return f"{name} phase completed: continue with the next active phase."
    if action == ExecutionAction.PLAN_LINKED:
        return f"Plan linked during {name}: review it and approve it before Execution starts."
    if action == ExecutionAction.PLAN_APPROVED:
        return f"Plan approved during {name}: complete the phase to move on to Execution."
    if action == ExecutionAction.PHASE_SKIPPED:
        return f"{name} phase skipped: continue with the next active phase."
    if action == ExecutionAction.SETTINGS_CHANGED:
        return f"Settings changed during {name}: re-check the gates before advancing."
    if action == ExecutionAction.STEP_STARTED:
        return f"{step} in progress during {name}: finish it and mark it completed."
    if action == ExecutionAction.STEP_COMPLETED:
        return f"{step} completed during {name}: continue with the next plan step."
    if action == ExecutionAction.STEP_SKIPPED:
        return f"{step} skipped during {name}: continue with the next plan step."
    if action == ExecutionAction.AGENT_STARTED:
        return f"{agent or 'Agent'} working on {name}: let it finish, then hand off or complete the phase."
    if action == ExecutionAction.AGENT_COMPLETED:
        return f"{agent or 'Agent'} finished its {name} work: hand off to the next agent or complete the phase."
    return f"{name} phase in progress."


def _resume_context_for(status: WorkflowStatus, entry: ExecutionHistoryEntry) -> str:
    if status.is_complete():
        return WORKFLOW_COMPLETE_CONTEXT
    return generate_resume_context(
        entry.phase,
        entry.action,
        plan_phase=entry.plan_phase,
        step_index=entry.step_index,
        step_description=entry.step_description,
        agent=entry.agent,
    )


# ============================================================================
# Migration
# ============================================================================

def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            logger.warning(f"Ignoring unparsable timestamp during migration: {value!r}")
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime) -> str:
    return value.isoformat().replace('+00:00', 'Z')


def _migrate_roles(data: dict) -> bool:
    """Fold the legacy `roles` map into `agents`."""
    if "roles" not in data:
        return False
    roles = data.pop("roles") or {}
    agents = data.setdefault("agents", {}) or {}
    data["agents"] = agents
    for role, info in roles.items():
        if role in agents or not isinstance(info, dict):
            continue
        agent: dict = {"status": info.get("status", StatusType.PENDING.value)}
        if info.get("phase"):
            agent["phase"] = info["phase"]
        last_active = info.get("last_active")
        if last_active:
            if agent["status"] == StatusType.COMPLETED.value:
                agent["completed_at"] = last_active
            else:
                agent["started_at"] = last_active
        if info.get("outputs"):
            agent["outputs"] = list(info["outputs"])
        agents[role] = agent
    return True


def _past_review(project: dict, phases: dict) -> bool:
    current = project.get("current_phase")
    review = phases.get(PrevcPhase.R.value) or {}
    return current in ("E", "V", "C") or review.get("status") == StatusType.COMPLETED.value


def _rebuild_history(project: dict, phases: dict) -> list[dict]:
    """Reconstruct history entries from per-phase timestamps."""
    project_started = _parse_timestamp(project.get("started")) or _utc_now()
    rebuilt: list[tuple[datetime, int, dict]] = []
    for code in PHASE_ORDER:
        phase = phases.get(code.value) or {}
        started = _parse_timestamp(phase.get("started_at"))
        completed = _parse_timestamp(phase.get("completed_at"))
        if started:
            rebuilt.append((started, len(rebuilt), {"phase": code.value, "action": ExecutionAction.STARTED.value}))
        if completed:
            rebuilt.append((completed, len(rebuilt), {"phase": code.value, "action": ExecutionAction.COMPLETED.value}))
        if phase.get("status") == StatusType.SKIPPED.value:
            entry = {"phase": code.value, "action": ExecutionAction.PHASE_SKIPPED.value}
            if phase.get("reason"):
                entry["description"] = phase["reason"]
            rebuilt.append((project_started, len(rebuilt), entry))

    if not rebuilt:
        rebuilt.append((project_started, 0, {
            "phase": project.get("current_phase", PrevcPhase.P.value),
            "action": ExecutionAction.STARTED.value,
            "description": MIGRATION_DESCRIPTION,
        }))

    rebuilt.sort(key=lambda item: (item[0], item[1]))
    history = []
    for seq, (timestamp, _, entry) in enumerate(rebuilt, start=1):
        history.append({"seq": seq, "timestamp": _iso(timestamp), **entry})
    return history


def _migration_resume_context(project: dict, approval: dict) -> str:
    phase = parse_phase(project.get("current_phase", PrevcPhase.P.value))
    if approval.get("plan_created") and not approval.get("plan_approved") and phase in (PrevcPhase.P, PrevcPhase.R):
        return generate_resume_context(phase, ExecutionAction.PLAN_LINKED)
    return generate_resume_context(phase, ExecutionAction.STARTED)


def migrate_status_data(raw: dict) -> tuple[dict, bool]:
    """
    Upgrade a raw status mapping to the current shape.

    Backfills settings from the scale, infers approval state, rebuilds
    execution history from phase timestamps and folds legacy roles into
    agents. Already-current data is returned unchanged.

    Returns:
        (migrated data, whether anything changed)

    Raises:
        StatusParseError: the record has no usable project section
    """
    data = copy.deepcopy(raw)
    changed = False

    project = data.get("project")
    if not isinstance(project, dict) or not project.get("name"):
        raise StatusParseError("Status record has no project section")

    try:
        scale = ProjectScale.parse(project.get("scale", ProjectScale.MEDIUM.name))
    except ValueError as e:
        raise StatusParseError(str(e)) from e
    try:
        parse_phase(project.get("current_phase", PrevcPhase.P.value))
    except InvalidPhaseError as e:
        raise StatusParseError(str(e)) from e
    if project.get("scale") != scale.name:
        project["scale"] = scale.name
        changed = True
    if not project.get("started"):
        project["started"] = _iso(_utc_now())
        changed = True

    phases = data.get("phases")
    if not isinstance(phases, dict):
        phases = {}
        data["phases"] = phases
        changed = True
    for code, entry in phases.items():
        if entry is not None and not isinstance(entry, dict):
            raise StatusParseError(f"Phase {code} must be a mapping, got {type(entry).__name__}")
    for section in ("roles", "agents"):
        if data.get(section) is not None and not isinstance(data[section], dict):
            raise StatusParseError(f"Status section '{section}' must be a mapping")
    if list(phases.keys()) != [code.value for code in PHASE_ORDER]:
        data["phases"] = {code.value: phases.get(code.value) or {"status": StatusType.PENDING.value}
                          for code in PHASE_ORDER}
        phases = data["phases"]
        changed = True

    if _migrate_roles(data):
        changed = True
    if data.get("agents") is None:
        data["agents"] = {}
        changed = True

    if not project.get("settings"):
        project["settings"] = get_default_settings(scale).model_dump()
        changed = True

    approval = data.get("approval")
    if not isinstance(approval, dict):
        has_plan = bool(project.get("plan") or project.get("plans"))
        approved = _past_review(project, phases)
        approval = {"plan_created": has_plan, "plan_approved": approved}
        if approved:
            approval["approved_by"] = MIGRATION_APPROVER
            approval["approved_at"] = _iso(_utc_now())
        data["approval"] = approval
        changed = True
    elif "approval_notes" in approval:
        notes = approval.pop("approval_notes")
        approval.setdefault("notes", notes)
        changed = True

    execution = data.get("execution")
    if not isinstance(execution, dict):
        history = _rebuild_history(project, phases)
        data["execution"] = {
            "history": history,
            "last_activity": history[-1]["timestamp"],
            "resume_context": _migration_resume_context(project, approval),
        }
        changed = True
    else:
        history = execution.get("history") or []
        if not isinstance(history, list) or not all(isinstance(entry, dict) for entry in history):
            raise StatusParseError("Execution history must be a list of mappings")
        for seq, entry in enumerate(history, start=1):
            for legacy, current in _LEGACY_HISTORY_KEYS.items():
                if legacy in entry:
                    entry.setdefault(current, entry.pop(legacy))
                    changed = True
            if "seq" not in entry:
                entry["seq"] = seq
                changed = True
        execution["history"] = history
        if not execution.get("last_activity"):
            execution["last_activity"] = history[-1]["timestamp"] if history else project.get("started")
            changed = True
        if not execution.get("resume_context"):
            execution["resume_context"] = _migration_resume_context(project, approval)
            changed = True

    return data, changed


# ============================================================================
# Status Store
# ============================================================================

class StatusStore:
    """Persistence and mutation of a workflow's status.yaml."""

    def __init__(self, paths: Union[ContextPaths, str, Path, None] = None):
        self.paths = paths if isinstance(paths, ContextPaths) else ContextPaths(paths)
        self._cache: Optional[WorkflowStatus] = None

    @property
    def status_file(self) -> Path:
        return self.paths.status_file()

    # ========================================================================
    # Loading and Saving
    # ========================================================================

    def exists(self) -> bool:
        return self.status_file.exists()

    def load(self) -> WorkflowStatus:
        """Read, migrate and validate the status record.

        Raises:
            NotFoundError: no status file exists
            StatusParseError: the file is not valid YAML or not a valid record
        """
        if not self.exists():
            raise NotFoundError()

        try:
            with open(self.status_file, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise StatusParseError(f"Invalid YAML in {self.status_file}: {e}") from e

        if not isinstance(raw, dict):
            raise StatusParseError(f"Status file {self.status_file} does not contain a mapping")

        data, changed = migrate_status_data(raw)
        try:
            status = WorkflowStatus.model_validate(data)
        except ValidationError as e:
            raise StatusParseError(f"Invalid workflow status in {self.status_file}: {e}") from e

        if changed:
            logger.info(f"Migrated workflow status for '{status.project.name}' to the current format")
            self.save(status)

        self._cache = status.model_copy(deep=True)
        return status

    def load_cached(self) -> WorkflowStatus:
        """Return the cached record, loading it if the cache is empty."""
        if self._cache is None:
            return self.load()
        logger.debug("Serving workflow status from cache")
        return self._cache.model_copy(deep=True)

    def save(self, status: WorkflowStatus) -> None:
        """Overwrite status.yaml with the given record."""
        data = status.model_dump(mode='json', exclude_none=True)
        content = yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)
        atomic_write_text(self.status_file, content)
        self._cache = None

    def delete(self) -> None:
        """Remove status.yaml if present."""
        if self.exists():
            self.status_file.unlink()
        self._cache = None

    def create(
        self,
        name: str,
        scale: ProjectScale,
        phases: Optional[list[PrevcPhase]] = None,
        roles: Optional[list[str]] = None,
        settings: Optional[GateSettings] = None,
    ) -> WorkflowStatus:
        """
        Create and persist a new workflow.

        Args:
            name: Workflow name
            scale: Project scale
            phases: Active phases. Defaults to the scale's route.
            roles: Roles seeded as pending agents. Defaults to the scale's roles.
            settings: Gate overrides stored on the project

        Raises:
            AlreadyExistsError: a workflow already exists
        """
        if self.exists():
            raise AlreadyExistsError(name)

        scale = ProjectScale.parse(scale)
        active = [parse_phase(p) for p in phases] if phases else get_phases_for_scale(scale)
        if not active:
            raise InvalidPhaseError("A workflow needs at least one active phase")
        roles = roles if roles is not None else get_roles_for_scale(scale)
        now = _utc_now()
        first = next(code for code in PHASE_ORDER if code in active)

        phase_map: dict[PrevcPhase, PhaseStatus] = {}
        for code in PHASE_ORDER:
            if code not in active:
                phase_map[code] = PhaseStatus(
                    status=StatusType.SKIPPED,
                    reason=f"Not required for scale {scale.name}",
                )
            elif code == first:
                phase_map[code] = PhaseStatus(status=StatusType.IN_PROGRESS, started_at=now)
            else:
                phase_map[code] = PhaseStatus()

        effective = resolve_settings(scale, settings)
        status = WorkflowStatus(
            project=ProjectMetadata(
                name=name,
                scale=scale,
                started=now,
                current_phase=first,
                settings=effective,
            ),
            phases=phase_map,
            agents={role: AgentStatus() for role in roles},
            execution=ExecutionHistory(last_activity=now),
            approval=PlanApproval(),
        )
        for code in PHASE_ORDER:
            if code not in active:
                self._record(status, code, ExecutionAction.PHASE_SKIPPED,
                             timestamp=now, description=phase_map[code].reason)
        self._record(status, first, ExecutionAction.STARTED, timestamp=now)

        self.save(status)
        logger.info(f"Created workflow '{name}' at scale {scale.name}, starting in {get_phase_name(first)}")
        return status

    # ========================================================================
    # History
    # ========================================================================

    def _record(
        self,
        status: WorkflowStatus,
        phase: PrevcPhase,
        action: ExecutionAction,
        timestamp: Optional[datetime] = None,
        **details,
    ) -> ExecutionHistoryEntry:
        entry = status.execution.append(phase, action, timestamp=timestamp, **details)
        status.execution.resume_context = _resume_context_for(status, entry)
        return entry

    def add_history_entry(
        self,
        action: ExecutionAction,
        phase: Optional[PrevcPhase] = None,
        **details,
    ) -> ExecutionHistoryEntry:
        """Append an arbitrary entry to the execution history."""
        status = self.load()
        entry = self._record(status, parse_phase(phase) if phase else status.current_phase,
                             ExecutionAction(action), **details)
        self.save(status)
        return entry

    def add_step_history_entry(
        self,
        plan: str,
        plan_phase: str,
        step_index: int,
        step_status: StatusType,
        step_description: Optional[str] = None,
        output: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[ExecutionHistoryEntry]:
        """Record a plan step transition. Pending steps leave no entry."""
        action = _STEP_ACTIONS.get(StatusType(step_status))
        if action is None:
            return None
        status = self.load()
        entry = self._record(
            status,
            status.current_phase,
            action,
            plan=plan,
            plan_phase=plan_phase,
            step_index=step_index,
            step_description=step_description,
            output=output,
            notes=notes,
        )
        self.save(status)
        return entry

    def get_execution_history(self) -> ExecutionHistory:
        return self.load().execution

    # ========================================================================
    # Phase Mutators
    # ========================================================================

    def _apply_phase_status(
        self,
        status: WorkflowStatus,
        code: PrevcPhase,
        new_status: StatusType,
        reason: Optional[str] = None,
    ) -> bool:
        """Set a phase status and its timestamps. Returns True if it changed."""
        phase = status.phases[code]
        if phase.status == new_status:
            return False
        now = _utc_now()
        phase.status = new_status
        if new_status == StatusType.IN_PROGRESS and phase.started_at is None:
            phase.started_at = now
        if new_status == StatusType.COMPLETED:
            if phase.started_at is None:
                phase.started_at = now
            if phase.completed_at is None:
                phase.completed_at = now
        if new_status == StatusType.SKIPPED:
            phase.reason = reason or phase.reason
        action = {
            StatusType.IN_PROGRESS: ExecutionAction.STARTED,
            StatusType.COMPLETED: ExecutionAction.COMPLETED,
            StatusType.SKIPPED: ExecutionAction.PHASE_SKIPPED,
        }.get(new_status)
        if action is not None:
            details = {"description": phase.reason} if action == ExecutionAction.PHASE_SKIPPED else {}
            self._record(status, code, action, **details)
        return True

    def update_phase(
        self,
        phase: PrevcPhase,
        status: Optional[StatusType] = None,
        role: Optional[str] = None,
        current_task: Optional[str] = None,
        outputs: Optional[list[str]] = None,
        reason: Optional[str] = None,
    ) -> WorkflowStatus:
        """
        Update fields of one phase.

        A status change is recorded as its own history entry. Changes to
        role, task or outputs alone are recorded as phase_updated.
        """
        code = parse_phase(phase)
        workflow = self.load()
        recorded = False
        if status is not None:
            recorded = self._apply_phase_status(workflow, code, StatusType(status), reason=reason)
        entry = workflow.phases[code]
        before = entry.model_dump()
        if role is not None:
            entry.role = role
        if current_task is not None:
            entry.current_task = current_task
        if outputs:
            self._fill_outputs(entry, outputs, OutputStatus.UNFILLED)
        if not recorded and entry.model_dump() != before:
            changes = [
                f"{name}={value}"
                for name, value in (("role", role), ("task", current_task))
                if value is not None
            ]
            if outputs:
                changes.append(f"outputs={', '.join(outputs)}")
            self._record(workflow, code, ExecutionAction.PHASE_UPDATED, description="; ".join(changes))
        self.save(workflow)
        return workflow

    @staticmethod
    def _fill_outputs(phase: PhaseStatus, outputs: list[str], output_status: OutputStatus) -> None:
        by_path = {output.path: output for output in phase.outputs}
        for path in outputs:
            if path in by_path:
                by_path[path].status = output_status
            else:
                output = PhaseOutput(path=path, status=output_status)
                phase.outputs.append(output)
                by_path[path] = output

    def transition_to_phase(self, phase: PrevcPhase) -> WorkflowStatus:
        """
        Make `phase` the current, in-progress phase.

        Any other phase still in progress is closed as skipped so that
        exactly one phase is in progress afterwards.

        Raises:
            InvalidPhaseError: the target phase is skipped for this workflow
        """
        code = parse_phase(phase)
        workflow = self.load()
        if workflow.phases[code].status == StatusType.SKIPPED:
            raise InvalidPhaseError(f"Phase {code.value} is skipped for this workflow")

        for other, entry in workflow.phases.items():
            if other != code and entry.status == StatusType.IN_PROGRESS:
                self._apply_phase_status(workflow, other, StatusType.SKIPPED, reason=ADVANCED_WITHOUT_COMPLETION)

        workflow.project.current_phase = code
        self._apply_phase_status(workflow, code, StatusType.IN_PROGRESS)
        self.save(workflow)
        logger.info(f"Workflow '{workflow.project.name}' moved to {get_phase_name(code)}")
        return workflow

    def mark_phase_complete(
        self,
        phase: Optional[PrevcPhase] = None,
        outputs: Optional[list[str]] = None,
    ) -> WorkflowStatus:
        """Mark a phase (default: current) completed, recording its outputs as filled."""
        workflow = self.load()
        code = parse_phase(phase) if phase else workflow.current_phase
        entry = workflow.phases[code]
        if outputs:
            self._fill_outputs(entry, outputs, OutputStatus.FILLED)
        self._apply_phase_status(workflow, code, StatusType.COMPLETED)
        if workflow.is_complete():
            workflow.execution.resume_context = WORKFLOW_COMPLETE_CONTEXT
        self.save(workflow)
        logger.info(f"Workflow '{workflow.project.name}' completed {get_phase_name(code)}")
        return workflow

    # ========================================================================
    # Agents
    # ========================================================================

    def update_agent(
        self,
        name: str,
        status: Optional[StatusType] = None,
        phase: Optional[PrevcPhase] = None,
        outputs: Optional[list[str]] = None,
    ) -> AgentStatus:
        """Create or update an agent entry, recording the change in history."""
        workflow = self.load()
        is_new = name not in workflow.agents
        agent = workflow.agents.setdefault(name, AgentStatus())
        before = agent.model_dump()
        previous_status = agent.status
        now = _utc_now()
        if status is not None:
            agent.status = StatusType(status)
            if agent.status == StatusType.IN_PROGRESS and agent.started_at is None:
                agent.started_at = now
            if agent.status == StatusType.COMPLETED and agent.completed_at is None:
                agent.completed_at = now
        if phase is not None:
            agent.phase = parse_phase(phase)
        for output in outputs or []:
            if output not in agent.outputs:
                agent.outputs.append(output)

        if is_new or agent.model_dump() != before:
            action = ExecutionAction.AGENT_UPDATED
            if agent.status != previous_status:
                action = _AGENT_ACTIONS.get(agent.status, ExecutionAction.AGENT_UPDATED)
            details = {"agent": name, "description": f"{name}: {agent.status.value}"}
            if outputs:
                details["output"] = ", ".join(outputs)
            self._record(workflow, agent.phase or workflow.current_phase, action, timestamp=now, **details)
        self.save(workflow)
        return agent

    def get_active_agent(self) -> Optional[str]:
        """First agent currently in progress, if any."""
        for name, agent in self.load().agents.items():
            if agent.status == StatusType.IN_PROGRESS:
                return name
        return None

    # ========================================================================
    # Settings and Approval
    # ========================================================================

    def set_settings(self, settings: Union[GateSettings, dict]) -> GateSettings:
        """Merge explicit overrides into the stored settings.

        Returns the effective settings afterwards.
        """
        overrides = settings if isinstance(settings, GateSettings) else GateSettings(**settings)
        workflow = self.load()
        current = workflow.project.settings or GateSettings()
        workflow.project.settings = overrides.merged_over(current)
        changed = ", ".join(
            f"{key}={value}" for key, value in overrides.model_dump(exclude_none=True).items()
        )
        self._record(workflow, workflow.current_phase, ExecutionAction.SETTINGS_CHANGED,
                     description=f"Settings updated: {changed}" if changed else "Settings updated")
        self.save(workflow)
        return resolve_settings(workflow.project.scale, workflow.project.settings)

    def get_settings(self) -> GateSettings:
        """Effective settings (overrides merged over scale defaults)."""
        workflow = self.load()
        return resolve_settings(workflow.project.scale, workflow.project.settings)

    def mark_plan_created(self, slug: str, path: Optional[str] = None) -> WorkflowStatus:
        """Record that a plan is linked. Re-linking the same plan is a no-op."""
        workflow = self.load()
        already_linked = any(ref.slug == slug for ref in workflow.project.plans)
        if already_linked and workflow.approval.plan_created:
            return workflow

        workflow.approval.plan_created = True
        if workflow.project.plan is None:
            workflow.project.plan = slug
        if not already_linked:
            workflow.project.plans.append(
                WorkflowPlanRef(slug=slug, path=path or f".context/plans/{slug}.md")
            )
        self._record(workflow, workflow.current_phase, ExecutionAction.PLAN_LINKED, plan=slug)
        self.save(workflow)
        logger.info(f"Plan '{slug}' linked to workflow '{workflow.project.name}'")
        return workflow

    def approve_plan(self, approver: str, notes: Optional[str] = None) -> PlanApproval:
        """Approve the linked plan."""
        workflow = self.load()
        approval = workflow.approval
        approval.plan_approved = True
        approval.approved_by = approver
        approval.approved_at = _utc_now()
        if notes is not None:
            approval.notes = notes
        self._record(workflow, workflow.current_phase, ExecutionAction.PLAN_APPROVED,
                     plan=workflow.project.plan, approved_by=approver, notes=notes)
        self.save(workflow)
        logger.info(f"Plan for workflow '{workflow.project.name}' approved by {approver}")
        return approval

    def get_approval(self) -> PlanApproval:
        return self.load().approval

    # ========================================================================
    # Queries
    # ========================================================================

    def get_current_phase(self) -> PrevcPhase:
        return self.load().current_phase

    def get_next_phase(self) -> Optional[PrevcPhase]:
        """Next non-skipped phase after the current one."""
        return self.load().next_active_phase()

    def is_complete(self) -> bool:
        return self.load().is_complete()
