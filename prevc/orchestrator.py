"""
PREVC Workflow Orchestrator

Top-level entry point. Sequences phase completion through the gates,
persists through the status store, keeps linked plans in sync and
produces agent and skill guidance for each phase.

Usage:
    orchestrator = Orchestrator("/path/to/repo")
    orchestrator.init_workflow("billing-v2", ProjectScale.MEDIUM)
    orchestrator.link_plan("billing-v2-plan")
    orchestrator.complete_phase()          # P -> R
    orchestrator.approve_plan("architect")
    orchestrator.complete_phase()          # R -> E
"""

import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from . import gates
from .agents import (
    PHASE_TO_AGENTS,
    get_agent_description,
    get_agent_handoff_sequence,
    get_agents_for_phase,
    get_docs_for_phase,
)
from .config import WorkflowConfig, configure_logging
from .errors import AlreadyExistsError, StatusParseError
from .path_resolver import ContextPaths
from .phases import get_phase_definition, get_phase_name, parse_phase
from .plan_linker import PlanLinker
from .roles import get_role_config
from .scaling import detect_project_scale
from .schema import (
    PHASE_ORDER,
    AgentSuggestion,
    GateCheckResult,
    GateSettings,
    PhaseOrchestration,
    PlanApproval,
    PlanReference,
    PrevcPhase,
    ProjectScale,
    StatusType,
    WorkflowStatus,
    WorkflowSummary,
)
from .status_store import StatusStore
from .utils import archive_timestamp, percent_complete, slugify

logger = logging.getLogger(__name__)


class Orchestrator:
    """Facade over the status store, gates and plan linker."""

    def __init__(
        self,
        repo_path: Union[str, Path, None] = None,
        config: Optional[WorkflowConfig] = None,
    ):
        self.paths = ContextPaths(repo_path)
        self.config = config or WorkflowConfig.load(self.paths.config_file())
        configure_logging(self.config.log_level)
        self.store = StatusStore(self.paths)
        self.plans = PlanLinker(self.paths, status_store=self.store, sync_markdown=self.config.sync_plan_markdown)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def has_workflow(self) -> bool:
        return self.store.exists()

    def init_workflow(
        self,
        name: str,
        scale: Optional[ProjectScale] = None,
        settings: Union[GateSettings, dict, None] = None,
        archive_previous: Optional[bool] = None,
        description: Optional[str] = None,
        files: Optional[list[str]] = None,
        phases: Optional[list[PrevcPhase]] = None,
        roles: Optional[list[str]] = None,
    ) -> WorkflowStatus:
        """
        Start a new workflow.

        Args:
            name: Workflow name
            scale: Project scale. When omitted it is detected from
                   `description`/`files`, else taken from config, else MEDIUM.
            settings: Gate overrides. Defaults to the config's gate overrides.
            archive_previous: What to do with an existing workflow: True
                   archives it, False deletes it, None refuses.
            description: Task description used for scale detection
            files: Files the task touches, used for scale detection
            phases: Explicit active phases, overriding the scale route
            roles: Explicit roles, overriding the scale route

        Raises:
            AlreadyExistsError: a workflow exists and archive_previous is None
        """
        if self.store.exists():
            if archive_previous is None:
                raise AlreadyExistsError(name)
            self.reset_workflow(archive=archive_previous)

        if scale is None:
            if description:
                scale = detect_project_scale(description, files)
                logger.info(f"Detected scale {scale.name} for '{name}'")
            else:
                scale = self.config.default_scale or ProjectScale.MEDIUM

        if settings is None:
            settings = self.config.gate_overrides
        elif isinstance(settings, dict):
            settings = GateSettings(**settings)

        return self.store.create(name, scale, phases=phases, roles=roles, settings=settings)

    def reset_workflow(self, archive: bool = True) -> Optional[Path]:
        """
        Remove the current workflow and its plan tracking.

        Args:
            archive: Move files into workflow/archive/<name>-<timestamp>/
                     instead of deleting them

        Returns:
            The archive directory, if one was created
        """
        if not archive:
            self.store.delete()
            self.plans.clear_all_plans()
            logger.info("Workflow reset without archive")
            return None

        name = "workflow"
        if self.store.exists():
            try:
                name = self.store.load().project.name
            except StatusParseError as e:
                logger.warning(f"Archiving unreadable workflow status: {e}")

        target = self.paths.archive_dir() / f"{slugify(name)}-{archive_timestamp()}"
        target.mkdir(parents=True, exist_ok=True)
        if self.store.exists():
            shutil.move(str(self.store.status_file), str(target / self.store.status_file.name))
            self.store.delete()
        self.plans.archive_plans(target)
        logger.info(f"Archived workflow '{name}' to {target}")
        return target

    # ========================================================================
    # Phase Progression
    # ========================================================================

    def complete_phase(self, outputs: Optional[list[str]] = None, force: bool = False) -> Optional[PrevcPhase]:
        """
        Complete the current phase and move to the next active one.

        Args:
            outputs: Paths produced by the phase
            force: Bypass gate checks

        Returns:
            The new current phase, or None when the workflow is complete

        Raises:
            GateError: a gate blocks the transition
            NotFoundError: there is no workflow
        """
        status = self.store.load()
        current = status.current_phase
        next_phase = status.next_active_phase()

        if next_phase is not None:
            gates.enforce_gates(status, force=force, next_phase=next_phase)

        self.store.mark_phase_complete(current, outputs)
        self._sync_linked_plan(status.project.plan)

        if next_phase is None:
            logger.info(f"Workflow '{status.project.name}' complete")
            return None

        self.store.transition_to_phase(next_phase)
        return next_phase

    def _sync_linked_plan(self, slug: Optional[str]) -> None:
        """Best effort: a failed plan sync never fails the phase change."""
        if not slug or not self.config.sync_plan_markdown:
            return
        try:
            self.plans.sync_plan_markdown(slug)
        except Exception as e:
            logger.warning(f"Failed to sync plan '{slug}' after phase change: {e}")

    def advance_to_next_phase(self) -> Optional[PrevcPhase]:
        """Move to the next active phase without completing the current one."""
        next_phase = self.store.load().next_active_phase()
        if next_phase is None:
            return None
        self.store.transition_to_phase(next_phase)
        return next_phase

    def check_gates(self, target_phase: Optional[PrevcPhase] = None) -> GateCheckResult:
        status = self.store.load()
        return gates.check_gates(status, parse_phase(target_phase) if target_phase else None)

    def is_complete(self) -> bool:
        return self.store.is_complete()

    def get_status(self) -> WorkflowStatus:
        return self.store.load()

    def get_current_phase(self) -> PrevcPhase:
        return self.store.get_current_phase()

    def update_current_task(self, task: str) -> WorkflowStatus:
        status = self.store.load()
        return self.store.update_phase(
            status.current_phase,
            current_task=task,
            role=self.store.get_active_agent(),
        )

    # ========================================================================
    # Settings, Plans and Approval
    # ========================================================================

    def set_settings(self, settings: Union[GateSettings, dict, None] = None, **overrides) -> GateSettings:
        """Merge gate overrides into the workflow. Returns effective settings."""
        if settings is None:
            settings = GateSettings(**overrides)
        return self.store.set_settings(settings)

    def get_settings(self) -> GateSettings:
        return self.store.get_settings()

    def set_autonomous_mode(self, enabled: bool) -> GateSettings:
        return self.set_settings(GateSettings(autonomous_mode=enabled))

    def link_plan(self, slug: str) -> Optional[PlanReference]:
        """Link a plan document; this also satisfies the plan gate."""
        return self.plans.link_plan(slug)

    def mark_plan_created(self, slug: str) -> WorkflowStatus:
        return self.store.mark_plan_created(slug)

    def approve_plan(self, approver: str, notes: Optional[str] = None) -> PlanApproval:
        status = self.store.load()
        if not status.has_linked_plan():
            logger.warning(f"Approving workflow '{status.project.name}' with no linked plan")
        return self.store.approve_plan(approver, notes)

    def get_approval(self) -> PlanApproval:
        return self.store.get_approval()

    # ========================================================================
    # Agents
    # ========================================================================

    def start_agent(self, agent: str) -> None:
        current = self.store.get_current_phase()
        self.store.update_agent(agent, status=StatusType.IN_PROGRESS, phase=current)

    def complete_agent(self, agent: str, outputs: Optional[list[str]] = None) -> None:
        self.store.update_agent(agent, status=StatusType.COMPLETED, outputs=outputs)

    def handoff(
        self,
        from_agent: str,
        to_agent: str,
        artifacts: Optional[list[str]] = None,
    ) -> Optional[AgentSuggestion]:
        """Complete one agent, start the next, and suggest who follows."""
        self.complete_agent(from_agent, artifacts)
        self.start_agent(to_agent)
        logger.info(f"Handoff {from_agent} -> {to_agent}")
        return self.get_next_agent_suggestion(to_agent)

    def get_next_agent_suggestion(self, current_agent: str) -> Optional[AgentSuggestion]:
        """
        Suggest the agent to hand off to after `current_agent`.

        The next agent listed for the current phase comes first; after the
        last one, the lead agent of the next active phase.
        """
        if self.store.exists():
            status = self.store.load()
            phase = status.current_phase
            next_phase = status.next_active_phase()
        else:
            phase = next((p for p in PHASE_ORDER if current_agent in PHASE_TO_AGENTS[p]), PrevcPhase.P)
            next_index = PHASE_ORDER.index(phase) + 1
            next_phase = PHASE_ORDER[next_index] if next_index < len(PHASE_ORDER) else None

        agents = PHASE_TO_AGENTS[phase]
        if current_agent in agents:
            index = agents.index(current_agent)
            if index + 1 < len(agents):
                return AgentSuggestion(
                    agent=agents[index + 1],
                    reason=f"Next {get_phase_name(phase)} specialist after {current_agent}",
                    phase=phase,
                )

        if next_phase is not None:
            for agent in PHASE_TO_AGENTS[next_phase]:
                if agent != current_agent:
                    return AgentSuggestion(
                        agent=agent,
                        reason=f"Leads the {get_phase_name(next_phase)} phase",
                        phase=next_phase,
                    )
        return None

    # ========================================================================
    # Guidance
    # ========================================================================

    def get_phase_orchestration(self, phase: Optional[PrevcPhase] = None) -> PhaseOrchestration:
        """Agents, skills, docs and instructions for running a phase."""
        status = self.store.load() if self.store.exists() else None
        if phase is None:
            if status is None:
                phase = PrevcPhase.P
            else:
                phase = status.current_phase
        code = parse_phase(phase)
        definition = get_phase_definition(code)

        recommended = get_agents_for_phase(code)
        start_with = recommended[0] if recommended else None
        active = status.active_phases() if status else list(PHASE_ORDER)
        remaining = [p for p in active if PHASE_ORDER.index(p) >= PHASE_ORDER.index(code)]
        skills = self.plans.get_skills_for_phase(code)
        docs = get_docs_for_phase(code)

        instructions = [f"Begin {definition.name}: {definition.description}."]
        if start_with:
            instructions.append(f"Start with {start_with}: {get_agent_description(start_with)}.")
        if skills:
            instructions.append(f"Load the relevant skills: {', '.join(skills)}.")
        if docs:
            instructions.append(f"Consult the docs: {', '.join(docs)}.")
        if definition.outputs:
            instructions.append(f"Produce the outputs: {', '.join(definition.outputs)}.")
        if status is not None:
            instructions.extend(self._plan_instructions(status, code))
            instructions.extend(self._gate_instructions(status, code))
        instructions.append(f"Complete the {definition.name} phase when its outputs are ready.")

        return PhaseOrchestration(
            phase=code,
            phase_name=definition.name,
            description=definition.description,
            roles=list(definition.roles),
            recommended_agents=recommended,
            start_with=start_with,
            agent_sequence=get_agent_handoff_sequence(remaining),
            skills=skills,
            docs=docs,
            outputs=list(definition.outputs),
            instructions=instructions,
        )

    def _plan_instructions(self, status: WorkflowStatus, code: PrevcPhase) -> list[str]:
        slug = status.project.plan
        if not slug:
            return []
        pending = [
            p.id for p in self.plans.get_phase_mapping_for_workflow(slug, code)
            if p.status not in (StatusType.COMPLETED, StatusType.SKIPPED)
        ]
        if not pending:
            return []
        return [f"Work through plan '{slug}' phases: {', '.join(pending)}."]

    @staticmethod
    def _gate_instructions(status: WorkflowStatus, code: PrevcPhase) -> list[str]:
        settings = gates.get_effective_settings(status)
        if settings.autonomous_mode:
            return []
        if code == PrevcPhase.P and settings.require_plan and not status.has_linked_plan():
            return ["Link a plan before completing Planning."]
        if code in (PrevcPhase.P, PrevcPhase.R) and settings.require_approval and not status.approval.plan_approved:
            return ["Get the plan approved before Execution starts."]
        return []

    def get_recommended_actions(self) -> list[str]:
        """Phase tasks, lead role responsibilities and expected outputs."""
        status = self.store.load()
        if status.is_complete():
            return ["Workflow complete: archive it or start a new one."]
        definition = get_phase_definition(status.current_phase)
        actions = [f"Complete {definition.name} phase tasks"]
        for role in definition.roles:
            config = get_role_config(role)
            if config:
                actions.extend(config.responsibilities[:2])
        if definition.outputs:
            actions.append(f"Create outputs: {', '.join(definition.outputs)}")
        check = gates.check_gates(status)
        if not check.can_advance and check.hint:
            actions.append(check.hint)
        return actions

    def get_summary(self) -> WorkflowSummary:
        status = self.store.load()
        active = status.active_phases()
        completed = sum(1 for p in active if status.phases[p].status == StatusType.COMPLETED)
        return WorkflowSummary(
            name=status.project.name,
            scale=status.project.scale,
            current_phase=status.current_phase,
            progress=percent_complete(completed, len(active)) if active else 100,
            completed_phases=completed,
            total_phases=len(active),
            is_complete=status.is_complete(),
            plan=status.project.plan,
            resume_context=status.execution.resume_context,
        )
