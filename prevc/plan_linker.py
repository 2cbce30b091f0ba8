"""
Plan Linker

Binds plan documents (.context/plans/<slug>.md) to the workflow and
tracks their execution step by step.

- plans.json holds the registry of linked plans and the primary plan
- plan-tracking/<slug>.json holds per-phase and per-step progress plus
  the decision log
- Progress is mirrored back into the plan document after every change

Malformed registry or tracking files are treated as empty and logged.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .agents import AGENT_TYPES, discover_custom_agents
from .path_resolver import ContextPaths
from .phases import parse_phase
from .plan_document import ParsedPlan, parse_plan, render_plan_progress, scan_body_phases
from .schema import (
    LinkedPlan,
    PhaseExecution,
    PlanDecision,
    PlanExecutionTracking,
    PlanPhase,
    PlanReference,
    PlansRegistry,
    PlanStatus,
    PlanStep,
    PrevcPhase,
    StatusType,
    StepExecution,
    _utc_now,
)
from .skills import get_skills_for_phase
from .status_store import StatusStore
from .utils import archive_timestamp, atomic_write_text, percent_complete, split_frontmatter

logger = logging.getLogger(__name__)

_LEGACY_TRACKING_KEYS = {
    "planSlug": "plan_slug",
    "lastUpdated": "last_updated",
    "phaseId": "phase_id",
    "startedAt": "started_at",
    "completedAt": "completed_at",
    "stepIndex": "step_index",
    "commitHash": "commit_hash",
    "committedAt": "committed_at",
    "committedBy": "committed_by",
    "decidedAt": "decided_at",
    "decidedBy": "decided_by",
}


def _snake_keys(data: dict) -> dict:
    return {_LEGACY_TRACKING_KEYS.get(key, key): value for key, value in data.items()}


def migrate_tracking_data(raw: dict, slug: str) -> dict:
    """Convert legacy camelCase tracking and the flat phase-status format."""
    data = _snake_keys(raw)
    data.setdefault("plan_slug", slug)
    phases = {}
    for phase_id, phase in (data.get("phases") or {}).items():
        if not isinstance(phase, dict):
            continue
        phase = _snake_keys(phase)
        updated_at = phase.pop("updatedAt", None)
        if updated_at and "steps" not in phase:
            if phase.get("status") == StatusType.COMPLETED.value:
                phase.setdefault("completed_at", updated_at)
            elif phase.get("status") == StatusType.IN_PROGRESS.value:
                phase.setdefault("started_at", updated_at)
        phase.setdefault("phase_id", phase_id)
        phase["steps"] = [_snake_keys(step) for step in phase.get("steps") or [] if isinstance(step, dict)]
        phases[phase_id] = phase
    data["phases"] = phases
    data["decisions"] = [_snake_keys(d) for d in data.get("decisions") or [] if isinstance(d, dict)]
    return data


class PlanLinker:
    """Links plan documents to a workflow and tracks their execution."""

    def __init__(
        self,
        paths: Union[ContextPaths, str, Path, None] = None,
        status_store: Optional[StatusStore] = None,
        sync_markdown: bool = True,
    ):
        self.paths = paths if isinstance(paths, ContextPaths) else ContextPaths(paths)
        self.status_store = status_store
        self.sync_markdown = sync_markdown

    # ========================================================================
    # Registry
    # ========================================================================

    def _load_registry(self) -> PlansRegistry:
        path = self.paths.plans_registry_file()
        if not path.exists():
            return PlansRegistry()
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return PlansRegistry.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            logger.warning(f"Ignoring malformed plan registry {path}: {e}")
            return PlansRegistry()

    def _save_registry(self, registry: PlansRegistry) -> None:
        atomic_write_text(
            self.paths.plans_registry_file(),
            json.dumps(registry.model_dump(mode='json', exclude_none=True), indent=2) + "\n",
        )

    def get_linked_plans(self) -> PlansRegistry:
        return self._load_registry()

    def _read_plan(self, slug: str) -> Optional[str]:
        path = self.paths.plan_file(slug)
        if not path.exists():
            return None
        return path.read_text(encoding='utf-8')

    def _parse(self, slug: str) -> Optional[ParsedPlan]:
        content = self._read_plan(slug)
        return parse_plan(content, slug) if content is not None else None

    def link_plan(self, slug: str) -> Optional[PlanReference]:
        """
        Register a plan document with the workflow.

        Returns:
            The plan reference, or None if .context/plans/<slug>.md does not exist
        """
        content = self._read_plan(slug)
        if content is None:
            logger.warning(f"Cannot link plan '{slug}': {self.paths.plan_file(slug)} not found")
            return None

        parsed = parse_plan(content, slug)
        relative_path = self.paths.relative(self.paths.plan_file(slug))
        registry = self._load_registry()
        ref = registry.find(slug)
        if ref is None:
            ref = PlanReference(slug=slug, path=relative_path, title=parsed.title, summary=parsed.summary)
            registry.active.append(ref)
        else:
            ref.title = parsed.title
            ref.summary = parsed.summary
        if registry.primary is None:
            registry.primary = slug
        self._save_registry(registry)

        if not self.paths.tracking_file(slug).exists():
            self._save_tracking(self._new_tracking(slug, parsed))

        if self.status_store is not None and self.status_store.exists():
            self.status_store.mark_plan_created(slug, relative_path)

        logger.info(f"Linked plan '{slug}' ({parsed.title})")
        return ref

    # ========================================================================
    # Tracking
    # ========================================================================

    def _new_tracking(self, slug: str, parsed: Optional[ParsedPlan]) -> PlanExecutionTracking:
        tracking = PlanExecutionTracking(plan_slug=slug)
        for phase in parsed.phases if parsed else []:
            tracking.phases[phase.id] = PhaseExecution(
                phase_id=phase.id,
                steps=[StepExecution(step_index=s.index, description=s.description) for s in phase.steps],
            )
        tracking.recompute_progress()
        return tracking

    def _load_tracking(self, slug: str) -> Optional[PlanExecutionTracking]:
        path = self.paths.tracking_file(slug)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("expected a JSON object")
            return PlanExecutionTracking.model_validate(migrate_tracking_data(raw, slug))
        except (json.JSONDecodeError, ValidationError, ValueError, OSError) as e:
            logger.warning(f"Ignoring malformed plan tracking {path}: {e}")
            return None

    def _save_tracking(self, tracking: PlanExecutionTracking) -> None:
        atomic_write_text(
            self.paths.tracking_file(tracking.plan_slug),
            json.dumps(tracking.model_dump(mode='json', exclude_none=True), indent=2) + "\n",
        )

    def _ensure_tracking(self, slug: str, parsed: Optional[ParsedPlan]) -> PlanExecutionTracking:
        return self._load_tracking(slug) or self._new_tracking(slug, parsed)

    @staticmethod
    def _ensure_phase(
        tracking: PlanExecutionTracking,
        phase_id: str,
        parsed: Optional[ParsedPlan],
    ) -> PhaseExecution:
        phase = tracking.phases.get(phase_id)
        if phase is None:
            plan_phase = next((p for p in parsed.phases if p.id == phase_id), None) if parsed else None
            steps = plan_phase.steps if plan_phase else []
            phase = PhaseExecution(
                phase_id=phase_id,
                steps=[StepExecution(step_index=s.index, description=s.description) for s in steps],
            )
            tracking.phases[phase_id] = phase
        return phase

    def get_plan_execution_status(self, slug: str) -> Optional[PlanExecutionTracking]:
        return self._load_tracking(slug)

    def update_plan_step(
        self,
        slug: str,
        phase_id: str,
        step_index: int,
        status: StatusType,
        output: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> bool:
        """
        Update one plan step and roll the change up to its phase and the plan.

        Re-applying the current status with no new output or notes changes
        nothing and records nothing.

        Returns:
            False if the plan is not linked, True otherwise
        """
        if self._load_registry().find(slug) is None:
            logger.warning(f"Cannot update step: plan '{slug}' is not linked")
            return False

        status = StatusType(status)
        parsed = self._parse(slug)
        tracking = self._ensure_tracking(slug, parsed)
        phase = self._ensure_phase(tracking, phase_id, parsed)

        step = phase.get_step(step_index)
        if step is None:
            step = StepExecution(step_index=step_index, description=f"Step {step_index}")
            phase.steps.append(step)
            phase.steps.sort(key=lambda s: s.step_index)

        status_changed = step.status != status
        if not status_changed and (output is None or output == step.output) and (notes is None or notes == step.notes):
            return True

        now = _utc_now()
        step.status = status
        if status == StatusType.IN_PROGRESS and step.started_at is None:
            step.started_at = now
        if status == StatusType.COMPLETED:
            step.started_at = step.started_at or now
            step.completed_at = step.completed_at or now
        else:
            step.completed_at = None
        if status == StatusType.PENDING:
            step.started_at = None
        if output is not None:
            step.output = output
        if notes is not None:
            step.notes = notes

        self._roll_up_phase(phase, now)
        tracking.recompute_progress()
        tracking.last_updated = now
        self._save_tracking(tracking)

        if status_changed and self.status_store is not None and self.status_store.exists():
            self.status_store.add_step_history_entry(
                plan=slug,
                plan_phase=phase_id,
                step_index=step_index,
                step_status=status,
                step_description=step.description,
                output=output,
                notes=notes,
            )

        if self.sync_markdown:
            self.sync_plan_markdown(slug)
        return True

    @staticmethod
    def _roll_up_phase(phase: PhaseExecution, now) -> None:
        """Phase is completed iff all steps are, in progress iff any started, else pending."""
        if phase.steps and all(s.status == StatusType.COMPLETED for s in phase.steps):
            phase.status = StatusType.COMPLETED
            phase.started_at = phase.started_at or now
            phase.completed_at = phase.completed_at or now
        elif any(s.status in (StatusType.IN_PROGRESS, StatusType.COMPLETED) for s in phase.steps):
            phase.status = StatusType.IN_PROGRESS
            phase.started_at = phase.started_at or now
            phase.completed_at = None
        else:
            phase.status = StatusType.PENDING
            phase.started_at = None
            phase.completed_at = None

    def update_plan_phase(self, slug: str, phase_id: str, status: StatusType) -> bool:
        """Set a plan phase's status directly."""
        if self._load_registry().find(slug) is None:
            logger.warning(f"Cannot update phase: plan '{slug}' is not linked")
            return False
        status = StatusType(status)
        parsed = self._parse(slug)
        tracking = self._ensure_tracking(slug, parsed)
        phase = self._ensure_phase(tracking, phase_id, parsed)
        if phase.status == status:
            return True

        now = _utc_now()
        phase.status = status
        if status in (StatusType.IN_PROGRESS, StatusType.COMPLETED):
            phase.started_at = phase.started_at or now
        if status == StatusType.COMPLETED:
            phase.completed_at = phase.completed_at or now
        tracking.last_updated = now
        self._save_tracking(tracking)
        if self.sync_markdown:
            self.sync_plan_markdown(slug)
        return True

    def record_phase_commit(
        self,
        slug: str,
        phase_id: str,
        commit_hash: str,
        committed_by: Optional[str] = None,
    ) -> bool:
        """Attach the commit that closed a plan phase."""
        if self._load_registry().find(slug) is None:
            return False
        parsed = self._parse(slug)
        tracking = self._ensure_tracking(slug, parsed)
        phase = self._ensure_phase(tracking, phase_id, parsed)
        now = _utc_now()
        phase.commit_hash = commit_hash
        phase.committed_at = now
        phase.committed_by = committed_by
        tracking.last_updated = now
        self._save_tracking(tracking)
        if self.sync_markdown:
            self.sync_plan_markdown(slug)
        return True

    def record_decision(
        self,
        slug: str,
        title: str,
        description: str,
        phase: Optional[PrevcPhase] = None,
        alternatives: Optional[list[str]] = None,
        decided_by: Optional[str] = None,
    ) -> Optional[PlanDecision]:
        """Append a decision to the plan's decision log."""
        if self._load_registry().find(slug) is None:
            logger.warning(f"Cannot record decision: plan '{slug}' is not linked")
            return None
        tracking = self._ensure_tracking(slug, self._parse(slug))
        decision = PlanDecision(
            id=f"dec-{len(tracking.decisions) + 1:03d}",
            title=title,
            description=description,
            phase=parse_phase(phase) if phase else None,
            decided_by=decided_by,
            alternatives=alternatives or [],
        )
        tracking.decisions.append(decision)
        tracking.last_updated = decision.decided_at
        self._save_tracking(tracking)
        return decision

    # ========================================================================
    # Markdown Sync
    # ========================================================================

    def sync_plan_markdown(self, slug: str) -> bool:
        """
        Write tracked progress back into the plan document.

        Returns:
            False when there is no document or no tracking to write
        """
        content = self._read_plan(slug)
        tracking = self._load_tracking(slug)
        if content is None or tracking is None:
            return False

        _, body = split_frontmatter(content)
        tracked_ids = list(tracking.phases)
        phase_ids: dict[int, str] = {}
        for phase_id, _, _ in scan_body_phases(body):
            number = int(phase_id.split("-", 1)[1])
            if phase_id in tracking.phases:
                phase_ids[number] = phase_id
            elif 0 < number <= len(tracked_ids):
                phase_ids[number] = tracked_ids[number - 1]

        updated = render_plan_progress(content, tracking, phase_ids)
        if updated != content:
            atomic_write_text(self.paths.plan_file(slug), updated)
            logger.debug(f"Synced progress into plan '{slug}' ({tracking.progress}%)")
        return True

    # ========================================================================
    # Queries
    # ========================================================================

    def get_linked_plan(self, slug: str) -> Optional[LinkedPlan]:
        """A linked plan with its structure and tracked progress merged in."""
        ref = self._load_registry().find(slug)
        if ref is None:
            return None
        parsed = self._parse(slug)
        tracking = self._load_tracking(slug)

        phases = [phase.model_copy(deep=True) for phase in parsed.phases] if parsed else []
        if tracking is not None:
            for phase in phases:
                self._merge_tracking(phase, tracking.phases.get(phase.id))

        current = next(
            (p.id for p in phases if p.status not in (StatusType.COMPLETED, StatusType.SKIPPED)),
            None,
        )
        return LinkedPlan(
            ref=ref,
            phases=phases,
            agents=parsed.agents if parsed else [],
            docs=parsed.docs if parsed else [],
            decisions=list(tracking.decisions) if tracking else [],
            progress=tracking.progress if tracking else 0,
            current_phase=current,
        )

    @staticmethod
    def _merge_tracking(phase: PlanPhase, tracked: Optional[PhaseExecution]) -> None:
        if tracked is None:
            return
        phase.status = tracked.status
        by_index = {step.index: step for step in phase.steps}
        for tracked_step in tracked.steps:
            step = by_index.get(tracked_step.step_index)
            if step is None:
                step = PlanStep(index=tracked_step.step_index, description=tracked_step.description)
                phase.steps.append(step)
                by_index[step.index] = step
            step.status = tracked_step.status
            step.started_at = tracked_step.started_at
            step.completed_at = tracked_step.completed_at
            step.output = tracked_step.output
            step.notes = tracked_step.notes
        phase.steps.sort(key=lambda s: s.index)
        if phase.steps:
            done = sum(1 for s in phase.steps if s.status == StatusType.COMPLETED)
            phase.progress = percent_complete(done, len(phase.steps))
        elif phase.status == StatusType.COMPLETED:
            phase.progress = 100

    def get_plans_for_phase(self, phase: PrevcPhase) -> list[LinkedPlan]:
        """Active plans with at least one phase mapped to the PREVC phase."""
        code = parse_phase(phase)
        plans = []
        for ref in self._load_registry().active:
            plan = self.get_linked_plan(ref.slug)
            if plan and any(p.prevc_phase == code for p in plan.phases):
                plans.append(plan)
        return plans

    def get_phase_mapping_for_workflow(self, slug: str, phase: PrevcPhase) -> list[PlanPhase]:
        """Plan phases that belong to a PREVC phase."""
        plan = self.get_linked_plan(slug)
        if plan is None:
            return []
        code = parse_phase(phase)
        return [p for p in plan.phases if p.prevc_phase == code]

    def has_pending_work_for_phase(self, slug: str, phase: PrevcPhase) -> bool:
        return any(
            p.status not in (StatusType.COMPLETED, StatusType.SKIPPED)
            for p in self.get_phase_mapping_for_workflow(slug, phase)
        )

    def get_plan_progress(self, slug: str) -> Optional[dict]:
        """Overall progress plus step totals per PREVC phase."""
        plan = self.get_linked_plan(slug)
        if plan is None:
            return None
        by_phase: dict[str, dict] = {}
        for phase in plan.phases:
            totals = by_phase.setdefault(phase.prevc_phase.value, {"total": 0, "completed": 0, "percentage": 0})
            totals["total"] += len(phase.steps)
            totals["completed"] += sum(1 for s in phase.steps if s.status == StatusType.COMPLETED)
        for totals in by_phase.values():
            if totals["total"]:
                totals["percentage"] = percent_complete(totals["completed"], totals["total"])
        return {"overall": plan.progress, "by_phase": by_phase}

    def set_plan_status(self, slug: str, status: PlanStatus) -> bool:
        """Move a plan between the active and completed registry lists."""
        registry = self._load_registry()
        ref = registry.find(slug)
        if ref is None:
            return False
        ref.status = PlanStatus(status)
        registry.active = [r for r in registry.active if r.slug != slug]
        registry.completed = [r for r in registry.completed if r.slug != slug]
        if ref.status == PlanStatus.COMPLETED:
            registry.completed.append(ref)
        else:
            registry.active.append(ref)
        self._save_registry(registry)
        return True

    # ========================================================================
    # Agents and Skills
    # ========================================================================

    def discover_agents(self) -> list[str]:
        """Built-in agent types followed by custom agents on disk."""
        return list(AGENT_TYPES) + discover_custom_agents(self.paths.agents_dir())

    def get_skills_for_phase(self, phase: PrevcPhase) -> list[str]:
        return get_skills_for_phase(self.paths.skills_dir(), parse_phase(phase))

    # ========================================================================
    # Clearing and Archiving
    # ========================================================================

    def clear_all_plans(self) -> None:
        """Delete the registry and all tracking files. Plan documents stay."""
        registry = self.paths.plans_registry_file()
        if registry.exists():
            registry.unlink()
        if self.paths.tracking_dir().exists():
            shutil.rmtree(self.paths.tracking_dir())
        logger.info("Cleared linked plans")

    def archive_plans(self, archive_dir: Optional[Path] = None) -> Optional[Path]:
        """
        Move the registry and tracking files into an archive directory.

        Args:
            archive_dir: Destination. Defaults to archive/plans-<timestamp>.

        Returns:
            The archive directory, or None when there was nothing to archive
        """
        registry = self.paths.plans_registry_file()
        tracking_dir = self.paths.tracking_dir()
        if not registry.exists() and not tracking_dir.exists():
            return None

        target = archive_dir or self.paths.archive_dir() / f"plans-{archive_timestamp()}"
        target.mkdir(parents=True, exist_ok=True)
        if registry.exists():
            shutil.move(str(registry), str(target / registry.name))
        if tracking_dir.exists():
            shutil.move(str(tracking_dir), str(target / tracking_dir.name))
        logger.info(f"Archived linked plans to {target}")
        return target
