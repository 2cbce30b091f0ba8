"""
Tests for linking plan documents and tracking their execution.

Tests cover:
- Registry and tracking files created on link
- Step updates, progress roll-up and idempotence
- Markdown sync back into the plan document
- Decisions, commits, archiving and malformed files
"""

import json

from prevc.plan_linker import PlanLinker
from prevc.schema import ExecutionAction, PlanStatus, PrevcPhase, ProjectScale, StatusType


SLUG = "billing-v2-plan"


def link_billing(linker, write_plan):
    write_plan(SLUG)
    return linker.link_plan(SLUG)


class TestLinkPlan:
    """Registering plan documents."""

    def test_missing_document_returns_none(self, linker):
        assert linker.link_plan("nope") is None
        assert linker.get_linked_plans().active == []
        assert not linker.paths.tracking_file("nope").exists()

    def test_registers_plan(self, linker, write_plan):
        ref = link_billing(linker, write_plan)
        assert ref.title == "Billing V2"
        assert ref.summary == "Move invoicing onto the v2 billing API."
        assert ref.path == ".context/plans/billing-v2-plan.md"
        assert ref.status == PlanStatus.ACTIVE

        registry = json.loads(linker.paths.plans_registry_file().read_text())
        assert registry["primary"] == SLUG
        assert [p["slug"] for p in registry["active"]] == [SLUG]

    def test_tracking_seeded_from_plan(self, linker, write_plan):
        link_billing(linker, write_plan)
        tracking = linker.get_plan_execution_status(SLUG)
        assert list(tracking.phases) == ["phase-1", "phase-2", "phase-3"]
        assert tracking.total_steps() == 6
        assert tracking.progress == 0

    def test_first_plan_stays_primary(self, linker, write_plan, frontmatter_plan):
        link_billing(linker, write_plan)
        write_plan("search-revamp", frontmatter_plan)
        linker.link_plan("search-revamp")
        registry = linker.get_linked_plans()
        assert registry.primary == SLUG
        assert len(registry.active) == 2

    def test_satisfies_plan_gate(self, linker, store, write_plan):
        store.create("billing-v2", ProjectScale.MEDIUM)
        link_billing(linker, write_plan)
        status = store.load()
        assert status.approval.plan_created is True
        assert status.project.plan == SLUG
        assert status.execution.history[-1].action == ExecutionAction.PLAN_LINKED

    def test_links_without_workflow(self, linker, store, write_plan):
        assert link_billing(linker, write_plan) is not None
        assert not store.exists()


class TestStepTracking:
    """update_plan_step and its roll-ups."""

    def test_unlinked_plan(self, linker):
        assert linker.update_plan_step("ghost", "phase-1", 1, StatusType.COMPLETED) is False

    def test_progress_is_rounded_share_of_steps(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)
        assert linker.get_plan_execution_status(SLUG).progress == 17

        linker.update_plan_step(SLUG, "phase-1", 2, StatusType.COMPLETED)
        linker.update_plan_step(SLUG, "phase-2", 1, StatusType.COMPLETED)
        assert linker.get_plan_execution_status(SLUG).progress == 50

        for phase_id, index in [("phase-2", 2), ("phase-2", 3), ("phase-3", 1)]:
            linker.update_plan_step(SLUG, phase_id, index, StatusType.COMPLETED)
        assert linker.get_plan_execution_status(SLUG).progress == 100

    def test_half_percent_rounds_up(self, linker, write_plan):
        steps = "\n".join(f"{i}. Task {i}" for i in range(1, 9))
        write_plan("eight-steps", f"# Eight Steps\n\n### Phase 1 — Work\n\n{steps}\n")
        linker.link_plan("eight-steps")

        linker.update_plan_step("eight-steps", "phase-1", 1, StatusType.COMPLETED)
        assert linker.get_plan_execution_status("eight-steps").progress == 13

        for index in range(2, 6):
            linker.update_plan_step("eight-steps", "phase-1", index, StatusType.COMPLETED)
        assert linker.get_plan_execution_status("eight-steps").progress == 63
        assert linker.get_plan_progress("eight-steps")["by_phase"]["E"]["percentage"] == 63

    def test_reverted_step_resets_phase(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-3", 1, StatusType.COMPLETED)
        linker.update_plan_step(SLUG, "phase-3", 1, StatusType.PENDING)

        phase = linker.get_plan_execution_status(SLUG).phases["phase-3"]
        assert phase.status == StatusType.PENDING
        assert phase.started_at is None
        assert phase.completed_at is None
        assert phase.get_step(1).completed_at is None

    def test_partially_reverted_phase_is_in_progress(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)
        linker.update_plan_step(SLUG, "phase-1", 2, StatusType.COMPLETED)
        linker.update_plan_step(SLUG, "phase-1", 2, StatusType.SKIPPED)

        phase = linker.get_plan_execution_status(SLUG).phases["phase-1"]
        assert phase.status == StatusType.IN_PROGRESS
        assert phase.completed_at is None

    def test_phase_rolls_up(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-2", 1, StatusType.IN_PROGRESS)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)
        linker.update_plan_step(SLUG, "phase-1", 2, StatusType.COMPLETED)

        tracking = linker.get_plan_execution_status(SLUG)
        assert tracking.phases["phase-1"].status == StatusType.COMPLETED
        assert tracking.phases["phase-1"].completed_at is not None
        assert tracking.phases["phase-2"].status == StatusType.IN_PROGRESS
        assert tracking.phases["phase-3"].status == StatusType.PENDING

    def test_step_timestamps(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.IN_PROGRESS)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED, output="inventory.md", notes="12 flows")

        step = linker.get_plan_execution_status(SLUG).phases["phase-1"].get_step(1)
        assert step.started_at <= step.completed_at
        assert step.output == "inventory.md"
        assert step.notes == "12 flows"

    def test_history_entry_per_status_change(self, linker, store, write_plan):
        store.create("billing-v2", ProjectScale.MEDIUM)
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)

        entry = store.get_execution_history().history[-1]
        assert entry.action == ExecutionAction.STEP_COMPLETED
        assert entry.plan == SLUG
        assert entry.plan_phase == "phase-1"
        assert entry.step_index == 1
        assert entry.step_description == "Inventory current invoice flows"

    def test_repeated_completion_is_noop(self, linker, store, write_plan):
        """Completing a completed step records nothing new."""
        store.create("billing-v2", ProjectScale.MEDIUM)
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)
        entries = len(store.get_execution_history().history)
        completed_at = linker.get_plan_execution_status(SLUG).phases["phase-1"].get_step(1).completed_at

        assert linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED) is True

        assert len(store.get_execution_history().history) == entries
        step = linker.get_plan_execution_status(SLUG).phases["phase-1"].get_step(1)
        assert step.completed_at == completed_at

    def test_update_plan_phase(self, linker, write_plan):
        link_billing(linker, write_plan)
        assert linker.update_plan_phase(SLUG, "phase-3", StatusType.SKIPPED) is True
        assert linker.get_plan_execution_status(SLUG).phases["phase-3"].status == StatusType.SKIPPED
        assert linker.update_plan_phase("ghost", "phase-1", StatusType.COMPLETED) is False


class TestMarkdownSync:
    """Progress mirrored into the plan document."""

    def test_checkboxes_written(self, linker, write_plan):
        path = write_plan(SLUG)
        linker.link_plan(SLUG)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)

        content = path.read_text()
        assert "1. [x] Inventory current invoice flows *(completed: " in content
        assert "## Execution History" in content
        assert content.index("## Execution History") < content.index("## Evidence")

    def test_reverted_step_is_unchecked(self, linker, write_plan):
        path = write_plan(SLUG)
        linker.link_plan(SLUG)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.PENDING)

        content = path.read_text()
        assert "\n1. [ ] Inventory current invoice flows\n" in content
        assert "*(completed: " not in content
        assert "\n2. Agree on the v2 data model\n" in content

    def test_sync_disabled(self, repo, store, write_plan, billing_plan):
        linker = PlanLinker(repo, status_store=store, sync_markdown=False)
        path = write_plan(SLUG)
        linker.link_plan(SLUG)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)
        assert path.read_text() == billing_plan

    def test_frontmatter_plan_maps_headings_by_position(self, linker, write_plan, frontmatter_plan):
        """Body heading "Phase 2" belongs to the second frontmatter phase."""
        path = write_plan("search-revamp", frontmatter_plan)
        linker.link_plan("search-revamp")
        linker.update_plan_step("search-revamp", "build", 1, StatusType.COMPLETED)

        content = path.read_text()
        assert "1. [x] Index documents *(completed: " in content
        assert "1. Interview stakeholders\n" in content
        assert "\nprogress: 25\n" in content

    def test_sync_without_tracking(self, linker, write_plan):
        write_plan(SLUG)
        assert linker.sync_plan_markdown(SLUG) is False


class TestQueries:
    """Merged plan views and phase mapping."""

    def test_linked_plan_merges_tracking(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)

        plan = linker.get_linked_plan(SLUG)
        assert plan.slug == SLUG
        assert plan.progress == 17
        assert plan.phases[0].steps[0].status == StatusType.COMPLETED
        assert plan.phases[0].progress == 50
        assert plan.current_phase == "phase-1"
        assert [a.type for a in plan.agents] == ["architect-specialist", "backend-specialist"]

    def test_plans_for_phase(self, linker, write_plan):
        link_billing(linker, write_plan)
        assert [p.slug for p in linker.get_plans_for_phase(PrevcPhase.E)] == [SLUG]
        assert linker.get_plans_for_phase(PrevcPhase.C) == []

    def test_phase_mapping_and_pending_work(self, linker, write_plan):
        link_billing(linker, write_plan)
        mapped = linker.get_phase_mapping_for_workflow(SLUG, PrevcPhase.P)
        assert [p.id for p in mapped] == ["phase-1"]
        assert linker.has_pending_work_for_phase(SLUG, PrevcPhase.P)

        linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED)
        linker.update_plan_step(SLUG, "phase-1", 2, StatusType.COMPLETED)
        assert not linker.has_pending_work_for_phase(SLUG, PrevcPhase.P)

    def test_plan_progress_by_phase(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.update_plan_step(SLUG, "phase-2", 1, StatusType.COMPLETED)

        progress = linker.get_plan_progress(SLUG)
        assert progress["overall"] == 17
        assert progress["by_phase"]["E"] == {"total": 3, "completed": 1, "percentage": 33}
        assert progress["by_phase"]["P"]["percentage"] == 0
        assert linker.get_plan_progress("ghost") is None

    def test_discover_agents(self, repo, linker):
        agents_dir = repo / ".context" / "agents"
        agents_dir.mkdir(parents=True)
        (agents_dir / "billing-expert.md").write_text("# Billing expert\n")
        (agents_dir / "code-reviewer.md").write_text("# Override\n")

        agents = linker.discover_agents()
        assert agents[-1] == "billing-expert"
        assert agents.count("code-reviewer") == 1

    def test_custom_skills(self, repo, linker):
        skill_dir = repo / ".context" / "skills" / "release-notes"
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.md").write_text("---\nname: release-notes\nphases: [C]\n---\nDraft notes.\n")

        skills = linker.get_skills_for_phase(PrevcPhase.C)
        assert "release-notes" in skills
        assert "commit-message" in skills
        assert "release-notes" not in linker.get_skills_for_phase(PrevcPhase.P)


class TestDecisionsAndCommits:
    """Decision log and phase commits."""

    def test_decision_ids(self, linker, write_plan):
        link_billing(linker, write_plan)
        first = linker.record_decision(SLUG, "Use v2 client", "Generated client over hand-written",
                                       phase=PrevcPhase.R, alternatives=["hand-written"])
        second = linker.record_decision(SLUG, "Backfill async", "Run backfill as a job")

        assert first.id == "dec-001"
        assert second.id == "dec-002"
        assert first.alternatives == ["hand-written"]
        assert [d.id for d in linker.get_linked_plan(SLUG).decisions] == ["dec-001", "dec-002"]

    def test_decision_on_unlinked_plan(self, linker):
        assert linker.record_decision("ghost", "t", "d") is None

    def test_phase_commit(self, linker, write_plan):
        link_billing(linker, write_plan)
        assert linker.record_phase_commit(SLUG, "phase-1", "abc1234", committed_by="dev") is True
        phase = linker.get_plan_execution_status(SLUG).phases["phase-1"]
        assert phase.commit_hash == "abc1234"
        assert phase.committed_by == "dev"
        assert phase.committed_at is not None


class TestHousekeeping:
    """Plan status, clearing, archiving and malformed files."""

    def test_set_plan_status(self, linker, write_plan):
        link_billing(linker, write_plan)
        assert linker.set_plan_status(SLUG, PlanStatus.COMPLETED) is True
        registry = linker.get_linked_plans()
        assert registry.active == []
        assert registry.completed[0].status == PlanStatus.COMPLETED
        assert linker.set_plan_status("ghost", PlanStatus.PAUSED) is False

    def test_clear_all_plans(self, linker, write_plan):
        path = write_plan(SLUG)
        linker.link_plan(SLUG)
        linker.clear_all_plans()
        assert not linker.paths.plans_registry_file().exists()
        assert not linker.paths.tracking_dir().exists()
        assert path.exists()

    def test_archive_plans(self, linker, write_plan):
        link_billing(linker, write_plan)
        target = linker.archive_plans()
        assert (target / "plans.json").exists()
        assert (target / "plan-tracking" / f"{SLUG}.json").exists()
        assert not linker.paths.plans_registry_file().exists()
        assert linker.archive_plans() is None

    def test_malformed_registry(self, linker):
        registry = linker.paths.plans_registry_file()
        registry.parent.mkdir(parents=True)
        registry.write_text("{not json")
        assert linker.get_linked_plans().active == []

    def test_malformed_tracking_is_rebuilt(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.paths.tracking_file(SLUG).write_text("[1, 2")
        assert linker.get_plan_execution_status(SLUG) is None

        assert linker.update_plan_step(SLUG, "phase-1", 1, StatusType.COMPLETED) is True
        assert linker.get_plan_execution_status(SLUG).progress == 17

    def test_legacy_tracking_format(self, linker, write_plan):
        link_billing(linker, write_plan)
        linker.paths.tracking_file(SLUG).write_text(json.dumps({
            "planSlug": SLUG,
            "progress": 40,
            "lastUpdated": "2026-03-01T10:00:00Z",
            "phases": {
                "phase-1": {"status": "completed", "updatedAt": "2026-03-01T10:00:00Z"},
            },
        }))

        tracking = linker.get_plan_execution_status(SLUG)
        assert tracking.progress == 40
        assert tracking.phases["phase-1"].phase_id == "phase-1"
        assert tracking.phases["phase-1"].completed_at is not None
