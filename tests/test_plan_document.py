"""
Tests for plan document parsing and progress rendering.
"""

from datetime import datetime, timezone

from prevc.plan_document import (
    DEFAULT_PHASES,
    map_phase_to_prevc,
    parse_plan,
    render_plan_progress,
    replace_execution_history,
    update_frontmatter_progress,
)
from prevc.schema import (
    PhaseExecution,
    PlanExecutionTracking,
    PrevcPhase,
    StatusType,
    StepExecution,
)
from prevc.utils import parse_frontmatter


STARTED = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
FINISHED = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
PHASE_IDS = {1: "phase-1", 2: "phase-2", 3: "phase-3"}


def billing_tracking() -> PlanExecutionTracking:
    """Phase 1 done, first step of phase 2 running."""
    return PlanExecutionTracking(
        plan_slug="billing-v2-plan",
        progress=50,
        last_updated=FINISHED,
        phases={
            "phase-1": PhaseExecution(
                phase_id="phase-1",
                status=StatusType.COMPLETED,
                started_at=STARTED,
                completed_at=FINISHED,
                commit_hash="abc1234",
                steps=[
                    StepExecution(step_index=1, description="Inventory current invoice flows",
                                  status=StatusType.COMPLETED, started_at=STARTED, completed_at=FINISHED),
                    StepExecution(step_index=2, description="Agree on the v2 data model",
                                  status=StatusType.COMPLETED, started_at=STARTED, completed_at=FINISHED,
                                  output="docs/data-model.md"),
                ],
            ),
            "phase-2": PhaseExecution(
                phase_id="phase-2",
                status=StatusType.IN_PROGRESS,
                started_at=FINISHED,
                steps=[
                    StepExecution(step_index=1, description="Build the v2 client",
                                  status=StatusType.IN_PROGRESS, started_at=FINISHED),
                    StepExecution(step_index=2, description="Migrate invoice creation"),
                    StepExecution(step_index=3, description="Backfill historical invoices"),
                ],
            ),
            "phase-3": PhaseExecution(
                phase_id="phase-3",
                steps=[StepExecution(step_index=1, description="Run reconciliation tests")],
            ),
        },
    )


class TestParseBody:
    """Structure derived from the document body."""

    def test_title_and_summary(self, billing_plan):
        plan = parse_plan(billing_plan, "billing-v2-plan")
        assert plan.title == "Billing V2"
        assert plan.summary == "Move invoicing onto the v2 billing API."

    def test_phases_and_steps(self, billing_plan):
        plan = parse_plan(billing_plan, "billing-v2-plan")
        assert plan.from_frontmatter is False
        assert [p.id for p in plan.phases] == ["phase-1", "phase-2", "phase-3"]
        assert [p.prevc_phase for p in plan.phases] == [PrevcPhase.P, PrevcPhase.E, PrevcPhase.V]
        assert [len(p.steps) for p in plan.phases] == [2, 3, 1]
        assert plan.phases[1].steps[2].description == "Backfill historical invoices"
        assert plan.phases[1].steps[2].index == 3

    def test_agents_and_docs_from_links(self, billing_plan):
        plan = parse_plan(billing_plan, "billing-v2-plan")
        assert [a.type for a in plan.agents] == ["architect-specialist", "backend-specialist"]
        assert plan.docs == ["architecture.md"]

    def test_title_falls_back_to_slug(self):
        plan = parse_plan("Just some notes.\n", "loose-notes")
        assert plan.title == "loose-notes"
        assert plan.summary is None

    def test_default_skeleton(self):
        """A document without phase headings gets the default three phases."""
        plan = parse_plan("# Tiny Plan\n\nDo the thing.\n", "tiny")
        assert plan.title == "Tiny"
        assert [(p.id, p.name, p.prevc_phase) for p in plan.phases] == DEFAULT_PHASES
        assert all(not p.steps for p in plan.phases)


class TestParseFrontmatter:
    """Structure taken from YAML frontmatter."""

    def test_frontmatter_phases(self, frontmatter_plan):
        plan = parse_plan(frontmatter_plan, "search-revamp")
        assert plan.from_frontmatter is True
        assert plan.title == "Search Revamp"
        assert [(p.id, p.prevc_phase) for p in plan.phases] == [
            ("discovery", PrevcPhase.P),
            ("build", PrevcPhase.E),
        ]
        assert [s.description for s in plan.phases[0].steps] == ["Interview stakeholders", "Write the brief"]

    def test_missing_steps_come_from_body(self, frontmatter_plan):
        """A frontmatter phase without steps uses the matching body heading."""
        plan = parse_plan(frontmatter_plan, "search-revamp")
        assert [s.description for s in plan.phases[1].steps] == ["Index documents", "Ship the query API"]

    def test_frontmatter_agents_and_docs(self, frontmatter_plan):
        plan = parse_plan(frontmatter_plan, "search-revamp")
        assert [(a.type, a.role) for a in plan.agents] == [("feature-developer", "developer")]
        assert plan.docs == ["architecture.md"]

    def test_invalid_frontmatter_falls_back_to_body(self, billing_plan):
        content = "---\nphases: [unclosed\n---\n" + billing_plan
        plan = parse_plan(content, "billing-v2-plan")
        assert plan.from_frontmatter is False
        assert [len(p.steps) for p in plan.phases] == [2, 3, 1]


class TestPhaseMapping:
    """Keyword mapping of plan phase names to PREVC phases."""

    def test_keywords(self):
        assert map_phase_to_prevc("Architecture review") == PrevcPhase.R
        assert map_phase_to_prevc("Testing") == PrevcPhase.V
        assert map_phase_to_prevc("Deployment") == PrevcPhase.C

    def test_default_is_execution(self):
        assert map_phase_to_prevc("Miscellaneous") == PrevcPhase.E


class TestRendering:
    """Writing tracked progress back into the document."""

    def test_step_markers(self, billing_plan):
        rendered = render_plan_progress(billing_plan, billing_tracking(), PHASE_IDS)
        assert "1. [x] Inventory current invoice flows *(completed: 2026-03-01T10:00:00Z)*" in rendered
        assert "1. [ ] Build the v2 client *(in progress since: 2026-03-01T10:00:00Z)*" in rendered
        assert "\n2. Migrate invoice creation\n" in rendered

    def test_history_inserted_before_evidence(self, billing_plan):
        rendered = render_plan_progress(billing_plan, billing_tracking(), PHASE_IDS)
        assert rendered.index("## Execution History") < rendered.index("## Evidence")
        assert "> Last updated: 2026-03-01T10:00:00Z | Progress: 50%" in rendered
        assert "### phase-1 [DONE]" in rendered
        assert "- Commit: abc1234" in rendered
        assert "  - Output: docs/data-model.md" in rendered
        assert "### phase-2 [IN PROGRESS]" in rendered
        assert "### phase-3 [PENDING]" in rendered

    def test_rendering_is_idempotent(self, billing_plan):
        tracking = billing_tracking()
        once = render_plan_progress(billing_plan, tracking, PHASE_IDS)
        twice = render_plan_progress(once, tracking, PHASE_IDS)
        assert twice == once
        assert once.count("## Execution History") == 1

    def test_rendered_document_parses_the_same(self, billing_plan):
        rendered = render_plan_progress(billing_plan, billing_tracking(), PHASE_IDS)
        original = parse_plan(billing_plan, "billing-v2-plan")
        reparsed = parse_plan(rendered, "billing-v2-plan")
        assert reparsed.title == original.title
        assert reparsed.summary == original.summary
        assert [[s.description for s in p.steps] for p in reparsed.phases] == \
            [[s.description for s in p.steps] for p in original.phases]

    def test_history_appended_without_markers(self):
        content = "# Plain Plan\n\n### Phase 1 - Build\n1. Do it\n"
        rendered = replace_execution_history(content, "## Execution History\n\nbody\n")
        assert rendered == content.rstrip() + "\n\n## Execution History\n\nbody\n"


class TestFrontmatterProgress:
    """progress and lastUpdated in the frontmatter block."""

    def test_inserted_after_status(self, frontmatter_plan):
        updated = update_frontmatter_progress(frontmatter_plan, 50, FINISHED)
        assert updated.startswith("---\nstatus: active\nprogress: 50\n")
        data = parse_frontmatter(updated)
        assert data["progress"] == 50
        assert data["lastUpdated"] == "2026-03-01T10:00:00Z"

    def test_replaced_on_update(self, frontmatter_plan):
        updated = update_frontmatter_progress(frontmatter_plan, 50, FINISHED)
        updated = update_frontmatter_progress(updated, 75, FINISHED)
        assert updated.count("progress:") == 1
        assert parse_frontmatter(updated)["progress"] == 75

    def test_no_frontmatter_unchanged(self, billing_plan):
        assert update_frontmatter_progress(billing_plan, 50, FINISHED) == billing_plan
