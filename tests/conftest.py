"""
Pytest fixtures for workflow tests
"""

from pathlib import Path

import pytest

from prevc.orchestrator import Orchestrator
from prevc.plan_linker import PlanLinker
from prevc.status_store import StatusStore


BILLING_PLAN = """# Billing V2 Plan

> Move invoicing onto the v2 billing API.

## Agent Lineup
- [Architect](../agents/architect-specialist.md)
- [Backend](../agents/backend-specialist.md)

## Documentation Touchpoints
- [Architecture](../docs/architecture.md)

## Working Phases

### Phase 1 — Discovery & Alignment
1. Inventory current invoice flows
2. Agree on the v2 data model

### Phase 2 — Implementation
1. Build the v2 client
2. Migrate invoice creation
3. Backfill historical invoices

### Phase 3 — Validation & Handoff
1. Run reconciliation tests

## Evidence
- Links to merged PRs

## Rollback
- Switch the billing-v2 flag off
"""


FRONTMATTER_PLAN = """---
status: active
phases:
  - id: discovery
    name: Discovery
    prevc: P
    steps:
      - Interview stakeholders
      - Write the brief
  - id: build
    name: Build
    prevc: E
agents:
  - type: feature-developer
    role: developer
docs:
  - architecture.md
---
# Search Revamp Plan

> Replace the legacy search index.

### Phase 1 — Discovery
1. Interview stakeholders
2. Write the brief

### Phase 2 — Build
1. Index documents
2. Ship the query API
"""


@pytest.fixture
def billing_plan() -> str:
    """Body-only plan: three phases, six steps."""
    return BILLING_PLAN


@pytest.fixture
def frontmatter_plan() -> str:
    """Plan whose structure comes from YAML frontmatter."""
    return FRONTMATTER_PLAN


@pytest.fixture
def repo(tmp_path) -> Path:
    """Empty repository root."""
    return tmp_path


@pytest.fixture
def store(repo) -> StatusStore:
    return StatusStore(repo)


@pytest.fixture
def orchestrator(repo) -> Orchestrator:
    return Orchestrator(repo)


@pytest.fixture
def write_plan(repo):
    """Write a plan document to .context/plans/<slug>.md."""
    def _write(slug: str, content: str = BILLING_PLAN) -> Path:
        path = repo / ".context" / "plans" / f"{slug}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path
    return _write


@pytest.fixture
def linker(repo, store) -> PlanLinker:
    return PlanLinker(repo, status_store=store)
