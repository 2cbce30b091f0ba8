"""
Plan Document Parsing and Rendering

Plan documents are markdown files under .context/plans/. Structure is
read in two tiers:

1. YAML frontmatter (phases, agents, docs) when present and valid
2. A line scanner over the body: "### Phase N - Name" headings,
   numbered steps beneath them, and links to ../agents/ and ../docs/

Body-derived structure is a best effort and never overrides tracked
execution state. Rendering writes progress back into the document
without touching unrelated content.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .schema import PlanAgent, PlanExecutionTracking, PlanPhase, PlanStep, PrevcPhase, StatusType
from .utils import parse_frontmatter, split_frontmatter

logger = logging.getLogger(__name__)

EXECUTION_HISTORY_HEADING = "## Execution History"
HISTORY_INSERT_BEFORE = ["## Evidence", "## Rollback"]

_TITLE_PATTERN = re.compile(r'^#\s+(.+?)(?:\s+Plan)?\s*$', re.MULTILINE)
_SUMMARY_PATTERN = re.compile(r'^>\s*(.+)$', re.MULTILINE)
_PHASE_HEADING_PATTERN = re.compile(r'^###\s+Phase\s+(\d+)\s*[—–:-]\s*(.+?)\s*$')
_HEADING_PATTERN = re.compile(r'^#{1,3}\s')
_STEP_PATTERN = re.compile(r'^(\d+)\.\s+(?:\[[ xX~]\]\s*)?(.+?)\s*$')
_CHECKBOX_PATTERN = re.compile(r'^\d+\.\s+\[[ xX~]\]')
_STEP_MARKER_PATTERN =re.compile(r'\s*\*\((?:completed|in progress since):[^)]*\)\*\s*$')
_AGENT_LINK_PATTERN = re.compile(r'\[[^\]]*\]\(\.\./agents/([\w-]+)\.md\)')
_DOC_LINK_PATTERN = re.compile(r'\[[^\]]*\]\(\.\./docs/([^)\s]+)\)')

PHASE_KEYWORDS: list[tuple[tuple[str, ...], PrevcPhase]] = [
    (("discovery", "alignment"), PrevcPhase.P),
    (("review", "architecture"), PrevcPhase.R),
    (("implementation", "build"), PrevcPhase.E),
    (("validation", "testing"), PrevcPhase.V),
    (("handoff", "deployment"), PrevcPhase.C),
]

DEFAULT_PHASES = [
    ("phase-1", "Discovery & Alignment", PrevcPhase.P),
    ("phase-2", "Implementation", PrevcPhase.E),
    ("phase-3", "Validation & Handoff", PrevcPhase.V),
]

STATUS_LABELS = {
    StatusType.COMPLETED: "[DONE]",
    StatusType.IN_PROGRESS: "[IN PROGRESS]",
    StatusType.SKIPPED: "[SKIPPED]",
    StatusType.PENDING: "[PENDING]",
}


@dataclass
class ParsedPlan:
    """Structure extracted from a plan document."""
    title: str
    summary: Optional[str] = None
    phases: list[PlanPhase] = field(default_factory=list)
    agents: list[PlanAgent] = field(default_factory=list)
    docs: list[str] = field(default_factory=list)
    from_frontmatter: bool = False


def _timestamp(value: Optional[datetime]) -> str:
    return value.isoformat().replace('+00:00', 'Z') if value else ""


def map_phase_to_prevc(name: str) -> PrevcPhase:
    """Map a plan phase name to a PREVC phase by keyword. Default: E."""
    lowered = name.lower()
    for keywords, phase in PHASE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return phase
    return PrevcPhase.E


def _coerce_prevc(value, name: str) -> PrevcPhase:
    if isinstance(value, str) and value.strip().upper() in PrevcPhase.__members__:
        return PrevcPhase(value.strip().upper())
    return map_phase_to_prevc(name)


def _strip_step_text(text: str) -> str:
    return _STEP_MARKER_PATTERN.sub('', text).strip()


# ============================================================================
# Parsing
# ============================================================================

def _history_free(body: str) -> str:
    """Body with the generated execution history section removed."""
    index = body.find(EXECUTION_HISTORY_HEADING)
    if index == -1:
        return body
    rest = body[index + len(EXECUTION_HISTORY_HEADING):]
    next_section = re.search(r'^## ', rest, re.MULTILINE)
    tail = rest[next_section.start():] if next_section else ""
    return body[:index] + tail


def parse_title_and_summary(content: str, slug: str) -> tuple[str, Optional[str]]:
    """Title from the first H1 (a trailing " Plan" is dropped), summary from the first quote."""
    frontmatter = parse_frontmatter(content) or {}
    _, body = split_frontmatter(content)
    body = _history_free(body)

    title_match = _TITLE_PATTERN.search(body)
    title = title_match.group(1).strip() if title_match else None
    if not title and isinstance(frontmatter.get("title"), str):
        title = frontmatter["title"]

    summary_match = _SUMMARY_PATTERN.search(body)
    summary = summary_match.group(1).strip() if summary_match else None
    if not summary and isinstance(frontmatter.get("summary"), str):
        summary = frontmatter["summary"]

    return title or slug, summary


def scan_body_phases(body: str) -> list[tuple[str, str, list[str]]]:
    """Phase headings in the body with the numbered steps beneath each.

    Returns (phase id, name, step descriptions) in document order.
    """
    phases: list[tuple[str, str, list[str]]] = []
    current: Optional[list[str]] = None
    for line in _history_free(body).splitlines():
        heading = _PHASE_HEADING_PATTERN.match(line)
        if heading:
            current = []
            phases.append((f"phase-{heading.group(1)}", heading.group(2).strip(), current))
            continue
        if _HEADING_PATTERN.match(line):
            current = None
            continue
        if current is not None:
            step = _STEP_PATTERN.match(line)
            if step:
                current.append(_strip_step_text(step.group(2)))
    return phases


def _steps_from(descriptions: list[str]) -> list[PlanStep]:
    return [PlanStep(index=i, description=text) for i, text in enumerate(descriptions, start=1)]


def _frontmatter_steps(raw) -> Optional[list[str]]:
    if not isinstance(raw, list):
        return None
    steps = []
    for item in raw:
        if isinstance(item, str):
            steps.append(item)
        elif isinstance(item, dict) and item.get("description"):
            steps.append(str(item["description"]))
    return steps


def _frontmatter_phases(raw, body_steps: dict[str, list[str]]) -> list[PlanPhase]:
    phases = []
    for position, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            continue
        phase_id = str(item.get("id") or f"phase-{position}")
        name = str(item.get("name") or phase_id)
        steps = _frontmatter_steps(item.get("steps"))
        if steps is None:
            steps = body_steps.get(phase_id) or body_steps.get(f"phase-{position}", [])
        phases.append(PlanPhase(
            id=phase_id,
            name=name,
            prevc_phase=_coerce_prevc(item.get("prevc"), name),
            steps=_steps_from(steps),
        ))
    return phases


def _frontmatter_agents(raw) -> list[PlanAgent]:
    agents = []
    for item in raw:
        if isinstance(item, str):
            agents.append(PlanAgent(type=item))
        elif isinstance(item, dict) and item.get("type"):
            agents.append(PlanAgent(type=str(item["type"]), role=item.get("role")))
    return agents


def _body_agents(body: str) -> list[PlanAgent]:
    seen: list[str] = []
    for name in _AGENT_LINK_PATTERN.findall(body):
        if name not in seen:
            seen.append(name)
    return [PlanAgent(type=name) for name in seen]


def _body_docs(body: str) -> list[str]:
    docs: list[str] = []
    for path in _DOC_LINK_PATTERN.findall(body):
        if path not in docs:
            docs.append(path)
    return docs


def parse_plan(content: str, slug: str) -> ParsedPlan:
    """Extract title, phases, steps, agents and docs from a plan document."""
    title, summary = parse_title_and_summary(content, slug)
    _, body = split_frontmatter(content)
    scanned = scan_body_phases(body)
    body_steps = {phase_id: steps for phase_id, _, steps in scanned}

    plan = ParsedPlan(title=title, summary=summary)
    frontmatter = parse_frontmatter(content)

    if frontmatter and isinstance(frontmatter.get("phases"), list) and frontmatter["phases"]:
        plan.phases = _frontmatter_phases(frontmatter["phases"], body_steps)
        plan.from_frontmatter = True
    if frontmatter and isinstance(frontmatter.get("agents"), list):
        plan.agents = _frontmatter_agents(frontmatter["agents"])
    if frontmatter and isinstance(frontmatter.get("docs"), list):
        plan.docs = [str(doc) for doc in frontmatter["docs"]]

    if not plan.phases:
        logger.debug(f"Plan '{slug}': deriving phases from document body")
        if scanned:
            plan.phases = [
                PlanPhase(id=phase_id, name=name, prevc_phase=map_phase_to_prevc(name), steps=_steps_from(steps))
                for phase_id, name, steps in scanned
            ]
        else:
            plan.phases = [
                PlanPhase(id=phase_id, name=name, prevc_phase=prevc)
                for phase_id, name, prevc in DEFAULT_PHASES
            ]
    if not plan.agents:
        plan.agents = _body_agents(body)
    if not plan.docs:
        plan.docs = _body_docs(body)

    return plan


# ============================================================================
# Rendering
# ============================================================================

def update_frontmatter_progress(content: str, progress: int, last_updated: datetime) -> str:
    """Set `progress` and `lastUpdated` in the frontmatter block, if there is one."""
    raw, body = split_frontmatter(content)
    if raw is None:
        return content

    lines = raw.split('\n')
    progress_line = f"progress: {progress}"
    updated_line = f'lastUpdated: "{_timestamp(last_updated)}"'

    def _set(key: str, value: str, after: Optional[Callable[[str], bool]] = None) -> None:
        for i, line in enumerate(lines):
            if re.match(rf'^{key}:', line):
                lines[i] = value
                return
        if after is not None:
            for i, line in enumerate(lines):
                if after(line):
                    lines.insert(i + 1, value)
                    return
        lines.append(value)

    _set("progress", progress_line, after=lambda line: line.startswith("status:"))
    _set("lastUpdated", updated_line)
    return "---\n" + "\n".join(lines) + "\n---\n" + body


def update_step_checkboxes(content: str, tracking: PlanExecutionTracking, phase_ids: dict[int, str]) -> str:
    """
    Mark numbered steps under "### Phase N" headings with their tracked status.

    Steps are matched by their position in the numbered list under each
    heading. Completed steps get "[x]" and a completion stamp, in-progress
    steps an "in progress since" stamp. A previously marked step that is
    now pending or skipped goes back to "[ ]" without a stamp. Unmarked
    lines are left alone.

    Args:
        content: Plan document
        tracking: Tracked execution state
        phase_ids: Heading number -> tracked phase id
    """
    lines = content.split('\n')
    current_phase: Optional[str] = None
    position = 0
    in_history = False

    for i, line in enumerate(lines):
        if line.startswith("## "):
            in_history = line.strip() == EXECUTION_HISTORY_HEADING
        if in_history:
            continue
        heading = _PHASE_HEADING_PATTERN.match(line)
        if heading:
            current_phase = phase_ids.get(int(heading.group(1)))
            position = 0
            continue
        if _HEADING_PATTERN.match(line):
            current_phase = None
            continue
        if current_phase is None:
            continue
        step_match = _STEP_PATTERN.match(line)
        if not step_match:
            continue
        position += 1
        phase = tracking.phases.get(current_phase)
        step = phase.get_step(position) if phase else None
        if step is None:
            continue
        number = step_match.group(1)
        text = _strip_step_text(step_match.group(2))
        if step.status == StatusType.COMPLETED:
            lines[i] = f"{number}. [x] {text} *(completed: {_timestamp(step.completed_at)})*"
        elif step.status == StatusType.IN_PROGRESS:
            lines[i] = f"{number}. [ ] {text} *(in progress since: {_timestamp(step.started_at)})*"
        elif _CHECKBOX_PATTERN.match(line) or text != step_match.group(2):
            lines[i] = f"{number}. [ ] {text}"

    return '\n'.join(lines)


def render_execution_history(tracking: PlanExecutionTracking) -> str:
    """The generated "## Execution History" section, phases in plan order."""
    lines = [
        EXECUTION_HISTORY_HEADING,
        "",
        f"> Last updated: {_timestamp(tracking.last_updated)} | Progress: {tracking.progress}%",
        "",
    ]
    for phase_id, phase in tracking.phases.items():
        lines.append(f"### {phase_id} {STATUS_LABELS[phase.status]}")
        if phase.started_at:
            lines.append(f"- Started: {_timestamp(phase.started_at)}")
        if phase.completed_at:
            lines.append(f"- Completed: {_timestamp(phase.completed_at)}")
        if phase.commit_hash:
            lines.append(f"- Commit: {phase.commit_hash}")
        if phase.steps:
            lines.append("")
            for step in sorted(phase.steps, key=lambda s: s.step_index):
                check = "x" if step.status == StatusType.COMPLETED else " "
                line = f"- [{check}] Step {step.step_index}: {step.description}"
                if step.completed_at and step.status == StatusType.COMPLETED:
                    line += f" *({_timestamp(step.completed_at)})*"
                elif step.status == StatusType.IN_PROGRESS:
                    line += " *(in progress)*"
                lines.append(line)
                if step.output:
                    lines.append(f"  - Output: {step.output}")
                if step.notes:
                    lines.append(f"  - Notes: {step.notes}")
        lines.append("")
    return '\n'.join(lines).rstrip('\n') + '\n'


def replace_execution_history(content: str, section: str) -> str:
    """
    Put the history section into the document.

    An existing section is replaced up to the next "## " heading.
    Otherwise it goes before "## Evidence" or "## Rollback", or at the end.
    """
    index = content.find(EXECUTION_HISTORY_HEADING)
    if index != -1:
        rest = content[index + len(EXECUTION_HISTORY_HEADING):]
        next_section = re.search(r'^## ', rest, re.MULTILINE)
        if next_section:
            end = index + len(EXECUTION_HISTORY_HEADING) + next_section.start()
            return content[:index] + section + "\n" + content[end:]
        return content[:index] + section

    for marker in HISTORY_INSERT_BEFORE:
        match = re.search(rf'^{re.escape(marker)}\b', content, re.MULTILINE)
        if match:
            return content[:match.start()] + section + "\n" + content[match.start():]

    return content.rstrip() + "\n\n" + section


def render_plan_progress(
    content: str,
    tracking: PlanExecutionTracking,
    phase_ids: dict[int, str],
) -> str:
    """Apply frontmatter progress, step checkboxes and the history section."""
    content = update_frontmatter_progress(content, tracking.progress, tracking.last_updated)
    content = update_step_checkboxes(content, tracking, phase_ids)
    return replace_execution_history(content, render_execution_history(tracking))
