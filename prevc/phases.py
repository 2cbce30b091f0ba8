"""
PREVC Phase Catalogue

The five phases of the workflow, in order:
    P - Planning
    R - Review
    E - Execution
    V - Validation
    C - Confirmation
"""

from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidPhaseError
from .schema import PHASE_ORDER, PrevcPhase


@dataclass(frozen=True)
class PhaseDefinition:
    """Static description of a phase."""
    name: str
    description: str
    roles: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    optional: bool = False
    order: int = 0


PREVC_PHASES: dict[PrevcPhase, PhaseDefinition] = {
    PrevcPhase.P: PhaseDefinition(
        name="Planning",
        description="Discovery, requirements and specifications",
        roles=["planner", "designer"],
        outputs=["prd", "tech-spec", "requirements", "wireframes"],
        optional=False,
        order=1,
    ),
    PrevcPhase.R: PhaseDefinition(
        name="Review",
        description="Architecture, technical decisions and design review",
        roles=["architect", "designer"],
        outputs=["architecture", "adr", "design-spec"],
        optional=True,
        order=2,
    ),
    PrevcPhase.E: PhaseDefinition(
        name="Execution",
        description="Implementation and development",
        roles=["developer"],
        outputs=["code", "unit-tests"],
        optional=False,
        order=3,
    ),
    PrevcPhase.V: PhaseDefinition(
        name="Validation",
        description="Tests, QA and code review",
        roles=["qa", "reviewer"],
        outputs=["test-report", "review-comments", "approval"],
        optional=False,
        order=4,
    ),
    PrevcPhase.C: PhaseDefinition(
        name="Confirmation",
        description="Documentation, deploy and handoff",
        roles=["documenter"],
        outputs=["documentation", "changelog", "deploy"],
        optional=True,
        order=5,
    ),
}

PHASE_NAMES: dict[PrevcPhase, str] = {code: d.name for code, d in PREVC_PHASES.items()}


def parse_phase(value) -> PrevcPhase:
    """Coerce a phase code ("P", "r", PrevcPhase.E) into a PrevcPhase."""
    if isinstance(value, PrevcPhase):
        return value
    if isinstance(value, str) and value.strip().upper() in PrevcPhase.__members__:
        return PrevcPhase(value.strip().upper())
    raise InvalidPhaseError(f"Invalid PREVC phase: {value!r}. Expected one of P, R, E, V, C.")


def is_valid_phase(value) -> bool:
    try:
        parse_phase(value)
    except InvalidPhaseError:
        return False
    return True


def get_phase_definition(phase: PrevcPhase) -> PhaseDefinition:
    return PREVC_PHASES[parse_phase(phase)]


def get_phase_name(phase: PrevcPhase) -> str:
    return PHASE_NAMES[parse_phase(phase)]


def get_next_phase(phase: PrevcPhase) -> Optional[PrevcPhase]:
    """Next phase in fixed order, ignoring skips."""
    index = PHASE_ORDER.index(parse_phase(phase))
    return PHASE_ORDER[index + 1] if index + 1 < len(PHASE_ORDER) else None


def get_previous_phase(phase: PrevcPhase) -> Optional[PrevcPhase]:
    index = PHASE_ORDER.index(parse_phase(phase))
    return PHASE_ORDER[index - 1] if index > 0 else None


def is_phase_optional(phase: PrevcPhase) -> bool:
    return PREVC_PHASES[parse_phase(phase)].optional


def get_roles_for_phase(phase: PrevcPhase) -> list[str]:
    return list(PREVC_PHASES[parse_phase(phase)].roles)


def get_outputs_for_phase(phase: PrevcPhase) -> list[str]:
    return list(PREVC_PHASES[parse_phase(phase)].outputs)


def get_phase_order(phase: PrevcPhase) -> int:
    return PREVC_PHASES[parse_phase(phase)].order
