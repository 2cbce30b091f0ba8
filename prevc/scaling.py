"""
Scale-Adaptive Routing

Decides which phases and roles a workflow needs based on project scale,
which gate policy applies by default, and how to guess a scale from a
task description.
"""

from dataclasses import dataclass, field
from typing import Optional

from .roles import PREVC_ROLES
from .schema import PHASE_ORDER, GateSettings, PrevcPhase, ProjectScale


@dataclass(frozen=True)
class ScaleRoute:
    """Phases, roles and documents a scale requires."""
    phases: list[PrevcPhase]
    roles: list[str]
    documents: list[str]
    extras: list[str] = field(default_factory=list)
    skip_review: bool = False


# MEDIUM keeps Confirmation active.
SCALE_ROUTES: dict[ProjectScale, ScaleRoute] = {
    ProjectScale.QUICK: ScaleRoute(
        phases=[PrevcPhase.E, PrevcPhase.V],
        roles=["solo-dev"],
        documents=["code"],
        skip_review=True,
    ),
    ProjectScale.SMALL: ScaleRoute(
        phases=[PrevcPhase.P, PrevcPhase.E, PrevcPhase.V],
        roles=["planner", "developer", "qa"],
        documents=["tech-spec", "code", "test-report"],
    ),
    ProjectScale.MEDIUM: ScaleRoute(
        phases=list(PHASE_ORDER),
        roles=["planner", "architect", "developer", "qa", "reviewer"],
        documents=["prd", "architecture", "code", "test-report", "review"],
    ),
    ProjectScale.LARGE: ScaleRoute(
        phases=list(PHASE_ORDER),
        roles=list(PREVC_ROLES),
        documents=["prd", "architecture", "code", "test-report", "documentation"],
    ),
    ProjectScale.ENTERPRISE: ScaleRoute(
        phases=list(PHASE_ORDER),
        roles=list(PREVC_ROLES),
        documents=["prd", "tech-spec", "requirements", "architecture", "adr",
                   "code", "test-report", "review", "documentation", "changelog"],
        extras=["security-audit", "compliance-check", "adr"],
    ),
}

SCALE_NAMES: dict[ProjectScale, str] = {
    ProjectScale.QUICK: "Quick",
    ProjectScale.SMALL: "Small",
    ProjectScale.MEDIUM: "Medium",
    ProjectScale.LARGE: "Large",
    ProjectScale.ENTERPRISE: "Enterprise",
}

ESTIMATED_TIMES: dict[ProjectScale, str] = {
    ProjectScale.QUICK: "~5 min",
    ProjectScale.SMALL: "~15 min",
    ProjectScale.MEDIUM: "~30 min",
    ProjectScale.LARGE: "~1 hour",
    ProjectScale.ENTERPRISE: "~2+ hours",
}


# ============================================================================
# Gate Defaults
# ============================================================================

def get_default_settings(scale: ProjectScale) -> GateSettings:
    """Gate policy implied by a scale.

    QUICK runs autonomously, SMALL requires a plan, anything larger
    requires a plan and its approval.
    """
    scale = ProjectScale.parse(scale)
    if scale == ProjectScale.QUICK:
        return GateSettings(autonomous_mode=True, require_plan=False, require_approval=False)
    if scale == ProjectScale.SMALL:
        return GateSettings(autonomous_mode=False, require_plan=True, require_approval=False)
    return GateSettings(autonomous_mode=False, require_plan=True, require_approval=True)


def resolve_settings(scale: ProjectScale, overrides: Optional[GateSettings] = None) -> GateSettings:
    """Effective settings: explicit overrides merged over the scale defaults."""
    defaults = get_default_settings(scale)
    if overrides is None:
        return defaults
    return overrides.merged_over(defaults)


# ============================================================================
# Routing
# ============================================================================

def get_scale_route(scale: ProjectScale) -> ScaleRoute:
    return SCALE_ROUTES[ProjectScale.parse(scale)]


def get_phases_for_scale(scale: ProjectScale) -> list[PrevcPhase]:
    return list(get_scale_route(scale).phases)


def get_roles_for_scale(scale: ProjectScale) -> list[str]:
    return list(get_scale_route(scale).roles)


def is_phase_required_for_scale(phase: PrevcPhase, scale: ProjectScale) -> bool:
    return phase in get_scale_route(scale).phases


def get_scale_name(scale: ProjectScale) -> str:
    return SCALE_NAMES[ProjectScale.parse(scale)]


def get_scale_from_name(name: str) -> Optional[ProjectScale]:
    """Case-insensitive lookup; None for unknown names."""
    try:
        return ProjectScale.parse(name)
    except (ValueError, KeyError):
        return None


def get_estimated_time(scale: ProjectScale) -> str:
    return ESTIMATED_TIMES[ProjectScale.parse(scale)]


# ============================================================================
# Detection
# ============================================================================

BUG_FIX_KEYWORDS = ["fix", "bug", "hotfix", "patch", "issue", "problem", "error"]
SIMPLE_FEATURE_KEYWORDS = ["add", "simple", "small", "minor", "tweak", "adjust"]
SECURITY_KEYWORDS = ["security", "compliance", "audit", "gdpr", "lgpd", "pci", "hipaa", "soc2"]
DOCUMENTATION_KEYWORDS = ["document", "docs", "readme", "api", "public", "external"]


def _mentions(text: str, keywords: list[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def detect_project_scale(
    description: str,
    files: Optional[list[str]] = None,
    complexity: Optional[str] = None,
    has_compliance: bool = False,
) -> ProjectScale:
    """Guess a scale from a task description and the files it touches.

    Checked in order: bug fixes and tiny changes are QUICK, compliance or
    security work is ENTERPRISE, simple features are SMALL, broad or
    documented work is LARGE, everything else MEDIUM.
    """
    files = files or []

    if _mentions(description, BUG_FIX_KEYWORDS) or (len(files) <= 3 and not has_compliance):
        return ProjectScale.QUICK

    if has_compliance or _mentions(description, SECURITY_KEYWORDS):
        return ProjectScale.ENTERPRISE

    if _mentions(description, SIMPLE_FEATURE_KEYWORDS) and len(files) <= 10:
        return ProjectScale.SMALL

    if len(files) > 30 or _mentions(description, DOCUMENTATION_KEYWORDS) or complexity == "high":
        return ProjectScale.LARGE

    return ProjectScale.MEDIUM
