"""Path resolution for workflow files

Centralizes where the workflow engine reads and writes inside a
repository's .context directory.

Directory structure:
    .context/
    ├── workflow/
    │   ├── status.yaml          # WorkflowStatus
    │   ├── config.yaml          # Optional engine config
    │   ├── plans.json           # Linked plan registry
    │   ├── plan-tracking/
    │   │   └── <slug>.json      # Step-level execution tracking
    │   └── archive/
    │       └── <name>-<timestamp>/
    ├── plans/
    │   └── <slug>.md            # Plan documents
    ├── agents/
    │   └── <agent>.md           # Custom agent playbooks
    └── skills/
        └── <skill>/SKILL.md     # Custom skills
"""

from pathlib import Path
from typing import Optional, Union

CONTEXT_DIR_NAME = ".context"


class ContextPaths:
    """Centralized path resolution for a repository's .context directory"""

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        """Initialize path resolver.

        Args:
            base_dir: Repository root, or the .context directory itself.
                     Defaults to the current working directory.
        """
        base = Path(base_dir) if base_dir is not None else Path.cwd()
        if base.name == CONTEXT_DIR_NAME:
            self.context_dir = base
            self.base_dir = base.parent
        else:
            self.base_dir = base
            self.context_dir = base / CONTEXT_DIR_NAME

    @property
    def workflow_dir(self) -> Path:
        return self.context_dir / "workflow"

    def status_file(self) -> Path:
        return self.workflow_dir / "status.yaml"

    def config_file(self) -> Path:
        return self.workflow_dir / "config.yaml"

    def plans_registry_file(self) -> Path:
        return self.workflow_dir / "plans.json"

    def tracking_dir(self) -> Path:
        return self.workflow_dir / "plan-tracking"

    def tracking_file(self, slug: str) -> Path:
        return self.tracking_dir() / f"{slug}.json"

    def archive_dir(self) -> Path:
        return self.workflow_dir / "archive"

    def plans_dir(self) -> Path:
        return self.context_dir / "plans"

    def plan_file(self, slug: str) -> Path:
        return self.plans_dir() / f"{slug}.md"

    def agents_dir(self) -> Path:
        return self.context_dir / "agents"

    def skills_dir(self) -> Path:
        return self.context_dir / "skills"

    def relative(self, path: Path) -> str:
        """Path relative to the repository root, as a posix string."""
        try:
            return path.relative_to(self.base_dir).as_posix()
        except ValueError:
            return path.as_posix()

    def ensure_dirs(self) -> None:
        """Create the workflow directory if needed."""
        self.workflow_dir.mkdir(parents=True, exist_ok=True)
