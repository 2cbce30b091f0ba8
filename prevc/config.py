"""
Workflow Config

Optional per-repository configuration at .context/workflow/config.yaml,
merged over built-in defaults:

- Default scale used when neither a scale nor a description is given
- Gate overrides applied at init when the caller passes none
- Whether plan step progress is mirrored into the plan document
- Log level for embedding applications
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from .schema import GateSettings, ProjectScale

logger = logging.getLogger(__name__)


class WorkflowConfig:
    """
    Engine configuration from .context/workflow/config.yaml.

    Missing or malformed files fall back to defaults.
    """

    def __init__(self, data: dict, path: Optional[Path] = None):
        """Initialize with configuration data."""
        self._data = data
        self.path = path

    @classmethod
    def get_default(cls) -> dict:
        """Get default configuration."""
        return {
            "defaults": {
                "scale": None,
            },
            "gates": {
                "autonomous_mode": None,
                "require_plan": None,
                "require_approval": None,
            },
            "plans": {
                "sync_markdown": True,
            },
            "logging": {
                "level": None,
            },
        }

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "WorkflowConfig":
        """
        Load configuration from a YAML file.

        Returns defaults if the file doesn't exist or can't be parsed.
        """
        defaults = cls.get_default()

        if path is None or not path.exists():
            return cls(defaults, path)

        try:
            with open(path) as f:
                user_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring unreadable config {path}: {e}")
            return cls(defaults, path)

        if not isinstance(user_data, dict):
            logger.warning(f"Ignoring config {path}: expected a mapping")
            return cls(defaults, path)

        return cls(cls._deep_merge(defaults, user_data), path)

    @staticmethod
    def _deep_merge(base: dict, override: dict) -> dict:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = WorkflowConfig._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def save(self, path: Optional[Path] = None) -> None:
        """Write configuration back as YAML."""
        path = path or self.path
        if path is None:
            raise ValueError("No config path to save to")
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(self._data, f, default_flow_style=False)

    # ========================================================================
    # Property Accessors
    # ========================================================================

    @property
    def default_scale(self) -> Optional[ProjectScale]:
        """Configured default scale, if any."""
        value = self._data.get("defaults", {}).get("scale")
        if value is None:
            return None
        try:
            return ProjectScale.parse(value)
        except ValueError:
            logger.warning(f"Ignoring invalid default scale in config: {value!r}")
            return None

    @property
    def gate_overrides(self) -> Optional[GateSettings]:
        """Gate overrides, or None when none are configured."""
        gates: dict[str, Any] = self._data.get("gates") or {}
        values = {
            key: gates.get(key)
            for key in ("autonomous_mode", "require_plan", "require_approval")
            if isinstance(gates.get(key), bool)
        }
        return GateSettings(**values) if values else None

    @property
    def sync_plan_markdown(self) -> bool:
        return bool(self._data.get("plans", {}).get("sync_markdown", True))

    @property
    def log_level(self) -> Optional[str]:
        return self._data.get("logging", {}).get("level")


def configure_logging(level: Optional[str] = None) -> None:
    """Set the level of the prevc logger hierarchy.

    Handlers are left to the embedding application.
    """
    if not level:
        return
    logging.getLogger("prevc").setLevel(level.upper())
