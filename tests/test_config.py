"""
Tests for workflow configuration loading.
"""

import logging

import yaml

from prevc.config import WorkflowConfig, configure_logging
from prevc.schema import ProjectScale


class TestWorkflowConfig:
    """Loading .context/workflow/config.yaml."""

    def test_defaults_without_file(self, tmp_path):
        config = WorkflowConfig.load(tmp_path / "config.yaml")
        assert config.default_scale is None
        assert config.gate_overrides is None
        assert config.sync_plan_markdown is True
        assert config.log_level is None

    def test_partial_file_merges_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"defaults": {"scale": "LARGE"}, "gates": {"require_approval": False}}))

        config = WorkflowConfig.load(path)
        assert config.default_scale == ProjectScale.LARGE
        overrides = config.gate_overrides
        assert overrides.require_approval is False
        assert overrides.require_plan is None
        assert config.sync_plan_markdown is True

    def test_malformed_file_falls_back(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("defaults: [unclosed\n")
        assert WorkflowConfig.load(path).default_scale is None

    def test_non_mapping_falls_back(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        assert WorkflowConfig.load(path).sync_plan_markdown is True

    def test_invalid_scale_ignored(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"defaults": {"scale": "huge"}}))
        assert WorkflowConfig.load(path).default_scale is None

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "workflow" / "config.yaml"
        config = WorkflowConfig.load(path)
        config._data["plans"]["sync_markdown"] = False
        config.save()
        assert WorkflowConfig.load(path).sync_plan_markdown is False


class TestConfigureLogging:
    """configure_logging sets the package logger level."""

    def test_sets_level(self):
        logger = logging.getLogger("prevc")
        previous = logger.level
        try:
            configure_logging("debug")
            assert logger.level == logging.DEBUG
        finally:
            logger.setLevel(previous)

    def test_none_leaves_level(self):
        logger = logging.getLogger("prevc")
        previous = logger.level
        configure_logging(None)
        assert logger.level == previous
