"""Tests for configuration, logging and the error taxonomy."""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml

from docctx.config import (
    AssemblyConfig,
    Config,
    DiscoveryConfig,
    load_config,
)
from docctx.exceptions import ConfigError, DiscoveryIOError, DocctxError, MissingCoreContextError
from docctx.logger import get_logger, setup_logging


class TestConfig:
    """Test YAML round-trip and validation."""

    def test_defaults(self):
        config = Config()
        assert config.model.provider == "openai"
        assert config.model.model == "gpt-4o"
        assert config.assembly.standard_max_tokens == 50_000
        assert config.assembly.ultra_min_tokens == 200_000
        assert config.assembly.supplementary_floor_tokens == 5_000
        assert config.assembly.supplementary_max_fragments == 3
        assert config.assembly.overflow_tolerance == 0.20
        assert config.discovery.min_score == 75
        assert config.discovery.max_count == 10
        assert "node_modules/" in config.discovery.exclude

    def test_save_and_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            config = Config.create_default(root)
            config.model.provider = "anthropic"
            config.model.model = "claude-3-5-sonnet"
            config.assembly.overflow_tolerance = 0.1
            config.discovery.max_depth = 5
            config.documents = {"budget-plan": {"keywords": {"budget": 1.0}}}
            config.enriched = {"summary": "docs/summary.md"}
            path = root / ".docctx" / "config.yaml"
            config.save(path)

            loaded = Config.load(path)
            assert loaded.root == root.resolve()
            assert loaded.project.name == root.name
            assert loaded.model.provider == "anthropic"
            assert loaded.assembly.overflow_tolerance == 0.1
            assert loaded.discovery.max_depth == 5
            assert loaded.enriched == {"summary": "docs/summary.md"}
            assert "budget-plan" in loaded.document_profiles()

    def test_invalid_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text("model: [unclosed")
            with pytest.raises(ConfigError):
                Config.load(path)

    def test_unknown_field(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text(yaml.dump({"assembly": {"no_such_option": 1}}))
            with pytest.raises(ConfigError):
                Config.load(path)

    def test_invalid_thresholds_rejected_on_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text(yaml.dump({"assembly": {"overflow_tolerance": 1.5}}))
            with pytest.raises(ConfigError):
                Config.load(path)

    def test_bad_document_profile(self):
        config = Config()
        config.documents = {"risk-analysis": ["risk"]}
        with pytest.raises(ConfigError):
            config.document_profiles()

    def test_load_config_walks_up(self, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir).resolve()
            Config.create_default(root).save(root / ".docctx" / "config.yaml")
            nested = root / "a" / "b"
            nested.mkdir(parents=True)
            monkeypatch.chdir(nested)
            assert load_config().root == root

    def test_load_config_default_without_file(self, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            monkeypatch.chdir(tmpdir)
            config = load_config()
            assert config.model.model == "gpt-4o"


class TestAssemblyConfigValidation:
    @pytest.mark.parametrize("kwargs", [
        {"standard_max_tokens": 0},
        {"ultra_min_tokens": 10, "standard_max_tokens": 100},
        {"supplementary_floor_tokens": -1},
        {"supplementary_max_fragments": -1},
        {"overflow_tolerance": -0.1},
        {"chars_per_token": 0},
        {"tokenizer": "words"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigError):
            AssemblyConfig(**kwargs).validate()

    def test_valid_defaults(self):
        AssemblyConfig().validate()
        assert DiscoveryConfig().max_file_bytes == 1_048_576


class TestExceptions:
    def test_hierarchy(self):
        assert issubclass(ConfigError, DocctxError)
        assert issubclass(MissingCoreContextError, DocctxError)
        assert issubclass(DiscoveryIOError, DocctxError)

    def test_missing_core_message(self):
        err = MissingCoreContextError("risk-analysis")
        assert "risk-analysis" in str(err)
        assert err.document_type == "risk-analysis"

    def test_discovery_error_str(self):
        err = DiscoveryIOError("Permission denied", "/x/y.md")
        assert str(err) == "/x/y.md: Permission denied"
        assert err.path == "/x/y.md"


class TestLogging:
    def test_levels(self):
        logger = setup_logging(verbose=True)
        assert logger.name == "docctx"
        assert logger.handlers[0].level == logging.DEBUG

        logger = setup_logging(quiet=True)
        assert logger.handlers[0].level == logging.ERROR

    def test_log_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "logs" / "docctx.log"
            setup_logging(log_file=log_file)
            get_logger().debug("hello from test")
            for handler in get_logger().handlers:
                handler.flush()
            assert "hello from test" in log_file.read_text()
