"""
Tests for YAML analysis configuration.
"""

import os
import tempfile

import pytest

from plcmigrate.ai_context import TargetLanguage
from plcmigrate.config import AnalysisConfig, ScoringWeights, load_config
from plcmigrate.exceptions import ConfigurationError, InvalidWeightsError, UnknownTargetLanguageError


class TestLoadConfig:
    """Test cases for load_config()."""

    def write(self, text):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write(text)
            path = f.name
        self.paths.append(path)
        return path

    def setup_method(self):
        """Set up test fixtures."""
        self.paths = []

    def teardown_method(self):
        for path in self.paths:
            os.unlink(path)

    def test_full_config(self):
        """All sections are read."""
        path = self.write("""
scoring:
  weights:
    documentation: 1
    safety: 2
    complexity: 0
    determinism: 0
    testability: 1
safety:
  io_channels:
    - '^%IX1\\.'
ai_context:
  target_language: Rust
analysis:
  max_workers: 3
""")
        config = load_config(path)
        assert config.weights.safety == 2
        assert config.weights.normalized()["safety"] == 0.5
        assert config.target_language == "rust"
        assert config.max_workers == 3
        assert config.is_safety_channel("%IX1.4")
        assert not config.is_safety_channel("%IX0.4")
        assert not config.is_safety_channel(None)

    def test_empty_file_gives_defaults(self):
        """An empty file is the default configuration."""
        config = load_config(self.write(""))
        assert config.weights == ScoringWeights()
        assert config.target_language == TargetLanguage.PYTHON.value
        assert config.max_workers is None

    def test_partial_weights(self):
        """Missing weights keep their defaults."""
        config = load_config(self.write("scoring:\n  weights:\n    safety: 0.5\n"))
        assert config.weights.safety == 0.5
        assert config.weights.documentation == 0.25

    def test_missing_file(self):
        """A missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config("/nonexistent/plcmigrate.yaml")

    def test_malformed_yaml(self):
        """Unparseable YAML raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Malformed YAML"):
            load_config(self.write("scoring: [unclosed\n"))

    def test_non_mapping_root(self):
        """The root must be a mapping."""
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_config(self.write("- a\n- b\n"))

    def test_unknown_section(self):
        """Unknown top-level sections are rejected."""
        with pytest.raises(ConfigurationError, match="reporting"):
            load_config(self.write("reporting:\n  level: high\n"))

    def test_invalid_weights(self):
        """Weight errors surface as InvalidWeightsError."""
        with pytest.raises(InvalidWeightsError):
            load_config(self.write("scoring:\n  weights:\n    safety: -1\n"))

    @pytest.mark.parametrize("value", [".nan", ".inf", "-.inf"])
    def test_non_finite_weights(self, value):
        """YAML NaN and infinity are rejected."""
        with pytest.raises(InvalidWeightsError, match="finite"):
            load_config(self.write(f"scoring:\n  weights:\n    safety: {value}\n"))

    def test_unknown_target(self):
        """An unsupported target language is a configuration error."""
        with pytest.raises(UnknownTargetLanguageError):
            load_config(self.write("ai_context:\n  target_language: cobol\n"))


class TestAnalysisConfig:
    """Test cases for AnalysisConfig validation."""

    def test_bad_channel_pattern(self):
        """Channel patterns must be valid regular expressions."""
        with pytest.raises(ConfigurationError, match="safety channel"):
            AnalysisConfig(safety_channels=["[unclosed"])

    @pytest.mark.parametrize("value", [0, -2, "4", True, 1.5])
    def test_bad_max_workers(self, value):
        """max_workers must be a positive integer."""
        with pytest.raises(ConfigurationError):
            AnalysisConfig(max_workers=value)

    def test_sections_must_be_mappings(self):
        """Sections given as lists are rejected."""
        with pytest.raises(ConfigurationError, match="scoring"):
            AnalysisConfig.from_dict({"scoring": [1, 2]})

    def test_channels_must_be_a_list(self):
        """io_channels must be a list."""
        with pytest.raises(ConfigurationError, match="io_channels"):
            AnalysisConfig.from_dict({"safety": {"io_channels": "^%IX1"}})
