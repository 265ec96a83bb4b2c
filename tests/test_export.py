"""
Tests for JSON export of project analyses.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from plcmigrate.export import (
    DEFAULT_COMPONENTS, EXPORT_FORMAT_VERSION, ExportComponent, export_analysis_to_json, to_json
)
from plcmigrate.project_analysis import analyze_project


class TestExportAnalysis:
    """Test cases for export_analysis_to_json()."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sources = {
            "valve.st": """
(*
 * Valve control
 * Opens the valve on request.
 *)
FUNCTION_BLOCK FB_Valve
VAR_INPUT
    bOpen : BOOL; // Open request
    bIL_Pressure : BOOL;
END_VAR
VAR_OUTPUT
    bOpened AT %QX0.0 : BOOL;
END_VAR
    bOpened := bOpen AND bIL_Pressure;
END_FUNCTION_BLOCK
""",
            "main.st": """
PROGRAM MAIN
VAR
    fbValve : FB_Valve;
END_VAR
    fbValve(bOpen := TRUE);
END_PROGRAM
""",
        }
        self.analysis = analyze_project(self.sources)

    def test_default_components(self):
        """Without include, the default components are exported."""
        data = export_analysis_to_json(self.analysis)
        expected = [c.value for c in DEFAULT_COMPONENTS]
        assert data["metadata"]["exported_components"] == expected
        assert data["metadata"]["format_version"] == EXPORT_FORMAT_VERSION
        assert data["metadata"]["files"] == ["main.st", "valve.st"]
        assert data["metadata"]["total_pous"] == 2
        for name in expected:
            assert name in data
        assert "call_graph" not in data

    def test_include_selected_components(self):
        """Only the requested components are exported."""
        data = export_analysis_to_json(self.analysis, include=["variables", "call_graph"])
        assert data["metadata"]["exported_components"] == ["variables", "call_graph"]
        assert "pous" not in data
        assert data["variables"]["io_variables"] == ["bOpened"]
        assert "bIL_Pressure" in data["variables"]["safety_critical"]
        assert data["call_graph"]["dependencies"]["MAIN"] == ["FB_Valve"]

    def test_unknown_component(self, caplog):
        """Unknown component names are skipped with a warning."""
        with caplog.at_level(logging.WARNING):
            data = export_analysis_to_json(self.analysis, include=["pous", "bogus", "pous"])
        assert data["metadata"]["exported_components"] == ["pous"]
        assert "Unknown export component: bogus" in caplog.text

    def test_pous_component(self):
        """POUs carry their resolved base and parse issues are grouped per file."""
        data = export_analysis_to_json(self.analysis, include=["pous"])
        names = [p["name"] for p in data["pous"]["pous"]]
        assert names == ["MAIN", "FB_Valve"]
        assert all(p["base_id"] is None for p in data["pous"]["pous"])
        assert data["pous"]["unresolved_extends"] == []

    def test_migration_component(self):
        """Migration data includes the weights used."""
        data = export_analysis_to_json(self.analysis, include=["migration"])
        assert data["migration"]["weights"]["safety"] == 0.30
        assert len(data["migration"]["scores"]) == 2

    def test_ai_context_component(self):
        """The AI context follows the requested target."""
        data = export_analysis_to_json(self.analysis, include=["ai_context"], target_language="typescript")
        assert data["ai_context"]["target_language"] == "typescript"

    def test_export_to_file(self):
        """Exported JSON is written and can be read back."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            output_path = f.name

        try:
            result = export_analysis_to_json(self.analysis, output_path=output_path)
            with open(output_path, 'r') as f:
                exported = json.load(f)
            assert exported == json.loads(to_json(result))
        finally:
            os.unlink(output_path)

    def test_export_is_byte_identical(self):
        """Exporting the same project twice gives identical files."""
        with tempfile.TemporaryDirectory() as temp_dir:
            first = Path(temp_dir) / "first.json"
            second = Path(temp_dir) / "nested" / "second.json"
            include = [c.value for c in ExportComponent]
            export_analysis_to_json(self.analysis, first, include=include)
            export_analysis_to_json(analyze_project(self.sources), second, include=include)
            assert first.read_bytes() == second.read_bytes()

    def test_compact_json(self):
        """Compact output has no indentation or trailing newline."""
        text = to_json({"b": 1, "a": [1, 2]}, pretty_print=False)
        assert text == '{"a": [1, 2], "b": 1}'
        assert to_json({"a": 1}).endswith("\n")
