"""
Tests for the Structured Text parser.
"""

import pytest

from plcmigrate.config import AnalysisConfig
from plcmigrate.models import POUKind, VarSection
from plcmigrate.st_parser import STParser, detect_vendor, parse


class TestSTParser:
    """Test cases for POU parsing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sample_st = """
(*
 * Conveyor controller
 * Moves parts from the infeed to the press.
 * @param bRun Run request from HMI
 *)
FUNCTION_BLOCK FB_Conveyor EXTENDS FB_Base IMPLEMENTS I_Runnable, I_Resettable
VAR_INPUT
    bRun : BOOL; // Run request
    rSpeed : REAL := 1.5;
END_VAR
VAR_OUTPUT
    bRunning : BOOL;
END_VAR
VAR
    tDelay : TON;
    aBuffer : ARRAY[1..10] OF INT;
END_VAR
    tDelay(IN := bRun, PT := T#2s);
    bRunning := tDelay.Q;

METHOD Reset : BOOL
VAR_INPUT
    bForce : BOOL;
END_VAR
    Reset := TRUE;
END_METHOD
END_FUNCTION_BLOCK

FUNCTION FC_Scale : REAL
VAR_INPUT
    nRaw : INT;
END_VAR
    FC_Scale := INT_TO_REAL(nRaw) * 0.1;
END_FUNCTION

PROGRAM MAIN
VAR
    fbConveyor : FB_Conveyor;
END_VAR
    fbConveyor(bRun := TRUE);
END_PROGRAM
"""

    def test_parses_all_pous(self):
        """Every POU kind is found with its name."""
        result = parse(self.sample_st, "conveyor.st")
        assert [(p.kind, p.name) for p in result.pous] == [
            (POUKind.FUNCTION_BLOCK, "FB_Conveyor"),
            (POUKind.FUNCTION, "FC_Scale"),
            (POUKind.PROGRAM, "MAIN"),
        ]
        assert result.errors == []

    def test_extends_and_implements(self):
        """EXTENDS and IMPLEMENTS are stored unresolved."""
        fb = parse(self.sample_st).pous[0]
        assert fb.extends == "FB_Base"
        assert fb.implements == ["I_Runnable", "I_Resettable"]

    def test_function_return_type(self):
        """FUNCTION return types are captured."""
        fc = parse(self.sample_st).pous[1]
        assert fc.return_type == "REAL"

    def test_variable_sections(self):
        """Variables keep their section, type, initial value and comment."""
        fb = parse(self.sample_st).pous[0]
        by_name = {v.name: v for v in fb.variables}
        assert by_name["bRun"].section == VarSection.VAR_INPUT
        assert by_name["bRun"].comment == "Run request"
        assert by_name["rSpeed"].initial_value == "1.5"
        assert by_name["bRunning"].section == VarSection.VAR_OUTPUT
        assert by_name["tDelay"].data_type == "TON"
        assert by_name["tDelay"].is_timer
        assert by_name["aBuffer"].is_array
        assert by_name["aBuffer"].array_bounds.dimensions[0].size == 10
        # Method parameters are not POU variables
        assert "bForce" not in by_name

    def test_methods(self):
        """Methods are parsed with their parameters and return type."""
        fb = parse(self.sample_st).pous[0]
        assert len(fb.methods) == 1
        method = fb.methods[0]
        assert method.name == "Reset"
        assert method.return_type == "BOOL"
        assert [p.name for p in method.parameters] == ["bForce"]

    def test_documentation_is_attached(self):
        """The header comment right above a POU becomes its documentation."""
        result = parse(self.sample_st, "conveyor.st")
        fb = result.pous[0]
        assert fb.documentation is not None
        assert fb.documentation.summary == "Conveyor controller"
        assert result.pous[1].documentation is None
        assert len(result.docstrings) == 1

    def test_body_bounds(self):
        """Body lines cover the statements after the declarations."""
        main = parse(self.sample_st).pous[2]
        assert main.body_start_line < main.body_end_line
        assert main.location.line < main.body_start_line

    def test_ids_are_deterministic(self):
        """Parsing the same text twice yields the same ids."""
        first = parse(self.sample_st, "a.st")
        second = parse(self.sample_st, "a.st")
        assert [p.id for p in first.pous] == [p.id for p in second.pous]
        assert [v.id for v in first.pous[0].variables] == [v.id for v in second.pous[0].variables]

    def test_metadata(self):
        """File metadata records line count and vendor guess."""
        result = parse("{attribute 'qualified_only'}\nPROGRAM P\nEND_PROGRAM", "p.st")
        assert result.metadata.total_lines == 3
        assert result.metadata.vendor == "codesys"

    def test_global_variables_and_types(self):
        """VAR_GLOBAL and TYPE blocks outside POUs are collected."""
        source = """
TYPE
    E_Mode : (IDLE, AUTO, MANUAL);
    ST_Recipe :
    STRUCT
        rTemp : REAL;
    END_STRUCT
END_TYPE
VAR_GLOBAL
    gbEStop : BOOL;
END_VAR
"""
        result = parse(source)
        assert result.user_types == ["E_Mode", "ST_Recipe"]
        assert [v.name for v in result.global_variables] == ["gbEStop"]


class TestParserRecovery:
    """Malformed input never raises and later POUs survive."""

    def test_missing_end_var(self):
        """A missing END_VAR is an error but the POU is still returned."""
        source = """
FUNCTION_BLOCK FB_Broken
VAR_INPUT
    bIn : BOOL;
    nState := 0;
    bOk : BOOL;
END_FUNCTION_BLOCK

PROGRAM MAIN
VAR
    x : INT;
END_VAR
END_PROGRAM
"""
        result = parse(source)
        assert [p.name for p in result.pous] == ["FB_Broken", "MAIN"]
        assert any(e.code == "MISSING_END_VAR" for e in result.errors)
        assert any(w.code == "MISSING_COLON" for w in result.warnings)
        assert [v.name for v in result.pous[0].variables] == ["bIn", "bOk"]

    def test_missing_end_pou(self):
        """A POU without its end keyword stops at the next POU header."""
        source = """
FUNCTION_BLOCK FB_A
VAR
    x : INT;
END_VAR
    x := 1;

FUNCTION_BLOCK FB_B
END_FUNCTION_BLOCK
"""
        result = parse(source)
        assert [p.name for p in result.pous] == ["FB_A", "FB_B"]
        assert [e.code for e in result.errors] == ["MISSING_END"]

    def test_missing_pou_name(self):
        """A header without a name is skipped with an error."""
        result = parse("PROGRAM\nEND_PROGRAM\nPROGRAM Good\nEND_PROGRAM")
        assert [p.name for p in result.pous] == ["Good"]
        assert result.errors[0].code == "MISSING_POU_NAME"

    def test_lexical_errors_become_warnings(self):
        """Unterminated comments are reported as warnings."""
        result = parse("PROGRAM P\nEND_PROGRAM\n(* dangling")
        assert [p.name for p in result.pous] == ["P"]
        assert result.warnings[0].code == "LEXICAL_ERROR"

    def test_non_ascii_names(self):
        """Umlauts in names parse; a stray superscript is only a warning."""
        result = parse("PROGRAM MAIN\nVAR\n    bTürZu : BOOL;\nEND_VAR\nbTürZu := ²;\nEND_PROGRAM\n")
        assert [v.name for v in result.pous[0].variables] == ["bTürZu"]
        assert result.errors == []
        assert [w.code for w in result.warnings] == ["LEXICAL_ERROR"]

    @pytest.mark.parametrize("source", ["", "   \n\t", None, b"\xff\xfe", "END_VAR END_PROGRAM ;;;"])
    def test_garbage_never_raises(self, source):
        """Empty or garbage input yields an empty result."""
        result = parse(source)
        assert result.pous == []

    def test_safety_channel_config(self):
        """Variables wired to a configured safety channel are safety-critical."""
        source = "PROGRAM P\nVAR\n    bDoorClosed AT %IX1.0 : BOOL;\nEND_VAR\nEND_PROGRAM"
        plain = parse(source).pous[0].variables[0]
        configured = STParser("p.st", AnalysisConfig(safety_channels=[r"^%IX1\."])).parse(source)
        variable = configured.pous[0].variables[0]
        assert not plain.is_safety_critical
        assert variable.is_safety_critical
        assert variable.io_mapping.is_safety_channel


class TestDetectVendor:
    """Test cases for vendor detection."""

    @pytest.mark.parametrize("text,vendor", [
        ("<TcPlcObject Version=\"1.1.0.1\">", "beckhoff"),
        ("ORGANIZATION_BLOCK Main", "siemens"),
        ("(* exported from Studio 5000 *)", "rockwell"),
        ("PROGRAM P END_PROGRAM", None),
    ])
    def test_markers(self, text, vendor):
        """Known markers map to vendors."""
        assert detect_vendor(text) == vendor
