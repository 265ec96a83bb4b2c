"""
Tests for AI context generation.
"""

import json

import pytest

from plcmigrate.ai_context import (
    LANGUAGE_PROFILES, AIContextGenerator, TargetLanguage, generate_ai_context, get_language_profile
)
from plcmigrate.docstring_extractor import extract_docstrings
from plcmigrate.exceptions import ConfigurationError, UnknownTargetLanguageError
from plcmigrate.fsm_extractor import extract_state_machines
from plcmigrate.models import ProjectInfo, SafetyType, VerificationCategory
from plcmigrate.safety_extractor import analyze_safety, extract_safety_interlocks
from plcmigrate.st_parser import parse
from plcmigrate.tribal_knowledge import extract_tribal_knowledge


class TestLanguageProfiles:
    """Test cases for the per-language tables."""

    def test_rust_types(self):
        """Rust maps DINT to i32 and BOOL to bool."""
        profile = get_language_profile("rust")
        assert profile.map_type("DINT") == "i32"
        assert profile.map_type("BOOL") == "bool"

    def test_typescript_types(self):
        """TypeScript maps BOOL to boolean and STRING to string."""
        profile = get_language_profile(TargetLanguage.TYPESCRIPT)
        assert profile.map_type("BOOL") == "boolean"
        assert profile.map_type("STRING") == "string"

    def test_every_language_has_a_profile(self):
        """Each enum member has a profile covering the basic types."""
        assert set(LANGUAGE_PROFILES) == set(TargetLanguage)
        for profile in LANGUAGE_PROFILES.values():
            assert profile.map_type("BOOL")
            assert profile.map_type("REAL")

    def test_tables_are_immutable(self):
        """Type maps cannot be modified after construction."""
        with pytest.raises(TypeError):
            LANGUAGE_PROFILES[TargetLanguage.RUST].type_map["BOOL"] = "u8"

    @pytest.mark.parametrize("value", ["cobol", "", "Rust ", None, 3])
    def test_unknown_target(self, value):
        """Selectors outside the closed set raise, except for case and spacing."""
        if value == "Rust ":
            assert TargetLanguage.parse(value) == TargetLanguage.RUST
            return
        with pytest.raises(UnknownTargetLanguageError) as info:
            TargetLanguage.parse(value)
        assert "python" in str(info.value)
        assert isinstance(info.value, ConfigurationError)


class TestAIContextGenerator:
    """Test cases for AIContextGenerator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sample_st = """
(*
 * Pump station sequence
 * Starts the duty pump when the tank is low.
 * @param bLow Low level switch
 *)
FUNCTION_BLOCK FB_PumpStation
VAR_INPUT
    bLow AT %IX0.2 : BOOL; // Low level switch
    bIL_Pressure : BOOL;
    bDbg_SkipIL : BOOL;
END_VAR
VAR_OUTPUT
    nFlow : DINT;
    sStatus : STRING;
END_VAR
VAR
    nState : INT;
    tRun : TON;
    aLevels : ARRAY[1..4] OF REAL;
    stRecipe : ST_Recipe;
END_VAR
// WARNING: pump 2 cavitates below 20 %
IF bDbg_SkipIL OR bIL_Pressure THEN
    CASE nState OF
        0: // Idle
            IF bLow THEN nState := 10; END_IF
        10: // Pumping
            tRun(IN := TRUE, PT := T#30s);
            IF tRun.Q THEN nState := 0; END_IF
    END_CASE
END_IF
END_FUNCTION_BLOCK
"""
        self.file = "pump.st"
        result = parse(self.sample_st, self.file)
        self.pous = result.pous
        self.docstrings = extract_docstrings(self.sample_st, self.file)
        self.machines = extract_state_machines(self.sample_st, self.file, self.pous)
        self.safety = analyze_safety(self.sample_st, self.file, self.pous)
        self.tribal = extract_tribal_knowledge(self.sample_st, self.file, self.pous)

    def generate(self, target="rust", **kwargs):
        return generate_ai_context(self.pous, self.docstrings, self.machines, self.safety,
                                   self.tribal, target, **kwargs)

    def test_package_header(self):
        """Version, target and project info are recorded."""
        package = self.generate(project_info=ProjectInfo(name="Pumps", vendor="codesys"))
        assert package.version == "1.0.0"
        assert package.target_language == "rust"
        assert package.project.name == "Pumps"

    def test_interface_types(self):
        """Interface members are mapped to target types."""
        package = self.generate("rust")
        interface = package.pous[0].interface
        inputs = {m.name: m for m in interface.inputs}
        outputs = {m.name: m for m in interface.outputs}
        locals_ = {m.name: m for m in interface.locals}
        assert inputs["bLow"].target_type == "bool"
        assert inputs["bLow"].io_address == "%IX0.2"
        assert inputs["bLow"].description == "Low level switch"
        assert outputs["nFlow"].target_type == "i32"
        assert outputs["sStatus"].target_type == "String"
        assert locals_["aLevels"].target_type == "Vec<f32>"
        assert locals_["stRecipe"].target_type == "ST_Recipe"

    def test_typescript_interface(self):
        """The same POU maps to TypeScript types."""
        package = self.generate("typescript")
        outputs = {m.name: m.target_type for m in package.pous[0].interface.outputs}
        assert outputs == {"nFlow": "number", "sStatus": "string"}

    def test_types_section(self):
        """Types list the target table and custom types."""
        types = self.generate("rust").types
        assert types["plc_to_target"]["DINT"] == "i32"
        assert types["custom_types"] == ["ST_Recipe", "TON"]

    def test_pou_context(self):
        """Purpose, state machines, timers, interlocks and hints are gathered."""
        context = self.generate().pous[0]
        assert context.purpose == "Pump station sequence"
        assert context.state_machines[0]["variable"] == "nState"
        assert context.state_machines[0]["states"] == [0, 10]
        assert context.timers == ["tRun: TON"]
        assert set(context.interlocks) == {"bIL_Pressure", "bDbg_SkipIL"}
        assert any(t.startswith("[warning]") for t in context.tribal_knowledge)
        assert any("Timers" in hint for hint in context.translation_hints)
        assert "FUNCTION_BLOCK instances keep their state between calls" in context.translation_hints
        assert "Test bLow with boundary values" in context.suggested_tests

    def test_safety_context(self):
        """Interlocks are listed and bypasses called out for review."""
        safety = self.generate().safety
        assert len(safety.interlocks) == 2
        assert "BYPASS (review before migration): bDbg_SkipIL" in safety.must_preserve
        assert any(p.startswith("bIL_Pressure at pump.st:") for p in safety.critical_paths)

    def test_verification_requirements(self):
        """Safety, state machine, I/O, timing and interface checks are required."""
        requirements = self.generate().verification_requirements
        categories = [r.category for r in requirements]
        assert VerificationCategory.SAFETY in categories
        assert VerificationCategory.STATE_MACHINE in categories
        assert VerificationCategory.IO in categories
        assert VerificationCategory.TIMING in categories
        assert VerificationCategory.INTERFACE in categories
        bypass = [r for r in requirements if "bDbg_SkipIL" in r.description]
        assert len(bypass) == 1

    def test_safety_requirement_whenever_interlocks_exist(self):
        """Even a plain interlock list gives a safety requirement."""
        interlocks = [i for i in extract_safety_interlocks(self.sample_st, self.file)
                      if i.type != SafetyType.BYPASS]
        package = AIContextGenerator("python").generate(self.pous, [], [], interlocks, [])
        assert any(r.category == VerificationCategory.SAFETY for r in package.verification_requirements)

    def test_no_safety(self):
        """Without interlocks there is no safety requirement."""
        package = AIContextGenerator("go").generate(self.pous, [], [], None, [])
        assert package.safety.interlocks == []
        assert all(r.category != VerificationCategory.SAFETY for r in package.verification_requirements)

    def test_translation_guide(self):
        """Type and pattern mappings follow the target."""
        guide = self.generate("rust").translation_guide
        mapping = {e.plc_type: e.target_type for e in guide.type_mapping}
        assert mapping["LREAL"] == "f64"
        assert guide.pattern_mapping[0].target_pattern == "enum with a match expression"
        assert guide.warnings

    def test_conventions(self):
        """Hungarian prefixes seen in the code are explained."""
        prefixes = self.generate().conventions["variable_prefixes"]
        assert prefixes["b"] == "Boolean"
        assert prefixes["t"] == "Time or timer"

    def test_serializable_and_deterministic(self):
        """The package serializes to identical JSON on every run."""
        first = json.dumps(self.generate().to_dict(), sort_keys=True)
        second = json.dumps(self.generate().to_dict(), sort_keys=True)
        assert first == second

    def test_unknown_target_language(self):
        """An unsupported target fails fast."""
        with pytest.raises(UnknownTargetLanguageError):
            self.generate("fortran")

    def test_empty_inputs(self):
        """No POUs still gives a valid package."""
        package = generate_ai_context([], [], [], None, [], "python")
        assert package.pous == []
        assert package.verification_requirements == []
