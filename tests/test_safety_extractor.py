"""
Tests for safety interlock extraction.
"""

import re

import pytest

from plcmigrate.models import SafetyType, Severity
from plcmigrate.safety_extractor import (
    SafetyExtractor, SafetyPattern, analyze_safety, extract_safety_interlocks,
    is_bypass_name, is_safety_name
)
from plcmigrate.st_parser import parse


class TestSafetyExtractor:
    """Test cases for SafetyExtractor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sample_st = """
PROGRAM PRG_Press
VAR
    bIL_Door : BOOL;
    bEStop_OK : BOOL;
    bPermissive_Run : BOOL;
    bLightCurtain_Clear : BOOL;
    bMotor : BOOL;
END_VAR
IF BIL_DOOR AND bEStop_OK AND bPermissive_Run THEN
    bMotor := TRUE;
END_IF
END_PROGRAM
"""

    def names(self, interlocks):
        return {i.name: i for i in interlocks}

    def test_classification(self):
        """Naming rules give type, confidence and severity."""
        found = self.names(extract_safety_interlocks(self.sample_st, "press.st"))
        assert found["bIL_Door"].type == SafetyType.INTERLOCK
        assert found["bIL_Door"].confidence == 0.95
        assert found["bIL_Door"].severity == Severity.HIGH
        assert found["bEStop_OK"].type == SafetyType.ESTOP
        assert found["bEStop_OK"].severity == Severity.CRITICAL
        assert found["bPermissive_Run"].type == SafetyType.PERMISSIVE
        assert found["bLightCurtain_Clear"].type == SafetyType.SAFETY_DEVICE
        assert "bMotor" not in found

    def test_case_insensitive_dedup(self):
        """bIL_Door and BIL_DOOR are one entry; the first spelling wins."""
        interlocks = extract_safety_interlocks(self.sample_st)
        doors = [i for i in interlocks if i.name.lower() == "bil_door"]
        assert len(doors) == 1
        assert doors[0].name == "bIL_Door"
        assert doors[0].location.line == 4

    def test_related_interlocks(self):
        """Interlocks checked in the same condition are related."""
        found = self.names(extract_safety_interlocks(self.sample_st))
        assert set(found["bIL_Door"].related_interlocks) == {"bEStop_OK", "bPermissive_Run"}

    def test_no_bypass(self):
        """Clean code has no bypass entries or warnings."""
        result = analyze_safety(self.sample_st)
        assert result.bypasses == []
        assert result.critical_warnings == []
        assert result.summary.bypassed == 0
        assert result.summary.total == 4

    def test_bypass_idiom(self):
        """'IF bDbg_SkipIL OR bIL_Air THEN' marks bIL_Air as bypassed."""
        source = """
IF bDbg_SkipIL OR bIL_Air THEN
    bCompressor := TRUE;
END_IF
"""
        result = analyze_safety(source)
        found = self.names(result.interlocks)
        air = found["bIL_Air"]
        assert air.is_bypassed
        assert air.severity == Severity.CRITICAL
        assert air.bypass_condition == "bDbg_SkipIL OR bIL_Air"
        bypass = found["bDbg_SkipIL"]
        assert bypass.type == SafetyType.BYPASS
        assert bypass.related_interlocks == ["bIL_Air"]
        assert result.summary.by_type == {"bypass": 1, "interlock": 1}
        assert result.summary.bypassed == 2
        assert any("may be bypassed" in w.message for w in result.critical_warnings)

    @pytest.mark.parametrize("condition", [
        "bIL_Air OR bBypassAir",
        "(bIL_Air) OR bBypassAir",
        "NOT bIL_Air OR bBypassAir",
    ])
    def test_other_idioms(self, condition):
        """Reversed, parenthesized and negated forms are recognized."""
        source = f"IF {condition} THEN\n    x := 1;\nEND_IF"
        found = self.names(extract_safety_interlocks(source))
        assert found["bIL_Air"].is_bypassed

    def test_plain_and_is_not_a_bypass(self):
        """An interlock ANDed with a bypass name is not flagged."""
        source = "IF bIL_Air AND NOT bBypassAir THEN\n    x := 1;\nEND_IF"
        found = self.names(extract_safety_interlocks(source))
        assert not found["bIL_Air"].is_bypassed

    def test_name_in_both_families_is_a_bypass(self):
        """IL_Bypass_Door matches an interlock rule but is reported as a bypass."""
        source = "IL_Bypass_Door := TRUE;"
        interlocks = extract_safety_interlocks(source)
        assert len(interlocks) == 1
        assert interlocks[0].type == SafetyType.BYPASS
        assert interlocks[0].confidence == 1.0

    def test_comments_and_strings_are_ignored(self):
        """Names in comments or strings are not findings."""
        source = "(* bIL_Door was removed *)\nsMsg := 'bEStop pressed';"
        assert extract_safety_interlocks(source) == []

    def test_context_warning_from_comment(self):
        """A safety signal forced FALSE with a bypass comment is warned about."""
        source = "bSafetyChain_OK := FALSE; // bypass for commissioning"
        result = analyze_safety(source)
        messages = [w.message for w in result.critical_warnings]
        assert "Safety signal forced FALSE with a bypass comment" in messages

    def test_owner_pou(self):
        """Findings inside a POU carry its id."""
        pous = parse(self.sample_st, "press.st").pous
        result = SafetyExtractor("press.st", pous).analyze(self.sample_st)
        assert {i.pou_id for i in result.interlocks} == {pous[0].id}

    def test_global_declaration_is_owned_by_user(self):
        """A globally declared interlock belongs to the POU that uses it."""
        source = """
VAR_GLOBAL
    bDbg_SkipIL : BOOL;
    bIL_Air : BOOL;
END_VAR

PROGRAM MAIN
VAR
    bRun : BOOL;
END_VAR
IF bDbg_SkipIL OR bIL_Air THEN
    bRun := TRUE;
END_IF
END_PROGRAM
"""
        main = parse(source, "plant.st").pous[0]
        result = SafetyExtractor("plant.st", [main]).analyze(source)
        by_name = {i.name: i for i in result.interlocks}
        assert by_name["bIL_Air"].is_bypassed
        assert by_name["bIL_Air"].pou_id == main.id
        assert by_name["bIL_Air"].pou_ids == [main.id]
        assert by_name["bDbg_SkipIL"].pou_ids == [main.id]
        assert all(w.pou_ids == [main.id] for w in result.critical_warnings)

    def test_every_using_pou_is_recorded(self):
        """An interlock mentioned in several POUs lists all of them."""
        source = """
FUNCTION_BLOCK FB_A
VAR_INPUT
    bIL_Air : BOOL;
END_VAR
END_FUNCTION_BLOCK

FUNCTION_BLOCK FB_B
VAR_INPUT
    bIL_Air : BOOL;
END_VAR
END_FUNCTION_BLOCK

FUNCTION_BLOCK FB_C
VAR
    nCount : INT;
END_VAR
END_FUNCTION_BLOCK
"""
        pous = parse(source, "a.st").pous
        interlock = SafetyExtractor("a.st", pous).analyze(source).interlocks[0]
        assert interlock.pou_id == pous[0].id
        assert interlock.pou_ids == [pous[0].id, pous[1].id]

    def test_extra_patterns(self):
        """Site-specific naming rules can be added."""
        extra = [SafetyPattern(re.compile(r"\b(xGuard\w*)\b", re.IGNORECASE), SafetyType.SAFETY_DEVICE, 0.7)]
        result = SafetyExtractor("a.st", extra_patterns=extra).analyze("xGuardLeft := TRUE;")
        assert [(i.name, i.type) for i in result.interlocks] == [("xGuardLeft", SafetyType.SAFETY_DEVICE)]

    def test_deterministic_ids(self):
        """Ids derive from file and name only."""
        first = extract_safety_interlocks(self.sample_st, "a.st")
        second = extract_safety_interlocks(self.sample_st, "a.st")
        assert [i.id for i in first] == [i.id for i in second]

    @pytest.mark.parametrize("source", ["", None, "x := 1;"])
    def test_empty_results(self, source):
        """No safety names gives an empty result."""
        result = analyze_safety(source)
        assert result.interlocks == []
        assert result.summary.total == 0


class TestNameHelpers:
    """Test cases for is_safety_name() and is_bypass_name()."""

    @pytest.mark.parametrize("name", ["bIL_Door", "bEStop", "SR_Main", "bSafetyChain_OK", "bDbg_SkipIL"])
    def test_safety_names(self, name):
        """Safety and bypass names are safety-relevant."""
        assert is_safety_name(name)

    @pytest.mark.parametrize("name", ["", "bMotor", "nCount"])
    def test_plain_names(self, name):
        """Ordinary names are not."""
        assert not is_safety_name(name)

    def test_bypass_names(self):
        """Only bypass rules count for is_bypass_name."""
        assert is_bypass_name("bBypassDoor")
        assert not is_bypass_name("bIL_Door")
