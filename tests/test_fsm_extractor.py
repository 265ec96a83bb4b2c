"""
Tests for state machine extraction.
"""

import pytest

from plcmigrate.fsm_extractor import (
    StateMachineExtractor, analyze_gaps, extract_state_machines, match_state_variable
)
from plcmigrate.st_parser import parse


class TestGapAnalysis:
    """Test cases for analyze_gaps()."""

    def test_dense_numbering_reports_gap(self):
        """{0,1,2,4} has average spacing 1.33 and a gap at 3."""
        assert analyze_gaps([0, 1, 2, 4]) == (True, [3])

    def test_sparse_numbering_is_intentional(self):
        """{0,10,20,30} has spacing 10 and reports no gaps."""
        assert analyze_gaps([0, 10, 20, 30]) == (False, [])

    def test_spacing_of_exactly_two(self):
        """Average spacing of 2 still counts as dense."""
        assert analyze_gaps([0, 2, 4]) == (True, [1, 3])

    def test_contiguous_and_trivial(self):
        """No gaps for contiguous or single-value lists."""
        assert analyze_gaps([3, 1, 2]) == (False, [])
        assert analyze_gaps([5]) == (False, [])
        assert analyze_gaps([]) == (False, [])


class TestStateVariableRules:
    """Test cases for match_state_variable()."""

    @pytest.mark.parametrize("name", ["nState", "iStep", "eMode", "nSeq", "stMachine.nState", "MachineState"])
    def test_state_like_names(self, name):
        """Conventional selector names are state variables."""
        assert match_state_variable(name) is not None

    @pytest.mark.parametrize("name", ["nRecipe", "iIndex", "eColor"])
    def test_other_names(self, name):
        """Other selectors are not."""
        assert match_state_variable(name) is None


class TestStateMachineExtractor:
    """Test cases for StateMachineExtractor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sample_st = """
PROGRAM PRG_Filler
VAR
    nState : INT;
    bStart : BOOL;
    bFull : BOOL;
END_VAR
CASE nState OF
    0: // Idle
        IF bStart THEN
            nState := 10;
        END_IF
    10: (* Filling *)
        bValve := TRUE;
        IF bFull THEN
            nState := 20;
        END_IF
    20:
        bValve := FALSE;
        nState := 0;
    99: // Fault
        bAlarm := TRUE;
END_CASE
END_PROGRAM
"""

    def test_extracts_states(self):
        """Arm labels become states with their comments."""
        machines = extract_state_machines(self.sample_st, "filler.st")
        assert len(machines) == 1
        sm = machines[0]
        assert sm.variable == "nState"
        assert [s.value for s in sm.states] == [0, 10, 20, 99]
        assert [s.has_comment for s in sm.states] == [True, True, False, True]
        assert sm.states[1].comment == "Filling"
        assert sm.state_count == 4
        assert sm.location.file == "filler.st"

    def test_transitions_and_guards(self):
        """Selector assignments inside arms become guarded transitions."""
        sm = extract_state_machines(self.sample_st)[0]
        edges = [(t.from_state, t.to_state, t.condition) for t in sm.transitions]
        assert edges == [(0, 10, "bStart"), (10, 20, "bFull"), (20, 0, None)]

    def test_initial_final_and_dead_states(self):
        """0 is initial; 99 has no exit and is never entered."""
        sm = extract_state_machines(self.sample_st)[0]
        assert sm.initial_state == 0
        assert sm.states[0].is_initial
        assert sm.final_states == []
        assert sm.unreachable_states == [99]
        assert sm.deadlock_states == [99]

    def test_sparse_numbering_has_no_gaps(self):
        """0, 10, 20, 99 is not dense."""
        sm = extract_state_machines(self.sample_st)[0]
        assert not sm.has_gaps
        assert sm.gap_values == []

    def test_actions_are_collected(self):
        """Assignments and calls in an arm are its actions."""
        sm = extract_state_machines(self.sample_st)[0]
        assert "bValve := TRUE" in sm.states[1].actions

    def test_names_from_comments(self):
        """State names come from comments, then from common values."""
        sm = extract_state_machines(self.sample_st)[0]
        assert sm.states[0].name == "Idle"
        assert sm.states[1].name == "Filling"
        assert sm.states[3].name == "Fault"

    def test_owner_pou(self):
        """The enclosing POU is recorded when POUs are given."""
        pous = parse(self.sample_st, "filler.st").pous
        sm = StateMachineExtractor("filler.st", pous).extract(self.sample_st)[0]
        assert sm.pou_name == "PRG_Filler"
        assert sm.pou_id == pous[0].id

    def test_dense_numbering_gap(self):
        """Missing step 3 in 0..4 is reported."""
        source = """
CASE iStep OF
    0: x := 1;
    1: x := 2;
    2: x := 3;
    4: x := 4;
END_CASE
"""
        sm = extract_state_machines(source)[0]
        assert sm.has_gaps
        assert sm.gap_values == [3]

    def test_enumerated_states(self):
        """Enum labels keep their names; DONE-like labels are final."""
        source = """
CASE eMode OF
    E_Mode.IDLE:
        eMode := E_Mode.RUN;
    E_Mode.RUN:
        eMode := E_Mode.DONE;
    E_Mode.DONE:
        ;
END_CASE
"""
        sm = extract_state_machines(source)[0]
        assert [s.value for s in sm.states] == ["E_Mode.IDLE", "E_Mode.RUN", "E_Mode.DONE"]
        assert sm.initial_state == "E_Mode.IDLE"
        assert sm.final_states == ["E_Mode.DONE"]
        assert sm.deadlock_states == []
        assert [(t.from_state, t.to_state) for t in sm.transitions] == [
            ("E_Mode.IDLE", "E_Mode.RUN"), ("E_Mode.RUN", "E_Mode.DONE"),
        ]

    def test_nested_case_is_not_an_arm(self):
        """Labels of a nested CASE do not become outer states."""
        source = """
CASE nState OF
    0:
        CASE nSub OF
            5: y := 1;
            6: y := 2;
        END_CASE
        nState := 1;
    1:
        nState := 0;
END_CASE
"""
        machines = extract_state_machines(source)
        outer = [m for m in machines if m.variable == "nState"][0]
        assert [s.value for s in outer.states] == [0, 1]

    def test_non_state_selector_ignored(self):
        """CASE over a non-state variable is not a state machine."""
        source = "CASE nRecipe OF\n 1: x := 1;\n 2: x := 2;\nEND_CASE"
        assert extract_state_machines(source) == []

    def test_single_arm_is_skipped(self):
        """Fewer than two states is not a state machine."""
        assert extract_state_machines("CASE nState OF\n 0: x := 1;\nEND_CASE") == []

    def test_commented_out_case_is_ignored(self):
        """A CASE inside a comment is not analyzed."""
        source = "(* CASE nState OF\n 0: x := 1;\n 1: x := 2;\nEND_CASE *)"
        assert extract_state_machines(source) == []

    def test_missing_end_case(self):
        """An unterminated CASE is still analyzed within a bounded window."""
        source = "CASE nState OF\n 0: nState := 1;\n 1: nState := 0;\n"
        sm = extract_state_machines(source)[0]
        assert [s.value for s in sm.states] == [0, 1]

    @pytest.mark.parametrize("source", ["", None, "x := 1;"])
    def test_empty_results(self, source):
        """No CASE means no state machines."""
        assert extract_state_machines(source) == []
