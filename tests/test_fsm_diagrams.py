"""
Tests for state machine diagram rendering.
"""

import pytest

from plcmigrate.fsm_diagrams import RENDERERS, generate_ascii, generate_dot, render
from plcmigrate.fsm_extractor import extract_state_machines
from plcmigrate.st_parser import parse


class TestDiagrams:
    """Test cases for the diagram renderers."""

    def setup_method(self):
        """Set up test fixtures."""
        source = """
PROGRAM PRG_Lift
VAR
    nState : INT;
    bCallReceivedFromAnyFloorPanels : BOOL;
END_VAR
CASE nState OF
    0: // Idle
        IF bCallReceivedFromAnyFloorPanels THEN
            nState := 1;
        END_IF
    1: // Moving
        nState := 3;
    3:
        nState := 0;
END_CASE
END_PROGRAM
"""
        pous = parse(source, "lift.st").pous
        self.sm = extract_state_machines(source, "lift.st", pous)[0]

    def test_dot(self):
        """DOT output declares states and labelled transitions."""
        dot = generate_dot(self.sm)
        assert dot.startswith("digraph S_nState {")
        assert 'S_0 [label="0: Idle", shape=circle, style=bold];' in dot
        assert 'S_1 -> S_3 [label=""];' in dot
        assert dot.rstrip().endswith("}")

    def test_long_guards_are_shortened(self):
        """Guards longer than the limit are cut with an ellipsis."""
        dot = generate_dot(self.sm)
        assert 'S_0 -> S_1 [label="bCallReceivedFromAnyFloorPa..."];' in dot

    def test_ascii(self):
        """ASCII output lists states, marks and gaps."""
        text = generate_ascii(self.sm)
        assert "State machine nState in PRG_Lift (3 states" in text
        assert "(3)  [undocumented]" in text
        assert "gaps: 2" in text

    @pytest.mark.parametrize("fmt", list(RENDERERS))
    def test_render_dispatch(self, fmt):
        """render() picks the renderer by name, case-insensitively."""
        assert render(self.sm, fmt.upper()) == RENDERERS[fmt](self.sm)

    def test_unknown_format(self):
        """Unknown formats raise ValueError."""
        with pytest.raises(ValueError, match="plantuml"):
            render(self.sm, "plantuml")
