"""
State machine extraction from CASE statements.

A ``CASE <var> OF ... END_CASE`` block is treated as a state machine when
its selector is named like a state variable (nState, iStep, eMode, nSeq, ...).
Each arm label becomes a state. Assignments to the selector inside an arm
become transitions, and dense numeric numbering is checked for gaps.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple, Union

from .models import POU, SourceLocation, State, StateMachine, StateTransition
from .tokenizer import mask_non_code
from .utils import LineIndex, coerce_source, find_enclosing, make_id

logger = logging.getLogger(__name__)

# (pattern on the last name segment, confidence); first match wins.
STATE_VARIABLE_RULES = [
    (re.compile(r"^(?:[a-z]{1,3}_?)?(?:state|step|mode|phase)$", re.IGNORECASE), 0.95),
    (re.compile(r"^(?:[a-z]{1,3}_?)?seq\w*$", re.IGNORECASE), 0.85),
    (re.compile(r"^\w*(?:state|step)$", re.IGNORECASE), 0.80),
    (re.compile(r"^\w*(?:mode|phase)$", re.IGNORECASE), 0.75),
    (re.compile(r"^(?:[a-z]{1,3}_?)?(?:state|step|mode|phase)_?\w*$", re.IGNORECASE), 0.70),
]

MIN_STATES = 2

# Lookahead for END_CASE; beyond it the block is cut at UNTERMINATED_WINDOW.
CASE_LOOKAHEAD_LIMIT = 20000
UNTERMINATED_WINDOW = 3000

MAX_ACTIONS_PER_STATE = 5

GAP_SPACING_THRESHOLD = 2

_CASE = re.compile(r"\bCASE\s+([^\W\d][\w.]*)\s+OF\b", re.IGNORECASE)
_CASE_OR_END = re.compile(r"\b(?:CASE\b[^;]*?\bOF|END_CASE)\b", re.IGNORECASE | re.DOTALL)
_LABEL_ITEM = r"(?:-?\d+(?:\s*\.\.\s*-?\d+)?|[^\W\d][\w.#]*)"
_ARM_LABEL = re.compile(rf"^\s*({_LABEL_ITEM}(?:\s*,\s*{_LABEL_ITEM})*)\s*:(?!=)")
_INLINE_COMMENT = re.compile(r"\(\*+\s*(.*?)\s*\*+\)|//\s*(.*)$")
_GUARD = re.compile(r"\b(?:ELSIF|IF)\b\s+(.+?)\s+\bTHEN\b", re.IGNORECASE)

_NON_LABEL_WORDS = {"ELSE", "IF", "THEN", "ELSIF", "END_IF", "END_CASE", "CASE", "RETURN", "EXIT"}
_INITIAL_NAME = re.compile(r"^(?:\w+[.#])?(?:IDLE|INIT|START|READY)", re.IGNORECASE)
_FINAL_NAME = re.compile(r"^(?:\w+[.#])?(?:DONE|COMPLETE|FINISHED|END|STOP)", re.IGNORECASE)

COMMON_STATE_NAMES = {
    0: "Idle",
    10: "Initialize",
    20: "Ready",
    90: "Stopping",
    100: "Complete",
    999: "Fault",
}


def match_state_variable(name: str) -> Optional[float]:
    """
    Check a CASE selector against the state-variable naming rules.

    Args:
        name: Selector text, possibly dotted (``stMachine.nState``)

    Returns:
        Confidence of the first matching rule, or None
    """
    segment = name.split(".")[-1]
    for pattern, confidence in STATE_VARIABLE_RULES:
        if pattern.match(segment):
            return confidence
    return None


def analyze_gaps(values: Sequence[int]) -> Tuple[bool, List[int]]:
    """
    Find missing values in densely numbered states.

    Gaps are only reported when the average spacing between the sorted
    distinct values is at most 2; sparse numbering (0, 10, 20) is intentional.
    """
    distinct = sorted(set(values))
    if len(distinct) < 2:
        return False, []
    low, high = distinct[0], distinct[-1]
    spacing = (high - low) / (len(distinct) - 1)
    if spacing > GAP_SPACING_THRESHOLD:
        return False, []
    present = set(distinct)
    gaps = [v for v in range(low, high + 1) if v not in present]
    return bool(gaps), gaps


def _parse_value(label: str) -> Union[int, str]:
    label = label.strip()
    if re.fullmatch(r"-?\d+", label):
        return int(label)
    return re.sub(r"\s+", "", label)


class StateMachineExtractor:
    """Extracts CASE-based state machines from one file."""

    def __init__(self, file_path: str = "<source>", pous: Optional[Sequence[POU]] = None,
                 min_states: int = MIN_STATES):
        self.file_path = file_path
        self.pous = list(pous or [])
        self.min_states = min_states

    def extract(self, source) -> List[StateMachine]:
        raw = coerce_source(source)
        if not raw.strip():
            return []
        code = mask_non_code(raw)
        index = LineIndex(raw)
        raw_lines = raw.split("\n")
        code_lines = code.split("\n")

        machines = []
        for match in _CASE.finditer(code):
            variable = match.group(1)
            confidence = match_state_variable(variable)
            if confidence is None:
                continue
            start_line = index.line_of(match.start())
            end_offset = self._find_end(code, match.start())
            end_line = index.line_of(max(end_offset - 1, match.start()))

            states = self._extract_states(code_lines, raw_lines, index, end_line, match)
            if len(states) < self.min_states:
                logger.debug(f"Skipping CASE {variable} at line {start_line}: {len(states)} state(s)")
                continue
            machines.append(self._build(variable, confidence, states, code_lines,
                                        start_line, end_line, index.column_of(match.start())))

        logger.debug(f"{self.file_path}: {len(machines)} state machine(s)")
        return machines

    def _find_end(self, code: str, start: int) -> int:
        """Offset just past the matching END_CASE, or a bounded cut-off."""
        window = code[start:start + CASE_LOOKAHEAD_LIMIT]
        depth = 0
        for match in _CASE_OR_END.finditer(window):
            if match.group(0).upper() == "END_CASE":
                depth -= 1
                if depth == 0:
                    return start + match.end()
            else:
                depth += 1
        logger.warning(f"{self.file_path}: CASE without END_CASE near offset {start}")
        return min(len(code), start + UNTERMINATED_WINDOW)

    def _arm_lines(self, code_lines: List[str], index: LineIndex, end_line: int, case_match):
        """Yield (line_number, text) for lines at nesting depth 1 of the CASE."""
        of_line, of_column = index.position(case_match.end())
        remainder = code_lines[of_line - 1][of_column - 1:]
        if remainder.strip():
            yield of_line, remainder
        depth = 1 + self._depth_change(remainder)
        for number in range(of_line + 1, end_line + 1):
            if depth <= 0:
                break
            text = code_lines[number - 1]
            if depth == 1:
                yield number, text
            depth += self._depth_change(text)

    @staticmethod
    def _depth_change(text: str) -> int:
        change = 0
        for match in _CASE_OR_END.finditer(text):
            change += -1 if match.group(0).upper() == "END_CASE" else 1
        return change

    def _extract_states(self, code_lines, raw_lines, index, end_line, case_match) -> List[State]:
        states: List[State] = []
        current: Optional[List[State]] = None
        for number, text in self._arm_lines(code_lines, index, end_line, case_match):
            label = _ARM_LABEL.match(text)
            if label and label.group(1).split(",")[0].strip().upper() not in _NON_LABEL_WORDS:
                comment = self._inline_comment(raw_lines[number - 1])
                current = []
                for item in label.group(1).split(","):
                    value = _parse_value(item)
                    state = State(
                        value=value,
                        line=number,
                        has_comment=comment is not None,
                        comment=comment or None,
                        name=self._infer_name(value, comment),
                    )
                    states.append(state)
                    current.append(state)
                text = text[label.end():]
            elif re.match(r"^\s*ELSE\b", text, re.IGNORECASE):
                current = None
                continue
            if current is not None:
                for statement in text.split(";"):
                    statement = statement.strip()
                    if statement and (":=" in statement or "(" in statement):
                        for state in current:
                            if len(state.actions) < MAX_ACTIONS_PER_STATE:
                                state.actions.append(" ".join(statement.split()))
        return states

    @staticmethod
    def _inline_comment(raw_line: str) -> Optional[str]:
        match = _INLINE_COMMENT.search(raw_line)
        if not match:
            return None
        return (match.group(1) if match.group(1) is not None else match.group(2)).strip()

    @staticmethod
    def _infer_name(value: Union[int, str], comment: Optional[str]) -> Optional[str]:
        if isinstance(value, str):
            return value.split(".")[-1].split("#")[-1].replace("_", " ")
        if comment:
            named = re.sub(r"^(?:state\s*\d*\s*[-:]?\s*)", "", comment, flags=re.IGNORECASE).strip()
            if named:
                return named
        return COMMON_STATE_NAMES.get(value)

    def _build(self, variable: str, confidence: float, states: List[State], code_lines: List[str],
               start_line: int, end_line: int, column: int) -> StateMachine:
        transitions = self._extract_transitions(variable, states, code_lines)

        initial = next((s for s in states if s.value == 0 or
                        (isinstance(s.value, str) and _INITIAL_NAME.match(s.value))), None)
        if initial is None:
            numeric = [s for s in states if isinstance(s.value, int)]
            initial = min(numeric, key=lambda s: s.value) if numeric else states[0]
        initial.is_initial = True
        for state in states:
            if isinstance(state.value, str) and _FINAL_NAME.match(state.value):
                state.is_final = True

        targets = {t.to_state for t in transitions}
        sources = {t.from_state for t in transitions}
        has_gaps, gap_values = analyze_gaps([s.value for s in states if isinstance(s.value, int)])
        pou = find_enclosing(self.pous, start_line)

        return StateMachine(
            id=make_id("sm", self.file_path, variable, start_line),
            variable=variable,
            location=SourceLocation(self.file_path, start_line, column, end_line),
            states=states,
            has_gaps=has_gaps,
            gap_values=gap_values,
            confidence=confidence,
            transitions=transitions,
            initial_state=initial.value,
            final_states=[s.value for s in states if s.is_final],
            unreachable_states=[s.value for s in states if not s.is_initial and s.value not in targets],
            deadlock_states=[s.value for s in states if not s.is_final and s.value not in sources],
            pou_id=pou.id if pou else None,
            pou_name=pou.name if pou else None,
        )

    def _extract_transitions(self, variable: str, states: List[State],
                             code_lines: List[str]) -> List[StateTransition]:
        by_key = {str(s.value).lower(): s for s in states}
        assign = re.compile(rf"(?<![\w.]){re.escape(variable)}\s*:=\s*({_LABEL_ITEM})\s*;", re.IGNORECASE)
        ordered = sorted({s.line for s in states})
        transitions: List[StateTransition] = []
        for i, arm_line in enumerate(ordered):
            next_line = ordered[i + 1] if i + 1 < len(ordered) else None
            arm_states = [s for s in states if s.line == arm_line]
            last_line = (next_line - 1) if next_line else self._arm_end(code_lines, arm_line)
            for number in range(arm_line, last_line + 1):
                for match in assign.finditer(code_lines[number - 1]):
                    target = by_key.get(str(_parse_value(match.group(1))).lower())
                    if target is None:
                        continue
                    guard = self._guard(code_lines, number, arm_line, match.start())
                    for source_state in arm_states:
                        if source_state.value == target.value:
                            continue
                        transitions.append(StateTransition(
                            from_state=source_state.value,
                            to_state=target.value,
                            line=number,
                            condition=guard,
                        ))
        return transitions

    @staticmethod
    def _arm_end(code_lines: List[str], arm_line: int) -> int:
        for number in range(arm_line + 1, len(code_lines) + 1):
            if re.search(r"\bEND_CASE\b", code_lines[number - 1], re.IGNORECASE):
                return number
        return len(code_lines)

    @staticmethod
    def _guard(code_lines: List[str], line: int, arm_line: int, column: int) -> Optional[str]:
        for number in range(line, arm_line - 1, -1):
            text = code_lines[number - 1]
            if number == line:
                text = text[:column]
            matches = list(_GUARD.finditer(text))
            if matches:
                return " ".join(matches[-1].group(1).split())
        return None


def extract_state_machines(source, file_path: str = "<source>",
                           pous: Optional[Sequence[POU]] = None) -> List[StateMachine]:
    """Extract CASE-based state machines from ST source text."""
    return StateMachineExtractor(file_path, pous).extract(source)
