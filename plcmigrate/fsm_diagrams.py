"""
State machine diagram rendering (DOT, Mermaid and plain ASCII).
"""

import re
from typing import Callable, Dict

from .models import State, StateMachine

MAX_GUARD_LENGTH = 30

_NODE_SAFE = re.compile(r"[^A-Za-z0-9_]")


def _node_id(value) -> str:
    return "S_" + _NODE_SAFE.sub("_", str(value))


def _label(state: State) -> str:
    if state.name and state.name != str(state.value):
        return f"{state.value}: {state.name}"
    return str(state.value)


def _guard(condition) -> str:
    if not condition:
        return ""
    guard = " ".join(condition.split()).replace('"', "").replace("'", "")
    if len(guard) > MAX_GUARD_LENGTH:
        guard = guard[:MAX_GUARD_LENGTH - 3] + "..."
    return guard


def generate_dot(sm: StateMachine) -> str:
    """Render a state machine as a Graphviz DOT digraph."""
    lines = [
        f"digraph {_node_id(sm.variable)} {{",
        "  rankdir=LR;",
        "  node [shape=circle];",
        "",
        "  // States",
    ]
    for state in sm.states:
        shape = "doublecircle" if state.is_final else "circle"
        style = "bold" if state.is_initial else ("dashed" if not state.has_comment else "solid")
        lines.append(f'  {_node_id(state.value)} [label="{_label(state)}", shape={shape}, style={style}];')

    lines.append("")
    lines.append("  // Transitions")
    for transition in sm.transitions:
        lines.append(f'  {_node_id(transition.from_state)} -> {_node_id(transition.to_state)} '
                     f'[label="{_guard(transition.condition)}"];')
    lines.append("}")
    return "\n".join(lines)


def generate_mermaid(sm: StateMachine) -> str:
    """Render a state machine as a Mermaid stateDiagram."""
    lines = ["stateDiagram-v2"]
    for state in sm.states:
        lines.append(f'    state "{_label(state)}" as {_node_id(state.value)}')
    if sm.initial_state is not None:
        lines.append(f"    [*] --> {_node_id(sm.initial_state)}")
    for transition in sm.transitions:
        guard = _guard(transition.condition)
        suffix = f" : {guard}" if guard else ""
        lines.append(f"    {_node_id(transition.from_state)} --> {_node_id(transition.to_state)}{suffix}")
    for value in sm.final_states:
        lines.append(f"    {_node_id(value)} --> [*]")
    return "\n".join(lines)


def generate_ascii(sm: StateMachine) -> str:
    """Plain-text listing of states and transitions."""
    where = f" in {sm.pou_name}" if sm.pou_name else ""
    lines = [f"State machine {sm.variable}{where} ({sm.state_count} states, line {sm.location.line})"]
    for state in sm.states:
        marks = []
        if state.is_initial:
            marks.append("initial")
        if state.is_final:
            marks.append("final")
        if not state.has_comment:
            marks.append("undocumented")
        suffix = f"  [{', '.join(marks)}]" if marks else ""
        lines.append(f"  ({_label(state)}){suffix}")
        for transition in sm.transitions:
            if transition.from_state == state.value:
                guard = _guard(transition.condition)
                lines.append(f"      --> {transition.to_state}" + (f"  when {guard}" if guard else ""))
    if sm.has_gaps:
        lines.append(f"  gaps: {', '.join(map(str, sm.gap_values))}")
    return "\n".join(lines)


RENDERERS: Dict[str, Callable[[StateMachine], str]] = {
    "dot": generate_dot,
    "mermaid": generate_mermaid,
    "ascii": generate_ascii,
}


def render(sm: StateMachine, fmt: str = "ascii") -> str:
    """Render in ``fmt``; raises ValueError for an unknown format."""
    try:
        renderer = RENDERERS[fmt.lower()]
    except KeyError:
        raise ValueError(f"Unknown diagram format '{fmt}'. Supported: {', '.join(RENDERERS)}") from None
    return renderer(sm)
