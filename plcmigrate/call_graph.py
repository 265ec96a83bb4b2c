"""
Call graph construction across POUs.

Nodes are POUs; edges are function-block instance invocations and direct
function calls found in POU bodies. The graph also gives the dependency map
used to order migration work.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from ordered_set import OrderedSet

from .models import POU, POUKind, Serializable, SourceLocation, VarSection
from .tokenizer import mask_non_code

logger = logging.getLogger(__name__)

_CALL = re.compile(r"\b([^\W\d]\w*)\s*\(")


class CallType(Enum):
    INSTANTIATION = "instantiation"
    FUNCTION_CALL = "function_call"


@dataclass
class CallGraphNode(Serializable):
    id: str
    name: str
    kind: POUKind
    file: str
    line: int
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)


@dataclass
class CallGraphEdge(Serializable):
    caller: str
    callee: str
    call_type: CallType
    location: SourceLocation
    instance: Optional[str] = None


@dataclass
class CallGraph(Serializable):
    """POU call graph; names are matched case-insensitively."""
    nodes: List[CallGraphNode] = field(default_factory=list)
    edges: List[CallGraphEdge] = field(default_factory=list)
    instances: Dict[str, List[str]] = field(default_factory=dict)

    def node(self, name: str) -> Optional[CallGraphNode]:
        key = name.lower()
        return next((n for n in self.nodes if n.name.lower() == key), None)

    def callers_of(self, name: str) -> List[CallGraphEdge]:
        """Edges whose callee is ``name``."""
        key = name.lower()
        return [e for e in self.edges if e.callee.lower() == key]

    def callees_of(self, name: str) -> List[CallGraphEdge]:
        key = name.lower()
        return [e for e in self.edges if e.caller.lower() == key]

    def dependencies(self) -> Dict[str, List[str]]:
        """
        Map each POU name to the POUs it needs: called ones and declared instances.
        """
        deps: Dict[str, OrderedSet] = {n.name: OrderedSet() for n in self.nodes}
        for edge in self.edges:
            deps.setdefault(edge.caller, OrderedSet()).add(edge.callee)
        for owner, types in self.instances.items():
            deps.setdefault(owner, OrderedSet()).update(types)
        return {name: sorted(names) for name, names in sorted(deps.items())}


def build_call_graph(pous: Sequence[POU], source_by_file: Mapping[str, str]) -> CallGraph:
    """
    Build the call graph of a set of POUs.

    Args:
        pous: Parsed POUs, possibly from several files
        source_by_file: Source text of each file, keyed like ``POU.location.file``

    Returns:
        CallGraph with nodes in (file, line) order and edges in source order
    """
    ordered = sorted(pous, key=lambda p: (p.location.file, p.location.line))
    by_name: Dict[str, POU] = {}
    for pou in ordered:
        by_name.setdefault(pou.name.lower(), pou)

    graph = CallGraph()
    for pou in ordered:
        graph.nodes.append(CallGraphNode(
            id=pou.id,
            name=pou.name,
            kind=pou.kind,
            file=pou.location.file,
            line=pou.location.line,
            inputs=[v.name for v in pou.variables_in(VarSection.VAR_INPUT)],
            outputs=[v.name for v in pou.variables_in(VarSection.VAR_OUTPUT)],
        ))

    masked: Dict[str, List[str]] = {}
    for pou in ordered:
        instance_types: Dict[str, str] = {}
        for variable in pou.variables:
            target = by_name.get(variable.data_type.strip().lower())
            if target is not None and target.kind == POUKind.FUNCTION_BLOCK:
                instance_types[variable.name.lower()] = target.name
        if instance_types:
            graph.instances[pou.name] = sorted(set(instance_types.values()))

        source = source_by_file.get(pou.location.file)
        if source is None:
            logger.warning(f"No source for {pou.location.file}; calls of {pou.name} not analyzed")
            continue
        if pou.location.file not in masked:
            masked[pou.location.file] = mask_non_code(source).split("\n")
        lines = masked[pou.location.file]

        start = max(pou.body_start_line, 1)
        for line_no in range(start, min(pou.body_end_line, len(lines)) + 1):
            for match in _CALL.finditer(lines[line_no - 1]):
                name = match.group(1).lower()
                location = SourceLocation(pou.location.file, line_no, match.start() + 1)
                if name in instance_types:
                    graph.edges.append(CallGraphEdge(
                        caller=pou.name,
                        callee=instance_types[name],
                        call_type=CallType.INSTANTIATION,
                        location=location,
                        instance=match.group(1),
                    ))
                elif name in by_name and by_name[name].kind == POUKind.FUNCTION and name != pou.name.lower():
                    graph.edges.append(CallGraphEdge(
                        caller=pou.name,
                        callee=by_name[name].name,
                        call_type=CallType.FUNCTION_CALL,
                        location=location,
                    ))

    logger.info(f"Call graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
    return graph
