"""
Data models for Structured Text analysis results.

Every result is a plain dataclass. ``to_dict()`` turns any of them into JSON
types so results can be stored or sent to reporting layers unchanged.
"""

from collections import Counter
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ordered_set import OrderedSet


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(_plain(k)): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, OrderedSet)):
        return [_plain(v) for v in value]
    return value


class Serializable:
    """Mixin giving dataclasses a recursive ``to_dict``."""

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}


class POUKind(Enum):
    FUNCTION_BLOCK = "FUNCTION_BLOCK"
    PROGRAM = "PROGRAM"
    FUNCTION = "FUNCTION"


class VarSection(Enum):
    VAR_INPUT = "VAR_INPUT"
    VAR_OUTPUT = "VAR_OUTPUT"
    VAR_IN_OUT = "VAR_IN_OUT"
    VAR = "VAR"
    VAR_GLOBAL = "VAR_GLOBAL"
    VAR_TEMP = "VAR_TEMP"
    VAR_EXTERNAL = "VAR_EXTERNAL"
    VAR_STAT = "VAR_STAT"
    VAR_INST = "VAR_INST"


class IssueSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


class Severity(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


# Standard function blocks from IEC 61131-3 whose behavior depends on scan timing.
TIMER_TYPES = frozenset({"TON", "TOF", "TP", "RTO"})
EDGE_TRIGGER_TYPES = frozenset({"R_TRIG", "F_TRIG"})
COUNTER_TYPES = frozenset({"CTU", "CTD", "CTUD"})


class SafetyType(Enum):
    INTERLOCK = "interlock"
    PERMISSIVE = "permissive"
    ESTOP = "estop"
    SAFETY_RELAY = "safety-relay"
    SAFETY_DEVICE = "safety-device"
    BYPASS = "bypass"


class TribalKnowledgeType(Enum):
    WARNING = "warning"
    CAUTION = "caution"
    DANGER = "danger"
    DO_NOT_CHANGE = "do-not-change"
    WORKAROUND = "workaround"
    HACK = "hack"
    NOTE = "note"
    IMPORTANT = "important"
    TODO = "todo"
    FIXME = "fixme"
    EQUIPMENT = "equipment"
    MAGIC_NUMBER = "magic-number"
    MYSTERY = "mystery"
    HISTORY = "history"
    AUTHOR = "author"


class BlockerCategory(Enum):
    SAFETY_BYPASS = "safety-bypass"
    UNDOCUMENTED_STATE_MACHINE = "undocumented-state-machine"
    MISSING_DOCUMENTATION = "missing-documentation"
    COMPLEX_LOGIC = "complex-logic"


class VerificationCategory(Enum):
    SAFETY = "safety"
    STATE_MACHINE = "state-machine"
    IO = "io"
    TIMING = "timing"
    INTERFACE = "interface"


@dataclass(frozen=True)
class SourceLocation(Serializable):
    file: str
    line: int
    column: int = 1
    end_line: Optional[int] = None
    end_column: Optional[int] = None


@dataclass
class ParseIssue(Serializable):
    """A non-fatal problem found while tokenizing or parsing."""
    code: str
    message: str
    line: int
    column: int = 1
    severity: IssueSeverity = IssueSeverity.ERROR


@dataclass(frozen=True)
class ArrayDimension(Serializable):
    lower: Union[int, str]
    upper: Union[int, str]

    @property
    def size(self) -> Optional[int]:
        if isinstance(self.lower, int) and isinstance(self.upper, int):
            return self.upper - self.lower + 1
        return None


@dataclass(frozen=True)
class ArrayBounds(Serializable):
    dimensions: List[ArrayDimension]
    raw: str = ""


@dataclass(frozen=True)
class IOMapping(Serializable):
    """A decoded ``%I/%Q/%M`` direct address."""
    address: str
    area: str
    direction: str
    size_bits: Optional[int]
    index: str
    is_safety_channel: bool = False


@dataclass(frozen=True)
class Variable(Serializable):
    id: str
    name: str
    data_type: str
    section: VarSection
    location: SourceLocation
    pou_id: Optional[str] = None
    initial_value: Optional[str] = None
    comment: Optional[str] = None
    is_array: bool = False
    array_bounds: Optional[ArrayBounds] = None
    is_safety_critical: bool = False
    io_address: Optional[str] = None
    io_mapping: Optional[IOMapping] = None
    modifiers: List[str] = field(default_factory=list)

    @property
    def base_type(self) -> str:
        """Upper-case type name without length or library qualifiers, e.g. STRING for STRING(80)."""
        name = self.data_type.split("(")[0].split("[")[0].strip()
        return name.rsplit(".", 1)[-1].upper()

    @property
    def is_timer(self) -> bool:
        return self.base_type in TIMER_TYPES

    @property
    def is_edge_trigger(self) -> bool:
        return self.base_type in EDGE_TRIGGER_TYPES

    @property
    def is_counter(self) -> bool:
        return self.base_type in COUNTER_TYPES


@dataclass
class DocParam(Serializable):
    name: str
    description: str
    data_type: Optional[str] = None


@dataclass
class HistoryEntry(Serializable):
    description: str
    date: Optional[str] = None
    year: Optional[int] = None
    author: Optional[str] = None


@dataclass
class Docstring(Serializable):
    """A substantial block comment and the fields parsed out of it."""
    id: str
    location: SourceLocation
    raw: str
    summary: Optional[str] = None
    description: str = ""
    params: List[DocParam] = field(default_factory=list)
    returns: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None
    history: List[HistoryEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    associated_block: Optional[str] = None
    quality_score: int = 0

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def end_line(self) -> int:
        return self.location.end_line or self.location.line


@dataclass(frozen=True)
class Method(Serializable):
    id: str
    name: str
    location: SourceLocation
    return_type: Optional[str] = None
    parameters: List[Variable] = field(default_factory=list)
    end_line: Optional[int] = None


@dataclass(frozen=True)
class POU(Serializable):
    """A Program Organization Unit: PROGRAM, FUNCTION_BLOCK or FUNCTION."""
    id: str
    qualified_name: str
    kind: POUKind
    name: str
    location: SourceLocation
    body_start_line: int
    body_end_line: int
    variables: List[Variable] = field(default_factory=list)
    documentation: Optional[Docstring] = None
    extends: Optional[str] = None
    implements: List[str] = field(default_factory=list)
    methods: List[Method] = field(default_factory=list)
    return_type: Optional[str] = None
    vendor_attributes: Dict[str, Any] = field(default_factory=dict)

    def variables_in(self, *sections: VarSection) -> List[Variable]:
        return [v for v in self.variables if v.section in sections]


@dataclass
class ParseMetadata(Serializable):
    file: str
    total_lines: int = 0
    vendor: Optional[str] = None


@dataclass
class ParseResult(Serializable):
    """Best-effort parse output: POUs plus every recoverable issue met."""
    file_path: str
    pous: List[POU] = field(default_factory=list)
    errors: List[ParseIssue] = field(default_factory=list)
    warnings: List[ParseIssue] = field(default_factory=list)
    global_variables: List[Variable] = field(default_factory=list)
    user_types: List[str] = field(default_factory=list)
    docstrings: List[Docstring] = field(default_factory=list)
    metadata: Optional[ParseMetadata] = None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class State(Serializable):
    value: Union[int, str]
    line: int
    has_comment: bool = False
    comment: Optional[str] = None
    name: Optional[str] = None
    actions: List[str] = field(default_factory=list)
    is_initial: bool = False
    is_final: bool = False


@dataclass
class StateTransition(Serializable):
    from_state: Union[int, str]
    to_state: Union[int, str]
    line: int
    condition: Optional[str] = None


@dataclass
class StateMachine(Serializable):
    id: str
    variable: str
    location: SourceLocation
    states: List[State] = field(default_factory=list)
    has_gaps: bool = False
    gap_values: List[int] = field(default_factory=list)
    confidence: float = 0.0
    transitions: List[StateTransition] = field(default_factory=list)
    initial_state: Optional[Union[int, str]] = None
    final_states: List[Union[int, str]] = field(default_factory=list)
    unreachable_states: List[Union[int, str]] = field(default_factory=list)
    deadlock_states: List[Union[int, str]] = field(default_factory=list)
    pou_id: Optional[str] = None
    pou_name: Optional[str] = None
    state_count: int = 0

    def __post_init__(self):
        self.state_count = len(self.states)

    @property
    def undocumented_states(self) -> List[State]:
        return [s for s in self.states if not s.has_comment]

    @property
    def undocumented_ratio(self) -> float:
        if not self.states:
            return 0.0
        return len(self.undocumented_states) / len(self.states)


@dataclass
class SafetyInterlock(Serializable):
    id: str
    name: str
    type: SafetyType
    location: SourceLocation
    confidence: float
    severity: Severity
    pou_id: Optional[str] = None
    pou_ids: List[str] = field(default_factory=list)
    is_bypassed: bool = False
    bypass_condition: Optional[str] = None
    related_interlocks: List[str] = field(default_factory=list)


@dataclass
class SafetyWarning(Serializable):
    message: str
    location: SourceLocation
    severity: Severity = Severity.CRITICAL
    snippet: str = ""
    pou_ids: List[str] = field(default_factory=list)


@dataclass
class SafetySummary(Serializable):
    """Safety counts; ``merge`` is associative and commutative."""
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    bypassed: int = 0
    critical_warnings: int = 0

    @classmethod
    def from_interlocks(cls, interlocks: List[SafetyInterlock], warnings: int = 0) -> "SafetySummary":
        counts = Counter(i.type.value for i in interlocks)
        return cls(
            total=len(interlocks),
            by_type=dict(sorted(counts.items())),
            bypassed=sum(1 for i in interlocks if i.is_bypassed),
            critical_warnings=warnings,
        )

    def merge(self, other: "SafetySummary") -> "SafetySummary":
        counts = Counter(self.by_type)
        counts.update(other.by_type)
        return SafetySummary(
            total=self.total + other.total,
            by_type=dict(sorted(counts.items())),
            bypassed=self.bypassed + other.bypassed,
            critical_warnings=self.critical_warnings + other.critical_warnings,
        )


@dataclass
class SafetyAnalysisResult(Serializable):
    interlocks: List[SafetyInterlock] = field(default_factory=list)
    critical_warnings: List[SafetyWarning] = field(default_factory=list)
    summary: SafetySummary = field(default_factory=SafetySummary)

    @property
    def bypasses(self) -> List[SafetyInterlock]:
        return [i for i in self.interlocks if i.type == SafetyType.BYPASS]

    def merge(self, other: "SafetyAnalysisResult") -> "SafetyAnalysisResult":
        return SafetyAnalysisResult(
            interlocks=self.interlocks + other.interlocks,
            critical_warnings=self.critical_warnings + other.critical_warnings,
            summary=self.summary.merge(other.summary),
        )


@dataclass
class TribalKnowledgeItem(Serializable):
    id: str
    type: TribalKnowledgeType
    importance: Severity
    content: str
    location: SourceLocation
    context: str = ""
    pou_id: Optional[str] = None


@dataclass
class ExtractionBundle:
    """Extraction results handed to the scorer and the context generator."""
    docstrings: List[Docstring] = field(default_factory=list)
    state_machines: List[StateMachine] = field(default_factory=list)
    safety: SafetyAnalysisResult = field(default_factory=SafetyAnalysisResult)
    tribal_knowledge: List[TribalKnowledgeItem] = field(default_factory=list)


@dataclass
class MigrationBlocker(Serializable):
    category: BlockerCategory
    severity: Severity
    rationale: str
    remediation: str = ""


@dataclass
class DimensionScores(Serializable):
    documentation: float = 0.0
    safety: float = 0.0
    complexity: float = 0.0
    determinism: float = 0.0
    testability: float = 0.0


@dataclass
class MigrationScore(Serializable):
    pou_id: str
    pou_name: str
    file: str
    overall_score: float
    grade: str
    dimensions: DimensionScores
    blockers: List[MigrationBlocker] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return not any(b.severity == Severity.CRITICAL for b in self.blockers)


@dataclass
class MigrationRisk(Serializable):
    pou_name: str
    description: str
    severity: Severity
    mitigation: str = ""


@dataclass
class MigrationReadinessReport(Serializable):
    overall_score: float
    overall_grade: str
    scores: List[MigrationScore] = field(default_factory=list)
    migration_order: List[str] = field(default_factory=list)
    by_grade: Dict[str, int] = field(default_factory=dict)
    risks: List[MigrationRisk] = field(default_factory=list)
    estimated_effort_hours: float = 0.0


@dataclass
class ProjectInfo(Serializable):
    name: str
    description: str = ""
    vendor: Optional[str] = None
    plc_type: Optional[str] = None


@dataclass
class TypeMappingEntry(Serializable):
    plc_type: str
    target_type: str
    notes: str = ""


@dataclass
class PatternMappingEntry(Serializable):
    plc_pattern: str
    target_pattern: str
    example: str = ""


@dataclass
class InterfaceMember(Serializable):
    name: str
    plc_type: str
    target_type: str
    description: str = ""
    initial_value: Optional[str] = None
    io_address: Optional[str] = None


@dataclass
class POUInterface(Serializable):
    inputs: List[InterfaceMember] = field(default_factory=list)
    outputs: List[InterfaceMember] = field(default_factory=list)
    in_outs: List[InterfaceMember] = field(default_factory=list)
    locals: List[InterfaceMember] = field(default_factory=list)


@dataclass
class POUContext(Serializable):
    name: str
    kind: POUKind
    file: str
    line: int
    purpose: str
    interface: POUInterface
    extends: Optional[str] = None
    implements: List[str] = field(default_factory=list)
    state_machines: List[Dict[str, Any]] = field(default_factory=list)
    timers: List[str] = field(default_factory=list)
    interlocks: List[str] = field(default_factory=list)
    tribal_knowledge: List[str] = field(default_factory=list)
    translation_hints: List[str] = field(default_factory=list)
    suggested_tests: List[str] = field(default_factory=list)


@dataclass
class SafetyContext(Serializable):
    interlocks: List[Dict[str, Any]] = field(default_factory=list)
    critical_paths: List[str] = field(default_factory=list)
    must_preserve: List[str] = field(default_factory=list)


@dataclass
class TranslationGuide(Serializable):
    type_mapping: List[TypeMappingEntry] = field(default_factory=list)
    pattern_mapping: List[PatternMappingEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class VerificationRequirement(Serializable):
    category: VerificationCategory
    description: str
    pou_name: Optional[str] = None
    priority: Severity = Severity.MEDIUM


@dataclass
class AIContextPackage(Serializable):
    version: str
    target_language: str
    project: Optional[ProjectInfo]
    conventions: Dict[str, Any]
    types: Dict[str, Any]
    pous: List[POUContext]
    safety: SafetyContext
    tribal_knowledge: List[Dict[str, Any]]
    translation_guide: TranslationGuide
    verification_requirements: List[VerificationRequirement]
