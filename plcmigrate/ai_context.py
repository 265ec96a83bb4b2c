"""
AI context generation.

Packages everything extracted from a Structured Text project into a single,
serializable AIContextPackage that a code generator can consume when
translating the project into a general-purpose language. Each supported target
language carries its own immutable type and pattern tables.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ordered_set import OrderedSet

from .exceptions import UnknownTargetLanguageError
from .models import (
    POU, AIContextPackage, Docstring, InterfaceMember, PatternMappingEntry, POUContext,
    POUInterface, POUKind, ProjectInfo, SafetyAnalysisResult, SafetyContext, SafetyInterlock,
    SafetySummary, SafetyType, Severity, StateMachine, TribalKnowledgeItem,
    TranslationGuide, TypeMappingEntry, Variable, VarSection, VerificationCategory,
    VerificationRequirement,
)
from .utils import belongs_to, involves

logger = logging.getLogger(__name__)

CONTEXT_VERSION = "1.0.0"


class TargetLanguage(Enum):
    """Closed set of languages a context package can target."""
    PYTHON = "python"
    RUST = "rust"
    TYPESCRIPT = "typescript"
    CSHARP = "csharp"
    CPP = "cpp"
    GO = "go"
    JAVA = "java"

    @classmethod
    def parse(cls, value: Union[str, "TargetLanguage"]) -> "TargetLanguage":
        """
        Resolve a target language selector.

        Raises:
            UnknownTargetLanguageError: If the selector is not supported
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        raise UnknownTargetLanguageError(value, [m.value for m in cls])


@dataclass(frozen=True)
class LanguageProfile:
    """Immutable translation tables for one target language."""
    language: TargetLanguage
    type_map: Mapping[str, str]
    array_format: str
    timer_pattern: str
    state_machine_pattern: str
    io_pattern: str
    edge_pattern: str
    state_machine_example: str = ""
    timer_example: str = ""

    def map_type(self, plc_type: str) -> Optional[str]:
        return self.type_map.get(plc_type.upper())

    def map_variable(self, variable: Variable) -> str:
        """Target type for a variable, falling back to its own type name for user types."""
        base = variable.base_type
        target = self.type_map.get(base) or variable.data_type.strip()
        if variable.is_array:
            return self.array_format.format(target)
        return target


def _profile(language, type_map, **kwargs) -> LanguageProfile:
    return LanguageProfile(language=language, type_map=MappingProxyType(dict(type_map)), **kwargs)


_PYTHON_SM_EXAMPLE = """class State(IntEnum):
    IDLE = 0
    RUNNING = 10

def scan(self):
    match self.state:
        case State.IDLE:
            ...
        case State.RUNNING:
            ..."""

_PYTHON_TIMER_EXAMPLE = """class TON:
    def __init__(self, preset: float):
        self.preset = preset
        self.elapsed = 0.0
        self.q = False

    def __call__(self, enable: bool, dt: float) -> bool:
        self.elapsed = min(self.elapsed + dt, self.preset) if enable else 0.0
        self.q = enable and self.elapsed >= self.preset
        return self.q"""

_RUST_SM_EXAMPLE = """enum State { Idle, Running }

match self.state {
    State::Idle => { /* ... */ }
    State::Running => { /* ... */ }
}"""

LANGUAGE_PROFILES: Mapping[TargetLanguage, LanguageProfile] = MappingProxyType({
    TargetLanguage.PYTHON: _profile(
        TargetLanguage.PYTHON,
        {
            "BOOL": "bool", "BYTE": "int", "WORD": "int", "DWORD": "int", "LWORD": "int",
            "SINT": "int", "INT": "int", "DINT": "int", "LINT": "int",
            "USINT": "int", "UINT": "int", "UDINT": "int", "ULINT": "int",
            "REAL": "float", "LREAL": "float", "STRING": "str", "WSTRING": "str",
            "TIME": "timedelta", "DATE": "date", "DATE_AND_TIME": "datetime",
            "DT": "datetime", "TIME_OF_DAY": "time", "TOD": "time",
        },
        array_format="list[{}]",
        timer_pattern="Scan-driven timer class fed with the cycle time",
        state_machine_pattern="IntEnum states with a match statement",
        io_pattern="Hardware abstraction class with read_input/write_output",
        edge_pattern="Store the previous value and compare on each scan",
        state_machine_example=_PYTHON_SM_EXAMPLE,
        timer_example=_PYTHON_TIMER_EXAMPLE,
    ),
    TargetLanguage.RUST: _profile(
        TargetLanguage.RUST,
        {
            "BOOL": "bool", "BYTE": "u8", "WORD": "u16", "DWORD": "u32", "LWORD": "u64",
            "SINT": "i8", "INT": "i16", "DINT": "i32", "LINT": "i64",
            "USINT": "u8", "UINT": "u16", "UDINT": "u32", "ULINT": "u64",
            "REAL": "f32", "LREAL": "f64", "STRING": "String", "WSTRING": "String",
            "TIME": "Duration", "DATE": "NaiveDate", "DATE_AND_TIME": "NaiveDateTime",
            "DT": "NaiveDateTime", "TIME_OF_DAY": "NaiveTime", "TOD": "NaiveTime",
        },
        array_format="Vec<{}>",
        timer_pattern="Timer struct advanced by std::time::Duration per scan",
        state_machine_pattern="enum with a match expression",
        io_pattern="trait object implementing the I/O interface",
        edge_pattern="previous-value field compared on each scan",
        state_machine_example=_RUST_SM_EXAMPLE,
    ),
    TargetLanguage.TYPESCRIPT: _profile(
        TargetLanguage.TYPESCRIPT,
        {
            "BOOL": "boolean", "BYTE": "number", "WORD": "number", "DWORD": "number",
            "LWORD": "bigint", "SINT": "number", "INT": "number", "DINT": "number",
            "LINT": "bigint", "USINT": "number", "UINT": "number", "UDINT": "number",
            "ULINT": "bigint", "REAL": "number", "LREAL": "number",
            "STRING": "string", "WSTRING": "string", "TIME": "number",
            "DATE": "Date", "DATE_AND_TIME": "Date", "DT": "Date", "TIME_OF_DAY": "Date", "TOD": "Date",
        },
        array_format="{}[]",
        timer_pattern="Timer class advanced by elapsed milliseconds per scan",
        state_machine_pattern="enum or union type with a switch statement",
        io_pattern="interface implemented by a hardware adapter",
        edge_pattern="previous-value field compared on each scan",
    ),
    TargetLanguage.CSHARP: _profile(
        TargetLanguage.CSHARP,
        {
            "BOOL": "bool", "BYTE": "byte", "WORD": "ushort", "DWORD": "uint", "LWORD": "ulong",
            "SINT": "sbyte", "INT": "short", "DINT": "int", "LINT": "long",
            "USINT": "byte", "UINT": "ushort", "UDINT": "uint", "ULINT": "ulong",
            "REAL": "float", "LREAL": "double", "STRING": "string", "WSTRING": "string",
            "TIME": "TimeSpan", "DATE": "DateTime", "DATE_AND_TIME": "DateTime", "DT": "DateTime",
            "TIME_OF_DAY": "TimeSpan", "TOD": "TimeSpan",
        },
        array_format="List<{}>",
        timer_pattern="Timer class advanced by TimeSpan per scan",
        state_machine_pattern="enum with a switch expression",
        io_pattern="interface implemented by a hardware adapter",
        edge_pattern="previous-value field compared on each scan",
    ),
    TargetLanguage.CPP: _profile(
        TargetLanguage.CPP,
        {
            "BOOL": "bool", "BYTE": "uint8_t", "WORD": "uint16_t", "DWORD": "uint32_t",
            "LWORD": "uint64_t", "SINT": "int8_t", "INT": "int16_t", "DINT": "int32_t",
            "LINT": "int64_t", "USINT": "uint8_t", "UINT": "uint16_t", "UDINT": "uint32_t",
            "ULINT": "uint64_t", "REAL": "float", "LREAL": "double",
            "STRING": "std::string", "WSTRING": "std::wstring", "TIME": "std::chrono::milliseconds",
        },
        array_format="std::vector<{}>",
        timer_pattern="Timer class advanced by std::chrono::milliseconds per scan",
        state_machine_pattern="enum class with a switch statement",
        io_pattern="abstract I/O interface class",
        edge_pattern="previous-value member compared on each scan",
    ),
    TargetLanguage.GO: _profile(
        TargetLanguage.GO,
        {
            "BOOL": "bool", "BYTE": "uint8", "WORD": "uint16", "DWORD": "uint32", "LWORD": "uint64",
            "SINT": "int8", "INT": "int16", "DINT": "int32", "LINT": "int64",
            "USINT": "uint8", "UINT": "uint16", "UDINT": "uint32", "ULINT": "uint64",
            "REAL": "float32", "LREAL": "float64", "STRING": "string", "WSTRING": "string",
            "TIME": "time.Duration", "DATE": "time.Time", "DATE_AND_TIME": "time.Time",
        },
        array_format="[]{}",
        timer_pattern="Timer struct advanced by time.Duration per scan",
        state_machine_pattern="typed int constants with a switch statement",
        io_pattern="interface implemented by a hardware adapter",
        edge_pattern="previous-value field compared on each scan",
    ),
    TargetLanguage.JAVA: _profile(
        TargetLanguage.JAVA,
        {
            "BOOL": "boolean", "BYTE": "byte", "WORD": "short", "DWORD": "int", "LWORD": "long",
            "SINT": "byte", "INT": "short", "DINT": "int", "LINT": "long",
            "REAL": "float", "LREAL": "double", "STRING": "String", "WSTRING": "String",
            "TIME": "Duration", "DATE": "LocalDate", "DATE_AND_TIME": "LocalDateTime",
        },
        array_format="List<{}>",
        timer_pattern="Timer class advanced by java.time.Duration per scan",
        state_machine_pattern="enum with a switch expression",
        io_pattern="interface implemented by a hardware adapter",
        edge_pattern="previous-value field compared on each scan",
    ),
})

TYPE_NOTES = {
    "TIME": "PLC timers advance once per scan; keep the scan cycle explicit",
    "WORD": "Bit-string type; bitwise operations must keep 16-bit width",
    "DWORD": "Bit-string type; bitwise operations must keep 32-bit width",
    "REAL": "32-bit IEEE float; comparisons may differ from 64-bit floats",
}

INTERFACE_SECTIONS = {
    "inputs": (VarSection.VAR_INPUT,),
    "outputs": (VarSection.VAR_OUTPUT,),
    "in_outs": (VarSection.VAR_IN_OUT,),
    "locals": (VarSection.VAR, VarSection.VAR_TEMP, VarSection.VAR_STAT, VarSection.VAR_INST),
}

PREFIX_MEANINGS = {
    "b": "Boolean",
    "n": "Integer",
    "i": "Integer",
    "r": "Real",
    "s": "String",
    "w": "Word",
    "dw": "Double word",
    "by": "Byte",
    "t": "Time or timer",
    "a": "Array",
    "arr": "Array",
    "p": "Pointer",
    "st": "Structure",
    "fb": "Function block instance",
    "il": "Interlock",
    "pb": "Pushbutton",
    "ls": "Limit switch",
}

_HUNGARIAN = re.compile(r"^([a-z]{1,3})(?=[A-Z_])")


def get_language_profile(target_language: Union[str, TargetLanguage]) -> LanguageProfile:
    return LANGUAGE_PROFILES[TargetLanguage.parse(target_language)]


class AIContextGenerator:
    """
    Builds AIContextPackage objects for one target language.

    The generator holds no state between calls, so the same inputs always
    produce the same package.
    """

    def __init__(self, target_language: Union[str, TargetLanguage] = TargetLanguage.PYTHON):
        self.target = TargetLanguage.parse(target_language)
        self.profile = LANGUAGE_PROFILES[self.target]

    def generate(
        self,
        pous: Sequence[POU],
        docstrings: Sequence[Docstring],
        state_machines: Sequence[StateMachine],
        safety: Union[SafetyAnalysisResult, Sequence[SafetyInterlock], None],
        tribal_knowledge: Sequence[TribalKnowledgeItem],
        project_info: Optional[ProjectInfo] = None,
    ) -> AIContextPackage:
        """
        Assemble the context package.

        Args:
            pous: Every POU of the project
            docstrings: Extracted docstrings
            state_machines: Extracted state machines
            safety: Safety analysis result, or a plain list of interlocks
            tribal_knowledge: Extracted tribal knowledge items
            project_info: Optional project metadata

        Returns:
            AIContextPackage
        """
        safety_result = _as_safety_result(safety)
        pous = list(pous or [])
        state_machines = list(state_machines or [])
        tribal_knowledge = list(tribal_knowledge or [])

        package = AIContextPackage(
            version=CONTEXT_VERSION,
            target_language=self.target.value,
            project=project_info,
            conventions=self._conventions(pous),
            types=self._types(pous),
            pous=[self._pou_context(p, docstrings or [], state_machines, safety_result, tribal_knowledge)
                  for p in pous],
            safety=self._safety_context(safety_result),
            tribal_knowledge=[self._tribal_entry(item) for item in tribal_knowledge],
            translation_guide=self._translation_guide(),
            verification_requirements=self._verification_requirements(pous, state_machines, safety_result),
        )
        logger.info(f"Generated {self.target.value} context for {len(pous)} POUs, "
                    f"{len(safety_result.interlocks)} interlocks")
        return package

    def _conventions(self, pous: List[POU]) -> Dict[str, Any]:
        prefixes: Dict[str, str] = {}
        for pou in pous:
            for variable in pou.variables:
                match = _HUNGARIAN.match(variable.name)
                if match and match.group(1).lower() in PREFIX_MEANINGS:
                    prefix = match.group(1).lower()
                    prefixes[prefix] = PREFIX_MEANINGS[prefix]
        return {
            "naming_patterns": {
                "function_block": "FB_<Name>",
                "program": "PRG_<Name> or <Name>_Main",
                "function": "FC_<Name> or <Name>",
            },
            "variable_prefixes": dict(sorted(prefixes.items())),
            "state_encodings": ["Integer values (0, 10, 20, ...)", "Enumerated values"],
            "comment_styles": ["(* Block comment *)", "// Line comment"],
            "execution_model": "Cyclic scan: every POU body runs once per PLC cycle",
        }

    def _types(self, pous: List[POU]) -> Dict[str, Any]:
        custom = OrderedSet()
        for pou in pous:
            for variable in pou.variables:
                if self.profile.map_type(variable.base_type) is None:
                    custom.add(variable.data_type.strip())
        return {
            "plc_to_target": dict(sorted(self.profile.type_map.items())),
            "custom_types": sorted(custom),
        }

    def _pou_context(self, pou: POU, docstrings: Sequence[Docstring],
                     state_machines: List[StateMachine], safety: SafetyAnalysisResult,
                     tribal_knowledge: List[TribalKnowledgeItem]) -> POUContext:
        machines = [sm for sm in state_machines if belongs_to(pou, sm.pou_id, sm.location)]
        interlocks = [i for i in safety.interlocks if involves(pou, i.pou_ids, i.location)]
        knowledge = [k for k in tribal_knowledge if belongs_to(pou, k.pou_id, k.location)]
        timers = [v for v in pou.variables if v.is_timer]

        interface = POUInterface(**{
            key: [self._member(v) for v in pou.variables_in(*sections)]
            for key, sections in INTERFACE_SECTIONS.items()
        })

        return POUContext(
            name=pou.name,
            kind=pou.kind,
            file=pou.location.file,
            line=pou.location.line,
            purpose=_purpose(pou, docstrings),
            interface=interface,
            extends=pou.extends,
            implements=list(pou.implements),
            state_machines=[_machine_summary(sm) for sm in machines],
            timers=[f"{v.name}: {v.data_type}" for v in timers],
            interlocks=[i.name for i in interlocks],
            tribal_knowledge=[f"[{k.type.value}] {k.content}" for k in knowledge],
            translation_hints=self._hints(pou, machines, interlocks, timers),
            suggested_tests=_suggested_tests(pou, machines, interlocks),
        )

    def _member(self, variable: Variable) -> InterfaceMember:
        return InterfaceMember(
            name=variable.name,
            plc_type=variable.data_type,
            target_type=self.profile.map_variable(variable),
            description=variable.comment or "",
            initial_value=variable.initial_value,
            io_address=variable.io_address,
        )

    def _hints(self, pou: POU, machines: List[StateMachine],
               interlocks: List[SafetyInterlock], timers: List[Variable]) -> List[str]:
        hints = []
        if timers:
            hints.append(f"Timers ({', '.join(v.name for v in timers)}): {self.profile.timer_pattern}")
        if any(v.is_edge_trigger for v in pou.variables):
            hints.append(f"Edge detection (R_TRIG/F_TRIG): {self.profile.edge_pattern}")
        if machines:
            hints.append(f"State machines ({', '.join(sm.variable for sm in machines)}): "
                         f"{self.profile.state_machine_pattern}")
        if any(v.io_address for v in pou.variables):
            hints.append(f"Direct I/O: {self.profile.io_pattern}")
        if interlocks:
            hints.append("Keep every interlock check in the same evaluation order as the original")
        if pou.kind == POUKind.FUNCTION_BLOCK:
            hints.append("FUNCTION_BLOCK instances keep their state between calls")
        return hints

    def _safety_context(self, safety: SafetyAnalysisResult) -> SafetyContext:
        critical_paths = [
            f"{i.name} at {i.location.file}:{i.location.line}"
            for i in safety.interlocks if i.severity == Severity.CRITICAL
        ]
        must_preserve = []
        for interlock in safety.interlocks:
            if interlock.severity == Severity.LOW:
                continue
            if interlock.type == SafetyType.BYPASS:
                must_preserve.append(f"BYPASS (review before migration): {interlock.name}")
            else:
                must_preserve.append(
                    f"{interlock.type.value}: {interlock.name} must block the same outputs "
                    f"under the same conditions"
                )
        return SafetyContext(
            interlocks=[i.to_dict() for i in safety.interlocks],
            critical_paths=critical_paths,
            must_preserve=must_preserve,
        )

    @staticmethod
    def _tribal_entry(item: TribalKnowledgeItem) -> Dict[str, Any]:
        return {
            "type": item.type.value,
            "importance": item.importance.value,
            "content": item.content,
            "file": item.location.file,
            "line": item.location.line,
        }

    def _translation_guide(self) -> TranslationGuide:
        type_mapping = [
            TypeMappingEntry(plc, target, TYPE_NOTES.get(plc, ""))
            for plc, target in sorted(self.profile.type_map.items())
        ]
        pattern_mapping = [
            PatternMappingEntry("CASE state OF ... END_CASE", self.profile.state_machine_pattern,
                                self.profile.state_machine_example),
            PatternMappingEntry("TON/TOF/TP timer", self.profile.timer_pattern, self.profile.timer_example),
            PatternMappingEntry("R_TRIG/F_TRIG", self.profile.edge_pattern),
            PatternMappingEntry("Direct I/O (%IX, %QX ...)", self.profile.io_pattern),
            PatternMappingEntry("IF condition THEN ... END_IF", "Standard conditional statement"),
        ]
        warnings = [
            "PLC code executes cyclically; preserve scan semantics",
            "Timer behavior is scan-based and may need adjustment",
            "Direct I/O access must go through an abstraction layer",
            "Safety interlocks must be preserved exactly",
        ]
        return TranslationGuide(type_mapping=type_mapping, pattern_mapping=pattern_mapping, warnings=warnings)

    @staticmethod
    def _verification_requirements(pous: List[POU], state_machines: List[StateMachine],
                                   safety: SafetyAnalysisResult) -> List[VerificationRequirement]:
        requirements = []
        if safety.interlocks:
            requirements.append(VerificationRequirement(
                category=VerificationCategory.SAFETY,
                description="Every safety interlock must produce identical behavior; "
                            "test each one at its boundary conditions",
                priority=Severity.CRITICAL,
            ))
            for bypass in safety.bypasses:
                requirements.append(VerificationRequirement(
                    category=VerificationCategory.SAFETY,
                    description=f"Confirm whether bypass {bypass.name} may exist in the migrated code",
                    priority=Severity.CRITICAL,
                ))
        for sm in state_machines:
            requirements.append(VerificationRequirement(
                category=VerificationCategory.STATE_MACHINE,
                description=f"All {sm.state_count} states and {len(sm.transitions)} transitions "
                            f"of {sm.variable} must match the original",
                pou_name=sm.pou_name,
                priority=Severity.HIGH,
            ))
        if any(v.io_address for p in pous for v in p.variables):
            requirements.append(VerificationRequirement(
                category=VerificationCategory.IO,
                description="I/O behavior must be verified against hardware or a simulator",
                priority=Severity.HIGH,
            ))
        if any(v.is_timer for p in pous for v in p.variables):
            requirements.append(VerificationRequirement(
                category=VerificationCategory.TIMING,
                description="Timer behavior must match within the scan-cycle tolerance",
                priority=Severity.MEDIUM,
            ))
        for pou in pous:
            if pou.variables_in(VarSection.VAR_INPUT, VarSection.VAR_OUTPUT, VarSection.VAR_IN_OUT):
                requirements.append(VerificationRequirement(
                    category=VerificationCategory.INTERFACE,
                    description=f"Inputs and outputs of {pou.name} keep their names, types and defaults",
                    pou_name=pou.name,
                    priority=Severity.LOW,
                ))
        return requirements


def _as_safety_result(safety) -> SafetyAnalysisResult:
    if safety is None:
        return SafetyAnalysisResult()
    if isinstance(safety, SafetyAnalysisResult):
        return safety
    interlocks = list(safety)
    return SafetyAnalysisResult(interlocks=interlocks, summary=SafetySummary.from_interlocks(interlocks))


def _purpose(pou: POU, docstrings: Sequence[Docstring]) -> str:
    doc = pou.documentation
    if doc is None:
        doc = next((d for d in docstrings
                    if (d.associated_block or "").lower() == pou.name.lower()
                    and d.location.file == pou.location.file), None)
    if doc is not None and (doc.summary or doc.description):
        return doc.summary or doc.description
    return "No documentation available"


def _machine_summary(sm: StateMachine) -> Dict[str, Any]:
    return {
        "variable": sm.variable,
        "states": [s.value for s in sm.states],
        "state_names": {str(s.value): s.name for s in sm.states if s.name},
        "initial_state": sm.initial_state,
        "transitions": len(sm.transitions),
        "has_gaps": sm.has_gaps,
        "undocumented_states": [s.value for s in sm.undocumented_states],
    }


def _suggested_tests(pou: POU, machines: List[StateMachine],
                     interlocks: List[SafetyInterlock]) -> List[str]:
    tests = [f"Test {v.name} with boundary values" for v in pou.variables_in(VarSection.VAR_INPUT)]
    for sm in machines:
        tests.append(f"Visit all {sm.state_count} states of {sm.variable}")
        if sm.transitions:
            tests.append(f"Exercise all {len(sm.transitions)} transitions of {sm.variable}")
        if sm.deadlock_states:
            tests.append(f"Verify {sm.variable} cannot stall in {', '.join(map(str, sm.deadlock_states))}")
    for interlock in interlocks:
        tests.append(f"Verify {interlock.name} blocks operation when not satisfied")
    return tests


def generate_ai_context(
    pous: Sequence[POU],
    docstrings: Sequence[Docstring],
    state_machines: Sequence[StateMachine],
    safety: Union[SafetyAnalysisResult, Sequence[SafetyInterlock], None],
    tribal_knowledge: Sequence[TribalKnowledgeItem],
    target_language: Union[str, TargetLanguage],
    project_info: Optional[ProjectInfo] = None,
) -> AIContextPackage:
    """
    Generate an AI translation context package.

    Raises:
        UnknownTargetLanguageError: If ``target_language`` is not supported
    """
    return AIContextGenerator(target_language).generate(
        pous, docstrings, state_machines, safety, tribal_knowledge, project_info
    )
