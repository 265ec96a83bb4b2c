"""
Safety interlock extraction.

Detects interlocks, permissives, emergency stops, safety relays/devices and
bypass variables from naming conventions. Detection is heuristic: confidence
values tell consumers how strong each naming rule is. Bypass detection errs on
the side of reporting, since a missed bypass is the expensive mistake.

Bypass usage is recognized through a small set of textual idioms
(``<bypass> OR <interlock>``, ``<interlock> OR <bypass>`` and
``NOT <interlock> OR <bypass>``, parentheses allowed). Bypass logic spread over
other boolean forms is not detected.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from ordered_set import OrderedSet

from .models import (
    POU, SafetyAnalysisResult, SafetyInterlock, SafetySummary, SafetyType,
    SafetyWarning, Severity, SourceLocation
)
from .tokenizer import mask_non_code
from .utils import LineIndex, coerce_source, find_enclosing, make_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafetyPattern:
    """One naming rule: regex, resulting type and confidence."""
    regex: "re.Pattern"
    type: SafetyType
    confidence: float


def _rules(entries) -> List[SafetyPattern]:
    return [
        SafetyPattern(re.compile(rf"\b({pattern})\b", re.IGNORECASE), safety_type, confidence)
        for pattern, safety_type, confidence in entries
    ]


INTERLOCK_PATTERNS = _rules([
    (r"bIL_\w+", SafetyType.INTERLOCK, 0.95),
    (r"IL_\w+", SafetyType.INTERLOCK, 0.90),
    (r"b?Interlock\w*", SafetyType.INTERLOCK, 0.85),
    (r"\w*_Interlock\w*", SafetyType.INTERLOCK, 0.85),
    (r"b?SafetyInterlock\w*", SafetyType.INTERLOCK, 0.90),
    (r"b?Permissive\w*", SafetyType.PERMISSIVE, 0.85),
    (r"bPerm_\w+", SafetyType.PERMISSIVE, 0.90),
    (r"\w*Permit\w*", SafetyType.PERMISSIVE, 0.80),
    (r"b?EStop\w*", SafetyType.ESTOP, 0.95),
    (r"b?E_Stop\w*", SafetyType.ESTOP, 0.95),
    (r"b?EmergencyStop\w*", SafetyType.ESTOP, 0.95),
    (r"bES_\w+", SafetyType.ESTOP, 0.90),
    (r"\w*Emergency\w*Stop\w*", SafetyType.ESTOP, 0.90),
    (r"b?SafetyRelay\w*", SafetyType.SAFETY_RELAY, 0.90),
    (r"SR_\w+", SafetyType.SAFETY_RELAY, 0.85),
    (r"bSR_\w+", SafetyType.SAFETY_RELAY, 0.90),
    (r"b?LightCurtain\w*", SafetyType.SAFETY_DEVICE, 0.85),
    (r"LC_\w+", SafetyType.SAFETY_DEVICE, 0.85),
    (r"b?SafetyMat\w*", SafetyType.SAFETY_DEVICE, 0.85),
    (r"b?GuardDoor\w*", SafetyType.SAFETY_DEVICE, 0.85),
    (r"b?SafetyGate\w*", SafetyType.SAFETY_DEVICE, 0.85),
    (r"i_b\w*Safety\w*", SafetyType.INTERLOCK, 0.85),
    (r"o_b\w*Safety\w*", SafetyType.INTERLOCK, 0.85),
    (r"b?SafetyChain\w*", SafetyType.INTERLOCK, 0.90),
    (r"Safety_\w+", SafetyType.INTERLOCK, 0.80),
    (r"\w*_Safety\w*", SafetyType.INTERLOCK, 0.75),
])

BYPASS_PATTERNS = _rules([
    (r"bDbg_Skip\w*", SafetyType.BYPASS, 1.0),
    (r"bDebug_Bypass\w*", SafetyType.BYPASS, 1.0),
    (r"bDbgBypass\w*", SafetyType.BYPASS, 1.0),
    (r"bDbg_Override\w*", SafetyType.BYPASS, 1.0),
    (r"BypassInterlock\w*", SafetyType.BYPASS, 1.0),
    (r"IL_Bypass\w*", SafetyType.BYPASS, 1.0),
    (r"SkipSafety\w*", SafetyType.BYPASS, 1.0),
    (r"Debug_NoIL\w*", SafetyType.BYPASS, 1.0),
    (r"bSkip_IL\w*", SafetyType.BYPASS, 1.0),
    (r"bBypass\w*", SafetyType.BYPASS, 0.95),
    (r"bypass_\w+", SafetyType.BYPASS, 0.95),
    (r"\w*Bypass\w*", SafetyType.BYPASS, 0.85),
    (r"bSkipSafety\w*", SafetyType.BYPASS, 1.0),
    (r"bSkipInterlock\w*", SafetyType.BYPASS, 1.0),
    (r"bSkip\w*", SafetyType.BYPASS, 0.90),
    (r"skip_\w+", SafetyType.BYPASS, 0.90),
    (r"bOverrideSafety\w*", SafetyType.BYPASS, 1.0),
    (r"bSafetyOverride\w*", SafetyType.BYPASS, 1.0),
    (r"bOverride_IL\w*", SafetyType.BYPASS, 1.0),
    (r"bOverride\w*", SafetyType.BYPASS, 0.90),
    (r"override_\w+", SafetyType.BYPASS, 0.90),
    (r"bDisableSafety\w*", SafetyType.BYPASS, 1.0),
    (r"bSafetyDisable\w*", SafetyType.BYPASS, 1.0),
    (r"bDisable_IL\w*", SafetyType.BYPASS, 1.0),
    (r"disable_interlock\w*", SafetyType.BYPASS, 1.0),
    (r"bDisable\w*", SafetyType.BYPASS, 0.90),
    (r"disable_\w+", SafetyType.BYPASS, 0.90),
    (r"bForceSafety\w*", SafetyType.BYPASS, 1.0),
    (r"bForce_IL\w*", SafetyType.BYPASS, 1.0),
    (r"bForceInterlock\w*", SafetyType.BYPASS, 1.0),
    (r"force_safety_ok\w*", SafetyType.BYPASS, 1.0),
    (r"bForce\w*", SafetyType.BYPASS, 0.85),
    (r"force_\w+", SafetyType.BYPASS, 0.85),
    (r"bTestMode", SafetyType.BYPASS, 0.80),
    (r"bSimulation", SafetyType.BYPASS, 0.80),
    (r"bDebugMode", SafetyType.BYPASS, 0.85),
    (r"bMaintenanceMode", SafetyType.BYPASS, 0.75),
    (r"bMaint\w*Bypass\w*", SafetyType.BYPASS, 1.0),
    (r"bService\w*Bypass\w*", SafetyType.BYPASS, 1.0),
    (r"bCommissioningMode\w*", SafetyType.BYPASS, 0.85),
    (r"bDbgSkpIL", SafetyType.BYPASS, 0.95),
    (r"bSkpIntlk", SafetyType.BYPASS, 0.95),
])

# Source idioms that suggest a bypass even without a known bypass name.
BYPASS_CONTEXT_PATTERNS = [
    (re.compile(r"IF\s+\w*bypass\w*\s+(?:OR|THEN)\b", re.IGNORECASE),
     "Interlock check guarded by a bypass flag"),
    (re.compile(r"IF\s+\w*debug\w*\s+(?:OR|THEN)\b", re.IGNORECASE),
     "Interlock check guarded by a debug flag"),
    (re.compile(r"IF\s+\w*test\w*\s+(?:OR|THEN)\b", re.IGNORECASE),
     "Logic guarded by a test-mode flag"),
    (re.compile(r"NOT\s+\w*interlock\w*\s+OR\s+\w*bypass", re.IGNORECASE),
     "Negated interlock combined with a bypass"),
    (re.compile(r":=\s*FALSE\s*;[ \t]*(?:\(\*|//)[^\n]*bypass", re.IGNORECASE),
     "Safety signal forced FALSE with a bypass comment"),
]

_GENERIC_BYPASS_NAME = r"\w*(?:bypass|debug)\w*"

_SEVERITY_BY_TYPE: Dict[SafetyType, Severity] = {
    SafetyType.ESTOP: Severity.CRITICAL,
    SafetyType.BYPASS: Severity.CRITICAL,
    SafetyType.INTERLOCK: Severity.HIGH,
    SafetyType.SAFETY_RELAY: Severity.HIGH,
    SafetyType.PERMISSIVE: Severity.MEDIUM,
    SafetyType.SAFETY_DEVICE: Severity.MEDIUM,
}

_IF_CONDITION = re.compile(r"\b(?:IF|ELSIF)\b(.*?)\bTHEN\b", re.IGNORECASE | re.DOTALL)


def is_safety_name(name: str) -> bool:
    """Check whether an identifier follows any safety or bypass naming rule."""
    if not name:
        return False
    return any(rule.regex.fullmatch(name) for rule in INTERLOCK_PATTERNS + BYPASS_PATTERNS)


def is_bypass_name(name: str) -> bool:
    return any(rule.regex.fullmatch(name) for rule in BYPASS_PATTERNS)


def determine_severity(safety_type: SafetyType, is_bypassed: bool) -> Severity:
    if is_bypassed:
        return Severity.CRITICAL
    return _SEVERITY_BY_TYPE.get(safety_type, Severity.MEDIUM)


class SafetyExtractor:
    """Extracts safety interlocks and bypasses from one file's source text."""

    def __init__(self, file_path: str = "<source>", pous: Optional[Sequence[POU]] = None,
                 extra_patterns: Optional[Iterable[SafetyPattern]] = None):
        """
        Args:
            file_path: File name recorded in locations
            pous: Parsed POUs used to attribute findings to their owner
            extra_patterns: Additional naming rules appended to the built-in tables
        """
        self.file_path = file_path
        self.pous = list(pous or [])
        extra = list(extra_patterns or [])
        self.interlock_patterns = INTERLOCK_PATTERNS + [p for p in extra if p.type != SafetyType.BYPASS]
        self.bypass_patterns = BYPASS_PATTERNS + [p for p in extra if p.type == SafetyType.BYPASS]

    def analyze(self, source) -> SafetyAnalysisResult:
        """
        Run both pattern families over the source.

        Returns:
            SafetyAnalysisResult with interlocks (bypass entries included),
            critical warnings and a per-type summary
        """
        raw = coerce_source(source)
        if not raw.strip():
            return SafetyAnalysisResult()

        code = mask_non_code(raw)
        index = LineIndex(raw)
        conditions = [m.group(1) for m in _IF_CONDITION.finditer(code)]

        bypass_names = OrderedSet()
        for rule in self.bypass_patterns:
            for match in rule.regex.finditer(code):
                bypass_names.add(match.group(1).lower())

        seen = set()
        interlocks: List[SafetyInterlock] = []
        warnings: List[SafetyWarning] = []

        for rule in self.interlock_patterns:
            for match in rule.regex.finditer(code):
                name = match.group(1)
                key = name.lower()
                if key in seen:
                    continue
                seen.add(key)
                location = self._location(index, match.start(1), name)
                if key in bypass_names and is_bypass_name(name):
                    interlocks.append(self._bypass_entry(name, location, 1.0, conditions, interlocks,
                                                         code, index))
                    continue
                condition = self._bypass_condition(name, code, conditions, bypass_names)
                is_bypassed = key in bypass_names or condition is not None
                owners = self._owners(name, code, index)
                interlock = SafetyInterlock(
                    id=make_id("il", self.file_path, key),
                    name=name,
                    type=rule.type,
                    location=location,
                    confidence=rule.confidence,
                    severity=determine_severity(rule.type, is_bypassed),
                    pou_id=self._owner(location.line) or (owners[0] if owners else None),
                    pou_ids=owners,
                    is_bypassed=is_bypassed,
                    bypass_condition=condition,
                    related_interlocks=self._related(name, conditions),
                )
                interlocks.append(interlock)
                if is_bypassed:
                    warnings.append(SafetyWarning(
                        message=f"Safety interlock '{name}' may be bypassed",
                        location=location,
                        snippet=condition or "",
                        pou_ids=list(owners),
                    ))

        for rule in self.bypass_patterns:
            for match in rule.regex.finditer(code):
                name = match.group(1)
                key = name.lower()
                if key in seen:
                    continue
                seen.add(key)
                location = self._location(index, match.start(1), name)
                interlocks.append(self._bypass_entry(name, location, rule.confidence, conditions,
                                                     interlocks, code, index))

        for entry in interlocks:
            if entry.type == SafetyType.BYPASS:
                warnings.append(SafetyWarning(
                    message=f"Safety bypass variable detected: {entry.name}",
                    location=entry.location,
                    snippet=entry.bypass_condition or "",
                    pou_ids=list(entry.pou_ids),
                ))

        for pattern, message in BYPASS_CONTEXT_PATTERNS:
            match = pattern.search(raw)
            if match:
                line = index.line_of(match.start())
                owner = self._owner(line)
                warnings.append(SafetyWarning(
                    message=message,
                    location=SourceLocation(self.file_path, line, index.column_of(match.start())),
                    snippet=index.line_text(line).strip()[:120],
                    pou_ids=[owner] if owner else [],
                ))

        interlocks.sort(key=lambda i: (i.location.line, i.location.column))
        warnings.sort(key=lambda w: (w.location.line, w.location.column, w.message))
        summary = SafetySummary.from_interlocks(interlocks, len(warnings))
        logger.debug(
            f"{self.file_path}: {summary.total} safety entries, "
            f"{summary.by_type.get(SafetyType.BYPASS.value, 0)} bypass"
        )
        return SafetyAnalysisResult(interlocks=interlocks, critical_warnings=warnings, summary=summary)

    def _location(self, index: LineIndex, offset: int, name: str) -> SourceLocation:
        line, column = index.position(offset)
        return SourceLocation(self.file_path, line, column, line, column + len(name) - 1)

    def _owner(self, line: int) -> Optional[str]:
        pou = find_enclosing(self.pous, line)
        return pou.id if pou else None

    def _owners(self, name: str, code: str, index: LineIndex) -> List[str]:
        """Ids of every POU whose code mentions ``name``, in order of first mention."""
        owners = OrderedSet()
        for match in re.finditer(rf"\b{re.escape(name)}\b", code, re.IGNORECASE):
            owner = self._owner(index.line_of(match.start()))
            if owner is not None:
                owners.add(owner)
        return list(owners)

    def _bypass_entry(self, name: str, location: SourceLocation, confidence: float,
                      conditions: List[str], interlocks: List[SafetyInterlock],
                      code: str, index: LineIndex) -> SafetyInterlock:
        affected = OrderedSet()
        for other in interlocks:
            if other.type == SafetyType.BYPASS:
                continue
            if self._idiom_matches(other.name, [re.escape(name)], code):
                affected.add(other.name)
        owners = self._owners(name, code, index)
        return SafetyInterlock(
            id=make_id("il", self.file_path, name.lower()),
            name=name,
            type=SafetyType.BYPASS,
            location=location,
            confidence=confidence,
            severity=Severity.CRITICAL,
            pou_id=self._owner(location.line) or (owners[0] if owners else None),
            pou_ids=owners,
            is_bypassed=True,
            bypass_condition=self._usage_condition(name, conditions),
            related_interlocks=list(affected),
        )

    def _idiom_matches(self, name: str, bypass_alternatives: List[str], code: str) -> bool:
        """Check the fixed set of bypass idioms for ``name``."""
        target = re.escape(name)
        bypass = "(?:" + "|".join(bypass_alternatives) + ")"
        idioms = [
            rf"\b{bypass}\s*\)?\s+OR\s+\(?\s*{target}\b",
            rf"\b{target}\s*\)?\s+OR\s+\(?\s*{bypass}\b",
            rf"\bNOT\s*\(?\s*{target}\s*\)?\s+OR\s+\(?\s*{bypass}\b",
        ]
        return any(re.search(idiom, code, re.IGNORECASE) for idiom in idioms)

    def _bypass_condition(self, name: str, code: str, conditions: List[str],
                          bypass_names: OrderedSet) -> Optional[str]:
        """Return the IF condition that ORs ``name`` with a bypass, if any."""
        alternatives = [re.escape(b) for b in bypass_names] + [_GENERIC_BYPASS_NAME]
        if not self._idiom_matches(name, alternatives, code):
            return None
        for condition in conditions:
            if re.search(rf"\b{re.escape(name)}\b", condition, re.IGNORECASE) and \
                    self._idiom_matches(name, alternatives, condition):
                return " ".join(condition.split())
        # Idiom found outside an IF (e.g. in an assignment)
        match = re.search(
            rf"[^;\n]*\b{re.escape(name)}\b[^;\n]*", code, re.IGNORECASE
        )
        return " ".join(match.group(0).split()) if match else name

    def _usage_condition(self, name: str, conditions: List[str]) -> Optional[str]:
        for condition in conditions:
            if re.search(rf"\b{re.escape(name)}\b", condition, re.IGNORECASE):
                return " ".join(condition.split())
        return None

    def _related(self, name: str, conditions: List[str]) -> List[str]:
        related = OrderedSet()
        for condition in conditions:
            if not re.search(rf"\b{re.escape(name)}\b", condition, re.IGNORECASE):
                continue
            for rule in self.interlock_patterns:
                for match in rule.regex.finditer(condition):
                    other = match.group(1)
                    if other.lower() != name.lower() and other.lower() not in {r.lower() for r in related}:
                        related.add(other)
        return list(related)


def analyze_safety(source, file_path: str = "<source>",
                   pous: Optional[Sequence[POU]] = None) -> SafetyAnalysisResult:
    """Full safety analysis for one file, including warnings and summary."""
    return SafetyExtractor(file_path, pous).analyze(source)


def extract_safety_interlocks(source, file_path: str = "<source>",
                              pous: Optional[Sequence[POU]] = None) -> List[SafetyInterlock]:
    """
    Extract safety interlocks (bypass variables included) from ST source.

    Names are deduplicated case-insensitively; the first occurrence wins.
    """
    return analyze_safety(source, file_path, pous).interlocks
